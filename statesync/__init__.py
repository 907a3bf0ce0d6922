"""statesync: a shared client and booking document kept in sync across sessions."""

__version__ = "0.1.0"
