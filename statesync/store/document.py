"""The shared state document."""

import copy
from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class StateDocument:
    """One immutable version of the shared state.

    Records in ``clients`` and ``bookings`` are application data; they are
    carried verbatim and never inspected here.
    """

    clients: tuple[Any, ...]
    bookings: tuple[Any, ...]
    sig: str

    @classmethod
    def create(
        cls,
        clients: Sequence[Any],
        bookings: Sequence[Any],
        sig: str,
    ) -> "StateDocument":
        """Build a document from caller-owned sequences.

        Records are deep-copied so later mutation by the caller cannot leak
        into a published version.
        """
        return cls(
            clients=tuple(copy.deepcopy(list(clients))),
            bookings=tuple(copy.deepcopy(list(bookings))),
            sig=sig,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire and file shape."""
        return {
            "clients": copy.deepcopy(list(self.clients)),
            "bookings": copy.deepcopy(list(self.bookings)),
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateDocument":
        """Create from a parsed state file or wire payload.

        Missing collections become empty. Raises ValueError when a
        collection is present but not a list.
        """
        collections = {}
        for key in ("clients", "bookings"):
            value = data.get(key)
            if value is None:
                value = []
            elif not isinstance(value, list):
                raise ValueError(f"{key} must be a list, got {type(value).__name__}")
            collections[key] = value
        return cls.create(sig=str(data.get("sig", "")), **collections)
