"""Persistent storage for the shared state document.

Provides:
- The immutable StateDocument value
- Timestamp-derived signatures identifying each version
- A JSON-file store with atomic whole-document replace
"""

from .document import StateDocument
from .document_store import DocumentStore
from .signature import SignatureGenerator

__all__ = ["DocumentStore", "SignatureGenerator", "StateDocument"]
