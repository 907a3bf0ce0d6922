"""Timestamp-derived version tokens for the state document."""

import time
from typing import Callable


class SignatureGenerator:
    """Issues opaque signatures from the wall clock.

    Tokens are decimal epoch milliseconds. Callers only ever compare them for
    equality; ordering between two tokens carries no meaning under clock skew.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last: int | None = None

    def next(self) -> str:
        """Return a token distinct from the previous one this generator issued."""
        millis = int(self._clock() * 1000)
        if self._last is not None and millis <= self._last:
            millis = self._last + 1
        self._last = millis
        return str(millis)
