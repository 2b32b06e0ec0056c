"""Allocation of canonical verse identities."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterable
from typing import Protocol

from critic.verses.models import CanonicalVerse
from critic.utils.errors import IdentitySequenceError


class VerseSequence(Protocol):
    """Durable counter handing out verse identity values."""

    def next_verse_identity(self) -> int:
        """Return the next value of the durable sequence."""


class InMemoryVerseSequence:
    """Process-local sequence, used when no durable store is configured."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_verse_identity(self) -> int:
        with self._lock:
            return next(self._counter)


class VerseIdentityStore:
    """Issues canonical verses that are never reused or renumbered.

    New verses are always appended at the end of the identity space, even
    when they are later found to sit between two existing verses.
    """

    def __init__(self, sequence: VerseSequence | None = None) -> None:
        self._sequence = sequence or InMemoryVerseSequence()
        self._lock = threading.Lock()
        self._known: set[int] = set()
        self._last = 0

    def allocate(self) -> CanonicalVerse:
        with self._lock:
            value = self._sequence.next_verse_identity()
            if value <= self._last:
                raise IdentitySequenceError(
                    f"Verse sequence returned {value}, not above last allocated {self._last}",
                    value=value,
                    last_allocated=self._last,
                )
            self._known.add(value)
            self._last = value
            return CanonicalVerse(value)

    def adopt(self, identities: Iterable[CanonicalVerse | int]) -> None:
        """Register identities allocated in an earlier process."""

        with self._lock:
            for identity in identities:
                value = identity.id if isinstance(identity, CanonicalVerse) else int(identity)
                self._known.add(value)
                self._last = max(self._last, value)

    def exists(self, identity: CanonicalVerse | int) -> bool:
        value = identity.id if isinstance(identity, CanonicalVerse) else identity
        return value in self._known

    @property
    def last_allocated(self) -> int:
        return self._last
