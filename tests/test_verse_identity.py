from __future__ import annotations

import threading

import pytest

from critic.utils.errors import IdentitySequenceError
from critic.verses.identity import InMemoryVerseSequence, VerseIdentityStore
from critic.verses.models import CanonicalVerse


class _StuckSequence:
    def next_verse_identity(self) -> int:
        return 7


def test_allocate_is_monotonic_and_distinct() -> None:
    store = VerseIdentityStore()

    allocated = [store.allocate() for _ in range(5)]

    assert allocated == sorted(allocated)
    assert len(set(allocated)) == 5
    assert store.last_allocated == allocated[-1].id
    assert all(store.exists(verse) for verse in allocated)


def test_allocate_is_distinct_across_threads() -> None:
    store = VerseIdentityStore(InMemoryVerseSequence())
    results: list[CanonicalVerse] = []
    lock = threading.Lock()

    def _worker() -> None:
        for _ in range(50):
            verse = store.allocate()
            with lock:
                results.append(verse)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 200
    assert len({verse.id for verse in results}) == 200


def test_allocate_rejects_non_increasing_sequence() -> None:
    store = VerseIdentityStore(_StuckSequence())
    store.allocate()

    with pytest.raises(IdentitySequenceError) as exc_info:
        store.allocate()

    assert exc_info.value.value == 7
    assert exc_info.value.last_allocated == 7


def test_adopt_marks_existing_identities() -> None:
    store = VerseIdentityStore(InMemoryVerseSequence(start=10))
    store.adopt([CanonicalVerse(3), 5])

    assert store.exists(3)
    assert store.exists(CanonicalVerse(5))
    assert not store.exists(4)
    assert store.allocate() == CanonicalVerse(10)


def test_canonical_verse_renders_with_prefix() -> None:
    assert str(CanonicalVerse(42)) == "V42"
