from __future__ import annotations

import threading

import pytest

from critic.utils.errors import DuplicateMapping, DuplicateScheme, UnknownScheme, UnknownVerse, UnmappedLabel
from critic.verses.models import CanonicalVerse, VerseMapping
from critic.verses.schemes import SchemeRegistry, normalize_label


def test_static_schemes_are_registered() -> None:
    registry = SchemeRegistry()

    names = [(scheme.id, scheme.full_name, scheme.shorthand) for scheme in registry.schemes()]

    assert names == [(1, "Common", "C"), (2, "Present", "P")]


def test_register_scheme_assigns_next_id() -> None:
    registry = SchemeRegistry()

    scheme_id = registry.register_scheme("Vulgate", "V")

    assert scheme_id == 3
    assert registry.scheme("V").full_name == "Vulgate"
    assert registry.scheme("Vulgate").id == 3


def test_register_scheme_rejects_colliding_names() -> None:
    registry = SchemeRegistry()
    registry.register_scheme("Vulgate", "V")

    with pytest.raises(DuplicateScheme):
        registry.register_scheme("Vulgate", "Vg")
    with pytest.raises(DuplicateScheme):
        registry.register_scheme("Septuagint", "C")


def test_label_round_trip() -> None:
    registry = SchemeRegistry()
    verse = registry.register_verse("Common", "Gen 5:17")

    assert registry.resolve("C", "Gen 5:17") == verse
    assert registry.label_for("Common", verse) == "Gen 5:17"


def test_labels_are_whitespace_normalised() -> None:
    registry = SchemeRegistry()
    verse = registry.register_verse("Common", " Gen  5:17 ")

    assert normalize_label(" Gen  5:17 ") == "Gen 5:17"
    assert registry.resolve("Common", "Gen 5:17") == verse
    assert registry.label_for("Common", verse) == "Gen 5:17"


def test_map_label_rejects_second_label_for_same_verse() -> None:
    registry = SchemeRegistry()
    verse = registry.register_verse("Common", "Gen 5:17")

    with pytest.raises(DuplicateMapping) as exc_info:
        registry.map_label("Common", verse, "Gen 5:18")

    assert exc_info.value.context["existing_label"] == "Gen 5:17"


def test_map_label_rejects_label_of_other_verse() -> None:
    registry = SchemeRegistry()
    registry.register_verse("Common", "Gen 5:17")
    other = registry.register_verse("Common", "Gen 5:18")

    with pytest.raises(DuplicateMapping):
        registry.map_label("Common", other, "Gen 5:17", overwrite=True)


def test_map_label_overwrite_relabels_verse() -> None:
    registry = SchemeRegistry()
    verse = registry.register_verse("Common", "Gen 5:17")

    registry.map_label("Common", verse, "Gen 5:17a", overwrite=True)

    assert registry.resolve("Common", "Gen 5:17a") == verse
    with pytest.raises(UnmappedLabel):
        registry.resolve("Common", "Gen 5:17")


def test_map_label_requires_allocated_verse() -> None:
    registry = SchemeRegistry()

    with pytest.raises(UnknownVerse):
        registry.map_label("Common", CanonicalVerse(99), "Gen 1:1")


def test_resolve_unknown_label_and_scheme() -> None:
    registry = SchemeRegistry()

    with pytest.raises(UnmappedLabel):
        registry.resolve("Common", "Exod 1:1")
    with pytest.raises(UnknownScheme):
        registry.resolve("Nope", "Exod 1:1")


def test_translate_reports_missing_target_label() -> None:
    registry = SchemeRegistry()
    verse = registry.register_verse("Common", "Ps 51:1")

    partial = registry.translate("Ps 51:1", "Common", "Present")
    registry.map_label("Present", verse, "Ps 50:3")
    complete = registry.translate("Ps 51:1", "C", "P")

    assert partial.verse == verse
    assert partial.target_label is None
    assert not partial.complete
    assert complete.target_label == "Ps 50:3"
    assert complete.complete


def test_late_verse_is_appended_to_identity_space() -> None:
    registry = SchemeRegistry()
    first = registry.register_verse("Common", "Gen 5:17")
    last = registry.register_verse("Common", "Gen 5:19")

    between = registry.register_verse("Common", "Gen 5:18")

    assert first < last < between


def test_load_mappings_adopts_verses() -> None:
    registry = SchemeRegistry()

    loaded = registry.load_mappings(
        [
            VerseMapping(verse=CanonicalVerse(4), scheme_id=1, label="Gen 1:1"),
            VerseMapping(verse=CanonicalVerse(4), scheme_id=2, label="Gen 1:1a"),
        ]
    )

    assert loaded == 2
    assert registry.identities.exists(4)
    assert registry.translate("Gen 1:1", "C", "P").target_label == "Gen 1:1a"
    assert [mapping.label for mapping in registry.mappings("Present")] == ["Gen 1:1a"]


def test_concurrent_upserts_of_one_label_admit_one_verse() -> None:
    registry = SchemeRegistry()
    verses = [registry.identities.allocate() for _ in range(8)]
    barrier = threading.Barrier(len(verses))
    winners: list[CanonicalVerse] = []
    losers: list[DuplicateMapping] = []

    def _upsert(verse: CanonicalVerse) -> None:
        barrier.wait()
        try:
            registry.map_label("C", verse, "Gen 1:1")
        except DuplicateMapping as exc:
            losers.append(exc)
        else:
            winners.append(verse)

    threads = [threading.Thread(target=_upsert, args=(verse,)) for verse in verses]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == len(verses) - 1
    assert registry.resolve("C", "Gen 1:1") == winners[0]
    assert [mapping.verse for mapping in registry.mappings("C")] == winners
