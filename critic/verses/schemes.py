"""Versification scheme registry over one shared canonical identity space.

Each scheme keeps two lookup tables (label -> verse, verse -> label) rather
than a true bijection, because a verse may not be placed in every scheme.
Converting a label between schemes is a two-step lookup that may fail in
the target scheme; that outcome is reported, never guessed.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable

from critic.utils.errors import (
    DuplicateMapping,
    DuplicateScheme,
    UnknownScheme,
    UnknownVerse,
    UnmappedLabel,
)
from critic.verses.identity import VerseIdentityStore
from critic.verses.models import (
    STATIC_SCHEMES,
    CanonicalVerse,
    LabelTranslation,
    VerseMapping,
    VersificationScheme,
)

_SPACE_RE = re.compile(r"\s+")

SchemeRef = VersificationScheme | int | str


def normalize_label(label: str) -> str:
    """Trim and collapse whitespace, e.g. ``" Gen  5:17"`` -> ``"Gen 5:17"``."""

    return _SPACE_RE.sub(" ", label).strip()


class _SchemeTables:
    def __init__(self) -> None:
        self.by_label: dict[str, int] = {}
        self.by_verse: dict[int, str] = {}


class SchemeRegistry:
    """Named numbering conventions and the label tables each maintains."""

    def __init__(self, identities: VerseIdentityStore | None = None) -> None:
        self._identities = identities or VerseIdentityStore()
        self._schemes: dict[int, VersificationScheme] = {}
        self._tables: dict[int, _SchemeTables] = {}
        self._registry_lock = threading.Lock()
        self._tables_lock = threading.Lock()
        for scheme in STATIC_SCHEMES:
            self._add(scheme)

    @property
    def identities(self) -> VerseIdentityStore:
        return self._identities

    def register_scheme(self, full_name: str, shorthand: str) -> int:
        full_name = full_name.strip()
        shorthand = shorthand.strip()
        if not full_name or not shorthand:
            raise ValueError("Scheme full name and shorthand must be non-empty")

        with self._registry_lock:
            for scheme in self._schemes.values():
                if scheme.full_name == full_name or scheme.shorthand == shorthand:
                    raise DuplicateScheme(
                        f"Scheme collides with existing scheme '{scheme.full_name}' "
                        f"({scheme.shorthand})",
                        full_name=full_name,
                        shorthand=shorthand,
                    )
            scheme_id = max(self._schemes) + 1
            self._add(VersificationScheme(id=scheme_id, full_name=full_name, shorthand=shorthand))
            return scheme_id

    def restore_scheme(self, scheme: VersificationScheme) -> None:
        """Re-register a persisted scheme under its original id."""

        with self._registry_lock:
            existing = self._schemes.get(scheme.id)
            if existing == scheme:
                return
            for other in self._schemes.values():
                if (
                    other.id == scheme.id
                    or other.full_name == scheme.full_name
                    or other.shorthand == scheme.shorthand
                ):
                    raise DuplicateScheme(
                        f"Persisted scheme '{scheme.full_name}' collides with '{other.full_name}'",
                        full_name=scheme.full_name,
                        shorthand=scheme.shorthand,
                    )
            self._add(scheme)

    def scheme(self, ref: SchemeRef) -> VersificationScheme:
        """Look a scheme up by instance, id, full name or shorthand."""

        if isinstance(ref, VersificationScheme):
            ref = ref.id
        if isinstance(ref, int):
            try:
                return self._schemes[ref]
            except KeyError as exc:
                raise UnknownScheme(f"Unknown scheme id: {ref}", scheme=str(ref)) from exc
        for scheme in self._schemes.values():
            if ref in (scheme.full_name, scheme.shorthand):
                return scheme
        raise UnknownScheme(f"Unknown scheme: {ref}", scheme=ref)

    def schemes(self) -> list[VersificationScheme]:
        return [self._schemes[key] for key in sorted(self._schemes)]

    def map_label(
        self,
        scheme: SchemeRef,
        verse: CanonicalVerse,
        label: str,
        *,
        overwrite: bool = False,
    ) -> VerseMapping:
        resolved = self.scheme(scheme)
        label = normalize_label(label)
        if not label:
            raise ValueError("Verse label must be non-empty")
        if not self._identities.exists(verse):
            raise UnknownVerse(f"Verse {verse} was never allocated", verse=verse.id)

        with self._tables_lock:
            tables = self._tables[resolved.id]
            current = tables.by_verse.get(verse.id)
            if current == label:
                return VerseMapping(verse=verse, scheme_id=resolved.id, label=label)
            if current is not None and not overwrite:
                raise DuplicateMapping(
                    f"{verse} already labelled '{current}' in {resolved.full_name}",
                    scheme=resolved.full_name,
                    verse=verse.id,
                    label=label,
                    existing_label=current,
                )
            holder = tables.by_label.get(label)
            if holder is not None and holder != verse.id:
                raise DuplicateMapping(
                    f"Label '{label}' already names V{holder} in {resolved.full_name}",
                    scheme=resolved.full_name,
                    verse=verse.id,
                    label=label,
                    existing_verse=holder,
                )
            if current is not None:
                del tables.by_label[current]
            tables.by_label[label] = verse.id
            tables.by_verse[verse.id] = label
        return VerseMapping(verse=verse, scheme_id=resolved.id, label=label)

    def register_verse(self, scheme: SchemeRef, label: str) -> CanonicalVerse:
        """Allocate a verse for a label no scheme has seen yet and map it."""

        resolved = self.scheme(scheme)
        normalized = normalize_label(label)
        with self._tables_lock:
            holder = self._tables[resolved.id].by_label.get(normalized)
        if holder is not None:
            raise DuplicateMapping(
                f"Label '{normalized}' already names V{holder} in {resolved.full_name}",
                scheme=resolved.full_name,
                verse=holder,
                label=normalized,
                existing_verse=holder,
            )
        verse = self._identities.allocate()
        self.map_label(resolved, verse, normalized)
        return verse

    def resolve(self, scheme: SchemeRef, label: str) -> CanonicalVerse:
        resolved = self.scheme(scheme)
        normalized = normalize_label(label)
        with self._tables_lock:
            verse_id = self._tables[resolved.id].by_label.get(normalized)
        if verse_id is None:
            raise UnmappedLabel(
                f"Label '{normalized}' is not mapped in {resolved.full_name}",
                scheme=resolved.full_name,
                label=normalized,
            )
        return CanonicalVerse(verse_id)

    def label_for(self, scheme: SchemeRef, verse: CanonicalVerse) -> str | None:
        resolved = self.scheme(scheme)
        with self._tables_lock:
            return self._tables[resolved.id].by_verse.get(verse.id)

    def translate(self, label: str, source: SchemeRef, target: SchemeRef) -> LabelTranslation:
        source_scheme = self.scheme(source)
        target_scheme = self.scheme(target)
        verse = self.resolve(source_scheme, label)
        return LabelTranslation(
            source_scheme=source_scheme.full_name,
            source_label=normalize_label(label),
            verse=verse,
            target_scheme=target_scheme.full_name,
            target_label=self.label_for(target_scheme, verse),
        )

    def mappings(self, scheme: SchemeRef) -> list[VerseMapping]:
        resolved = self.scheme(scheme)
        with self._tables_lock:
            items = sorted(self._tables[resolved.id].by_verse.items())
        return [
            VerseMapping(verse=CanonicalVerse(verse_id), scheme_id=resolved.id, label=label)
            for verse_id, label in items
        ]

    def load_mappings(self, mappings: Iterable[VerseMapping]) -> int:
        """Bulk-load persisted mappings; their verses are adopted as known."""

        loaded = 0
        for mapping in mappings:
            self._identities.adopt([mapping.verse])
            self.map_label(mapping.scheme_id, mapping.verse, mapping.label)
            loaded += 1
        return loaded

    def _add(self, scheme: VersificationScheme) -> None:
        self._schemes[scheme.id] = scheme
        self._tables[scheme.id] = _SchemeTables()
