"""Data models for canonical verse identities and versification schemes."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class CanonicalVerse:
    """Opaque verse identity; ordering follows allocation order."""

    id: int

    def __str__(self) -> str:
        return f"V{self.id}"


@dataclass(frozen=True)
class VersificationScheme:
    """A named verse-labelling convention, e.g. ``Common`` / ``C``."""

    id: int
    full_name: str
    shorthand: str


@dataclass(frozen=True)
class VerseMapping:
    """How one scheme labels one canonical verse."""

    verse: CanonicalVerse
    scheme_id: int
    label: str


@dataclass(frozen=True)
class LabelTranslation:
    """Result of converting a label from one scheme into another.

    ``target_label`` is None when the verse has not been placed in the
    target scheme yet.
    """

    source_scheme: str
    source_label: str
    verse: CanonicalVerse
    target_scheme: str
    target_label: str | None

    @property
    def complete(self) -> bool:
        return self.target_label is not None


COMMON_SCHEME = VersificationScheme(id=1, full_name="Common", shorthand="C")
PRESENT_SCHEME = VersificationScheme(id=2, full_name="Present", shorthand="P")
STATIC_SCHEMES = (COMMON_SCHEME, PRESENT_SCHEME)
