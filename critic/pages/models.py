"""Page references and verse ranges."""

from __future__ import annotations

from dataclasses import dataclass

from critic.verses.models import CanonicalVerse


@dataclass(frozen=True, order=True)
class PageRef:
    """A page, unique by name within its manuscript."""

    manuscript: str
    name: str

    def __str__(self) -> str:
        return f"{self.manuscript}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> PageRef:
        manuscript, sep, name = value.partition("/")
        if not sep or not manuscript or not name:
            raise ValueError(f"Page reference must look like 'manuscript/page': {value}")
        return cls(manuscript=manuscript, name=name)


@dataclass(frozen=True)
class PageRange:
    """Inclusive verse bounds of a page; either side may be unknown."""

    start: CanonicalVerse | None = None
    end: CanonicalVerse | None = None
