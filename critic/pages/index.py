"""Index from manuscript pages to the canonical verse range they contain."""

from __future__ import annotations

import threading

from critic.pages.models import PageRange, PageRef
from critic.utils.errors import InvalidRange, PageAlreadyExists, UnknownPage, UnknownVerse
from critic.verses.identity import VerseIdentityStore
from critic.verses.models import CanonicalVerse


class PageRangeIndex:
    """Keeps page ranges ordered by canonical identity, not by any scheme label."""

    def __init__(self, identities: VerseIdentityStore) -> None:
        self._identities = identities
        self._ranges: dict[PageRef, PageRange] = {}
        self._lock = threading.Lock()

    def add_page(self, manuscript: str, name: str) -> PageRef:
        page = PageRef(manuscript=manuscript, name=name)
        with self._lock:
            if page in self._ranges:
                raise PageAlreadyExists(
                    f"A page named '{name}' already exists in {manuscript}", page=str(page)
                )
            self._ranges[page] = PageRange()
        return page

    def set_range(
        self,
        page: PageRef,
        start: CanonicalVerse | None,
        end: CanonicalVerse | None,
    ) -> None:
        for bound in (start, end):
            if bound is not None and not self._identities.exists(bound):
                raise UnknownVerse(f"Verse {bound} was never allocated", verse=bound.id)
        if start is not None and end is not None and start > end:
            raise InvalidRange(
                f"Range of {page} starts at {start}, after its end {end}",
                page=str(page),
                start=start.id,
                end=end.id,
            )
        with self._lock:
            if page not in self._ranges:
                raise UnknownPage(f"Unknown page: {page}", page=str(page))
            self._ranges[page] = PageRange(start=start, end=end)

    def range_of(self, page: PageRef) -> tuple[CanonicalVerse, CanonicalVerse] | None:
        bounds = self.bounds_of(page)
        if bounds.start is None or bounds.end is None:
            return None
        return bounds.start, bounds.end

    def bounds_of(self, page: PageRef) -> PageRange:
        with self._lock:
            try:
                return self._ranges[page]
            except KeyError as exc:
                raise UnknownPage(f"Unknown page: {page}", page=str(page)) from exc

    def pages_covering(self, verse: CanonicalVerse) -> list[PageRef]:
        """Pages whose complete range contains ``verse``, by manuscript then name."""

        with self._lock:
            items = list(self._ranges.items())
        return sorted(
            page
            for page, bounds in items
            if bounds.start is not None
            and bounds.end is not None
            and bounds.start <= verse <= bounds.end
        )

    def pages_of(self, manuscript: str) -> list[PageRef]:
        with self._lock:
            return sorted(page for page in self._ranges if page.manuscript == manuscript)
