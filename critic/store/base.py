"""Data-access collaborator contracts consumed by the core."""

from __future__ import annotations

from typing import Protocol

from critic.pages.models import PageRange, PageRef
from critic.reconcile.models import Reconciliation
from critic.transcriptions.models import Transcription
from critic.verses.models import VerseMapping, VersificationScheme


class ReconciliationSink(Protocol):
    """Where the engine keeps reconciliations between processes."""

    def persist_reconciliation(self, reconciliation: Reconciliation) -> None:
        """Store the latest state of a page's reconciliation."""

    def fetch_reconciliation(self, page: str) -> Reconciliation | None:
        """Return the most recent reconciliation of ``page``, if any."""


class DataAccess(ReconciliationSink, Protocol):
    """Everything the service reads from and writes to durable storage."""

    def fetch_published_transcriptions(self, page: str) -> list[Transcription]:
        """Return the currently published transcription of each user for ``page``."""

    def fetch_scheme_mappings(self, scheme_id: int) -> list[VerseMapping]:
        """Return the persisted label table of one scheme."""

    def next_verse_identity(self) -> int:
        """Advance the durable verse counter and return its new value."""


class CatalogStore(DataAccess, Protocol):
    """A data-access collaborator that also keeps schemes, pages and drafts."""

    def save_scheme(self, scheme: VersificationScheme) -> None: ...

    def fetch_schemes(self) -> list[VersificationScheme]: ...

    def save_mapping(self, mapping: VerseMapping) -> None: ...

    def save_page(self, page: PageRef, bounds: PageRange | None = None) -> None: ...

    def fetch_pages(self) -> list[tuple[PageRef, PageRange]]: ...

    def save_transcription(self, page: str, transcription: Transcription) -> None: ...

    def publish_transcription(self, page: str, username: str) -> Transcription: ...

    def fetch_reconciliations(self) -> list[Reconciliation]: ...
