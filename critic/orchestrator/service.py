"""Service facade wiring the registry, page index, differ and reconciliation engine."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from critic.pages.index import PageRangeIndex
from critic.pages.models import PageRef
from critic.reconcile.engine import ReconciliationEngine
from critic.reconcile.models import DiffResult, ManualDecision, Reconciliation
from critic.store.base import CatalogStore
from critic.store.json_store import JsonDataStore
from critic.transcriptions.editing import build_transcription, refingerprint
from critic.transcriptions.models import BlockContent, NormalizationPolicy, Transcription
from critic.utils.errors import NoInputs
from critic.utils.events import log_event
from critic.verses.identity import VerseIdentityStore
from critic.verses.models import (
    CanonicalVerse,
    LabelTranslation,
    VerseMapping,
    VersificationScheme,
)
from critic.verses.schemes import SchemeRef, SchemeRegistry, normalize_label

logger = logging.getLogger("critic.core")

DEFAULT_MAX_INPUTS = 16


class ReconciliationService:
    """Entry point used by the CLI and the HTTP API.

    State that must survive the process (schemes, label tables, pages,
    published transcriptions, reconciliations and the verse counter) goes
    through ``store``; the registry and index are rebuilt from it on start.
    """

    def __init__(
        self,
        store: CatalogStore | None = None,
        *,
        policy: NormalizationPolicy | None = None,
        max_workers: int = 1,
        max_inputs: int = DEFAULT_MAX_INPUTS,
    ) -> None:
        self._store: CatalogStore = store if store is not None else JsonDataStore()
        self._policy = policy or NormalizationPolicy()
        self._max_inputs = max_inputs
        self._identities = VerseIdentityStore(sequence=self._store)
        self._registry = SchemeRegistry(self._identities)
        self._pages = PageRangeIndex(self._identities)
        self._engine = ReconciliationEngine(
            self._store, policy=self._policy, max_workers=max_workers
        )
        self._load()

    @property
    def policy(self) -> NormalizationPolicy:
        return self._policy

    @property
    def registry(self) -> SchemeRegistry:
        return self._registry

    @property
    def pages(self) -> PageRangeIndex:
        return self._pages

    @property
    def store(self) -> CatalogStore:
        return self._store

    def schemes(self) -> list[VersificationScheme]:
        return self._registry.schemes()

    def register_scheme(self, full_name: str, shorthand: str) -> VersificationScheme:
        scheme = self._registry.scheme(self._registry.register_scheme(full_name, shorthand))
        self._store.save_scheme(scheme)
        log_event(logger, logging.INFO, "scheme_registered", scheme=scheme.full_name)
        return scheme

    def register_verse(self, scheme: SchemeRef, label: str) -> CanonicalVerse:
        """Allocate a new canonical verse first seen under ``label``."""

        resolved = self._registry.scheme(scheme)
        verse = self._registry.register_verse(resolved, label)
        self._store.save_mapping(
            VerseMapping(verse=verse, scheme_id=resolved.id, label=normalize_label(label))
        )
        return verse

    def map_label(
        self, scheme: SchemeRef, verse: CanonicalVerse, label: str, *, overwrite: bool = False
    ) -> None:
        mapping = self._registry.map_label(scheme, verse, label, overwrite=overwrite)
        self._store.save_mapping(mapping)

    def resolve_label(self, scheme: SchemeRef, label: str) -> CanonicalVerse:
        return self._registry.resolve(scheme, label)

    def translate_label(
        self, label: str, source: SchemeRef, target: SchemeRef
    ) -> LabelTranslation:
        return self._registry.translate(label, source, target)

    def add_page(self, manuscript: str, name: str) -> PageRef:
        page = self._pages.add_page(manuscript, name)
        self._store.save_page(page)
        return page

    def set_page_range(
        self, page: PageRef, start: CanonicalVerse | None, end: CanonicalVerse | None
    ) -> None:
        self._pages.set_range(page, start, end)
        self._store.save_page(page, self._pages.bounds_of(page))

    def pages_covering(self, verse: CanonicalVerse) -> list[PageRef]:
        return self._pages.pages_covering(verse)

    def save_transcription(
        self, page: str, username: str, contents: Iterable[BlockContent]
    ) -> Transcription:
        transcription = build_transcription(username, contents, policy=self._policy)
        self._store.save_transcription(page, transcription)
        return transcription

    def publish_transcription(self, page: str, username: str) -> Transcription:
        published = self._store.publish_transcription(page, username)
        log_event(logger, logging.INFO, "published", page=page, username=username)
        return published

    def diff(self, page: str, transcriptions: Sequence[Transcription] | None = None) -> DiffResult:
        """Align the given transcriptions, or the page's published ones."""

        return self._engine.diff(page, self._inputs(page, transcriptions))

    def reconcile(
        self,
        page: str,
        transcriptions: Sequence[Transcription] | None = None,
        decisions: Sequence[ManualDecision] = (),
        *,
        author: str,
        finalize: bool = False,
    ) -> Reconciliation:
        reconciliation = self._engine.reconcile(
            page,
            self._inputs(page, transcriptions),
            author=author,
            decisions=decisions,
        )
        if finalize:
            return self._engine.finalize(page)
        return reconciliation

    def decide(self, page: str, decisions: Sequence[ManualDecision]) -> Reconciliation:
        return self._engine.decide(page, decisions)

    def finalize(self, page: str) -> Reconciliation:
        return self._engine.finalize(page)

    def retire(self, page: str) -> Reconciliation:
        return self._engine.retire(page)

    def reconciliation(self, page: str) -> Reconciliation | None:
        return self._engine.get(page)

    def _inputs(
        self, page: str, transcriptions: Sequence[Transcription] | None
    ) -> list[Transcription]:
        PageRef.parse(page)
        if transcriptions is None:
            inputs = [
                refingerprint(item, self._policy)
                for item in self._store.fetch_published_transcriptions(page)
            ]
        else:
            inputs = list(transcriptions)
        if not inputs:
            raise NoInputs(f"No published transcriptions for {page}", page=page)
        if len(inputs) > self._max_inputs:
            raise ValueError(
                f"Too many transcriptions for {page}: {len(inputs)} > {self._max_inputs}"
            )
        return inputs

    def _load(self) -> None:
        for scheme in self._store.fetch_schemes():
            self._registry.restore_scheme(scheme)
        for scheme in self._registry.schemes():
            self._registry.load_mappings(self._store.fetch_scheme_mappings(scheme.id))
        for page, bounds in self._store.fetch_pages():
            self._pages.add_page(page.manuscript, page.name)
            if bounds.start is not None or bounds.end is not None:
                self._pages.set_range(page, bounds.start, bounds.end)
        for reconciliation in self._store.fetch_reconciliations():
            self._engine.restore(reconciliation)
