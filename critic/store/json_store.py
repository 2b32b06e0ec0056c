"""Local JSON store backing schemes, pages, transcriptions and reconciliations."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from critic.pages.models import PageRange, PageRef
from critic.reconcile.models import Reconciliation
from critic.transcriptions.models import Transcription
from critic.utils.errors import UnknownPage
from critic.verses.models import CanonicalVerse, VerseMapping, VersificationScheme

_STORE_VERSION = 1


class _SchemeRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    full_name: str
    shorthand: str


class _PageRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: int | None = None
    end: int | None = None


class _TranscriptionRecord(BaseModel):
    """A user's working copy, its published version and the archived ones."""

    model_config = ConfigDict(extra="forbid")

    current: Transcription
    published: Transcription | None = None
    history: list[Transcription] = Field(default_factory=list)


class StoreData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = _STORE_VERSION
    verse_counter: int = 0
    schemes: list[_SchemeRecord] = Field(default_factory=list)
    mappings: dict[str, dict[str, str]] = Field(default_factory=dict)
    pages: dict[str, _PageRecord] = Field(default_factory=dict)
    transcriptions: dict[str, dict[str, _TranscriptionRecord]] = Field(default_factory=dict)
    reconciliations: dict[str, Reconciliation] = Field(default_factory=dict)


class JsonDataStore:
    """Persist everything in one JSON file, or in memory when no path is given.

    Every mutation is a read-modify-write under one lock; the file is
    replaced atomically so readers never see a half-written store.
    """

    def __init__(self, store_path: Path | None = None) -> None:
        self._store_path = store_path
        self._memory = StoreData()
        self._lock = threading.RLock()

    @property
    def store_path(self) -> Path | None:
        return self._store_path

    def next_verse_identity(self) -> int:
        with self._lock:
            data = self._read_data()
            data.verse_counter += 1
            self._write_data(data)
            return data.verse_counter

    def save_scheme(self, scheme: VersificationScheme) -> None:
        with self._lock:
            data = self._read_data()
            data.schemes = [item for item in data.schemes if item.id != scheme.id]
            data.schemes.append(
                _SchemeRecord(id=scheme.id, full_name=scheme.full_name, shorthand=scheme.shorthand)
            )
            data.schemes.sort(key=lambda item: item.id)
            self._write_data(data)

    def fetch_schemes(self) -> list[VersificationScheme]:
        data = self._read_data()
        return [
            VersificationScheme(id=item.id, full_name=item.full_name, shorthand=item.shorthand)
            for item in data.schemes
        ]

    def save_mapping(self, mapping: VerseMapping) -> None:
        with self._lock:
            data = self._read_data()
            table = data.mappings.setdefault(str(mapping.scheme_id), {})
            for verse_id, label in list(table.items()):
                if label == mapping.label and verse_id != str(mapping.verse.id):
                    del table[verse_id]
            table[str(mapping.verse.id)] = mapping.label
            self._write_data(data)

    def fetch_scheme_mappings(self, scheme_id: int) -> list[VerseMapping]:
        data = self._read_data()
        table = data.mappings.get(str(scheme_id), {})
        return [
            VerseMapping(verse=CanonicalVerse(int(verse_id)), scheme_id=scheme_id, label=label)
            for verse_id, label in sorted(table.items(), key=lambda item: int(item[0]))
        ]

    def save_page(self, page: PageRef, bounds: PageRange | None = None) -> None:
        bounds = bounds or PageRange()
        with self._lock:
            data = self._read_data()
            data.pages[str(page)] = _PageRecord(
                start=bounds.start.id if bounds.start is not None else None,
                end=bounds.end.id if bounds.end is not None else None,
            )
            self._write_data(data)

    def fetch_pages(self) -> list[tuple[PageRef, PageRange]]:
        data = self._read_data()
        pages: list[tuple[PageRef, PageRange]] = []
        for key in sorted(data.pages):
            record = data.pages[key]
            pages.append(
                (
                    PageRef.parse(key),
                    PageRange(
                        start=CanonicalVerse(record.start) if record.start is not None else None,
                        end=CanonicalVerse(record.end) if record.end is not None else None,
                    ),
                )
            )
        return pages

    def save_transcription(self, page: str, transcription: Transcription) -> None:
        """Replace the user's working copy; the published version is untouched."""

        with self._lock:
            data = self._read_data()
            self._require_page(data, page)
            records = data.transcriptions.setdefault(page, {})
            working = transcription.model_copy(update={"published": False})
            record = records.get(transcription.username)
            if record is None:
                records[transcription.username] = _TranscriptionRecord(current=working)
            else:
                record.current = working
            self._write_data(data)

    def publish_transcription(self, page: str, username: str) -> Transcription:
        """Publish the working copy; the previous published version becomes history."""

        with self._lock:
            data = self._read_data()
            self._require_page(data, page)
            record = data.transcriptions.get(page, {}).get(username)
            if record is None:
                raise ValueError(f"No transcription by {username} saved for {page}")
            if record.published is not None:
                record.history.append(record.published)
            record.published = record.current.model_copy(update={"published": True})
            self._write_data(data)
            return record.published

    def fetch_transcription(self, page: str, username: str) -> Transcription | None:
        record = self._read_data().transcriptions.get(page, {}).get(username)
        return record.current if record is not None else None

    def fetch_transcription_history(self, page: str, username: str) -> list[Transcription]:
        """Previously published versions, oldest first."""

        record = self._read_data().transcriptions.get(page, {}).get(username)
        return list(record.history) if record is not None else []

    def fetch_published_transcriptions(self, page: str) -> list[Transcription]:
        records = self._read_data().transcriptions.get(page, {})
        return [
            records[username].published
            for username in sorted(records)
            if records[username].published is not None
        ]

    def persist_reconciliation(self, reconciliation: Reconciliation) -> None:
        with self._lock:
            data = self._read_data()
            data.reconciliations[reconciliation.page] = reconciliation
            self._write_data(data)

    def fetch_reconciliation(self, page: str) -> Reconciliation | None:
        return self._read_data().reconciliations.get(page)

    def fetch_reconciliations(self) -> list[Reconciliation]:
        data = self._read_data()
        return [data.reconciliations[key] for key in sorted(data.reconciliations)]

    def _require_page(self, data: StoreData, page: str) -> None:
        if page not in data.pages:
            raise UnknownPage(f"Unknown page: {page}", page=page)

    def _read_data(self) -> StoreData:
        if self._store_path is None:
            return self._memory
        if not self._store_path.exists():
            return StoreData()

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid store JSON: {self._store_path}") from exc

        try:
            return StoreData.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid store schema: {self._store_path}: {exc}") from exc

    def _write_data(self, data: StoreData) -> None:
        if self._store_path is None:
            self._memory = data
            return

        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._store_path.with_suffix(f"{self._store_path.suffix}.tmp")
        payload = data.model_dump(mode="json")
        temp_path.write_text(
            json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
            encoding="utf-8",
        )
        temp_path.replace(self._store_path)
