"""Custom exceptions for core logic."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class CriticError(Exception):
    """Base class for typed failures returned to callers.

    Every error carries a ``context`` mapping naming the page, scheme or
    group that triggered it so adapters can surface it unchanged.
    """

    error_code = "CRITIC_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}


class IdentitySequenceError(CriticError):
    """Raised when the durable verse sequence hands out a non-increasing value."""

    error_code = "IDENTITY_SEQUENCE"

    def __init__(self, message: str, *, value: int, last_allocated: int) -> None:
        super().__init__(message, value=value, last_allocated=last_allocated)
        self.value = value
        self.last_allocated = last_allocated


class SchemeError(CriticError):
    """Failures of the versification scheme registry."""

    error_code = "SCHEME_ERROR"


class DuplicateScheme(SchemeError):
    error_code = "DUPLICATE_SCHEME"

    def __init__(self, message: str, *, full_name: str, shorthand: str) -> None:
        super().__init__(message, full_name=full_name, shorthand=shorthand)
        self.full_name = full_name
        self.shorthand = shorthand


class DuplicateMapping(SchemeError):
    error_code = "DUPLICATE_MAPPING"

    def __init__(
        self,
        message: str,
        *,
        scheme: str,
        verse: int,
        label: str,
        existing_label: str | None = None,
        existing_verse: int | None = None,
    ) -> None:
        super().__init__(
            message,
            scheme=scheme,
            verse=verse,
            label=label,
            existing_label=existing_label,
            existing_verse=existing_verse,
        )
        self.scheme = scheme
        self.verse = verse
        self.label = label
        self.existing_label = existing_label
        self.existing_verse = existing_verse


class UnmappedLabel(SchemeError):
    error_code = "UNMAPPED_LABEL"

    def __init__(self, message: str, *, scheme: str, label: str) -> None:
        super().__init__(message, scheme=scheme, label=label)
        self.scheme = scheme
        self.label = label


class UnknownScheme(SchemeError):
    error_code = "UNKNOWN_SCHEME"

    def __init__(self, message: str, *, scheme: str) -> None:
        super().__init__(message, scheme=scheme)
        self.scheme = scheme


class UnknownVerse(SchemeError):
    error_code = "UNKNOWN_VERSE"

    def __init__(self, message: str, *, verse: int) -> None:
        super().__init__(message, verse=verse)
        self.verse = verse


class PageError(CriticError):
    """Failures of the page/range index."""

    error_code = "PAGE_ERROR"


class InvalidRange(PageError):
    error_code = "INVALID_RANGE"

    def __init__(self, message: str, *, page: str, start: int, end: int) -> None:
        super().__init__(message, page=page, start=start, end=end)
        self.page = page
        self.start = start
        self.end = end


class PageAlreadyExists(PageError):
    error_code = "PAGE_ALREADY_EXISTS"

    def __init__(self, message: str, *, page: str) -> None:
        super().__init__(message, page=page)
        self.page = page


class UnknownPage(PageError):
    error_code = "UNKNOWN_PAGE"

    def __init__(self, message: str, *, page: str) -> None:
        super().__init__(message, page=page)
        self.page = page


class ReconciliationError(CriticError):
    """Failures of the reconciliation engine."""

    error_code = "RECONCILIATION_ERROR"

    def __init__(self, message: str, *, page: str, **context: Any) -> None:
        super().__init__(message, page=page, **context)
        self.page = page


class NoInputs(ReconciliationError):
    error_code = "NO_INPUTS"


class PageAlreadyReconciled(ReconciliationError):
    error_code = "PAGE_ALREADY_RECONCILED"

    def __init__(self, message: str, *, page: str, author: str, state: str) -> None:
        super().__init__(message, page=page, author=author, state=state)
        self.author = author
        self.state = state


class IncompleteReconciliation(ReconciliationError):
    error_code = "INCOMPLETE_RECONCILIATION"

    def __init__(self, message: str, *, page: str, undecided_groups: Sequence[int]) -> None:
        super().__init__(message, page=page, undecided_groups=list(undecided_groups))
        self.undecided_groups = list(undecided_groups)


class InvalidStateTransition(ReconciliationError):
    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, message: str, *, page: str, current: str, requested: str) -> None:
        super().__init__(message, page=page, current=current, requested=requested)
        self.current = current
        self.requested = requested


class InvalidDecision(ReconciliationError):
    error_code = "INVALID_DECISION"

    def __init__(self, message: str, *, page: str, group_index: int) -> None:
        super().__init__(message, page=page, group_index=group_index)
        self.group_index = group_index


class DuplicateTranscription(ReconciliationError):
    error_code = "DUPLICATE_TRANSCRIPTION"

    def __init__(self, message: str, *, page: str, username: str) -> None:
        super().__init__(message, page=page, username=username)
        self.username = username


class FingerprintInconsistency(CriticError):
    """Content judged equal by its equality rule but not by fingerprint, or vice versa.

    This is a modeling bug rather than a user error and is never resolved
    silently.
    """

    error_code = "FINGERPRINT_INCONSISTENCY"

    def __init__(
        self,
        message: str,
        *,
        page: str,
        block_ids: Sequence[str],
        group_index: int | None = None,
    ) -> None:
        super().__init__(message, page=page, block_ids=list(block_ids), group_index=group_index)
        self.page = page
        self.block_ids = list(block_ids)
        self.group_index = group_index
