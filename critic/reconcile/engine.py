"""Reconciliation engine: majority-vote block selection plus manual override.

State machine per page: draft -> finalized -> retired. There is no way back
to draft; a correction needs a new reconciliation once the old one retires.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence

from critic.reconcile.differ import diff_transcriptions
from critic.reconcile.models import (
    AlignmentGroup,
    DecisionCategory,
    DiffResult,
    GroupDecision,
    GroupOption,
    ManualDecision,
    Reconciliation,
    ReconciliationReport,
)
from critic.store.base import ReconciliationSink
from critic.transcriptions.editing import build_blocks
from critic.transcriptions.fingerprint import compute_block_fingerprint
from critic.transcriptions.models import BlockContent, NormalizationPolicy, Transcription
from critic.utils.errors import (
    IncompleteReconciliation,
    InvalidDecision,
    InvalidStateTransition,
    NoInputs,
    PageAlreadyReconciled,
)
from critic.utils.events import log_event

logger = logging.getLogger("critic.core")


def decide_group(group: AlignmentGroup, input_count: int) -> GroupDecision:
    """Apply the vote to one group without any manual input.

    Absence counts as an option of its own, so a block present in a strict
    minority of inputs is dropped by majority.
    """

    if group.status == "agreement":
        option = group.options()[0]
        return GroupDecision(
            group_index=group.index,
            source="agreement",
            category="equal",
            fingerprint=option.fingerprint,
            content=option.content,
            support=option.support,
        )

    leader = _majority_option(group, input_count)
    if leader is None:
        return GroupDecision(group_index=group.index, source="undecided")
    return GroupDecision(
        group_index=group.index,
        source="majority",
        category="majority_taken",
        fingerprint=leader.fingerprint,
        content=leader.content,
        support=leader.support,
    )


def apply_manual_decision(
    page: str,
    group: AlignmentGroup,
    decision: ManualDecision,
    input_count: int,
    policy: NormalizationPolicy | None = None,
) -> GroupDecision:
    """Resolve an author's override into a recorded decision."""

    if decision.action == "pick":
        option = group.option_for(decision.fingerprint)
        if option is None or option.fingerprint is None:
            raise InvalidDecision(
                f"Group {group.index} of {page} has no option {decision.fingerprint}",
                page=page,
                group_index=group.index,
            )
        return _override(group, option, input_count)

    if decision.action == "omit":
        option = group.option_for(None)
        if option is None:
            return GroupDecision(
                group_index=group.index, source="override", category="minority_taken", support=0
            )
        return _override(group, option, input_count)

    if decision.content is None:
        raise InvalidDecision(
            f"Authored decision for group {group.index} of {page} has no content",
            page=page,
            group_index=group.index,
        )
    fingerprint = compute_block_fingerprint(decision.content, policy)
    option = group.option_for(fingerprint)
    if option is not None:
        return _override(group, option, input_count)
    return GroupDecision(
        group_index=group.index,
        source="override",
        category="novel",
        fingerprint=fingerprint,
        content=decision.content,
        support=0,
    )


def merged_contents(decisions: Iterable[GroupDecision]) -> list[BlockContent]:
    return [decision.content for decision in decisions if decision.content is not None]


class ReconciliationEngine:
    """Holds at most one non-retired reconciliation per page."""

    def __init__(
        self,
        sink: ReconciliationSink | None = None,
        *,
        policy: NormalizationPolicy | None = None,
        max_workers: int = 1,
    ) -> None:
        self._sink = sink
        self._policy = policy
        self._max_workers = max_workers
        self._active: dict[str, Reconciliation] = {}
        self._lock = threading.Lock()

    def diff(self, page: str, transcriptions: Sequence[Transcription]) -> DiffResult:
        return diff_transcriptions(
            page, transcriptions, policy=self._policy, max_workers=self._max_workers
        )

    def reconcile(
        self,
        page: str,
        transcriptions: Sequence[Transcription],
        *,
        author: str,
        decisions: Sequence[ManualDecision] = (),
    ) -> Reconciliation:
        """Start a draft reconciliation of ``page`` from its published transcriptions."""

        if not transcriptions:
            raise NoInputs(f"No transcriptions supplied for {page}", page=page)
        with self._lock:
            self._ensure_free(page)

        result = self.diff(page, transcriptions)
        input_count = len(result.usernames)
        group_decisions = [decide_group(group, input_count) for group in result.groups]
        group_decisions = self._with_overrides(page, result.groups, group_decisions, decisions)

        reconciliation = Reconciliation(
            page=page,
            author=author,
            state="draft",
            inputs=result.usernames,
            groups=result.groups,
            decisions=group_decisions,
            blocks=build_blocks(merged_contents(group_decisions), self._policy),
            report=ReconciliationReport.from_decisions(group_decisions),
        )

        with self._lock:
            self._ensure_free(page)
            self._active[page] = reconciliation
        self._persist(reconciliation)
        log_event(
            logger,
            logging.INFO,
            "reconcile",
            page=page,
            author=author,
            inputs=reconciliation.inputs,
            groups=len(result.groups),
            report=reconciliation.report.model_dump(),
        )
        return reconciliation

    def decide(self, page: str, decisions: Sequence[ManualDecision]) -> Reconciliation:
        with self._lock:
            current = self._require(page)
            if current.state != "draft":
                raise InvalidStateTransition(
                    f"Reconciliation of {page} is {current.state}; decisions need a draft",
                    page=page,
                    current=current.state,
                    requested="draft",
                )
            updated_decisions = self._with_overrides(
                page, current.groups, current.decisions, decisions
            )
            updated = current.model_copy(
                update={
                    "decisions": updated_decisions,
                    "blocks": build_blocks(merged_contents(updated_decisions), self._policy),
                    "report": ReconciliationReport.from_decisions(updated_decisions),
                }
            )
            self._active[page] = updated
        self._persist(updated)
        return updated

    def finalize(self, page: str) -> Reconciliation:
        with self._lock:
            current = self._require(page)
            if current.state != "draft":
                raise InvalidStateTransition(
                    f"Reconciliation of {page} is {current.state}, not draft",
                    page=page,
                    current=current.state,
                    requested="finalized",
                )
            undecided = current.undecided_groups()
            if undecided:
                log_event(
                    logger,
                    logging.WARNING,
                    "finalize_incomplete",
                    page=page,
                    undecided_groups=undecided,
                )
                raise IncompleteReconciliation(
                    f"{len(undecided)} undecided group(s) remain on {page}",
                    page=page,
                    undecided_groups=undecided,
                )
            finalized = current.model_copy(update={"state": "finalized"})
            self._active[page] = finalized
        self._persist(finalized)
        log_event(
            logger,
            logging.INFO,
            "finalize",
            page=page,
            author=finalized.author,
            summary=finalized.report.summary_line(),
        )
        return finalized

    def retire(self, page: str) -> Reconciliation:
        """Retire a finalized reconciliation once its merge has been accepted upstream."""

        with self._lock:
            current = self._require(page)
            if current.state != "finalized":
                raise InvalidStateTransition(
                    f"Only finalized reconciliations can retire; {page} is {current.state}",
                    page=page,
                    current=current.state,
                    requested="retired",
                )
            retired = current.model_copy(update={"state": "retired"})
            del self._active[page]
        self._persist(retired)
        log_event(logger, logging.INFO, "retire", page=page, author=retired.author)
        return retired

    def get(self, page: str) -> Reconciliation | None:
        with self._lock:
            current = self._active.get(page)
        if current is None and self._sink is not None:
            stored = self._sink.fetch_reconciliation(page)
            if stored is not None and stored.state != "retired":
                return stored
        return current

    def restore(self, reconciliation: Reconciliation) -> None:
        """Re-adopt a persisted, non-retired reconciliation."""

        if reconciliation.state == "retired":
            return
        with self._lock:
            self._active[reconciliation.page] = reconciliation

    def _ensure_free(self, page: str) -> None:
        existing = self._active.get(page)
        if existing is None and self._sink is not None:
            stored = self._sink.fetch_reconciliation(page)
            if stored is not None and stored.state != "retired":
                existing = stored
                self._active[page] = stored
        if existing is not None:
            raise PageAlreadyReconciled(
                f"{page} already has a {existing.state} reconciliation by {existing.author}",
                page=page,
                author=existing.author,
                state=existing.state,
            )

    def _require(self, page: str) -> Reconciliation:
        current = self._active.get(page)
        if current is None and self._sink is not None:
            stored = self._sink.fetch_reconciliation(page)
            if stored is not None and stored.state != "retired":
                current = stored
                self._active[page] = stored
        if current is None:
            raise InvalidStateTransition(
                f"No active reconciliation for {page}",
                page=page,
                current="none",
                requested="draft",
            )
        return current

    def _with_overrides(
        self,
        page: str,
        groups: list[AlignmentGroup],
        current: list[GroupDecision],
        overrides: Sequence[ManualDecision],
    ) -> list[GroupDecision]:
        updated = list(current)
        input_count = len(groups[0].members) + len(groups[0].absent) if groups else 0
        for override in overrides:
            if override.group_index >= len(groups):
                raise InvalidDecision(
                    f"{page} has no group {override.group_index}",
                    page=page,
                    group_index=override.group_index,
                )
            group = groups[override.group_index]
            updated[override.group_index] = apply_manual_decision(
                page, group, override, input_count, self._policy
            )
        return updated

    def _persist(self, reconciliation: Reconciliation) -> None:
        if self._sink is not None:
            self._sink.persist_reconciliation(reconciliation)


def _majority_option(group: AlignmentGroup, input_count: int) -> GroupOption | None:
    for option in group.options():
        if option.support * 2 > input_count:
            return option
    return None


def _category(group: AlignmentGroup, option: GroupOption, input_count: int) -> DecisionCategory:
    if option.support == input_count and option.fingerprint is not None:
        return "equal"
    leader = _majority_option(group, input_count)
    if leader is not None and leader.fingerprint == option.fingerprint:
        return "majority_taken"
    return "minority_taken"


def _override(group: AlignmentGroup, option: GroupOption, input_count: int) -> GroupDecision:
    return GroupDecision(
        group_index=group.index,
        source="override",
        category=_category(group, option, input_count),
        fingerprint=option.fingerprint,
        content=option.content,
        support=option.support,
    )
