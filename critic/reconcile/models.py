"""Data models for alignment groups, merge decisions and reconciliation reports."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from critic.transcriptions.models import BlockContent, TranscriptionBlock

GroupStatus = Literal["agreement", "partial", "conflict"]
DecisionSource = Literal["agreement", "majority", "override", "undecided"]
DecisionCategory = Literal["equal", "majority_taken", "minority_taken", "novel"]
ReconciliationState = Literal["draft", "finalized", "retired"]


class GroupMember(BaseModel):
    """One input's block inside an alignment group."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str
    position: int
    fingerprint: str
    content: BlockContent

    @property
    def block_id(self) -> str:
        return f"{self.username}:b{self.position}"


class GroupOption(BaseModel):
    """A candidate reading of a group; ``fingerprint=None`` stands for omission."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    fingerprint: str | None
    usernames: list[str]
    content: BlockContent | None = None

    @property
    def support(self) -> int:
        return len(self.usernames)


class AlignmentGroup(BaseModel):
    """Blocks from different inputs judged to be the same content unit.

    Rules:
    - at most one member per input
    - agreement: every input present with one fingerprint
    - partial: one fingerprint, some inputs lack the block
    - conflict: members disagree on content at the same document position
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    index: int
    status: GroupStatus
    members: list[GroupMember]
    absent: list[str] = Field(default_factory=list)

    def options(self) -> list[GroupOption]:
        """Candidate readings, strongest support first, omission last on ties."""

        by_fingerprint: dict[str, list[GroupMember]] = {}
        for member in self.members:
            by_fingerprint.setdefault(member.fingerprint, []).append(member)

        options = [
            GroupOption(
                fingerprint=fingerprint,
                usernames=sorted(member.username for member in members),
                content=members[0].content,
            )
            for fingerprint, members in by_fingerprint.items()
        ]
        if self.absent:
            options.append(GroupOption(fingerprint=None, usernames=sorted(self.absent)))

        return sorted(
            options,
            key=lambda item: (-item.support, item.fingerprint is None, item.usernames),
        )

    def option_for(self, fingerprint: str | None) -> GroupOption | None:
        for option in self.options():
            if option.fingerprint == fingerprint:
                return option
        return None


class DiffResult(BaseModel):
    """Ordered alignment groups for one page."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page: str
    usernames: list[str]
    groups: list[AlignmentGroup] = Field(default_factory=list)

    def count(self, status: GroupStatus) -> int:
        return sum(1 for group in self.groups if group.status == status)


class ManualDecision(BaseModel):
    """An author's choice for one group, overriding the vote."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    group_index: int = Field(ge=0)
    action: Literal["pick", "omit", "author"]
    fingerprint: str | None = None
    content: BlockContent | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> ManualDecision:
        if self.action == "pick" and self.fingerprint is None:
            raise ValueError("pick decisions require a fingerprint")
        if self.action == "author" and self.content is None:
            raise ValueError("author decisions require content")
        return self


class GroupDecision(BaseModel):
    """Resolved (or outstanding) selection for one alignment group."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    group_index: int
    source: DecisionSource
    category: DecisionCategory | None = None
    fingerprint: str | None = None
    content: BlockContent | None = None
    support: int = 0

    @property
    def undecided(self) -> bool:
        return self.source == "undecided"


class ReconciliationReport(BaseModel):
    """Change summary accompanying the resulting merge."""

    model_config = ConfigDict(extra="forbid")

    equal: int = 0
    majority_taken: int = 0
    minority_taken: int = 0
    novel: int = 0
    undecided: int = 0

    @classmethod
    def from_decisions(cls, decisions: list[GroupDecision]) -> ReconciliationReport:
        report = cls()
        for decision in decisions:
            if decision.undecided or decision.category is None:
                report.undecided += 1
            else:
                setattr(report, decision.category, getattr(report, decision.category) + 1)
        return report

    def summary_line(self) -> str:
        parts = [
            f"{self.equal} equal",
            f"{self.majority_taken} majority decisions",
            f"{self.minority_taken} minority decisions",
            f"{self.novel} novel",
        ]
        if self.undecided:
            parts.append(f"{self.undecided} undecided")
        return ", ".join(parts)


class Reconciliation(BaseModel):
    """The merged, authoritative transcription of one page."""

    model_config = ConfigDict(extra="forbid")

    page: str
    author: str
    state: ReconciliationState = "draft"
    inputs: list[str]
    groups: list[AlignmentGroup] = Field(default_factory=list)
    decisions: list[GroupDecision] = Field(default_factory=list)
    blocks: list[TranscriptionBlock] = Field(default_factory=list)
    report: ReconciliationReport = Field(default_factory=ReconciliationReport)

    def undecided_groups(self) -> list[int]:
        return [decision.group_index for decision in self.decisions if decision.undecided]
