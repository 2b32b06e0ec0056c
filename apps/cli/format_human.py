"""Human-readable diff and reconciliation summaries for CLI output."""

from __future__ import annotations

from collections import Counter

from critic.reconcile.models import AlignmentGroup, DiffResult, Reconciliation
from critic.transcriptions.editing import surface_text
from critic.transcriptions.models import BlockContent

_PREVIEW_WIDTH = 32
_MAX_LISTED_GROUPS = 5


def render_diff_summary(result: DiffResult) -> str:
    """Render one-screen alignment summary."""

    lines: list[str] = []
    lines.append("diff_summary:")
    lines.append(f"page={result.page} inputs={','.join(result.usernames)}")
    lines.append(
        f"groups={len(result.groups)} agreement={result.count('agreement')} "
        f"partial={result.count('partial')} conflict={result.count('conflict')}"
    )

    disputed = [group for group in result.groups if group.status != "agreement"]
    if not disputed:
        lines.append("disputed: none")
        return "\n".join(lines)

    for group in disputed[:_MAX_LISTED_GROUPS]:
        lines.append(f"group {group.index} [{group.status}]: {_options_text(group)}")
    if len(disputed) > _MAX_LISTED_GROUPS:
        lines.append(f"... {len(disputed) - _MAX_LISTED_GROUPS} more disputed groups")
    return "\n".join(lines)


def render_reconciliation_summary(reconciliation: Reconciliation) -> str:
    lines: list[str] = []
    lines.append("reconciliation_summary:")
    lines.append(
        f"page={reconciliation.page} author={reconciliation.author} "
        f"state={reconciliation.state}"
    )
    lines.append(f"report: {reconciliation.report.summary_line()}")

    sources: Counter[str] = Counter(decision.source for decision in reconciliation.decisions)
    if sources:
        sources_text = ", ".join(f"{name}={sources[name]}" for name in sorted(sources))
        lines.append(f"decisions: {sources_text}")
    else:
        lines.append("decisions: none")

    undecided = reconciliation.undecided_groups()
    if undecided:
        lines.append(f"undecided_groups: {', '.join(str(index) for index in undecided)}")
        for index in undecided[:_MAX_LISTED_GROUPS]:
            lines.append(f"group {index}: {_options_text(reconciliation.groups[index])}")
        lines.append("next: supply decisions for the undecided groups, then finalize")
    else:
        lines.append(f"blocks: {len(reconciliation.blocks)}")
    return "\n".join(lines)


def _options_text(group: AlignmentGroup) -> str:
    parts = []
    for option in group.options():
        who = "+".join(option.usernames)
        if option.fingerprint is None:
            parts.append(f"(omit) by {who}")
        else:
            parts.append(f"{_preview(option.content)} by {who} [{option.fingerprint[:8]}]")
    return " | ".join(parts)


def _preview(content: BlockContent | None) -> str:
    if content is None:
        return "none"
    text = surface_text(content)
    if text is None:
        return f"<{content.kind}>"
    if len(text) > _PREVIEW_WIDTH:
        text = text[: _PREVIEW_WIDTH - 3] + "..."
    return repr(text)
