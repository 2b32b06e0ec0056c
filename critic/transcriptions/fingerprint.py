"""Content-identity fingerprints for transcription blocks.

Each block kind has its own equality rule. The fingerprint is a SHA256 over
a canonical JSON payload of ``[kind, equality key]``, so two blocks share a
fingerprint exactly when they are the same kind with equal keys.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from critic.transcriptions.models import (
    AbbreviationBlock,
    AnchorBlock,
    BlockContent,
    BreakBlock,
    CorrectionBlock,
    LacunaBlock,
    NormalizationPolicy,
    SpaceBlock,
    TextBlock,
    UncertainBlock,
)
from critic.transcriptions.normalize import normalize_optional, normalize_text

_DEFAULT_POLICY = NormalizationPolicy()


def equality_key(content: BlockContent, policy: NormalizationPolicy | None = None) -> list[Any]:
    """Return the JSON-serialisable key the kind's equality rule compares."""

    policy = policy or _DEFAULT_POLICY
    if isinstance(content, TextBlock):
        return [_lang(content.lang), normalize_text(content.content, policy)]
    if isinstance(content, UncertainBlock):
        return [
            _lang(content.lang),
            normalize_text(content.content, policy),
            normalize_text(content.agent, policy),
            normalize_optional(content.cert, policy),
        ]
    if isinstance(content, AbbreviationBlock):
        return [
            normalize_text(content.surface, policy),
            normalize_text(content.expansion, policy),
            _lang(content.surface_lang),
            _lang(content.expansion_lang),
        ]
    if isinstance(content, CorrectionBlock):
        return [
            [
                normalize_optional(version.hand, policy),
                _lang(version.lang),
                normalize_text(version.content, policy),
            ]
            for version in content.versions
        ]
    if isinstance(content, LacunaBlock):
        return [content.n, content.unit, normalize_optional(content.replaces, policy)]
    if isinstance(content, SpaceBlock):
        return [content.quantity, content.unit]
    if isinstance(content, BreakBlock):
        return [content.break_type]
    if isinstance(content, AnchorBlock):
        return ["".join(content.anchor_id.split())]
    raise TypeError(f"Unsupported block content: {type(content).__name__}")


def compute_block_fingerprint(
    content: BlockContent, policy: NormalizationPolicy | None = None
) -> str:
    """Compute a canonical SHA256 fingerprint for one block's content."""

    payload = {"kind": content.kind, "key": equality_key(content, policy)}
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _lang(value: str) -> str:
    return value.strip()
