"""Policy loading utilities for block normalization."""

from __future__ import annotations

from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from critic.transcriptions.models import NormalizationPolicy

_FORM_ALIASES = {
    "composed": "NFC",
    "decomposed": "NFD",
}


def load_policy(path: Path | None = None) -> NormalizationPolicy:
    """Load and validate normalization policy from YAML."""

    policy_path = path or Path(__file__).with_name("policy.yaml")

    try:
        raw = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Policy file not found: {policy_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in policy file: {policy_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Policy file must contain a mapping: {policy_path}")

    normalized = _normalize_unicode_form(raw)

    try:
        return NormalizationPolicy.model_validate(normalized)
    except ValidationError as exc:
        raise ValueError(f"Invalid policy schema: {policy_path}") from exc


def _normalize_unicode_form(raw: dict[object, object]) -> dict[object, object]:
    normalized = dict(raw)
    value = normalized.get("unicode_form")
    if isinstance(value, str):
        upper = value.strip().upper()
        normalized["unicode_form"] = _FORM_ALIASES.get(value.strip().lower(), upper)
    return normalized
