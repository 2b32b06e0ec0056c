"""CLI I/O helpers: input file loading and atomic report writing."""

from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from critic.reconcile.models import DiffResult, ManualDecision, Reconciliation
from critic.transcriptions.editing import build_transcription
from critic.transcriptions.models import BlockContent, NormalizationPolicy, Transcription

_CONTENTS = TypeAdapter(list[BlockContent])
_DECISIONS = TypeAdapter(list[ManualDecision])


@dataclass(frozen=True)
class OutputPaths:
    """Fixed report paths for one command run."""

    diff: Path
    reconciliation: Path


def build_output_paths(out_dir: Path) -> OutputPaths:
    return OutputPaths(
        diff=out_dir / "diff.json",
        reconciliation=out_dir / "reconciliation.json",
    )


def load_structured(path: Path) -> Any:
    """Read a JSON file, or YAML when the suffix says so."""

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc.msg}") from exc


def load_transcription(path: Path, policy: NormalizationPolicy | None = None) -> Transcription:
    """Load ``{"username": ..., "blocks": [<block content>, ...]}`` and fingerprint it."""

    raw = load_structured(path)
    if not isinstance(raw, dict) or not isinstance(raw.get("username"), str):
        raise ValueError(f"Transcription file must be an object with a username: {path}")
    try:
        contents = _CONTENTS.validate_python(raw.get("blocks") or [])
    except ValidationError as exc:
        raise ValueError(f"Invalid transcription blocks in {path}: {exc}") from exc
    return build_transcription(raw["username"], contents, policy=policy, published=True)


def load_decisions(path: Path) -> list[ManualDecision]:
    raw = load_structured(path)
    try:
        return _DECISIONS.validate_python(raw or [])
    except ValidationError as exc:
        raise ValueError(f"Invalid decisions file {path}: {exc}") from exc


def write_diff_atomic(paths: OutputPaths, result: DiffResult) -> None:
    paths.diff.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(paths.diff, result.model_dump(mode="json"))


def write_reconciliation_atomic(paths: OutputPaths, reconciliation: Reconciliation) -> None:
    paths.reconciliation.parent.mkdir(parents=True, exist_ok=True)
    payload = reconciliation.model_dump(mode="json")
    payload["summary"] = reconciliation.report.summary_line()
    _atomic_write_json(paths.reconciliation, payload)


def write_error_json_atomic(
    path: Path,
    *,
    error_type: str,
    error_message: str,
    stage: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Write a report carrying only the error block, so callers always find a file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(
        path,
        {
            "error": {
                "error_type": error_type,
                "error_message": error_message,
                "stage": stage,
                "context": context or {},
            }
        },
    )


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)
