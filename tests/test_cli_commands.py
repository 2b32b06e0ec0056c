from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from apps.cli.main import app
from critic.transcriptions.fingerprint import compute_block_fingerprint
from critic.transcriptions.models import TextBlock

runner = CliRunner()


def _write_transcription(path: Path, username: str, *words: str) -> Path:
    payload = {
        "username": username,
        "blocks": [{"kind": "text", "lang": "la", "content": word} for word in words],
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _inputs(tmp_path: Path, readings: dict[str, list[str]]) -> list[str]:
    args: list[str] = []
    for username, words in readings.items():
        path = _write_transcription(tmp_path / f"{username}.json", username, *words)
        args.extend(["--transcription", str(path)])
    return args


def test_cli_schemes_lists_static_schemes() -> None:
    result = runner.invoke(app, ["schemes"])

    assert result.exit_code == 0
    assert "1\tCommon\tC" in result.output
    assert "2\tPresent\tP" in result.output


def test_cli_label_round_trip_through_store(tmp_path: Path) -> None:
    store = tmp_path / "critic.json"

    registered = runner.invoke(
        app, ["register-verse", "--scheme", "C", "--label", "Gen 5:17", "--store", str(store)]
    )
    resolved = runner.invoke(
        app, ["resolve-label", "--scheme", "Common", "--label", "Gen  5:17", "--store", str(store)]
    )

    assert registered.exit_code == 0
    assert registered.output.strip() == "V1"
    assert resolved.exit_code == 0
    assert resolved.output.strip() == "V1"


def test_cli_unmapped_label_exits_4(tmp_path: Path) -> None:
    result = runner.invoke(app, ["resolve-label", "--scheme", "C", "--label", "Gen 1:1"])

    assert result.exit_code == 4
    assert "UnmappedLabel" in result.output


def test_cli_translate_without_target_label_exits_4(tmp_path: Path) -> None:
    store = tmp_path / "critic.json"
    runner.invoke(app, ["register-verse", "--scheme", "C", "--label", "Ps 51:1", "--store", str(store)])

    missing = runner.invoke(
        app,
        ["translate-label", "--label", "Ps 51:1", "--from", "C", "--to", "P", "--store", str(store)],
    )
    runner.invoke(
        app,
        ["map-label", "--scheme", "P", "--verse", "1", "--label", "Ps 50:3", "--store", str(store)],
    )
    found = runner.invoke(
        app,
        ["translate-label", "--label", "Ps 51:1", "--from", "C", "--to", "P", "--store", str(store)],
    )

    assert missing.exit_code == 4
    assert found.exit_code == 0
    assert found.output.strip() == "Ps 50:3"


def test_cli_diff_writes_report(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    inputs = _inputs(tmp_path, {"alice": ["in", "A"], "bob": ["in", "B"]})

    result = runner.invoke(
        app, ["diff", "--page", "ms1/1r", *inputs, "--out-dir", str(out_dir)]
    )

    assert result.exit_code == 0
    assert "diff_summary:" in result.output
    assert "conflict=1" in result.output
    report = json.loads((out_dir / "diff.json").read_text(encoding="utf-8"))
    assert report["usernames"] == ["alice", "bob"]
    assert [group["status"] for group in report["groups"]] == ["agreement", "conflict"]


def test_cli_reconcile_majority_succeeds(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    inputs = _inputs(tmp_path, {"alice": ["A"], "bob": ["A"], "carol": ["B"]})

    result = runner.invoke(
        app,
        [
            "reconcile",
            "--page",
            "ms1/1r",
            "--author",
            "editor",
            *inputs,
            "--finalize",
            "--out-dir",
            str(out_dir),
        ],
    )

    assert result.exit_code == 0
    assert "0 equal, 1 majority decisions" in result.output
    report = json.loads((out_dir / "reconciliation.json").read_text(encoding="utf-8"))
    assert report["state"] == "finalized"
    assert report["report"]["majority_taken"] == 1
    assert report["blocks"][0]["content"]["content"] == "A"


def test_cli_reconcile_tie_with_finalize_exits_2(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    inputs = _inputs(tmp_path, {"alice": ["A"], "bob": ["B"]})

    result = runner.invoke(
        app,
        ["reconcile", "--page", "ms1/1r", "--author", "editor", *inputs, "--finalize",
         "--out-dir", str(out_dir)],
    )

    assert result.exit_code == 2
    assert "undecided_groups: 0" in result.output
    report = json.loads((out_dir / "reconciliation.json").read_text(encoding="utf-8"))
    assert report["state"] == "draft"


def test_cli_second_reconcile_exits_3(tmp_path: Path) -> None:
    store = tmp_path / "critic.json"
    out_dir = tmp_path / "out"
    inputs = _inputs(tmp_path, {"alice": ["A"], "bob": ["A"]})
    base = ["reconcile", "--page", "ms1/1r", *inputs, "--store", str(store), "--out-dir", str(out_dir)]

    first = runner.invoke(app, [*base, "--author", "first"])
    second = runner.invoke(app, [*base, "--author", "second"])

    assert first.exit_code == 0
    assert second.exit_code == 3
    error = json.loads((out_dir / "reconciliation.json").read_text(encoding="utf-8"))
    assert error["error"]["error_type"] == "PageAlreadyReconciled"
    assert error["error"]["context"]["author"] == "first"


def test_cli_publish_finalize_and_retire_flow(tmp_path: Path) -> None:
    store = tmp_path / "critic.json"
    out_dir = tmp_path / "out"
    runner.invoke(app, ["add-page", "ms1/1r", "--store", str(store)])
    for username, word in (("alice", "A"), ("bob", "B")):
        path = _write_transcription(tmp_path / f"{username}.json", username, word)
        published = runner.invoke(
            app,
            ["publish", "--page", "ms1/1r", "--transcription", str(path), "--store", str(store)],
        )
        assert published.exit_code == 0

    draft = runner.invoke(
        app,
        ["reconcile", "--page", "ms1/1r", "--author", "editor", "--store", str(store),
         "--out-dir", str(out_dir)],
    )
    decisions = tmp_path / "decisions.json"
    decisions.write_text(
        json.dumps(
            [
                {
                    "group_index": 0,
                    "action": "pick",
                    "fingerprint": compute_block_fingerprint(TextBlock(lang="la", content="B")),
                }
            ]
        ),
        encoding="utf-8",
    )
    final = runner.invoke(
        app,
        ["finalize", "--page", "ms1/1r", "--decisions", str(decisions), "--store", str(store),
         "--out-dir", str(out_dir), "--report", "json"],
    )
    retired = runner.invoke(app, ["retire", "--page", "ms1/1r", "--store", str(store)])

    assert draft.exit_code == 0
    assert "WARNING(undecided)" in draft.output
    assert final.exit_code == 0
    report = json.loads((out_dir / "reconciliation.json").read_text(encoding="utf-8"))
    assert report["state"] == "finalized"
    assert report["report"]["minority_taken"] == 1
    assert retired.exit_code == 0
    assert "retired reconciliation of ms1/1r" in retired.output


def test_cli_rejects_invalid_report_mode(tmp_path: Path) -> None:
    inputs = _inputs(tmp_path, {"alice": ["A"]})

    result = runner.invoke(app, ["diff", "--page", "ms1/1r", *inputs, "--report", "xml"])

    assert result.exit_code == 1
    assert "--report must be one of" in result.output


def test_cli_invalid_transcription_file_exits_1(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"username": "alice", "blocks": [{"kind": "glyph"}]}), encoding="utf-8")
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["diff", "--page", "ms1/1r", "--transcription", str(bad), "--out-dir", str(out_dir)]
    )

    assert result.exit_code == 1
    error = json.loads((out_dir / "diff.json").read_text(encoding="utf-8"))
    assert error["error"]["stage"] == "load_transcriptions"


def test_cli_add_page_with_unmapped_bound_saves_nothing(tmp_path: Path) -> None:
    store = tmp_path / "critic.json"
    args = ["add-page", "ms1/1r", "--scheme", "C", "--start", "Gen 1:1", "--store", str(store)]

    failed = runner.invoke(app, args)
    runner.invoke(app, ["register-verse", "--scheme", "C", "--label", "Gen 1:1", "--store", str(store)])
    retried = runner.invoke(app, args)

    assert failed.exit_code == 4
    assert retried.exit_code == 0
    assert "INFO: added page ms1/1r" in retried.output
