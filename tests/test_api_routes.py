from __future__ import annotations

import threading
from pathlib import Path

import httpx
import pytest

import apps.api.main as api_main
from apps.api.main import app
from critic.transcriptions.fingerprint import compute_block_fingerprint
from critic.transcriptions.models import TextBlock


@pytest.fixture(autouse=True)
def _isolated_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRITIC_STORE_PATH", str(tmp_path / "critic.json"))
    monkeypatch.delenv("CRITIC_POLICY_PATH", raising=False)
    monkeypatch.delenv("CRITIC_MAX_INPUTS", raising=False)


def _inputs(**readings: list[str]) -> list[dict[str, object]]:
    return [
        {"username": username, "blocks": [{"kind": "text", "content": word} for word in words]}
        for username, words in readings.items()
    ]


async def _post(path: str, payload: dict[str, object] | None = None) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.post(path, json=payload)


async def _get(path: str) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.get(path)


@pytest.mark.anyio
async def test_healthz_returns_ok_and_request_id() -> None:
    response = await _get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Critic-Request-Id"]


@pytest.mark.anyio
async def test_request_id_header_present_for_404() -> None:
    response = await _get("/__does_not_exist__")

    assert response.status_code == 404
    assert response.headers["X-Critic-Request-Id"]


@pytest.mark.anyio
async def test_meta_lists_schemes_and_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRITIC_MAX_INPUTS", "not-a-number")

    response = await _get("/v1/meta")

    payload = response.json()
    assert response.status_code == 200
    assert [scheme["shorthand"] for scheme in payload["schemes"]] == ["C", "P"]
    assert "anchor" in payload["block_kinds"]
    assert payload["limits"]["max_inputs"] == 16
    assert payload["policy"]["unicode_form"] == "NFC"


@pytest.mark.anyio
async def test_diff_inline_transcriptions() -> None:
    response = await _post(
        "/v1/diff",
        {"page": "ms1/1r", "transcriptions": _inputs(alice=["in", "A"], bob=["in", "B"])},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["usernames"] == ["alice", "bob"]
    assert [group["status"] for group in payload["groups"]] == ["agreement", "conflict"]


@pytest.mark.anyio
async def test_reconcile_majority_and_uniqueness() -> None:
    body = {
        "page": "ms1/1r",
        "author": "editor",
        "transcriptions": _inputs(alice=["A"], bob=["A"], carol=["B"]),
        "finalize": True,
    }

    first = await _post("/v1/reconcile", body)
    second = await _post("/v1/reconcile", {**body, "author": "other"})

    assert first.status_code == 201
    assert first.json()["state"] == "finalized"
    assert first.json()["summary"].startswith("0 equal, 1 majority decisions")
    assert second.status_code == 409
    payload = second.json()
    assert payload["error_code"] == "PAGE_ALREADY_RECONCILED"
    assert payload["detail"]["author"] == "editor"
    assert payload["detail"]["request_id"] == second.headers["X-Critic-Request-Id"]


@pytest.mark.anyio
async def test_tie_needs_decision_before_finalize() -> None:
    draft = await _post(
        "/v1/reconcile",
        {"page": "ms1/1r", "author": "editor", "transcriptions": _inputs(alice=["A"], bob=["B"])},
    )
    incomplete = await _post("/v1/reconcile/ms1/1r/finalize")
    pick = {
        "decisions": [
            {
                "group_index": 0,
                "action": "pick",
                "fingerprint": compute_block_fingerprint(TextBlock(content="A")),
            }
        ]
    }
    final = await _post("/v1/reconcile/ms1/1r/finalize", pick)
    retired = await _post("/v1/reconcile/ms1/1r/retire")

    assert draft.status_code == 201
    assert draft.json()["undecided_groups"] == [0]
    assert incomplete.status_code == 409
    assert incomplete.json()["error_code"] == "INCOMPLETE_RECONCILIATION"
    assert incomplete.json()["detail"]["undecided_groups"] == [0]
    assert final.status_code == 200
    assert final.json()["report"]["minority_taken"] == 1
    assert retired.json() == {"page": "ms1/1r", "state": "retired"}


@pytest.mark.anyio
async def test_retire_draft_is_invalid_transition() -> None:
    await _post(
        "/v1/reconcile",
        {"page": "ms1/1r", "author": "editor", "transcriptions": _inputs(alice=["A"])},
    )

    response = await _post("/v1/reconcile/ms1/1r/retire")

    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE_TRANSITION"


@pytest.mark.anyio
async def test_reconcile_without_published_inputs_is_422() -> None:
    response = await _post("/v1/reconcile", {"page": "ms1/1r", "author": "editor"})

    assert response.status_code == 422
    assert response.json()["error_code"] == "NO_INPUTS"


@pytest.mark.anyio
async def test_resolve_label_route() -> None:
    missing = await _get("/v1/schemes/C/labels/Gen%201:1")
    verse = api_main._get_service().register_verse("Common", "Gen 1:1")
    found = await _get("/v1/schemes/C/labels/Gen%201:1")

    assert missing.status_code == 404
    assert missing.json()["error_code"] == "UNMAPPED_LABEL"
    assert found.status_code == 200
    assert found.json()["verse"] == verse.id
    assert found.json()["labels"] == {"C": "Gen 1:1"}


@pytest.mark.anyio
async def test_unknown_scheme_is_404() -> None:
    response = await _get("/v1/schemes/Nope/labels/x")

    assert response.status_code == 404
    assert response.json()["error_code"] == "UNKNOWN_SCHEME"


@pytest.mark.anyio
async def test_invalid_body_and_page_reference() -> None:
    invalid = await _post("/v1/diff", {"page": "ms1/1r", "transcriptions": [{"username": "a", "blocks": [{"kind": "glyph"}]}]})
    bad_page = await _post("/v1/diff", {"page": "no-slash", "transcriptions": _inputs(alice=["A"])})

    assert invalid.status_code == 422
    assert invalid.json()["error_code"] == "INVALID_REQUEST"
    assert bad_page.status_code == 400
    assert bad_page.json()["error_code"] == "INVALID_ARGUMENT"


@pytest.mark.anyio
async def test_finalize_runs_off_the_event_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    await _post(
        "/v1/reconcile",
        {"page": "ms1/1r", "author": "editor", "transcriptions": _inputs(alice=["A"], bob=["A"])},
    )
    service = api_main._get_service()
    finalize = service.finalize
    threads: list[int] = []

    def _recording_finalize(page: str):  # noqa: ANN202
        threads.append(threading.get_ident())
        return finalize(page)

    monkeypatch.setattr(service, "finalize", _recording_finalize)

    response = await _post("/v1/reconcile/ms1/1r/finalize")

    assert response.status_code == 200
    assert response.json()["state"] == "finalized"
    assert threads and threads[0] != threading.get_ident()
