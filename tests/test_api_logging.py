from __future__ import annotations

import logging
from pathlib import Path

import httpx
import pytest

from apps.api.main import app


@pytest.mark.anyio
async def test_api_logs_request_id_for_success(
    caplog: pytest.LogCaptureFixture, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CRITIC_STORE_PATH", str(tmp_path / "critic.json"))
    caplog.set_level(logging.INFO, logger="critic.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/diff",
            json={
                "page": "ms1/1r",
                "transcriptions": [
                    {"username": "alice", "blocks": [{"kind": "text", "content": "A"}]},
                ],
            },
        )

    assert response.status_code == 200
    request_id = response.headers["X-Critic-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "critic.api"]
    assert any('"event":"start"' in message and request_id in message for message in messages)
    assert any('"event":"done"' in message and request_id in message for message in messages)


@pytest.mark.anyio
async def test_api_logs_request_id_and_error_code_for_failure(
    caplog: pytest.LogCaptureFixture, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CRITIC_STORE_PATH", str(tmp_path / "critic.json"))
    caplog.set_level(logging.INFO, logger="critic.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/v1/reconcile/ms1/1r/finalize")

    assert response.status_code == 409
    request_id = response.headers["X-Critic-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "critic.api"]
    assert any(
        '"event":"error"' in message
        and request_id in message
        and '"error_code":"INVALID_STATE_TRANSITION"' in message
        for message in messages
    )
