"""FastAPI wrapper for the critic reconciliation service."""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from critic.orchestrator.service import DEFAULT_MAX_INPUTS, ReconciliationService
from critic.reconcile.models import ManualDecision, Reconciliation
from critic.store.json_store import JsonDataStore
from critic.transcriptions.editing import build_transcription
from critic.transcriptions.models import BLOCK_KINDS, BlockContent
from critic.transcriptions.policy_loader import load_policy
from critic.utils.errors import (
    CriticError,
    DuplicateMapping,
    DuplicateScheme,
    DuplicateTranscription,
    FingerprintInconsistency,
    IncompleteReconciliation,
    InvalidDecision,
    InvalidStateTransition,
    NoInputs,
    PageAlreadyExists,
    PageAlreadyReconciled,
    UnknownPage,
    UnknownScheme,
    UnmappedLabel,
)
from critic.utils.events import dump_json

app = FastAPI(title="critic API", version="0.1.0")
logger = logging.getLogger("critic.api")

_REQUEST_ID_HEADER = "X-Critic-Request-Id"
_DEFAULT_DIFF_WORKERS = 1

_STATUS_BY_ERROR: dict[type[CriticError], int] = {
    UnmappedLabel: 404,
    UnknownScheme: 404,
    UnknownPage: 404,
    NoInputs: 422,
    InvalidDecision: 422,
    DuplicateTranscription: 422,
    IncompleteReconciliation: 409,
    PageAlreadyReconciled: 409,
    InvalidStateTransition: 409,
    DuplicateScheme: 409,
    DuplicateMapping: 409,
    PageAlreadyExists: 409,
    FingerprintInconsistency: 500,
}


@dataclass(frozen=True)
class _ServiceConfig:
    store_path: str | None
    policy_path: str | None
    diff_workers: int
    max_inputs: int


_service_lock = threading.Lock()
_service_cache: tuple[_ServiceConfig, ReconciliationService] | None = None


class TranscriptionInput(BaseModel):
    """One input transcription given inline as block contents."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=1)
    blocks: list[BlockContent] = Field(default_factory=list)


class DiffRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: str
    transcriptions: list[TranscriptionInput] | None = None


class ReconcileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: str
    author: str = Field(min_length=1)
    transcriptions: list[TranscriptionInput] | None = None
    decisions: list[ManualDecision] = Field(default_factory=list)
    finalize: bool = False


class FinalizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    decisions: list[ManualDecision] = Field(default_factory=list)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(_REQUEST_ID_HEADER, request_id)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    _log_event(
        logging.WARNING,
        "error",
        request_id,
        error_code="INVALID_REQUEST",
        status_code=422,
        path=request.url.path,
    )
    return _error_response(
        status_code=422,
        error_code="INVALID_REQUEST",
        message="request body failed validation",
        request_id=request_id,
        detail={"errors": _jsonable_errors(exc.errors())},
    )


@app.exception_handler(CriticError)
async def critic_error_handler(request: Request, exc: CriticError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    status_code = _status_for(exc)
    _log_event(
        logging.ERROR if status_code >= 500 else logging.WARNING,
        "error",
        request_id,
        error_code=exc.error_code,
        status_code=status_code,
        path=request.url.path,
        **exc.context,
    )
    return _error_response(
        status_code=status_code,
        error_code=exc.error_code,
        message=exc.message,
        request_id=request_id,
        detail=dict(exc.context),
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    _log_event(
        logging.WARNING,
        "error",
        request_id,
        error_code="INVALID_ARGUMENT",
        status_code=400,
        path=request.url.path,
    )
    return _error_response(
        status_code=400,
        error_code="INVALID_ARGUMENT",
        message=str(exc),
        request_id=request_id,
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/meta")
async def meta_v1(request: Request) -> JSONResponse:
    """Metadata endpoint for bootstrap clients."""

    request_id = _request_id_from_request(request)
    service = _get_service()
    payload = {
        "block_kinds": list(BLOCK_KINDS),
        "schemes": [
            {"id": scheme.id, "full_name": scheme.full_name, "shorthand": scheme.shorthand}
            for scheme in service.schemes()
        ],
        "policy": service.policy.model_dump(mode="json"),
        "limits": {"max_inputs": _max_inputs(), "diff_workers": _diff_workers()},
        "version": _package_version(),
    }
    return JSONResponse(status_code=200, headers={_REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/diff")
async def diff_v1(request: Request, body: DiffRequest) -> JSONResponse:
    request_id = _request_id_from_request(request)
    started = time.perf_counter()
    _log_event(logging.INFO, "start", request_id, route="diff", page=body.page)

    service = _get_service()
    inputs = _build_inputs(service, body.transcriptions)
    result = await asyncio.to_thread(service.diff, body.page, inputs)

    _log_event(
        logging.INFO,
        "done",
        request_id,
        route="diff",
        page=body.page,
        groups=len(result.groups),
        total_ms=_elapsed_ms(started),
    )
    return JSONResponse(
        status_code=200,
        headers={_REQUEST_ID_HEADER: request_id},
        content=result.model_dump(mode="json"),
    )


@app.post("/v1/reconcile")
async def reconcile_v1(request: Request, body: ReconcileRequest) -> JSONResponse:
    request_id = _request_id_from_request(request)
    started = time.perf_counter()
    _log_event(
        logging.INFO, "start", request_id, route="reconcile", page=body.page, author=body.author
    )

    service = _get_service()
    inputs = _build_inputs(service, body.transcriptions)
    reconciliation = await asyncio.to_thread(
        lambda: service.reconcile(
            body.page,
            inputs,
            body.decisions,
            author=body.author,
            finalize=body.finalize,
        )
    )

    _log_event(
        logging.INFO,
        "done",
        request_id,
        route="reconcile",
        page=body.page,
        state=reconciliation.state,
        undecided=len(reconciliation.undecided_groups()),
        total_ms=_elapsed_ms(started),
    )
    return JSONResponse(
        status_code=201,
        headers={_REQUEST_ID_HEADER: request_id},
        content=_reconciliation_payload(reconciliation),
    )


@app.post("/v1/reconcile/{manuscript}/{page}/finalize")
async def finalize_v1(
    request: Request, manuscript: str, page: str, body: FinalizeRequest | None = None
) -> JSONResponse:
    request_id = _request_id_from_request(request)
    page_key = f"{manuscript}/{page}"
    _log_event(logging.INFO, "start", request_id, route="finalize", page=page_key)

    service = _get_service()
    decisions = body.decisions if body is not None else []
    reconciliation = await asyncio.to_thread(_decide_and_finalize, service, page_key, decisions)

    _log_event(logging.INFO, "done", request_id, route="finalize", page=page_key)
    return JSONResponse(
        status_code=200,
        headers={_REQUEST_ID_HEADER: request_id},
        content=_reconciliation_payload(reconciliation),
    )


@app.post("/v1/reconcile/{manuscript}/{page}/retire")
async def retire_v1(request: Request, manuscript: str, page: str) -> JSONResponse:
    request_id = _request_id_from_request(request)
    page_key = f"{manuscript}/{page}"
    _log_event(logging.INFO, "start", request_id, route="retire", page=page_key)

    reconciliation = await asyncio.to_thread(_get_service().retire, page_key)

    _log_event(logging.INFO, "done", request_id, route="retire", page=page_key)
    return JSONResponse(
        status_code=200,
        headers={_REQUEST_ID_HEADER: request_id},
        content={"page": reconciliation.page, "state": reconciliation.state},
    )


@app.get("/v1/schemes/{scheme}/labels/{label}")
async def resolve_label_v1(request: Request, scheme: str, label: str) -> JSONResponse:
    request_id = _request_id_from_request(request)
    service = _get_service()
    resolved = service.registry.scheme(scheme)
    verse = service.resolve_label(resolved, label)
    labels = {
        other.shorthand: service.registry.label_for(other, verse) for other in service.schemes()
    }
    return JSONResponse(
        status_code=200,
        headers={_REQUEST_ID_HEADER: request_id},
        content={
            "scheme": resolved.full_name,
            "label": label,
            "verse": verse.id,
            "labels": {key: value for key, value in labels.items() if value is not None},
        },
    )


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _build_inputs(service: ReconciliationService, items: list[TranscriptionInput] | None):
    if items is None:
        return None
    return [
        build_transcription(item.username, item.blocks, policy=service.policy, published=True)
        for item in items
    ]


def _decide_and_finalize(
    service: ReconciliationService, page: str, decisions: list[ManualDecision]
) -> Reconciliation:
    if decisions:
        service.decide(page, decisions)
    return service.finalize(page)


def _reconciliation_payload(reconciliation: Reconciliation) -> dict[str, Any]:
    payload = reconciliation.model_dump(mode="json")
    payload["summary"] = reconciliation.report.summary_line()
    payload["undecided_groups"] = reconciliation.undecided_groups()
    return payload


def _get_service() -> ReconciliationService:
    """Build the service once per configuration; env changes rebuild it."""

    global _service_cache

    config = _ServiceConfig(
        store_path=os.getenv("CRITIC_STORE_PATH") or None,
        policy_path=os.getenv("CRITIC_POLICY_PATH") or None,
        diff_workers=_diff_workers(),
        max_inputs=_max_inputs(),
    )
    with _service_lock:
        if _service_cache is not None and _service_cache[0] == config:
            return _service_cache[1]
        service = ReconciliationService(
            JsonDataStore(Path(config.store_path) if config.store_path else None),
            policy=load_policy(Path(config.policy_path) if config.policy_path else None),
            max_workers=config.diff_workers,
            max_inputs=config.max_inputs,
        )
        _service_cache = (config, service)
        return service


def _diff_workers() -> int:
    raw = os.getenv("CRITIC_DIFF_WORKERS")
    if raw is None:
        return _DEFAULT_DIFF_WORKERS
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_DIFF_WORKERS
    return parsed if parsed > 0 else _DEFAULT_DIFF_WORKERS


def _max_inputs() -> int:
    raw = os.getenv("CRITIC_MAX_INPUTS")
    if raw is None:
        return DEFAULT_MAX_INPUTS
    try:
        parsed = int(raw)
    except ValueError:
        return DEFAULT_MAX_INPUTS
    return parsed if parsed > 0 else DEFAULT_MAX_INPUTS


def _status_for(exc: CriticError) -> int:
    for error_type in type(exc).__mro__:
        status = _STATUS_BY_ERROR.get(error_type)
        if status is not None:
            return status
    return 400


def _jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": str(error.get("msg", "")), "type": error.get("type")}
        for error in errors
    ]


def _package_version() -> str:
    try:
        return importlib.metadata.version("critic")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={_REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, dump_json(payload))
