"""
HTTP server implementation for SafeBack.

This module provides the REST API used by the admin UI and by the external
cron that triggers scheduled backups.

Endpoints:
    POST /v1/capture                        capture a manual snapshot
    POST /v1/preview                        preview a restore, get a token
    POST /v1/restore                        confirmed restore
    GET  /v1/providers?workspace_id=        provider disclosure
    GET  /v1/snapshots?workspace_id=        snapshot list
    GET  /v1/export?snapshot_id=            snapshot document download
    GET  /v1/audit?workspace_id=            audit log
    POST /v1/maintenance/backup-scheduler   scheduler trigger (maintenance key)
    GET  /v1/health                         health check

Invariants:
    - Admin endpoints require the X-Actor header (set by the upstream gateway)
    - The scheduler trigger requires the maintenance key, never X-Actor
    - Every error body is {"error": ..., "error_code": ...}

How to change safely:
    - Add fields to responses, never rename or remove them
    - Keep the error code mapping in ERROR_STATUS in sync with errors.py
"""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from collections.abc import Callable
from functools import partial
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from ..config import HttpConfig
from ..errors import (
    ForbiddenError,
    InvalidConfirmationError,
    LockContentionError,
    NotFoundError,
    ProviderFailureError,
    SafeBackError,
    StorageFailureError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[SafeBackError], int] = {
    NotFoundError: 404,
    ForbiddenError: 403,
    LockContentionError: 409,
    InvalidConfirmationError: 409,
    ProviderFailureError: 500,
    StorageFailureError: 502,
}


class CaptureRequest(BaseModel):
    """Request body for manual capture."""

    workspace_id: str = Field(..., min_length=1)
    reason: str | None = Field(None, max_length=500)


class PreviewRequest(BaseModel):
    """Request body for restore preview."""

    snapshot_id: str = Field(..., min_length=1)


class RestoreRequest(BaseModel):
    """Request body for confirmed restore."""

    snapshot_id: str = Field(..., min_length=1)
    confirmation_token: str = Field(..., min_length=1)


class SchedulerTriggerRequest(BaseModel):
    """Request body for the scheduler trigger."""

    force: bool = False


def _error(status: int, message: str, code: str) -> web.Response:
    return web.json_response({"error": message, "error_code": code}, status=status)


def create_http_app(
    service: Any,
    scheduler: Any = None,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create the HTTP application for SafeBack.

    Args:
        service: SnapshotService instance
        scheduler: BackupScheduler instance (trigger endpoint disabled when None)
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    app.router.add_post("/v1/capture", partial(handle_capture, service=service))
    app.router.add_post("/v1/preview", partial(handle_preview, service=service))
    app.router.add_post("/v1/restore", partial(handle_restore, service=service))
    app.router.add_get("/v1/providers", partial(handle_providers, service=service))
    app.router.add_get("/v1/snapshots", partial(handle_snapshots, service=service))
    app.router.add_get("/v1/export", partial(handle_export, service=service))
    app.router.add_get("/v1/audit", partial(handle_audit, service=service))
    app.router.add_post(
        "/v1/maintenance/backup-scheduler",
        partial(handle_scheduler_trigger, scheduler=scheduler, config=config),
    )
    app.router.add_get("/v1/health", partial(handle_health, service=service))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = (
            "Content-Type, Authorization, X-Actor, X-Maintenance-Key, X-Request-ID"
        )

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except SafeBackError as e:
            status = ERROR_STATUS.get(type(e), 500)
            log = logger.error if status >= 500 else logger.info
            log(
                f"Request failed: {e.message}",
                extra={"path": request.path, "error_code": e.code, "status": status},
            )
            return _error(status, e.message, e.code)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return _error(500, str(e), "INTERNAL")

    app.middlewares.insert(0, error_middleware)

    return app


def extract_actor(request: web.Request) -> str:
    """Actor id delivered by the authenticating gateway.

    Raises:
        web.HTTPUnauthorized: If the X-Actor header is missing
    """
    actor = request.headers.get("X-Actor", "").strip()
    if not actor:
        raise web.HTTPUnauthorized(
            text=json.dumps({"error": "X-Actor header is required", "error_code": "UNAUTHENTICATED"}),
            content_type="application/json",
        )
    return actor


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "BAD_REQUEST"}),
        content_type="application/json",
    )


async def parse_body(request: web.Request, model: type[BaseModel]) -> Any:
    """Parse and validate a JSON body.

    Raises:
        web.HTTPBadRequest: If the body is not JSON or fails validation
    """
    if request.can_read_body:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            raise _bad_request("Invalid JSON body")
    else:
        body = {}

    try:
        return model.model_validate(body)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise _bad_request(errors)


def query_param(request: web.Request, name: str) -> str:
    value = request.query.get(name, "").strip()
    if not value:
        raise _bad_request(f"{name} query parameter is required")
    return value


def int_param(request: web.Request, name: str, default: int, maximum: int = 500) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise _bad_request(f"{name} must be an integer")
    if value < 0 or value > maximum:
        raise _bad_request(f"{name} must be between 0 and {maximum}")
    return value


async def handle_capture(request: web.Request, service: Any) -> web.Response:
    """Handle POST /v1/capture - Capture a manual snapshot."""
    actor = extract_actor(request)
    body = await parse_body(request, CaptureRequest)

    snapshot_id = await service.capture(body.workspace_id, actor, reason=body.reason)
    return web.json_response({"snapshot_id": snapshot_id})


async def handle_preview(request: web.Request, service: Any) -> web.Response:
    """Handle POST /v1/preview - Preview a restore."""
    actor = extract_actor(request)
    body = await parse_body(request, PreviewRequest)

    preview = await service.preview(body.snapshot_id, actor)
    return web.json_response(preview.to_dict())


async def handle_restore(request: web.Request, service: Any) -> web.Response:
    """Handle POST /v1/restore - Confirmed restore."""
    actor = extract_actor(request)
    body = await parse_body(request, RestoreRequest)

    result = await service.restore(body.snapshot_id, body.confirmation_token, actor)
    return web.json_response(result.to_dict())


async def handle_providers(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/providers - Provider disclosure."""
    actor = extract_actor(request)
    workspace_id = query_param(request, "workspace_id")

    providers = await service.list_providers(workspace_id, actor)
    return web.json_response({"providers": providers})


async def handle_snapshots(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/snapshots - List snapshots, newest first."""
    actor = extract_actor(request)
    workspace_id = query_param(request, "workspace_id")
    limit = int_param(request, "limit", 50)

    snapshots = await service.list_snapshots(workspace_id, actor, limit=limit)
    return web.json_response({"snapshots": [s.to_dict() for s in snapshots]})


async def handle_export(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/export - Download a snapshot document."""
    actor = extract_actor(request)
    snapshot_id = query_param(request, "snapshot_id")

    document = await service.export_snapshot(snapshot_id, actor)
    return web.json_response({"snapshot": document})


async def handle_audit(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/audit - Audit log, newest first."""
    actor = extract_actor(request)
    workspace_id = query_param(request, "workspace_id")
    limit = int_param(request, "limit", 20)
    offset = int_param(request, "offset", 0, maximum=1_000_000)

    entries = await service.list_audit_log(workspace_id, actor, limit=limit, offset=offset)
    return web.json_response({"entries": [e.to_dict() for e in entries]})


def _maintenance_key(request: web.Request) -> str | None:
    key = request.headers.get("X-Maintenance-Key")
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer ") :].strip()
    return None


async def handle_scheduler_trigger(
    request: web.Request,
    scheduler: Any,
    config: HttpConfig,
) -> web.Response:
    """Handle POST /v1/maintenance/backup-scheduler - Run one scheduler pass."""
    presented = _maintenance_key(request)
    if (
        not config.maintenance_key
        or not presented
        or not secrets.compare_digest(presented, config.maintenance_key)
    ):
        return _error(401, "Unauthorized", "UNAUTHENTICATED")

    if scheduler is None:
        return _error(503, "Backup scheduler is not configured", "UNAVAILABLE")

    body = await parse_body(request, SchedulerTriggerRequest)
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    results = await scheduler.run_once(force=body.force, request_id=request_id)
    return web.json_response(
        {
            "ok": True,
            "request_id": request_id,
            "results": [r.to_dict() for r in results],
        }
    )


async def handle_health(request: web.Request, service: Any) -> web.Response:
    """Handle GET /v1/health - Health check."""
    return web.json_response({"healthy": True, "providers": service.registry.describe()})


async def run_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving an application.

    Returns:
        The runner; call cleanup() on it to stop serving
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
