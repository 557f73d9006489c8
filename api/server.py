"""FastAPI application exposing the backup engine to the local settings screen."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backup.api import BackupService
from backup.destinations import MemorySink
from backup.errors import BackupError, DestinationUnavailable, FormatError
from backup.types import CleanupResult, format_file_size

from . import __version__
from .auth import APIKeyAuth
from .models import (
    BackupHistoryEntry,
    BackupHistoryResponse,
    BackupRunResponse,
    BackupSettingsModel,
    BackupSettingsUpdate,
    CleanupInfoResponse,
    CleanupResponse,
    HealthResponse,
    RestoreResponse,
)

LOGGER = logging.getLogger("clinicvault.api")

_MEDIA_TYPES = {
    "db": "application/x-sqlite3",
    "zip": "application/zip",
}


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    service: BackupService
    api_key: Optional[str] = None
    cors_origins: Sequence[str] = ()
    app_version: str = __version__
    lan_only: bool = True
    run_schedule: bool = True


_LOCAL_CLIENT_SENTINELS = {
    "127.0.0.1",
    "::1",
    "localhost",
    "testclient",
}


def _normalise_remote_host(host: Optional[str]) -> Optional[str]:
    if host is None:
        return None
    value = host.strip().lower()
    if not value:
        return None
    if value.startswith("::ffff:"):
        value = value.rsplit(":", 1)[-1]
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    if "%" in value:  # strip IPv6 scope id
        value = value.split("%", 1)[0]
    return value


def _is_loopback_host(host: Optional[str]) -> bool:
    value = _normalise_remote_host(host)
    if value is None:
        return True
    if value in _LOCAL_CLIENT_SENTINELS:
        return True
    return value.startswith("127.")


def _origin_allowed(origin: Optional[str], allowed: Sequence[str]) -> bool:
    """Browsers send ``Origin`` on cross-site requests; only listed origins may call in."""

    if origin is None:
        return True
    return origin.rstrip("/") in allowed


def _error_status(error: Optional[BackupError]) -> int:
    if isinstance(error, FormatError):
        return 422
    if isinstance(error, DestinationUnavailable):
        return status.HTTP_501_NOT_IMPLEMENTED
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _cleanup_response(result: CleanupResult) -> CleanupResponse:
    return CleanupResponse(
        status=result.status,  # type: ignore[arg-type]
        deletedCount=result.deleted_count,
        keptCount=result.kept_count,
        failed=list(result.failed),
        message=result.error.user_message if result.error is not None else None,
    )


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="ClinicVault Local API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin.rstrip("/") for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST", "PUT"],
            allow_headers=["*"],
            expose_headers=["Content-Disposition"],
        )

    auth_dependency = APIKeyAuth(config.api_key)
    service = config.service
    lan_only = bool(config.lan_only)

    @app.on_event("startup")
    async def _startup() -> None:
        if config.run_schedule:
            service.schedule.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        service.schedule.stop()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        client_host = request.client.host if request.client else None
        try:
            if lan_only and not _is_loopback_host(client_host):
                LOGGER.warning("Rejected non-local HTTP request from %s", client_host or "<unknown>")
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "LAN access disabled"})
            elif not _origin_allowed(request.headers.get("origin"), allowed_origins):
                LOGGER.warning("Rejected cross-origin HTTP request from %s", request.headers.get("origin"))
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "origin not allowed"})
            else:
                response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client_host or "-",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": exc.errors()},
        )

    # ------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            ok=True,
            version=config.app_version,
            time_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            directory_available=service.directory_available,
            schedule_running=service.schedule.is_running(),
        )

    @app.get("/backup/settings", response_model=BackupSettingsModel)
    def get_settings(_: str = Depends(auth_dependency)) -> BackupSettingsModel:
        return BackupSettingsModel(**service.backup_settings().to_dict())

    @app.put("/backup/settings", response_model=BackupSettingsModel)
    def put_settings(update: BackupSettingsUpdate, _: str = Depends(auth_dependency)) -> BackupSettingsModel:
        changes = {}
        if update.autoBackupEnabled is not None:
            changes["auto_backup_enabled"] = update.autoBackupEnabled
        if update.autoBackupInterval is not None:
            changes["auto_backup_interval"] = update.autoBackupInterval
        settings = service.update_backup_settings(**changes) if changes else service.backup_settings()
        return BackupSettingsModel(**settings.to_dict())

    @app.get("/backup/history", response_model=BackupHistoryResponse)
    def get_history(_: str = Depends(auth_dependency)) -> BackupHistoryResponse:
        items = service.history()
        return BackupHistoryResponse(
            items=[
                BackupHistoryEntry(sizeLabel=format_file_size(item.size), **item.to_dict())
                for item in items
            ],
            needsCleanup=service.policy.needs_cleanup(items),
        )

    @app.post("/backup/run")
    def run_backup(
        destination: Literal["download", "directory"] = Query("download"),
        include_assets: Optional[bool] = Query(None),
        _: str = Depends(auth_dependency),
    ) -> Response:
        sink = MemorySink()
        result = service.run_backup(destination, include_assets=include_assets, sink=sink)
        if result.status == "ok" and destination == "download" and sink.data is not None:
            filename = sink.filename or result.receipt.filename
            ext = filename.rsplit(".", 1)[-1]
            return Response(
                content=sink.data,
                media_type=_MEDIA_TYPES.get(ext, "application/octet-stream"),
                headers={"Content-Disposition": f'attachment; filename="{filename}"'},
            )
        payload = BackupRunResponse(
            status=result.status,  # type: ignore[arg-type]
            message=result.message,
            filename=result.receipt.filename if result.receipt else None,
            size=result.receipt.size if result.receipt else None,
            location=result.receipt.location if result.receipt else None,
        )
        code = status.HTTP_200_OK if result.status != "failed" else _error_status(result.error)
        return JSONResponse(status_code=code, content=payload.model_dump())

    @app.post("/backup/restore", response_model=RestoreResponse)
    async def restore_backup(
        request: Request,
        mode: Literal["snapshot", "archive"] = Query("snapshot"),
        _: str = Depends(auth_dependency),
    ) -> JSONResponse:
        data = await request.body()
        result = service.restore(data, mode=mode)
        payload = RestoreResponse(
            state=result.state,
            message=result.message,
            lostAssets=result.partial_asset_loss,
            restoredAssets=result.restored_assets,
        )
        code = status.HTTP_200_OK if result.ok else _error_status(result.error)
        return JSONResponse(status_code=code, content=payload.model_dump())

    @app.get("/backup/cleanup", response_model=CleanupInfoResponse)
    def get_cleanup_info(_: str = Depends(auth_dependency)) -> CleanupInfoResponse:
        info = service.cleanup_info()
        return CleanupInfoResponse(
            totalCount=info.total_count,
            toDeleteCount=info.to_delete_count,
            toKeepCount=info.to_keep_count,
            threshold=info.threshold,
            needsCleanup=info.total_count >= info.threshold,
        )

    @app.post("/backup/cleanup", response_model=CleanupResponse)
    def run_cleanup(
        mode: Optional[Literal["history", "directory"]] = Query(None),
        _: str = Depends(auth_dependency),
    ) -> JSONResponse:
        result = service.cleanup(mode=mode)
        code = status.HTTP_200_OK if result.status != "failed" else _error_status(result.error)
        return JSONResponse(status_code=code, content=_cleanup_response(result).model_dump())

    return app


__all__ = ["APIServerConfig", "create_app"]
