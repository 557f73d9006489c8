"""Start the local ClinicVault HTTP API under uvicorn."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn

from backup.api import BackupService
from core.paths import ensure_working_dir_structure, resolve_working_dir
from core.settings import load_settings

from . import __version__ as API_VERSION
from .server import APIServerConfig, create_app

LOGGER = logging.getLogger("clinicvault.api")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]


def resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip()
    if not host:
        host = DEFAULT_HOST
    norm = host.lower()
    if norm == "localhost":
        return "127.0.0.1"
    if norm.startswith("::ffff:"):
        norm = norm.split("::ffff:")[-1]
    if norm == "::1":
        return "127.0.0.1"
    if norm.startswith("127."):
        return host if host.startswith("127.") else "127.0.0.1"
    raise ValueError(
        f"Refusing to bind API server to non-loopback host '{candidate}'. ClinicVault only serves on localhost."
    )


def build_config(working_dir: Optional[Path] = None) -> tuple[str, int, APIServerConfig]:
    """Load settings for ``working_dir`` and build the server configuration."""

    working = Path(working_dir) if working_dir else resolve_working_dir()
    ensure_working_dir_structure(working)
    settings = load_settings(working)
    api_settings: Dict[str, Any] = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    host = resolve_bind_host(api_settings.get("host"))
    try:
        port = int(api_settings.get("port") or DEFAULT_PORT)
    except (TypeError, ValueError):
        port = DEFAULT_PORT
    cors: List[str] = list(api_settings.get("cors_origins") or DEFAULT_CORS)

    service = BackupService(working_dir=working, settings=settings)
    config = APIServerConfig(
        service=service,
        api_key=api_settings.get("api_key"),
        cors_origins=cors,
        app_version=API_VERSION,
    )
    return host, port, config


def serve(working_dir: Optional[Path] = None) -> None:
    """Run the API on the loopback interface until interrupted."""

    host, port, config = build_config(working_dir)
    app = create_app(config)
    LOGGER.info("API listening on http://%s:%s", host, port)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info",
            access_log=False,
        )
    )
    try:
        server.run()
    finally:
        config.service.close()


__all__ = ["build_config", "resolve_bind_host", "serve"]
