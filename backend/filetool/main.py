"""
filetool service: single-artifact transformation API.
"""

import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .backends.registry import BackendRegistry
from .capabilities.registry import CapabilityRegistry
from .config import EngineSettings
from .errors import FileToolError
from .jobs.engine import JobEngine
from .routes import health, process

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup; safe to call more than once."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


async def file_tool_error_handler(request: Request, exc: FileToolError) -> JSONResponse:
    """Render engine errors as `{error, detail}`."""
    if exc.status_code >= 500:
        logger.error(f"[HTTP] {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.detail}")
    else:
        logger.info(f"[HTTP] {request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Optional[EngineSettings] = None,
    capabilities: Optional[CapabilityRegistry] = None,
    backends: Optional[BackendRegistry] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Engine settings (from the environment when omitted)
        capabilities: Tool registry (probed at startup when omitted)
        backends: Backend registry (default backends when omitted)
    """
    settings = settings or EngineSettings.from_env()
    configure_logging(settings.log_level)

    if capabilities is None:
        capabilities = CapabilityRegistry.probe(settings.tool_paths)

    app = FastAPI(title="filetool", version=__version__)

    # CORS middleware for the browser UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    app.state.settings = settings
    app.state.capabilities = capabilities
    app.state.job_engine = JobEngine(settings, capabilities, backends=backends)

    app.add_exception_handler(FileToolError, file_tool_error_handler)

    app.include_router(process.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {"service": "filetool", "version": __version__, "status": "running"}

    logger.info(
        f"[App] Ready: max_concurrent={settings.max_concurrent} "
        f"queue_depth={settings.max_queue_depth} timeout={settings.job_timeout_seconds:g}s "
        f"workspaces={settings.workspace_root}"
    )
    return app


def run() -> None:
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8085"))
    uvicorn.run("filetool.main:create_app", factory=True, host=host, port=port, reload=False)
