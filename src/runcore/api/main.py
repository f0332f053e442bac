"""
FastAPI application for the runcore service.

This module builds the FastAPI application, registers routes for
interactive shell sessions and one-shot code execution, and enforces
authentication via an optional API key.  Services are constructed once per
application by :func:`create_app` and kept on ``app.state``; handlers reach
them through dependencies so tests can build an app around their own
configuration and language availability.

All session state is held in memory and is lost when the process restarts.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import Config
from ..errors import RuncoreError
from ..executor import ExecutionSandbox, LanguageRunnerRegistry
from ..models import (
    CompilerInfo,
    CompilersResponse,
    ExecuteRequest,
    ExecuteResponse,
    InputRequest,
    SessionListResponse,
    SessionSummary,
    SpawnRequest,
    SpawnResponse,
    SuccessResponse,
    SupportedLanguage,
)
from ..scratch import ScratchRoot
from ..shell import CommandDispatcher, OutputBroadcaster, SessionRegistry, SubscriptionChannel


logger = logging.getLogger("runcore")

PUBLIC_PATHS = {"/api/health"}


def _configure_logging(level: str) -> None:
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("[runcore] %(levelname)s - %(name)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)


@dataclass
class Services:
    config: Config
    runners: LanguageRunnerRegistry
    sandbox: ExecutionSandbox
    broadcaster: OutputBroadcaster
    sessions: SessionRegistry
    dispatcher: CommandDispatcher


def build_services(config: Config, runners: Optional[LanguageRunnerRegistry] = None) -> Services:
    if runners is None:
        runners = LanguageRunnerRegistry(probe_timeout=config.probe_timeout_seconds)
    sandbox = ExecutionSandbox(
        runners,
        ScratchRoot(config.scratch_path),
        timeout=config.max_execution_seconds,
    )
    broadcaster = OutputBroadcaster()
    sessions = SessionRegistry(broadcaster, config.workspace_root, config.buffer_size)
    dispatcher = CommandDispatcher(sessions, broadcaster, shell=config.shell)
    return Services(config, runners, sandbox, broadcaster, sessions, dispatcher)


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(
    config: Optional[Config] = None,
    runners: Optional[LanguageRunnerRegistry] = None,
) -> FastAPI:
    """Build the application and its services.

    Language availability is probed here, once, unless ``runners`` is
    supplied.
    """
    if config is None:
        config = Config.from_env()
    _configure_logging(config.log_level)
    logger.info(
        "Loaded config: workspace_root=%s, scratch_path=%s, shell=%s, max_exec=%s",
        config.workspace_root,
        config.scratch_path,
        config.shell,
        config.max_execution_seconds,
    )
    services = build_services(config, runners)
    logger.info(
        "Available languages: %s",
        ", ".join(runner.name for runner, _ in services.runners.available()) or "none",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.dispatcher.shutdown()

    app = FastAPI(title="runcore", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    _register_middleware(app, config)
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_middleware(app: FastAPI, config: Config) -> None:
    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        """Middleware to enforce API key authentication on all requests."""
        path = request.url.path
        method = request.method
        client = getattr(request.client, "host", "unknown")

        logger.info("Incoming request: %s %s from %s", method, path, client)

        if config.api_key and path not in PUBLIC_PATHS:
            provided_key = request.headers.get("x-api-key") or request.query_params.get("api_key")
            if provided_key != config.api_key:
                logger.warning("Invalid API key for %s %s from %s", method, path, client)
                return JSONResponse(status_code=401, content={"error": "Invalid API key"})

        response = await call_next(request)
        logger.info("Response: %s %s -> %s", method, path, response.status_code)
        return response


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RuncoreError)
    async def runcore_error(request: Request, exc: RuncoreError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted(
            {str(err["loc"][-1]) for err in exc.errors() if err.get("loc")}
        )
        message = "Invalid request"
        if fields:
            message = "Missing or invalid field(s): " + ", ".join(fields)
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/health")
    async def health() -> Dict[str, str]:
        """Return a simple health check response."""
        return {"status": "ok"}

    # -- Interactive shell ---------------------------------------------------

    @app.post("/api/shell/spawn", response_model=SpawnResponse)
    async def spawn_shell(
        req: Optional[SpawnRequest] = None,
        services: Services = Depends(get_services),
    ) -> SpawnResponse:
        """Open a shell session and print its first prompt."""
        session = services.sessions.create(req.cwd if req else None)
        services.dispatcher.prompt(session)
        return SpawnResponse(session_id=session.id, shell=services.config.shell, cwd=session.cwd)

    @app.get("/api/shell/sessions", response_model=SessionListResponse)
    async def list_sessions(services: Services = Depends(get_services)) -> SessionListResponse:
        return SessionListResponse(
            sessions=[
                SessionSummary(
                    session_id=s.id,
                    cwd=s.cwd,
                    busy=s.busy,
                    subscribers=len(s.subscribers),
                    created_at=s.created_at,
                )
                for s in services.sessions.list()
            ]
        )

    @app.get("/api/shell/{session_id}/output")
    async def shell_output(session_id: str, services: Services = Depends(get_services)):
        """Stream session output as server-sent events."""
        services.sessions.get(session_id)
        channel = SubscriptionChannel(
            services.sessions,
            services.broadcaster,
            session_id,
            heartbeat_seconds=services.config.heartbeat_seconds,
        )
        return StreamingResponse(
            channel.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/api/shell/{session_id}/input", response_model=SuccessResponse)
    async def shell_input(
        session_id: str,
        req: InputRequest,
        services: Services = Depends(get_services),
    ) -> SuccessResponse:
        await services.dispatcher.input(session_id, req.input)
        return SuccessResponse()

    @app.post("/api/shell/{session_id}/interrupt", response_model=SuccessResponse)
    async def shell_interrupt(session_id: str, services: Services = Depends(get_services)) -> SuccessResponse:
        services.dispatcher.interrupt(session_id)
        return SuccessResponse()

    @app.post("/api/shell/{session_id}/kill", response_model=SuccessResponse)
    async def shell_kill(session_id: str, services: Services = Depends(get_services)) -> SuccessResponse:
        services.dispatcher.kill(session_id)
        return SuccessResponse()

    # -- One-shot execution --------------------------------------------------

    @app.post("/api/execute", response_model=ExecuteResponse)
    async def execute(req: ExecuteRequest, services: Services = Depends(get_services)) -> ExecuteResponse:
        """Run a single program and return its aggregated output."""
        logger.info(
            "[/api/execute] filename=%s, code_bytes=%d, additional_files=%d",
            req.filename,
            len(req.code),
            len(req.additional_files),
        )
        limit = services.config.max_file_bytes
        for name, content in [(req.filename, req.code)] + [
            (f.name, f.content) for f in req.additional_files
        ]:
            if len(content.encode("utf-8", "ignore")) > limit:
                raise HTTPException(status_code=400, detail=f"File too large: {name}")

        try:
            result = await run_in_threadpool(
                services.sandbox.execute,
                req.code,
                req.filename,
                [(f.name, f.content) for f in req.additional_files],
            )
        except RuncoreError:
            raise
        except Exception as exc:
            logger.exception("[/api/execute] Unhandled error during execution: %s", exc)
            raise HTTPException(status_code=500, detail="Execution error")

        return ExecuteResponse(
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            execution_time=result.duration_ms,
            language=result.language,
        )

    @app.get("/api/compilers", response_model=CompilersResponse)
    async def compilers(services: Services = Depends(get_services)) -> CompilersResponse:
        """List installed languages and every supported one."""
        return CompilersResponse(
            available=[
                CompilerInfo(name=runner.name, version=version, extensions=list(runner.extensions))
                for runner, version in services.runners.available()
            ],
            supported=[
                SupportedLanguage(name=runner.name, extensions=list(runner.extensions), installed=installed)
                for runner, installed in services.runners.supported()
            ],
        )
