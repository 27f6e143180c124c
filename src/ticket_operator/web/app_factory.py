from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import OperatorConfig
from ..core.logging_utils import log_event
from ..core.time_utils import now_iso
from ..core.utils import read_json, write_json
from ..routes import build_api_router
from .app_state import OperatorContext, build_operator_context

logger = logging.getLogger(__name__)


def _app_lifespan(context: OperatorContext, run_supervisor: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.dispatcher.bind_loop(asyncio.get_running_loop())
        stop = asyncio.Event()
        task: Optional[asyncio.Task] = None
        if run_supervisor:
            task = asyncio.create_task(context.supervisor.run_forever(stop=stop))
        try:
            yield
        finally:
            stop.set()
            if task is not None:
                context.supervisor.wake()
                await task
            context.dispatcher.bind_loop(None)
            await context.dispatcher.drain()

    return lifespan


def create_app(context: OperatorContext, *, run_supervisor: bool = False) -> FastAPI:
    app = FastAPI(
        title="ticket-operator",
        version=context.version,
        lifespan=_app_lifespan(context, run_supervisor),
    )
    app.state.context = context
    origins = list(context.config.api.cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(build_api_router())
    return app


def write_api_session(path: Path, *, port: int, version: str) -> None:
    write_json(
        path,
        {"port": port, "pid": os.getpid(), "started_at": now_iso(), "version": version},
    )


def read_api_session(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    return read_json(path)


def serve_api(
    config: OperatorConfig,
    port: Optional[int] = None,
    *,
    context: Optional[OperatorContext] = None,
    run_supervisor: bool = False,
) -> None:
    """Run the API with uvicorn; ``api-session.json`` exists only while it serves."""
    context = context or build_operator_context(config)
    bind_port = port or config.api.port
    session_path = config.api_session_path
    write_api_session(session_path, port=bind_port, version=context.version)
    log_event(
        logger,
        logging.INFO,
        "api.started",
        host=config.api.host,
        port=bind_port,
        session_file=session_path,
    )
    try:
        uvicorn.run(
            create_app(context, run_supervisor=run_supervisor),
            host=config.api.host,
            port=bind_port,
            log_level=config.logging.level.lower(),
        )
    finally:
        session_path.unlink(missing_ok=True)
        log_event(logger, logging.INFO, "api.stopped", port=bind_port)
