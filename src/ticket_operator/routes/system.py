from __future__ import annotations

from fastapi import APIRouter, Request

from ..web.schemas import HealthResponse, StatusResponse
from .shared import get_context


def build_system_routes() -> APIRouter:
    router = APIRouter(tags=["system"])

    @router.get("/health", response_model=HealthResponse)
    def health(request: Request):
        return {"status": "ok", "version": get_context(request).version}

    @router.get("/status", response_model=StatusResponse)
    def status(request: Request):
        context = get_context(request)
        supervisor = context.supervisor
        return {
            "version": context.version,
            "paused": supervisor.paused,
            "max_agents": supervisor.max_agents,
            "active_agents": len(supervisor.snapshot()),
            "queue": context.queue.counts(),
            "issuetypes": context.registry.type_count(),
            "collections": context.registry.collection_count(),
            "active_collection": context.registry.active_collection_name,
        }

    return router
