from fastapi import APIRouter

from .agents import build_agent_routes
from .issuetypes import build_issuetype_routes
from .queue import build_queue_routes
from .system import build_system_routes
from .tickets import build_ticket_routes

API_PREFIX = "/api/v1"


def build_api_router() -> APIRouter:
    router = APIRouter(prefix=API_PREFIX)
    router.include_router(build_system_routes())
    router.include_router(build_issuetype_routes())
    router.include_router(build_queue_routes())
    router.include_router(build_agent_routes())
    router.include_router(build_ticket_routes())
    return router


__all__ = ["API_PREFIX", "build_api_router"]
