"""
Live agent routes: listing plus the review gate (approve / reject).
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from ..core.exceptions import OperatorError
from ..web.schemas import RejectRequest
from .shared import get_context, to_http_error


def build_agent_routes() -> APIRouter:
    router = APIRouter(prefix="/agents", tags=["agents"])

    @router.get("/active")
    def active_agents(request: Request):
        return [agent.to_dict() for agent in get_context(request).supervisor.snapshot()]

    @router.post("/{agent_id}/approve")
    def approve(agent_id: str, request: Request):
        try:
            agent = get_context(request).supervisor.approve(agent_id)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return agent.to_dict()

    @router.post("/{agent_id}/reject")
    def reject(agent_id: str, payload: RejectRequest, request: Request):
        try:
            agent = get_context(request).supervisor.reject(agent_id, payload.reason)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return agent.to_dict()

    return router
