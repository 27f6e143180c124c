from __future__ import annotations

from fastapi import APIRouter, Request

from ..tickets.models import Ticket
from ..web.app_state import OperatorContext
from ..web.schemas import QueuePausedResponse
from .shared import get_context


def _card(context: OperatorContext, ticket: Ticket) -> dict:
    data = ticket.to_dict()
    data["progress"] = context.engine.format_progress(ticket)
    return data


def build_queue_routes() -> APIRouter:
    router = APIRouter(prefix="/queue", tags=["queue"])

    @router.get("/kanban")
    def kanban(request: Request):
        context = get_context(request)
        queue = context.queue
        return {
            "queue": [_card(context, t) for t in queue.list_by_priority()],
            "in_progress": [_card(context, t) for t in queue.list_in_progress()],
            "completed": [_card(context, t) for t in queue.list_completed()],
        }

    @router.get("/status")
    def queue_status(request: Request):
        context = get_context(request)
        owned = {agent.ticket_id for agent in context.supervisor.snapshot()}
        upcoming = context.queue.next_ticket(exclude_ids=owned)
        return {
            "paused": context.supervisor.paused,
            "counts": context.queue.counts(),
            "next_ticket": upcoming.id if upcoming else None,
        }

    @router.post("/pause", response_model=QueuePausedResponse)
    def pause(request: Request):
        supervisor = get_context(request).supervisor
        supervisor.pause()
        return {"paused": supervisor.paused}

    @router.post("/resume", response_model=QueuePausedResponse)
    def resume(request: Request):
        supervisor = get_context(request).supervisor
        supervisor.resume()
        return {"paused": supervisor.paused}

    return router
