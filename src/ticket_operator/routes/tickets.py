from __future__ import annotations

from fastapi import APIRouter, Request

from ..agents.launcher import LaunchOptions
from ..agents.status_block import StatusBlock
from ..core.exceptions import OperatorError
from ..web.schemas import LaunchRequest, StepCompleteRequest
from .shared import get_context, to_http_error


def build_ticket_routes() -> APIRouter:
    router = APIRouter(prefix="/tickets", tags=["tickets"])

    @router.post("/{ticket_id}/launch")
    def launch_ticket(ticket_id: str, payload: LaunchRequest, request: Request):
        context = get_context(request)
        options = LaunchOptions.from_config(
            context.config,
            provider=payload.provider,
            model=payload.model,
            docker=payload.docker,
            yolo=payload.yolo_mode,
            project_override=payload.project,
        )
        try:
            prepared = context.supervisor.launch_ticket(
                ticket_id, options, external=payload.wrapper is not None
            )
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return prepared.to_dict()

    @router.post("/{ticket_id}/steps/{step}/complete")
    def complete_step(
        ticket_id: str,
        step: str,
        request: Request,
        payload: StepCompleteRequest | None = None,
    ):
        body = payload or StepCompleteRequest()
        try:
            block = StatusBlock.from_dict(body.block_fields())
            get_context(request).supervisor.complete_step(ticket_id, step, block)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return {"ticket_id": ticket_id, "step": step, "accepted": True}

    return router
