from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    version: str


class StatusResponse(BaseModel):
    version: str
    paused: bool
    max_agents: int
    active_agents: int
    queue: Dict[str, int]
    issuetypes: int
    collections: int
    active_collection: Optional[str] = None


class CollectionActivateResponse(BaseModel):
    name: str
    types: List[str]
    priority_order: List[str] = Field(default_factory=list)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class LaunchRequest(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    yolo_mode: bool = False
    docker: Optional[bool] = None
    project: Optional[str] = None
    # Set by editor integrations that run the prepared command themselves.
    wrapper: Optional[str] = None


class StepCompleteRequest(BaseModel):
    status: str = "complete"
    exit_signal: bool = True
    summary: Optional[str] = None
    recommendation: Optional[str] = None

    def block_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class QueuePausedResponse(BaseModel):
    paused: bool
