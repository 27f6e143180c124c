"""
Issue type and collection routes.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Request

from ..core.exceptions import OperatorError, ReadonlyError
from ..issuetypes import IssueType, IssueTypeSource
from ..web.schemas import CollectionActivateResponse
from .shared import get_context, to_http_error


def _parse_issue_type(payload: Dict[str, Any], *, key: str | None = None) -> IssueType:
    raw = dict(payload)
    if key is not None:
        raw["key"] = key
    try:
        return IssueType.from_dict(raw, source=IssueTypeSource.user())
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=[f"Invalid issue type: {exc}"]) from exc


def build_issuetype_routes() -> APIRouter:
    router = APIRouter(tags=["issuetypes"])

    @router.get("/issuetypes")
    def list_issuetypes(request: Request):
        registry = get_context(request).registry
        return [
            {**issue_type.to_dict(), "active": registry.is_active(issue_type.key)}
            for issue_type in registry.all_types()
        ]

    @router.get("/issuetypes/{key}")
    def get_issuetype(key: str, request: Request):
        try:
            return get_context(request).registry.require(key).to_dict()
        except OperatorError as exc:
            raise to_http_error(exc) from exc

    @router.post("/issuetypes", status_code=201)
    def create_issuetype(request: Request, payload: Dict[str, Any] = Body(...)):
        issue_type = _parse_issue_type(payload)
        try:
            saved = get_context(request).registry.save_user_type(issue_type)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return saved.to_dict()

    @router.put("/issuetypes/{key}")
    def update_issuetype(key: str, request: Request, payload: Dict[str, Any] = Body(...)):
        registry = get_context(request).registry
        try:
            existing = registry.require(key)
            if existing.is_builtin:
                raise ReadonlyError(key)
            saved = registry.save_user_type(_parse_issue_type(payload, key=key), replace=True)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return saved.to_dict()

    @router.delete("/issuetypes/{key}")
    def delete_issuetype(key: str, request: Request):
        try:
            removed = get_context(request).registry.delete_user_type(key)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return {"deleted": removed.key}

    @router.get("/collections")
    def list_collections(request: Request):
        registry = get_context(request).registry
        active = registry.active_collection_name
        return [
            {**collection.to_dict(), "active": collection.name == active}
            for collection in registry.all_collections()
        ]

    @router.get("/collections/active")
    def active_collection(request: Request):
        collection = get_context(request).registry.active_collection()
        if collection is None:
            raise HTTPException(status_code=404, detail="No active collection")
        return collection.to_dict()

    @router.put("/collections/{name}/activate", response_model=CollectionActivateResponse)
    def activate_collection(name: str, request: Request):
        try:
            collection = get_context(request).registry.activate_collection(name)
        except OperatorError as exc:
            raise to_http_error(exc) from exc
        return {
            "name": collection.name,
            "types": list(collection.types),
            "priority_order": list(collection.priority_order),
        }

    return router
