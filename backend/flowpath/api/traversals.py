"""Public endpoints used by the experience runtime to walk a live flow."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from flowpath.api.errors import to_http_exception
from flowpath.core.app_context import get_app_context
from flowpath.core.identity import Identity, require_user
from flowpath.flow_core.errors import FlowpathError, NoLiveFlowError
from flowpath.flow_core.ir import Flow
from flowpath.flow_core.state import TraversalState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["traversals"])


class AnswersRequest(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)


def _session_payload(flow: Flow, state: TraversalState) -> dict[str, Any]:
    node = flow.node_by_id(state.current_node_id) if state.current_node_id else None
    return {
        "session_id": state.session_id,
        "flow_id": state.flow_id,
        "user_id": state.user_id,
        "is_complete": state.is_complete,
        "current_node": node.model_dump(mode="json") if node else None,
        "path": [step.node_id for step in state.path],
        "responses": state.responses,
    }


def _check_session_owner(identity: Identity, state: TraversalState) -> None:
    if identity.user_id != state.user_id and not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Session belongs to another user"
        )


@router.get("/experiences/{owner_id}/flow")
async def get_live_flow(request: Request, owner_id: str) -> dict[str, Any]:
    ctx = get_app_context(request.app)
    try:
        flow = ctx.flows.get_active_flow(owner_id)
        if flow is None:
            raise NoLiveFlowError(owner_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return flow.model_dump(mode="json")


@router.post("/experiences/{owner_id}/traversals", status_code=status.HTTP_201_CREATED)
async def start_traversal(
    request: Request, owner_id: str, identity: Identity = Depends(require_user)
) -> dict[str, Any]:
    ctx = get_app_context(request.app)
    try:
        state = ctx.traversals.start(owner_id, identity.user_id or "")
        flow = ctx.flows.get_flow(state.flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _session_payload(flow, state)


@router.get("/flows/{flow_id}/completion")
async def get_completion(
    request: Request,
    flow_id: str,
    user_id: str | None = None,
    identity: Identity = Depends(require_user),
) -> dict[str, Any]:
    """Whether a user has finished this flow; admins may ask about any user."""
    target = user_id or identity.user_id or ""
    if target != identity.user_id and not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Cannot check another user's progress"
        )
    ctx = get_app_context(request.app)
    try:
        completed = ctx.traversals.has_completed(flow_id, target)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return {"flow_id": flow_id, "user_id": target, "has_completed": completed}


@router.get("/traversals/{session_id}")
async def get_traversal(
    request: Request, session_id: str, identity: Identity = Depends(require_user)
) -> dict[str, Any]:
    ctx = get_app_context(request.app)
    try:
        state = ctx.traversals.get_session(session_id)
        _check_session_owner(identity, state)
        flow = ctx.flows.get_flow(state.flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _session_payload(flow, state)


@router.post("/traversals/{session_id}/responses")
async def submit_responses(
    request: Request,
    session_id: str,
    body: AnswersRequest,
    identity: Identity = Depends(require_user),
) -> dict[str, Any]:
    ctx = get_app_context(request.app)
    try:
        _check_session_owner(identity, ctx.traversals.get_session(session_id))
        state = ctx.traversals.submit(session_id, body.answers)
        flow = ctx.flows.get_flow(state.flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _session_payload(flow, state)


@router.post("/traversals/{session_id}/restart", status_code=status.HTTP_201_CREATED)
async def restart_traversal(
    request: Request, session_id: str, identity: Identity = Depends(require_user)
) -> dict[str, Any]:
    ctx = get_app_context(request.app)
    try:
        _check_session_owner(identity, ctx.traversals.get_session(session_id))
        state = ctx.traversals.restart(session_id)
        flow = ctx.flows.get_flow(state.flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _session_payload(flow, state)
