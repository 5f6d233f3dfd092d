from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from flowpath.api.errors import to_http_exception
from flowpath.core.app_context import AppContext, get_app_context
from flowpath.core.identity import Identity, ensure_owner_access, get_identity
from flowpath.flow_core.errors import FlowpathError
from flowpath.flow_core.ir import Flow, FlowNode, LogicBlock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows", tags=["flows"])


class FlowCreateRequest(BaseModel):
    owner_id: str
    title: str = Field(min_length=1, max_length=200)
    icon_url: str | None = None


class FlowDetailsRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    icon_url: str | None = None


class FlowGraphRequest(BaseModel):
    nodes: list[FlowNode] = Field(default_factory=list)
    logic_blocks: list[LogicBlock] = Field(default_factory=list)
    entry: str | None = None


def _ctx(request: Request) -> AppContext:
    return get_app_context(request.app)


def _owned_flow(ctx: AppContext, flow_id: str, identity: Identity) -> Flow:
    try:
        flow = ctx.flows.get_flow(flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    ensure_owner_access(identity, flow.owner_id)
    return flow


def _dump(flow: Flow) -> dict[str, Any]:
    return flow.model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_flow(
    request: Request, body: FlowCreateRequest, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ensure_owner_access(identity, body.owner_id)
    try:
        flow = _ctx(request).flows.create_flow(body.owner_id, body.title, icon_url=body.icon_url)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _dump(flow)


@router.get("")
async def list_flows(
    request: Request, owner_id: str, identity: Identity = Depends(get_identity)
) -> list[dict[str, Any]]:
    ensure_owner_access(identity, owner_id)
    try:
        flows = _ctx(request).flows.list_flows(owner_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return [_dump(f) for f in flows]


@router.get("/{flow_id}")
async def get_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    return _dump(_owned_flow(_ctx(request), flow_id, identity))


@router.patch("/{flow_id}")
async def update_flow_details(
    request: Request,
    flow_id: str,
    body: FlowDetailsRequest,
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        flow = ctx.flows.update_details(flow_id, title=body.title, icon_url=body.icon_url)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _dump(flow)


@router.put("/{flow_id}/graph")
async def save_flow_graph(
    request: Request,
    flow_id: str,
    body: FlowGraphRequest,
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    """Replace the nodes, logic blocks and entry of a flow."""
    ctx = _ctx(request)
    flow = _owned_flow(ctx, flow_id, identity)
    edited = flow.model_copy(
        update={"nodes": body.nodes, "logic_blocks": body.logic_blocks, "entry": body.entry}
    )
    try:
        saved = ctx.flows.save_graph(edited)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _dump(saved)


@router.get("/{flow_id}/validate")
async def validate_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        return ctx.flows.validate(flow_id).to_dict()
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{flow_id}/activate")
async def activate_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        result = ctx.flows.activate(flow_id)
        if not result.ok:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": "Flow is not valid", **result.to_dict()},
            )
        return _dump(ctx.flows.get_flow(flow_id))
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{flow_id}/deactivate")
async def deactivate_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        return _dump(ctx.flows.deactivate(flow_id))
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{flow_id}/archive")
async def archive_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        return _dump(ctx.flows.archive(flow_id))
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{flow_id}/restore")
async def restore_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        return _dump(ctx.flows.restore(flow_id))
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flow(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> None:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        ctx.flows.delete_flow(flow_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Flow %s deleted by %s", flow_id, identity.user_id)


@router.get("/{flow_id}/analytics")
async def flow_analytics(
    request: Request, flow_id: str, identity: Identity = Depends(get_identity)
) -> dict[str, Any]:
    ctx = _ctx(request)
    _owned_flow(ctx, flow_id, identity)
    try:
        return ctx.traversals.analytics(flow_id).to_dict()
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
