"""Membership endpoints; writes come from the payment integration (admin access)."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from flowpath.api.errors import to_http_exception
from flowpath.core.app_context import get_app_context
from flowpath.core.identity import Identity, ensure_owner_access, get_identity, require_admin
from flowpath.core.stores import Membership
from flowpath.flow_core.errors import FlowpathError
from flowpath.flow_core.quota import limits_for, tier_for

router = APIRouter(prefix="/memberships", tags=["memberships"])


class MembershipUpdateRequest(BaseModel):
    active: bool
    payment_id: str | None = None
    plan_type: str | None = None


class MembershipResponse(BaseModel):
    owner_id: str
    active: bool
    tier: str
    max_flows: int
    max_nodes_per_flow: int
    payment_id: str | None
    plan_type: str | None
    updated_at: datetime


def _response(membership: Membership) -> MembershipResponse:
    tier = tier_for(membership.active)
    limits = limits_for(tier)
    return MembershipResponse(
        owner_id=membership.owner_id,
        active=membership.active,
        tier=tier.value,
        max_flows=limits.max_flows,
        max_nodes_per_flow=limits.max_nodes_per_flow,
        payment_id=membership.payment_id,
        plan_type=membership.plan_type,
        updated_at=membership.updated_at,
    )


@router.get("/{owner_id}", response_model=MembershipResponse)
async def get_membership(
    request: Request, owner_id: str, identity: Identity = Depends(get_identity)
) -> MembershipResponse:
    ensure_owner_access(identity, owner_id)
    try:
        membership = get_app_context(request.app).memberships.get_membership(owner_id)
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _response(membership)


@router.put("/{owner_id}", response_model=MembershipResponse)
async def update_membership(
    request: Request,
    owner_id: str,
    body: MembershipUpdateRequest,
    _admin: Identity = Depends(require_admin),
) -> MembershipResponse:
    try:
        membership = get_app_context(request.app).memberships.set_membership(
            owner_id, active=body.active, payment_id=body.payment_id, plan_type=body.plan_type
        )
    except FlowpathError as exc:
        raise to_http_exception(exc) from exc
    return _response(membership)
