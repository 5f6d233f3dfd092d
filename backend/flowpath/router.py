from __future__ import annotations

from fastapi import APIRouter

from flowpath.api.flows import router as flows_router
from flowpath.api.memberships import router as memberships_router
from flowpath.api.traversals import router as traversals_router

api_router = APIRouter(prefix="/api")

api_router.include_router(flows_router)
api_router.include_router(traversals_router)
api_router.include_router(memberships_router)
