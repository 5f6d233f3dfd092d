from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from fastapi import FastAPI

    from flowpath.services.flow_lifecycle_service import FlowLifecycleService
    from flowpath.services.membership_service import MembershipService
    from flowpath.services.traversal_service import TraversalService


@dataclass(slots=True)
class AppContext:
    flows: FlowLifecycleService
    memberships: MembershipService
    traversals: TraversalService
    persistence: str = "memory"


def set_app_context(app: FastAPI, ctx: AppContext) -> None:
    # Store one typed context object under app.state
    app.state.ctx = ctx


def get_app_context(app: FastAPI) -> AppContext:
    return cast("AppContext", app.state.ctx)
