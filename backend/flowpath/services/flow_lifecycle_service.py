"""Flow lifecycle management: creation, graph saves and Draft/Live/Archived moves."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from flowpath.core.stores import FlowStore
from flowpath.flow_core.errors import (
    FlowNotFoundError,
    FlowpathError,
    FlowValidationError,
    InvalidTransitionError,
    PersistenceError,
    QuotaExceededError,
)
from flowpath.flow_core.graph import FlowGraph
from flowpath.flow_core.ir import Flow, FlowStatus
from flowpath.flow_core.validator import ValidationResult, validate
from flowpath.services.membership_service import MembershipService

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSITIONS: dict[FlowStatus, set[FlowStatus]] = {
    FlowStatus.draft: {FlowStatus.live, FlowStatus.archived},
    FlowStatus.live: {FlowStatus.draft, FlowStatus.archived},
    FlowStatus.archived: {FlowStatus.draft},
}


def can_transition(current: FlowStatus, requested: FlowStatus) -> bool:
    return current == requested or requested in _TRANSITIONS[current]


class FlowLifecycleService:
    """
    Service layer for flow lifecycle operations.

    Every change is prepared on a copy of the stored flow and handed to the
    persistence collaborator in one call, so a failed call leaves the stored
    state untouched.
    """

    def __init__(self, store: FlowStore, memberships: MembershipService) -> None:
        self.store = store
        self.memberships = memberships

    # --- Queries

    def get_flow(self, flow_id: str) -> Flow:
        flow = self._persist(lambda: self.store.load_flow(flow_id), f"load flow {flow_id}")
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    def list_flows(self, owner_id: str) -> list[Flow]:
        return self._persist(lambda: self.store.list_flows(owner_id), f"list flows of {owner_id}")

    def get_active_flow(self, owner_id: str) -> Flow | None:
        for flow in self.list_flows(owner_id):
            if flow.status == FlowStatus.live:
                return flow
        return None

    def validate(self, flow_id: str) -> ValidationResult:
        flow = self.get_flow(flow_id)
        limits = self.memberships.get_limits(flow.owner_id)
        return validate(flow, max_nodes=limits.max_nodes_per_flow)

    # --- Mutations

    def create_flow(self, owner_id: str, title: str, *, icon_url: str | None = None) -> Flow:
        self._check_flow_quota(owner_id)
        flow = Flow(owner_id=owner_id, title=title, icon_url=icon_url)
        self._persist(lambda: self.store.save_flow(flow), f"create flow {flow.id}")
        logger.info("Created flow %s (%s) for owner %s", flow.id, title, owner_id)
        return flow

    def save_graph(self, flow: Flow) -> Flow:
        """Persist an edited graph.

        Ownership, status and creation time always come from the stored flow;
        the store never changes status on a graph save.
        Live flows must stay valid; drafts only need to respect the node quota.
        """
        stored = self.get_flow(flow.id)
        updated = flow.model_copy(deep=True)
        updated.owner_id = stored.owner_id
        updated.status = stored.status
        updated.created_at = stored.created_at
        # Rejects duplicate ids and ids that collide with the end marker
        FlowGraph(updated)

        limits = self.memberships.get_limits(stored.owner_id)
        if len(updated.nodes) > limits.max_nodes_per_flow:
            raise QuotaExceededError(
                "nodes per flow", limits.max_nodes_per_flow, len(updated.nodes), stored.owner_id
            )
        if updated.status == FlowStatus.live:
            result = validate(updated, max_nodes=limits.max_nodes_per_flow)
            if not result.ok:
                raise FlowValidationError(updated.id, result.violations)

        self._persist(lambda: self.store.save_flow(updated), f"save flow {updated.id}")
        logger.info(
            "Saved flow %s: %d nodes, %d logic blocks",
            updated.id,
            len(updated.nodes),
            len(updated.logic_blocks),
        )
        return updated

    def update_details(
        self, flow_id: str, *, title: str | None = None, icon_url: str | None = None
    ) -> Flow:
        flow = self.get_flow(flow_id)
        if title is not None:
            flow.title = title
        if icon_url is not None:
            flow.icon_url = icon_url
        self._persist(lambda: self.store.save_flow(flow), f"update flow {flow_id}")
        return flow

    def activate(self, flow_id: str) -> ValidationResult:
        """Validate and make this the owner's only Live flow.

        On validation failure the violations are returned and nothing changes.
        """
        flow = self.get_flow(flow_id)
        self._check_transition(flow, FlowStatus.live)
        limits = self.memberships.get_limits(flow.owner_id)
        result = validate(flow, max_nodes=limits.max_nodes_per_flow)
        if not result.ok:
            logger.info(
                "Activation of flow %s rejected: %s", flow_id, ", ".join(result.kinds())
            )
            return result
        self._persist(
            lambda: self.store.set_active(flow.id, flow.owner_id), f"activate flow {flow_id}"
        )
        logger.info("Flow %s is now live for owner %s", flow_id, flow.owner_id)
        return result

    def deactivate(self, flow_id: str) -> Flow:
        flow = self.get_flow(flow_id)
        if flow.status != FlowStatus.live:
            return flow
        return self._set_status(flow, FlowStatus.draft)

    def archive(self, flow_id: str) -> Flow:
        flow = self.get_flow(flow_id)
        if flow.status == FlowStatus.archived:
            return flow
        # Live -> Archived is a single write, so the flow is never Live and Archived at once
        return self._set_status(flow, FlowStatus.archived)

    def restore(self, flow_id: str) -> Flow:
        flow = self.get_flow(flow_id)
        if flow.status != FlowStatus.archived:
            raise InvalidTransitionError(flow_id, flow.status.value, FlowStatus.draft.value)
        self._check_flow_quota(flow.owner_id)
        return self._set_status(flow, FlowStatus.draft)

    def delete_flow(self, flow_id: str) -> None:
        deleted = self._persist(lambda: self.store.delete_flow(flow_id), f"delete flow {flow_id}")
        if not deleted:
            raise FlowNotFoundError(flow_id)
        logger.info("Deleted flow %s", flow_id)

    # --- Helpers

    def _check_flow_quota(self, owner_id: str) -> None:
        limits = self.memberships.get_limits(owner_id)
        in_use = [f for f in self.list_flows(owner_id) if f.status != FlowStatus.archived]
        if len(in_use) >= limits.max_flows:
            raise QuotaExceededError("flows", limits.max_flows, len(in_use), owner_id)

    def _check_transition(self, flow: Flow, requested: FlowStatus) -> None:
        if not can_transition(flow.status, requested):
            raise InvalidTransitionError(flow.id, flow.status.value, requested.value)

    def _set_status(self, flow: Flow, status: FlowStatus) -> Flow:
        self._check_transition(flow, status)
        previous = flow.status
        updated = flow.model_copy(deep=True)
        updated.status = status
        self._persist(lambda: self.store.set_status(flow.id, status), f"set status of {flow.id}")
        logger.info("Flow %s moved from %s to %s", flow.id, previous.value, status.value)
        return updated

    def _persist(self, call: Callable[[], T], action: str) -> T:
        try:
            return call()
        except FlowpathError:
            raise
        except Exception as exc:
            logger.error("Persistence failure while trying to %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc
