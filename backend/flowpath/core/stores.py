from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol

from flowpath.flow_core.errors import FlowNotFoundError, InvalidTransitionError
from flowpath.flow_core.ir import Flow, FlowStatus
from flowpath.flow_core.state import TraversalState


@dataclass(slots=True)
class Membership:
    """Tier record for an owner; inactive until the payment collaborator says otherwise."""

    owner_id: str
    active: bool = False
    payment_id: str | None = None
    plan_type: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class FlowStore(Protocol):
    def load_flow(self, flow_id: str) -> Flow | None: ...

    def save_flow(self, flow: Flow) -> None: ...

    def list_flows(self, owner_id: str) -> list[Flow]: ...

    def set_active(self, flow_id: str, owner_id: str) -> None:
        """Promote ``flow_id`` to Live and demote every other Live flow of the owner, atomically.

        Raises ``InvalidTransitionError`` when the flow is Archived at write time.
        """
        ...

    def set_status(self, flow_id: str, status: FlowStatus) -> None:
        """Move a flow to Draft or Archived. Live is only reachable through ``set_active``."""
        ...

    def delete_flow(self, flow_id: str) -> bool: ...


class MembershipStore(Protocol):
    def get_membership(self, owner_id: str) -> Membership | None: ...

    def upsert_membership(self, membership: Membership) -> Membership: ...


class SessionStore(Protocol):
    def load_session(self, session_id: str) -> TraversalState | None: ...

    def save_session(self, state: TraversalState) -> None: ...

    def list_sessions(self, flow_id: str) -> list[TraversalState]: ...

    def has_completed(self, flow_id: str, user_id: str) -> bool: ...

    def delete_completed(self, flow_id: str, user_id: str) -> int:
        """Remove the user's completed sessions of a flow; returns how many were removed."""
        ...


class InMemoryFlowStore:
    """Thread-safe flow store; returns copies so callers never share state."""

    def __init__(self) -> None:
        self._flows: dict[str, Flow] = {}
        self._lock = threading.Lock()

    def load_flow(self, flow_id: str) -> Flow | None:
        with self._lock:
            flow = self._flows.get(flow_id)
            return flow.model_copy(deep=True) if flow else None

    def save_flow(self, flow: Flow) -> None:
        with self._lock:
            stored = flow.model_copy(deep=True)
            existing = self._flows.get(flow.id)
            # Status of an existing flow only changes through set_active/set_status
            stored.status = existing.status if existing else FlowStatus.draft
            self._flows[flow.id] = stored

    def list_flows(self, owner_id: str) -> list[Flow]:
        with self._lock:
            flows = [f for f in self._flows.values() if f.owner_id == owner_id]
            flows.sort(key=lambda f: f.created_at)
            return [f.model_copy(deep=True) for f in flows]

    def set_active(self, flow_id: str, owner_id: str) -> None:
        with self._lock:
            target = self._flows.get(flow_id)
            if target is None or target.owner_id != owner_id:
                raise FlowNotFoundError(flow_id)
            if target.status == FlowStatus.archived:
                raise InvalidTransitionError(flow_id, target.status.value, FlowStatus.live.value)
            for flow in self._flows.values():
                if flow.owner_id == owner_id and flow.status == FlowStatus.live:
                    flow.status = FlowStatus.draft
            target.status = FlowStatus.live

    def set_status(self, flow_id: str, status: FlowStatus) -> None:
        if status == FlowStatus.live:
            raise ValueError("Use set_active to make a flow live")
        with self._lock:
            flow = self._flows.get(flow_id)
            if flow is None:
                raise FlowNotFoundError(flow_id)
            flow.status = status

    def delete_flow(self, flow_id: str) -> bool:
        with self._lock:
            return self._flows.pop(flow_id, None) is not None


class InMemoryMembershipStore:
    def __init__(self) -> None:
        self._memberships: dict[str, Membership] = {}
        self._lock = threading.Lock()

    def get_membership(self, owner_id: str) -> Membership | None:
        with self._lock:
            membership = self._memberships.get(owner_id)
            return replace(membership) if membership else None

    def upsert_membership(self, membership: Membership) -> Membership:
        with self._lock:
            existing = self._memberships.get(membership.owner_id)
            stored = replace(
                membership,
                created_at=existing.created_at if existing else membership.created_at,
                updated_at=datetime.now(UTC),
            )
            self._memberships[membership.owner_id] = stored
            return replace(stored)


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, dict] = {}
        self._lock = threading.Lock()

    def load_session(self, session_id: str) -> TraversalState | None:
        with self._lock:
            data = self._sessions.get(session_id)
            return TraversalState.from_dict(data) if data else None

    def save_session(self, state: TraversalState) -> None:
        with self._lock:
            self._sessions[state.session_id] = state.to_dict()

    def list_sessions(self, flow_id: str) -> list[TraversalState]:
        with self._lock:
            return [
                TraversalState.from_dict(data)
                for data in self._sessions.values()
                if data["flow_id"] == flow_id
            ]

    def has_completed(self, flow_id: str, user_id: str) -> bool:
        with self._lock:
            return any(
                data["flow_id"] == flow_id and data["user_id"] == user_id and data["is_complete"]
                for data in self._sessions.values()
            )

    def delete_completed(self, flow_id: str, user_id: str) -> int:
        with self._lock:
            doomed = [
                session_id
                for session_id, data in self._sessions.items()
                if data["flow_id"] == flow_id and data["user_id"] == user_id and data["is_complete"]
            ]
            for session_id in doomed:
                del self._sessions[session_id]
            return len(doomed)
