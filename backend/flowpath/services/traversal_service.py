"""Traversal sessions: walking a user through an owner's live flow."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from flowpath.core.stores import SessionStore
from flowpath.flow_core.engine import FlowRouter, NextStepResult
from flowpath.flow_core.errors import (
    NoLiveFlowError,
    SessionCompletedError,
    SessionNotFoundError,
)
from flowpath.flow_core.ir import Flow
from flowpath.flow_core.state import TraversalState
from flowpath.services.flow_lifecycle_service import FlowLifecycleService

logger = logging.getLogger(__name__)

UNKNOWN_NODE_TITLE = "Unknown"


@dataclass(slots=True)
class CompletedSession:
    """A finished traversal as shown in flow analytics."""

    session_id: str
    user_id: str
    started_at: str
    completed_at: str
    duration_seconds: int
    path: list[dict[str, Any]] = field(default_factory=list)
    responses: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: TraversalState, titles: dict[str, str]) -> CompletedSession:
        completed_at = state.completed_at or state.updated_at
        return cls(
            session_id=state.session_id,
            user_id=state.user_id,
            started_at=state.started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            duration_seconds=round((completed_at - state.started_at).total_seconds()),
            path=[
                {
                    "node_id": step.node_id,
                    "node_title": titles.get(step.node_id, UNKNOWN_NODE_TITLE),
                    "order_index": step.order_index,
                    "visited_at": step.visited_at.isoformat(),
                }
                for step in state.path
            ],
            responses=dict(state.responses),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "path": list(self.path),
            "responses": dict(self.responses),
        }


@dataclass(slots=True)
class FlowAnalytics:
    flow_id: str
    total_sessions: int = 0
    completed_sessions: int = 0
    node_visits: dict[str, int] = field(default_factory=dict)
    # Completed sessions, most recently started first
    sessions: list[CompletedSession] = field(default_factory=list)

    @property
    def completion_rate(self) -> float:
        """Share of sessions that reached the end, as a percentage."""
        if not self.total_sessions:
            return 0.0
        return round(self.completed_sessions / self.total_sessions * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "total_sessions": self.total_sessions,
            "completed_sessions": self.completed_sessions,
            "completion_rate": self.completion_rate,
            "node_visits": dict(self.node_visits),
            "sessions": [s.to_dict() for s in self.sessions],
        }


class TraversalService:
    """Creates and advances traversal sessions against the routing engine."""

    def __init__(self, flows: FlowLifecycleService, sessions: SessionStore) -> None:
        self.flows = flows
        self.sessions = sessions

    def start(self, owner_id: str, user_id: str) -> TraversalState:
        flow = self.flows.get_active_flow(owner_id)
        if flow is None:
            raise NoLiveFlowError(owner_id)
        return self._begin(flow, user_id)

    def get_session(self, session_id: str) -> TraversalState:
        state = self.sessions.load_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    def submit(self, session_id: str, answers: dict[str, Any]) -> TraversalState:
        """Merge answers into the session and move it to the next step."""
        state = self.get_session(session_id)
        if state.is_complete or state.current_node_id is None:
            raise SessionCompletedError(session_id)

        flow = self.flows.get_flow(state.flow_id)
        state.responses.update(answers)
        result = FlowRouter(flow).next_step(
            state.current_node_id, state.responses, user_id=state.user_id
        )
        self._apply(state, result)
        self.sessions.save_session(state)
        return state

    def has_completed(self, flow_id: str, user_id: str) -> bool:
        self.flows.get_flow(flow_id)
        return self.sessions.has_completed(flow_id, user_id)

    def restart(self, session_id: str) -> TraversalState:
        """Start the flow over for the session's user.

        The user's completed sessions of the flow are dropped first, so a
        restarted user is counted once in analytics.
        """
        previous = self.get_session(session_id)
        flow = self.flows.get_flow(previous.flow_id)
        removed = self.sessions.delete_completed(flow.id, previous.user_id)
        logger.info(
            "Restarting session %s for user %s (%d completed sessions removed)",
            session_id,
            previous.user_id,
            removed,
        )
        return self._begin(flow, previous.user_id)

    def analytics(self, flow_id: str) -> FlowAnalytics:
        flow = self.flows.get_flow(flow_id)
        sessions = self.sessions.list_sessions(flow_id)
        visits: Counter[str] = Counter()
        for state in sessions:
            visits.update(step.node_id for step in state.path)

        titles = {n.id: n.title for n in flow.nodes}
        completed = sorted(
            (s for s in sessions if s.is_complete), key=lambda s: s.started_at, reverse=True
        )
        return FlowAnalytics(
            flow_id=flow_id,
            total_sessions=len(sessions),
            completed_sessions=len(completed),
            node_visits=dict(visits),
            sessions=[CompletedSession.from_state(s, titles) for s in completed],
        )

    def _begin(self, flow: Flow, user_id: str) -> TraversalState:
        state = TraversalState(flow_id=flow.id, user_id=user_id)
        result = FlowRouter(flow).first_step(state.responses, user_id=user_id)
        self._apply(state, result)
        self.sessions.save_session(state)
        logger.info(
            "Started session %s on flow %s for user %s", state.session_id, flow.id, user_id
        )
        return state

    def _apply(self, state: TraversalState, result: NextStepResult) -> None:
        if result.is_end or result.node is None:
            state.complete()
            logger.info("Session %s completed", state.session_id)
        else:
            state.visit(result.node.id)
