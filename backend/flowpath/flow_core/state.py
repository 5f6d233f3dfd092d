"""Per-user traversal state with serialization for persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class PathStep:
    """One node visited during a traversal."""

    node_id: str
    order_index: int
    visited_at: datetime = field(default_factory=_now)


@dataclass(slots=True)
class TraversalState:
    """Response state for one user's traversal of one flow."""

    flow_id: str
    user_id: str
    session_id: str = field(default_factory=lambda: str(uuid4()))
    current_node_id: str | None = None
    responses: dict[str, Any] = field(default_factory=dict)
    path: list[PathStep] = field(default_factory=list)
    is_complete: bool = False

    started_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None

    def visit(self, node_id: str) -> None:
        """Move to a node and record it in the path."""
        self.current_node_id = node_id
        self.path.append(PathStep(node_id=node_id, order_index=len(self.path)))
        self.updated_at = _now()

    def complete(self) -> None:
        self.current_node_id = None
        self.is_complete = True
        self.completed_at = _now()
        self.updated_at = self.completed_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict for persistence."""
        return {
            "flow_id": self.flow_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "current_node_id": self.current_node_id,
            "responses": dict(self.responses),
            "path": [
                {
                    "node_id": step.node_id,
                    "order_index": step.order_index,
                    "visited_at": step.visited_at.isoformat(),
                }
                for step in self.path
            ],
            "is_complete": self.is_complete,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraversalState:
        """Deserialize from dict."""
        state = cls(
            flow_id=data["flow_id"],
            user_id=data["user_id"],
            session_id=data["session_id"],
            current_node_id=data.get("current_node_id"),
            responses=dict(data.get("responses", {})),
            is_complete=data.get("is_complete", False),
        )
        if data.get("started_at"):
            state.started_at = datetime.fromisoformat(data["started_at"])
        if data.get("updated_at"):
            state.updated_at = datetime.fromisoformat(data["updated_at"])
        if data.get("completed_at"):
            state.completed_at = datetime.fromisoformat(data["completed_at"])
        for step in data.get("path", []):
            state.path.append(
                PathStep(
                    node_id=step["node_id"],
                    order_index=step["order_index"],
                    visited_at=datetime.fromisoformat(step["visited_at"]),
                )
            )
        return state
