"""Typed error taxonomy for flow editing, validation, routing and lifecycle.

Every failure raised by the core is a subclass of ``FlowpathError`` so callers
can branch on the exact kind instead of parsing messages.
"""

from __future__ import annotations

from collections.abc import Iterable


class FlowpathError(Exception):
    """Base exception for all flowpath errors."""


# --- Graph editing


class GraphEditError(FlowpathError):
    """Raised when an in-memory graph mutation is rejected."""


class ReferentialIntegrityError(GraphEditError):
    """Raised when removing an element that other elements still target."""

    def __init__(self, target_id: str, referrers: Iterable[str]) -> None:
        self.target_id = target_id
        self.referrers = sorted(referrers)
        super().__init__(
            f"'{target_id}' is still targeted by: {', '.join(self.referrers)}"
        )


class UnknownTargetError(GraphEditError):
    """Raised when a connection or branch points at an id that does not exist."""

    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        super().__init__(f"Unknown connection target '{target_id}'")


class DuplicateIdError(GraphEditError):
    """Raised when a node or logic block id is already taken."""

    def __init__(self, element_id: str) -> None:
        self.element_id = element_id
        super().__init__(f"Id '{element_id}' is already used in this flow")


# --- Validation violations


class GraphViolation(FlowpathError):
    """A structural defect reported by the validator.

    Violations are collected into a ``ValidationResult`` but can also be raised
    directly (e.g. ``QuotaExceededError`` on flow creation).
    """

    kind: str = "violation"

    def __init__(self, message: str, element_ids: Iterable[str] = ()) -> None:
        self.element_ids = list(element_ids)
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message, "element_ids": self.element_ids}


class DanglingReferenceError(GraphViolation):
    kind = "dangling_reference"


class SelfLoopError(GraphViolation):
    kind = "self_loop"


class UnreachableNodeError(GraphViolation):
    kind = "unreachable_node"


class EmptyBranchSetError(GraphViolation):
    kind = "empty_branch_set"


class MissingBranchError(GraphViolation):
    kind = "missing_branch"


class MalformedConditionError(GraphViolation):
    kind = "malformed_condition"


class InvalidWeightError(GraphViolation):
    kind = "invalid_weight"


class QuotaExceededError(GraphViolation):
    """Raised when an owner hits a tier limit (flow count or nodes per flow)."""

    kind = "quota_exceeded"

    def __init__(self, resource: str, limit: int, actual: int, owner_id: str | None = None) -> None:
        self.resource = resource
        self.limit = limit
        self.actual = actual
        self.owner_id = owner_id
        super().__init__(
            f"Quota exceeded for {resource}: limit is {limit}, found {actual}. "
            "Upgrade the membership or remove items to continue."
        )

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data.update({"resource": self.resource, "limit": self.limit, "actual": self.actual})
        return data


# --- Routing


class RoutingError(FlowpathError):
    """Raised when the engine cannot resolve the next step."""


class UnknownNodeError(RoutingError):
    def __init__(self, element_id: str) -> None:
        self.element_id = element_id
        super().__init__(f"Unknown node or logic block '{element_id}'")


class ConditionEvaluationError(RoutingError):
    """Raised for malformed condition expressions (a configuration defect)."""


class NoDefaultBranchError(RoutingError):
    def __init__(self, block_id: str, value: object) -> None:
        self.block_id = block_id
        self.value = value
        super().__init__(
            f"Multi-path block '{block_id}' has no case for {value!r} and no default branch"
        )


class UnresolvedBranchError(RoutingError):
    """Raised when a logic block selects a branch that is not configured."""

    def __init__(self, block_id: str, detail: str) -> None:
        self.block_id = block_id
        super().__init__(f"Logic block '{block_id}': {detail}")


class MissingIdentityError(RoutingError):
    def __init__(self, block_id: str) -> None:
        self.block_id = block_id
        super().__init__(f"A/B test block '{block_id}' requires a user identity")


class RoutingLoopError(RoutingError):
    def __init__(self, start_id: str, hops: int, trail: list[str]) -> None:
        self.start_id = start_id
        self.hops = hops
        self.trail = trail
        super().__init__(
            f"No content node reached from '{start_id}' after {hops} hops: "
            + " -> ".join(trail)
        )


# --- Lifecycle


class LifecycleError(FlowpathError):
    """Raised by the flow lifecycle manager."""


class FlowNotFoundError(LifecycleError):
    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' not found")


class InvalidTransitionError(LifecycleError):
    def __init__(self, flow_id: str, current: str, requested: str) -> None:
        self.flow_id = flow_id
        self.current = current
        self.requested = requested
        super().__init__(f"Flow '{flow_id}' cannot move from {current} to {requested}")


class PersistenceError(LifecycleError):
    """Raised when the persistence collaborator fails to apply a change."""


class FlowValidationError(LifecycleError):
    """Raised when an edit would leave a Live flow structurally invalid."""

    def __init__(self, flow_id: str, violations: list[GraphViolation]) -> None:
        self.flow_id = flow_id
        self.violations = violations
        super().__init__(
            f"Flow '{flow_id}' is invalid: " + "; ".join(v.message for v in violations)
        )


# --- Traversal


class TraversalError(FlowpathError):
    """Raised by the traversal session service."""


class SessionNotFoundError(TraversalError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Traversal session '{session_id}' not found")


class SessionCompletedError(TraversalError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Traversal session '{session_id}' is already complete")


class NoLiveFlowError(TraversalError):
    def __init__(self, owner_id: str) -> None:
        self.owner_id = owner_id
        super().__init__(f"Owner '{owner_id}' has no live flow")
