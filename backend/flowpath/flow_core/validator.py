"""Structural validation of a flow graph before activation or traversal."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from .constants import END
from .errors import (
    ConditionEvaluationError,
    DanglingReferenceError,
    EmptyBranchSetError,
    GraphViolation,
    InvalidWeightError,
    MalformedConditionError,
    MissingBranchError,
    QuotaExceededError,
    SelfLoopError,
    UnreachableNodeError,
)
from .graph import GraphElement, outgoing_targets, routed_connection
from .guards import check_condition
from .ir import ABTestBlock, Flow, FlowNode, IfElseBlock, MultiPathBlock


@dataclass(slots=True)
class ValidationResult:
    """Outcome of ``validate``: success or an ordered list of violations."""

    violations: list[GraphViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def __bool__(self) -> bool:
        return self.ok

    def kinds(self) -> list[str]:
        return [v.kind for v in self.violations]

    def to_dict(self) -> dict[str, object]:
        return {"ok": self.ok, "violations": [v.to_dict() for v in self.violations]}


def _index(flow: Flow) -> dict[str, GraphElement]:
    index: dict[str, GraphElement] = {}
    for element in [*flow.nodes, *flow.logic_blocks]:
        index.setdefault(element.id, element)
    return index


def _check_edges(flow: Flow, index: dict[str, GraphElement]) -> list[GraphViolation]:
    violations: list[GraphViolation] = []
    entry = flow.entry_id
    if entry is None:
        violations.append(DanglingReferenceError("Flow has no entry node", []))
    elif entry not in index:
        violations.append(DanglingReferenceError(f"Entry '{entry}' does not exist", [entry]))

    for element_id, element in index.items():
        for target in outgoing_targets(element):
            if target != END and target not in index:
                violations.append(
                    DanglingReferenceError(
                        f"'{element_id}' targets unknown id '{target}'", [element_id, target]
                    )
                )
        if isinstance(element, FlowNode) and element_id in element.connections:
            violations.append(
                SelfLoopError(f"Node '{element_id}' connects to itself", [element_id])
            )
    return violations


def reachable_ids(flow: Flow) -> set[str]:
    """Ids reachable from the entry along the edges a traversal can take (BFS).

    A node contributes only its routed connection, so a target behind an edge
    the router never follows counts as unreachable.
    """
    index = _index(flow)
    block_ids = [block.id for block in flow.logic_blocks]
    entry = flow.entry_id
    if entry is None or entry not in index:
        return set()
    visited: set[str] = set()
    queue = deque([entry])
    while queue:
        element_id = queue.popleft()
        if element_id in visited:
            continue
        visited.add(element_id)
        element = index[element_id]
        if isinstance(element, FlowNode):
            targets = [routed_connection(element, block_ids)]
        else:
            targets = outgoing_targets(element)
        for target in targets:
            if target in index and target not in visited:
                queue.append(target)
    return visited


def _check_reachability(flow: Flow, index: dict[str, GraphElement]) -> list[GraphViolation]:
    reachable = reachable_ids(flow)
    unreachable = [element_id for element_id in index if element_id not in reachable]
    if not unreachable:
        return []
    return [
        UnreachableNodeError(
            f"Unreachable from entry: {', '.join(unreachable)}", unreachable
        )
    ]


def _check_branches(flow: Flow) -> list[GraphViolation]:
    violations: list[GraphViolation] = []
    for block in flow.logic_blocks:
        if not block.branches:
            violations.append(
                EmptyBranchSetError(f"Logic block '{block.id}' has no branches", [block.id])
            )
            continue
        if isinstance(block, IfElseBlock):
            if block.on_true is None or block.on_false is None:
                violations.append(
                    MissingBranchError(
                        f"If/else block '{block.id}' needs both a true and a false branch",
                        [block.id],
                    )
                )
            try:
                check_condition(block.condition)
            except ConditionEvaluationError as exc:
                violations.append(
                    MalformedConditionError(f"Block '{block.id}': {exc}", [block.id])
                )
        elif isinstance(block, MultiPathBlock) and block.default is None:
            violations.append(
                MissingBranchError(
                    f"Multi-path block '{block.id}' has no default branch", [block.id]
                )
            )
        elif isinstance(block, ABTestBlock):
            bad = [arm.target for arm in block.arms if arm.weight <= 0]
            if bad:
                violations.append(
                    InvalidWeightError(
                        f"A/B block '{block.id}' has non-positive weights for: {', '.join(bad)}",
                        [block.id],
                    )
                )
    return violations


def _check_quota(flow: Flow, max_nodes: int | None) -> list[GraphViolation]:
    if max_nodes is None or len(flow.nodes) <= max_nodes:
        return []
    return [QuotaExceededError("nodes per flow", max_nodes, len(flow.nodes), flow.owner_id)]


def validate(flow: Flow, *, max_nodes: int | None = None) -> ValidationResult:
    """Check a flow's structure.

    Classes are checked in order (edges, reachability, branch configuration,
    quota); the first class that reports anything ends validation, and every
    violation inside that class is returned. The flow is never mutated.
    """
    index = _index(flow)
    checks: list[Callable[[], list[GraphViolation]]] = [
        lambda: _check_edges(flow, index),
        lambda: _check_reachability(flow, index),
        lambda: _check_branches(flow),
        lambda: _check_quota(flow, max_nodes),
    ]
    for check in checks:
        violations = check()
        if violations:
            return ValidationResult(violations)
    return ValidationResult()
