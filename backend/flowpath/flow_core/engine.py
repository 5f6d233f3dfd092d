"""Routing engine - pure next-step resolution over a flow graph."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from .constants import AB_HASH_BYTES, AB_HASH_SPACE, END
from .errors import (
    MissingIdentityError,
    NoDefaultBranchError,
    RoutingLoopError,
    UnknownNodeError,
    UnresolvedBranchError,
)
from .graph import GraphElement, routed_connection
from .guards import as_number, evaluate_condition, values_match
from .ir import (
    ABTestBlock,
    Flow,
    FlowNode,
    IfElseBlock,
    LogicBlock,
    MultiPathBlock,
    ScoreThresholdBlock,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NextStepResult:
    """Where the user goes next: a content node or the end of the flow."""

    kind: Literal["node", "end"]
    node: FlowNode | None = None
    # Logic blocks evaluated on the way, in order
    evaluated_blocks: list[str] = field(default_factory=list)

    @property
    def is_end(self) -> bool:
        return self.kind == "end"

    @property
    def node_id(self) -> str | None:
        return self.node.id if self.node else None


def ab_bucket(flow_id: str, block_id: str, user_id: str) -> float:
    """Map (flow, block, user) to a stable point in [0, 1)."""
    digest = hashlib.sha256(f"{flow_id}:{block_id}:{user_id}".encode()).digest()
    return int.from_bytes(digest[:AB_HASH_BYTES], "big") / AB_HASH_SPACE


def _missing(value: Any) -> bool:
    return value is None or value == "" or value == []


def compute_score(block: ScoreThresholdBlock, responses: Mapping[str, Any]) -> float:
    """Weighted sum of the block's response fields; absent fields contribute 0."""
    total = 0.0
    keys = list(dict.fromkeys([*block.weights, *block.option_scores]))
    for key in keys:
        weight = block.weights.get(key, 1.0)
        value = responses.get(key)
        if _missing(value):
            continue
        options = block.option_scores.get(key)
        if options is not None:
            answers = value if isinstance(value, list | tuple) else [value]
            points = sum(
                next((pts for opt, pts in options.items() if values_match(answer, opt)), 0.0)
                for answer in answers
            )
        else:
            points = as_number(value) or 0.0
        total += weight * points
    return total


class FlowRouter:
    """
    Resolves the next step of a traversal.

    Key principles:
    1. Plain nodes never branch - they follow the edge into their logic block,
       or their first connection when none leads into one
    2. Logic blocks are evaluated until a content node or the end is reached
    3. Inputs are never mutated, so the same inputs always give the same result
    """

    def __init__(self, flow: Flow) -> None:
        self._flow = flow
        self._index: dict[str, GraphElement] = {}
        for element in [*flow.nodes, *flow.logic_blocks]:
            self._index.setdefault(element.id, element)
        self._block_ids = {block.id for block in flow.logic_blocks}
        self._max_hops = len(self._index)

    @property
    def flow(self) -> Flow:
        return self._flow

    def first_step(
        self, responses: Mapping[str, Any] | None = None, *, user_id: str | None = None
    ) -> NextStepResult:
        """Resolve the entry point to the first content node."""
        entry = self._flow.entry_id
        if entry is None:
            return NextStepResult(kind="end")
        element = self._resolve(entry)
        if isinstance(element, FlowNode):
            return NextStepResult(kind="node", node=element)
        return self._walk(entry, entry, responses or {}, user_id)

    def next_step(
        self,
        current_id: str,
        responses: Mapping[str, Any],
        *,
        user_id: str | None = None,
    ) -> NextStepResult:
        """Compute the step after ``current_id`` given the responses so far."""
        element = self._resolve(current_id)
        if isinstance(element, FlowNode):
            target = self._advance_node(element)
        else:
            target = current_id
        return self._walk(current_id, target, responses, user_id)

    def _walk(
        self,
        start_id: str,
        target: str,
        responses: Mapping[str, Any],
        user_id: str | None,
    ) -> NextStepResult:
        evaluated: list[str] = []
        hops = 0
        while True:
            if target == END:
                return NextStepResult(kind="end", evaluated_blocks=evaluated)
            element = self._resolve(target)
            if isinstance(element, FlowNode):
                return NextStepResult(kind="node", node=element, evaluated_blocks=evaluated)
            hops += 1
            if hops > self._max_hops:
                raise RoutingLoopError(start_id, hops - 1, [start_id, *evaluated])
            evaluated.append(element.id)
            target = self._evaluate_block(element, responses, user_id)
            logger.debug("Block %s routed to %s", element.id, target)

    def _resolve(self, element_id: str) -> GraphElement:
        element = self._index.get(element_id)
        if element is None:
            raise UnknownNodeError(element_id)
        return element

    def _advance_node(self, node: FlowNode) -> str:
        target = routed_connection(node, self._block_ids)
        if len(node.connections) > 1:
            logger.warning(
                "Node %s in flow %s has %d connections; following %s",
                node.id,
                self._flow.id,
                len(node.connections),
                target,
            )
        return target

    def _evaluate_block(
        self, block: LogicBlock, responses: Mapping[str, Any], user_id: str | None
    ) -> str:
        if isinstance(block, IfElseBlock):
            return self._evaluate_if_else(block, responses)
        if isinstance(block, MultiPathBlock):
            return self._evaluate_multi_path(block, responses)
        if isinstance(block, ScoreThresholdBlock):
            return self._evaluate_score(block, responses)
        if isinstance(block, ABTestBlock):
            return self._evaluate_ab(block, user_id)
        raise UnresolvedBranchError(block.id, f"unsupported block type {block.type!r}")

    def _evaluate_if_else(self, block: IfElseBlock, responses: Mapping[str, Any]) -> str:
        passed = evaluate_condition(block.condition, responses)
        target = block.on_true if passed else block.on_false
        if target is None:
            raise UnresolvedBranchError(block.id, f"no branch configured for {passed}")
        return target

    def _evaluate_multi_path(self, block: MultiPathBlock, responses: Mapping[str, Any]) -> str:
        value = responses.get(block.discriminator)
        if not _missing(value):
            for case in block.cases:
                if values_match(value, case.value):
                    return case.target
        if block.default is None:
            raise NoDefaultBranchError(block.id, value)
        return block.default

    def _evaluate_score(self, block: ScoreThresholdBlock, responses: Mapping[str, Any]) -> str:
        if not block.buckets:
            raise UnresolvedBranchError(block.id, "no threshold buckets")
        score = compute_score(block, responses)
        ordered = sorted(block.buckets, key=lambda b: b.threshold)
        qualifying = [b for b in ordered if b.threshold <= score]
        if not qualifying:
            return ordered[0].target
        best = qualifying[-1].threshold
        return next(b.target for b in ordered if b.threshold == best)

    def _evaluate_ab(self, block: ABTestBlock, user_id: str | None) -> str:
        if not user_id:
            raise MissingIdentityError(block.id)
        arms = [arm for arm in block.arms if arm.weight > 0]
        if not arms:
            raise UnresolvedBranchError(block.id, "no arm with a positive weight")
        total = sum(arm.weight for arm in arms)
        point = ab_bucket(self._flow.id, block.id, user_id)
        cumulative = 0.0
        for arm in arms:
            cumulative += arm.weight / total
            if point < cumulative:
                return arm.target
        return arms[-1].target


def first_step(
    flow: Flow, responses: Mapping[str, Any] | None = None, *, user_id: str | None = None
) -> NextStepResult:
    """Convenience function to resolve a flow's first content node."""
    return FlowRouter(flow).first_step(responses, user_id=user_id)


def next_step(
    flow: Flow,
    current_id: str,
    responses: Mapping[str, Any],
    *,
    user_id: str | None = None,
) -> NextStepResult:
    """Convenience function to compute the next step in a flow."""
    return FlowRouter(flow).next_step(current_id, responses, user_id=user_id)
