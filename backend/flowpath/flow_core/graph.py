"""In-memory editing of a flow graph with referential integrity checks."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .constants import DEFAULT_NODE_TITLE, END
from .errors import (
    DuplicateIdError,
    ReferentialIntegrityError,
    UnknownNodeError,
    UnknownTargetError,
)
from .ir import DisplayComponent, Flow, FlowNode, LogicBlock

logger = logging.getLogger(__name__)

GraphElement = FlowNode | LogicBlock


def outgoing_targets(element: GraphElement) -> list[str]:
    """Connections of a node or branches of a logic block."""
    if isinstance(element, FlowNode):
        return list(element.connections)
    return list(element.branches)


def routed_connection(node: FlowNode, block_ids: Iterable[str]) -> str:
    """The single edge a traversal follows out of ``node``.

    Plain nodes never branch: when a node has several connections, the one
    leading into a logic block is taken (the first such in connection order),
    otherwise the first connection. No connections means the flow ends here.
    """
    if not node.connections:
        return END
    blocks = set(block_ids)
    return next((c for c in node.connections if c in blocks), node.connections[0])


class FlowGraph:
    """Editable view over a ``Flow`` document.

    Nodes and logic blocks are indexed by id; edges are plain id references so
    cycles through logic blocks are just data. Mutations apply to the wrapped
    flow in place and are never persisted from here.
    """

    def __init__(self, flow: Flow) -> None:
        self._flow = flow
        self._index: dict[str, GraphElement] = {}
        for element in [*flow.nodes, *flow.logic_blocks]:
            if element.id in self._index or element.id == END:
                raise DuplicateIdError(element.id)
            self._index[element.id] = element

    @property
    def flow(self) -> Flow:
        return self._flow

    @property
    def entry_id(self) -> str | None:
        return self._flow.entry_id

    def get(self, element_id: str) -> GraphElement | None:
        return self._index.get(element_id)

    def __contains__(self, element_id: object) -> bool:
        return element_id in self._index

    def is_valid_target(self, target_id: str) -> bool:
        return target_id == END or target_id in self._index

    def referrers(self, target_id: str) -> list[str]:
        """Ids of every node or block that targets ``target_id``."""
        return [
            element_id
            for element_id, element in self._index.items()
            if element_id != target_id and target_id in outgoing_targets(element)
        ]

    # --- Nodes

    def create_node(
        self,
        title: str = DEFAULT_NODE_TITLE,
        components: Iterable[DisplayComponent] | None = None,
        *,
        node_id: str | None = None,
    ) -> FlowNode:
        node = FlowNode(title=title, components=list(components or []))
        if node_id is not None:
            node.id = node_id
        self._claim_id(node.id)
        self._flow.nodes.append(node)
        self._index[node.id] = node
        logger.debug("Created node %s in flow %s", node.id, self._flow.id)
        return node

    def remove_node(self, node_id: str, *, cascade: bool = False) -> FlowNode:
        element = self._index.get(node_id)
        if not isinstance(element, FlowNode):
            raise UnknownNodeError(node_id)
        self._release(node_id, cascade=cascade)
        self._flow.nodes = [n for n in self._flow.nodes if n.id != node_id]
        if self._flow.entry == node_id:
            self._flow.entry = None
        return element

    def add_connection(self, source_id: str, target_id: str) -> None:
        source = self._index.get(source_id)
        if not isinstance(source, FlowNode):
            raise UnknownNodeError(source_id)
        if not self.is_valid_target(target_id):
            raise UnknownTargetError(target_id)
        if target_id not in source.connections:
            source.connections.append(target_id)

    def remove_connection(self, source_id: str, target_id: str) -> None:
        source = self._index.get(source_id)
        if not isinstance(source, FlowNode):
            raise UnknownNodeError(source_id)
        source.drop_target(target_id)

    # --- Logic blocks

    def add_logic_block(self, block: LogicBlock) -> LogicBlock:
        self._claim_id(block.id)
        for target in block.branches:
            if target != block.id and not self.is_valid_target(target):
                raise UnknownTargetError(target)
        self._flow.logic_blocks.append(block)
        self._index[block.id] = block
        logger.debug("Added %s block %s to flow %s", block.type, block.id, self._flow.id)
        return block

    def remove_logic_block(self, block_id: str, *, cascade: bool = False) -> LogicBlock:
        element = self._index.get(block_id)
        if element is None or isinstance(element, FlowNode):
            raise UnknownNodeError(block_id)
        self._release(block_id, cascade=cascade)
        self._flow.logic_blocks = [b for b in self._flow.logic_blocks if b.id != block_id]
        return element

    # --- References

    def redirect(self, old_target: str, new_target: str) -> list[str]:
        """Point every reference to ``old_target`` at ``new_target``.

        Returns the ids of the elements that changed.
        """
        if not self.is_valid_target(new_target):
            raise UnknownTargetError(new_target)
        changed = self.referrers(old_target)
        for element_id in changed:
            self._index[element_id].replace_target(old_target, new_target)
        return changed

    def _claim_id(self, element_id: str) -> None:
        if element_id == END or element_id in self._index:
            raise DuplicateIdError(element_id)

    def _release(self, element_id: str, *, cascade: bool) -> None:
        referrers = self.referrers(element_id)
        if referrers and not cascade:
            raise ReferentialIntegrityError(element_id, referrers)
        for referrer_id in referrers:
            self._index[referrer_id].drop_target(element_id)
        if referrers:
            logger.info(
                "Dropped references to %s from %s in flow %s",
                element_id,
                ", ".join(referrers),
                self._flow.id,
            )
        del self._index[element_id]
