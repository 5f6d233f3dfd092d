from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from .constants import DEFAULT_NODE_TITLE

ComponentType = Literal[
    "video-step",
    "text-instruction",
    "header",
    "multiple-choice",
    "checkbox-multi",
    "short-answer",
    "long-answer",
    "scale-slider",
    "file-upload",
    "link-button",
    "image",
    "text-input",
    "preference-poll",
    "role-selector",
    "commitment-assessment",
    "feature-rating",
    "kpi-input",
    "communication-style",
    "privacy-consent",
    "video-embed",
]


class FlowStatus(str, Enum):
    """Lifecycle status of a flow."""

    draft = "Draft"
    live = "Live"
    archived = "Archived"


class DisplayComponent(BaseModel):
    """A piece of content rendered on a node's page."""

    id: str = Field(default_factory=lambda: f"component-{uuid4().hex[:12]}")
    type: ComponentType
    config: dict[str, Any] = Field(default_factory=dict)


class FlowNode(BaseModel):
    """A content step shown to the end user."""

    id: str = Field(default_factory=lambda: f"node-{uuid4().hex[:12]}")
    title: str = DEFAULT_NODE_TITLE
    components: list[DisplayComponent] = Field(default_factory=list)
    # Outgoing targets: node ids, logic block ids or the end sentinel
    connections: list[str] = Field(default_factory=list)

    def replace_target(self, old: str, new: str) -> None:
        self.connections = [new if c == old else c for c in self.connections]

    def drop_target(self, target: str) -> None:
        self.connections = [c for c in self.connections if c != target]


class Condition(BaseModel):
    """Reference to a condition predicate with arguments."""

    fn: str
    args: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None


class PathCase(BaseModel):
    value: str
    target: str


class ScoreBucket(BaseModel):
    threshold: float
    target: str


class ABArm(BaseModel):
    target: str
    weight: float = 1.0


class BaseLogicBlock(BaseModel):
    """Fields shared by every logic block variant."""

    id: str = Field(default_factory=lambda: f"logic-{uuid4().hex[:12]}")
    type: Literal["if-else", "multi-path", "score-threshold", "a-b-test"]
    label: str | None = None

    @property
    def branches(self) -> list[str]:
        """Ordered outgoing targets of this block."""
        raise NotImplementedError

    def replace_target(self, old: str, new: str) -> None:
        raise NotImplementedError

    def drop_target(self, target: str) -> None:
        raise NotImplementedError


class IfElseBlock(BaseLogicBlock):
    """Two-way branch on a boolean condition."""

    type: Literal["if-else"] = "if-else"
    # Structured predicate or string shorthand such as "plan == pro"
    condition: Condition | str
    on_true: str | None = None
    on_false: str | None = None

    @property
    def branches(self) -> list[str]:
        return [t for t in (self.on_true, self.on_false) if t is not None]

    def replace_target(self, old: str, new: str) -> None:
        if self.on_true == old:
            self.on_true = new
        if self.on_false == old:
            self.on_false = new

    def drop_target(self, target: str) -> None:
        if self.on_true == target:
            self.on_true = None
        if self.on_false == target:
            self.on_false = None


class MultiPathBlock(BaseLogicBlock):
    """N-way branch on the value of one response field."""

    type: Literal["multi-path"] = "multi-path"
    discriminator: str
    cases: list[PathCase] = Field(default_factory=list)
    default: str | None = None

    @property
    def branches(self) -> list[str]:
        targets = [c.target for c in self.cases]
        if self.default is not None:
            targets.append(self.default)
        return targets

    def replace_target(self, old: str, new: str) -> None:
        for case in self.cases:
            if case.target == old:
                case.target = new
        if self.default == old:
            self.default = new

    def drop_target(self, target: str) -> None:
        self.cases = [c for c in self.cases if c.target != target]
        if self.default == target:
            self.default = None


class ScoreThresholdBlock(BaseLogicBlock):
    """Branch on a weighted score computed from several responses."""

    type: Literal["score-threshold"] = "score-threshold"
    # Response key -> multiplier applied to the numeric answer
    weights: dict[str, float] = Field(default_factory=dict)
    # Response key -> {answer -> points}, for choice answers that are not numbers
    option_scores: dict[str, dict[str, float]] = Field(default_factory=dict)
    buckets: list[ScoreBucket] = Field(default_factory=list)

    @property
    def branches(self) -> list[str]:
        return [b.target for b in self.buckets]

    def replace_target(self, old: str, new: str) -> None:
        for bucket in self.buckets:
            if bucket.target == old:
                bucket.target = new

    def drop_target(self, target: str) -> None:
        self.buckets = [b for b in self.buckets if b.target != target]


class ABTestBlock(BaseLogicBlock):
    """Deterministic weighted split keyed on the end user's identity."""

    type: Literal["a-b-test"] = "a-b-test"
    arms: list[ABArm] = Field(default_factory=list)

    @property
    def branches(self) -> list[str]:
        return [a.target for a in self.arms]

    def replace_target(self, old: str, new: str) -> None:
        for arm in self.arms:
            if arm.target == old:
                arm.target = new

    def drop_target(self, target: str) -> None:
        self.arms = [a for a in self.arms if a.target != target]


LogicBlock = Annotated[
    IfElseBlock | MultiPathBlock | ScoreThresholdBlock | ABTestBlock,
    Field(discriminator="type"),
]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Flow(BaseModel):
    """Complete onboarding flow document."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    title: str
    created_at: datetime = Field(default_factory=_utcnow)
    status: FlowStatus = FlowStatus.draft
    nodes: list[FlowNode] = Field(default_factory=list)
    logic_blocks: list[LogicBlock] = Field(default_factory=list)
    # Explicit entry point; the first node when unset
    entry: str | None = None
    icon_url: str | None = None

    @property
    def entry_id(self) -> str | None:
        if self.entry:
            return self.entry
        return self.nodes[0].id if self.nodes else None

    def node_by_id(self, node_id: str) -> FlowNode | None:
        """Get node by ID."""
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def block_by_id(self, block_id: str) -> LogicBlock | None:
        """Get logic block by ID."""
        for b in self.logic_blocks:
            if b.id == block_id:
                return b
        return None
