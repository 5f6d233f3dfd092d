from .constants import END
from .engine import FlowRouter, NextStepResult, ab_bucket, compute_score, first_step, next_step
from .graph import FlowGraph
from .guards import DEFAULT_GUARDS, evaluate_condition, parse_condition
from .ir import (
    ABArm,
    ABTestBlock,
    Condition,
    DisplayComponent,
    Flow,
    FlowNode,
    FlowStatus,
    IfElseBlock,
    LogicBlock,
    MultiPathBlock,
    PathCase,
    ScoreBucket,
    ScoreThresholdBlock,
)
from .quota import QuotaLimits, Tier, limits_for, tier_for
from .state import PathStep, TraversalState
from .validator import ValidationResult, validate

__all__ = [
    "DEFAULT_GUARDS",
    "END",
    "ABArm",
    "ABTestBlock",
    "Condition",
    "DisplayComponent",
    "Flow",
    "FlowGraph",
    "FlowNode",
    "FlowRouter",
    "FlowStatus",
    "IfElseBlock",
    "LogicBlock",
    "MultiPathBlock",
    "NextStepResult",
    "PathCase",
    "PathStep",
    "QuotaLimits",
    "ScoreBucket",
    "ScoreThresholdBlock",
    "Tier",
    "TraversalState",
    "ValidationResult",
    "ab_bucket",
    "compute_score",
    "evaluate_condition",
    "first_step",
    "limits_for",
    "next_step",
    "parse_condition",
    "tier_for",
    "validate",
]
