"""Structural limits per membership tier."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .constants import (
    ACTIVE_MAX_FLOWS,
    ACTIVE_MAX_NODES_PER_FLOW,
    FREE_MAX_FLOWS,
    FREE_MAX_NODES_PER_FLOW,
)


class Tier(str, Enum):
    active = "active"
    free = "free"


@dataclass(frozen=True, slots=True)
class QuotaLimits:
    max_flows: int
    max_nodes_per_flow: int


_LIMITS: dict[Tier, QuotaLimits] = {
    Tier.active: QuotaLimits(max_flows=ACTIVE_MAX_FLOWS, max_nodes_per_flow=ACTIVE_MAX_NODES_PER_FLOW),
    Tier.free: QuotaLimits(max_flows=FREE_MAX_FLOWS, max_nodes_per_flow=FREE_MAX_NODES_PER_FLOW),
}


def tier_for(membership_active: bool) -> Tier:
    return Tier.active if membership_active else Tier.free


def limits_for(tier: Tier) -> QuotaLimits:
    """Return the flow and node limits for a tier."""
    return _LIMITS[Tier(tier)]
