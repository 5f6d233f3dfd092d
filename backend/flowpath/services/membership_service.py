from __future__ import annotations

import logging

from flowpath.core.stores import Membership, MembershipStore
from flowpath.flow_core.quota import QuotaLimits, Tier, limits_for, tier_for

logger = logging.getLogger(__name__)


class MembershipService:
    """Resolves an owner's tier; memberships are created lazily as inactive."""

    def __init__(self, store: MembershipStore) -> None:
        self.store = store

    def get_membership(self, owner_id: str) -> Membership:
        membership = self.store.get_membership(owner_id)
        if membership is None:
            membership = self.store.upsert_membership(Membership(owner_id=owner_id))
            logger.info("Created inactive membership for owner %s", owner_id)
        return membership

    def get_tier(self, owner_id: str) -> Tier:
        return tier_for(self.get_membership(owner_id).active)

    def get_limits(self, owner_id: str) -> QuotaLimits:
        return limits_for(self.get_tier(owner_id))

    def set_membership(
        self,
        owner_id: str,
        *,
        active: bool,
        payment_id: str | None = None,
        plan_type: str | None = None,
    ) -> Membership:
        """Record a tier change reported by the payment collaborator."""
        current = self.get_membership(owner_id)
        current.active = active
        if payment_id is not None:
            current.payment_id = payment_id
        if plan_type is not None:
            current.plan_type = plan_type
        updated = self.store.upsert_membership(current)
        logger.info(
            "Membership for owner %s set to %s (plan=%s)",
            owner_id,
            "active" if active else "inactive",
            plan_type,
        )
        return updated
