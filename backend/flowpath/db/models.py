"""Database models for flows, memberships and traversal sessions.

Flow graphs are stored as a single JSON document (``definition``) holding
nodes, logic blocks and the entry id. Status lives in its own column so the
one-Live-flow-per-owner rule can be enforced by a partial unique index.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, func, text
from sqlalchemy import Enum as PgEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flowpath.db.base import Base
from flowpath.flow_core.ir import FlowStatus

JsonDocument = JSON().with_variant(JSONB(), "postgresql")

_LIVE_ONLY = text("status = 'Live'")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class FlowRecord(Base, TimestampMixin):
    __tablename__ = "flows"
    __table_args__ = (
        Index(
            "uq_flows_one_live_per_owner",
            "owner_id",
            unique=True,
            postgresql_where=_LIVE_ONLY,
            sqlite_where=_LIVE_ONLY,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    icon_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[FlowStatus] = mapped_column(
        PgEnum(
            FlowStatus,
            name="flow_status",
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=FlowStatus.draft,
    )
    # {"nodes": [...], "logic_blocks": [...], "entry": "..."}
    definition: Mapped[dict] = mapped_column(JsonDocument, nullable=False)


class MembershipRecord(Base, TimestampMixin):
    __tablename__ = "memberships"

    owner_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    plan_type: Mapped[str | None] = mapped_column(String(50), nullable=True)


class TraversalSessionRecord(Base, TimestampMixin):
    __tablename__ = "traversal_sessions"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    flow_id: Mapped[str] = mapped_column(
        ForeignKey("flows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(200), nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Serialized TraversalState (responses, path, timestamps)
    state: Mapped[dict] = mapped_column(JsonDocument, nullable=False)
