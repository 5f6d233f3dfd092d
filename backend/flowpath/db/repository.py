from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from flowpath.core.stores import Membership
from flowpath.db.models import FlowRecord, MembershipRecord, TraversalSessionRecord
from flowpath.db.session import SessionFactory, db_session, db_transaction
from flowpath.flow_core.errors import (
    FlowNotFoundError,
    InvalidTransitionError,
    PersistenceError,
)
from flowpath.flow_core.ir import Flow, FlowStatus
from flowpath.flow_core.state import TraversalState

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


# --- Conversions


def flow_to_definition(flow: Flow) -> dict:
    return flow.model_dump(mode="json", include={"nodes", "logic_blocks", "entry"})


def flow_from_record(record: FlowRecord) -> Flow:
    return Flow.model_validate(
        {
            **(record.definition or {}),
            "id": record.id,
            "owner_id": record.owner_id,
            "title": record.title,
            "icon_url": record.icon_url,
            "status": record.status,
            "created_at": _aware(record.created_at),
        }
    )


def membership_from_record(record: MembershipRecord) -> Membership:
    return Membership(
        owner_id=record.owner_id,
        active=record.active,
        payment_id=record.payment_id,
        plan_type=record.plan_type,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


# --- Flow Repository Functions ---


def get_flow_record(session: Session, flow_id: str) -> FlowRecord | None:
    return session.execute(select(FlowRecord).where(FlowRecord.id == flow_id)).scalar_one_or_none()


def get_flow_records_by_owner(session: Session, owner_id: str) -> Sequence[FlowRecord]:
    return (
        session.execute(
            select(FlowRecord)
            .where(FlowRecord.owner_id == owner_id)
            .order_by(FlowRecord.created_at, FlowRecord.id)
        )
        .scalars()
        .all()
    )


def upsert_flow_record(session: Session, flow: Flow) -> FlowRecord:
    """Insert a new Draft flow or update title, icon and graph of an existing one.

    Status is never touched here.
    """
    record = get_flow_record(session, flow.id)
    if record is None:
        record = FlowRecord(
            id=flow.id,
            owner_id=flow.owner_id,
            title=flow.title,
            icon_url=flow.icon_url,
            status=FlowStatus.draft,
            definition=flow_to_definition(flow),
            created_at=flow.created_at,
        )
        session.add(record)
    else:
        record.title = flow.title
        record.icon_url = flow.icon_url
        record.definition = flow_to_definition(flow)
    session.flush()
    return record


def set_live_flow(session: Session, flow_id: str, owner_id: str) -> None:
    """Demote the owner's Live flows, then promote ``flow_id``.

    Both statements run in the caller's transaction; the partial unique index
    rejects a concurrent promotion that commits second. An Archived flow is never
    promoted, even when it was archived after the caller last read it.
    """
    record = get_flow_record(session, flow_id)
    if record is None or record.owner_id != owner_id:
        raise FlowNotFoundError(flow_id)
    session.execute(
        update(FlowRecord)
        .where(
            FlowRecord.owner_id == owner_id,
            FlowRecord.status == FlowStatus.live,
            FlowRecord.id != flow_id,
        )
        .values(status=FlowStatus.draft)
        .execution_options(synchronize_session=False)
    )
    promoted = session.execute(
        update(FlowRecord)
        .where(FlowRecord.id == flow_id, FlowRecord.status != FlowStatus.archived)
        .values(status=FlowStatus.live)
        .execution_options(synchronize_session=False)
    )
    if promoted.rowcount == 0:
        raise InvalidTransitionError(flow_id, FlowStatus.archived.value, FlowStatus.live.value)


def set_flow_status(session: Session, flow_id: str, status: FlowStatus) -> None:
    result = session.execute(
        update(FlowRecord)
        .where(FlowRecord.id == flow_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise FlowNotFoundError(flow_id)


def delete_flow_record(session: Session, flow_id: str) -> bool:
    session.execute(delete(TraversalSessionRecord).where(TraversalSessionRecord.flow_id == flow_id))
    result = session.execute(delete(FlowRecord).where(FlowRecord.id == flow_id))
    return result.rowcount > 0


# --- Membership Repository Functions ---


def get_membership_record(session: Session, owner_id: str) -> MembershipRecord | None:
    return session.get(MembershipRecord, owner_id)


def upsert_membership_record(session: Session, membership: Membership) -> MembershipRecord:
    record = get_membership_record(session, membership.owner_id)
    if record is None:
        record = MembershipRecord(owner_id=membership.owner_id, created_at=membership.created_at)
        session.add(record)
    record.active = membership.active
    record.payment_id = membership.payment_id
    record.plan_type = membership.plan_type
    record.updated_at = datetime.now(UTC)
    session.flush()
    return record


# --- Traversal Session Repository Functions ---


def get_session_record(session: Session, session_id: str) -> TraversalSessionRecord | None:
    return session.get(TraversalSessionRecord, session_id)


def upsert_session_record(session: Session, state: TraversalState) -> TraversalSessionRecord:
    record = get_session_record(session, state.session_id)
    if record is None:
        record = TraversalSessionRecord(
            session_id=state.session_id,
            flow_id=state.flow_id,
            user_id=state.user_id,
        )
        session.add(record)
    record.is_complete = state.is_complete
    record.state = state.to_dict()
    session.flush()
    return record


def get_session_records_by_flow(session: Session, flow_id: str) -> Sequence[TraversalSessionRecord]:
    return (
        session.execute(
            select(TraversalSessionRecord)
            .where(TraversalSessionRecord.flow_id == flow_id)
            .order_by(TraversalSessionRecord.created_at)
        )
        .scalars()
        .all()
    )


def has_completed_session_record(session: Session, flow_id: str, user_id: str) -> bool:
    stmt = select(TraversalSessionRecord.session_id).where(
        TraversalSessionRecord.flow_id == flow_id,
        TraversalSessionRecord.user_id == user_id,
        TraversalSessionRecord.is_complete.is_(True),
    )
    return session.execute(stmt.limit(1)).first() is not None


def delete_completed_session_records(session: Session, flow_id: str, user_id: str) -> int:
    result = session.execute(
        delete(TraversalSessionRecord).where(
            TraversalSessionRecord.flow_id == flow_id,
            TraversalSessionRecord.user_id == user_id,
            TraversalSessionRecord.is_complete.is_(True),
        )
    )
    return result.rowcount or 0


# --- Store adapters


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Database error while trying to %s: %s", action, exc)
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


class SqlAlchemyFlowStore:
    """``FlowStore`` backed by the ``flows`` table."""

    def __init__(self, factory: SessionFactory | None = None) -> None:
        self._factory = factory

    def load_flow(self, flow_id: str) -> Flow | None:
        with _translate_errors(f"load flow {flow_id}"), db_session(self._factory) as session:
            record = get_flow_record(session, flow_id)
            return flow_from_record(record) if record else None

    def save_flow(self, flow: Flow) -> None:
        with _translate_errors(f"save flow {flow.id}"), db_transaction(self._factory) as session:
            upsert_flow_record(session, flow)

    def list_flows(self, owner_id: str) -> list[Flow]:
        with _translate_errors(f"list flows of {owner_id}"), db_session(self._factory) as session:
            return [flow_from_record(r) for r in get_flow_records_by_owner(session, owner_id)]

    def set_active(self, flow_id: str, owner_id: str) -> None:
        with _translate_errors(f"activate flow {flow_id}"), db_transaction(self._factory) as session:
            set_live_flow(session, flow_id, owner_id)

    def set_status(self, flow_id: str, status: FlowStatus) -> None:
        if status == FlowStatus.live:
            raise ValueError("Use set_active to make a flow live")
        with _translate_errors(f"set status of {flow_id}"), db_transaction(self._factory) as session:
            set_flow_status(session, flow_id, status)

    def delete_flow(self, flow_id: str) -> bool:
        with _translate_errors(f"delete flow {flow_id}"), db_transaction(self._factory) as session:
            return delete_flow_record(session, flow_id)


class SqlAlchemyMembershipStore:
    def __init__(self, factory: SessionFactory | None = None) -> None:
        self._factory = factory

    def get_membership(self, owner_id: str) -> Membership | None:
        with _translate_errors(f"load membership {owner_id}"), db_session(self._factory) as session:
            record = get_membership_record(session, owner_id)
            return membership_from_record(record) if record else None

    def upsert_membership(self, membership: Membership) -> Membership:
        with (
            _translate_errors(f"save membership {membership.owner_id}"),
            db_transaction(self._factory) as session,
        ):
            return membership_from_record(upsert_membership_record(session, membership))


class SqlAlchemySessionStore:
    def __init__(self, factory: SessionFactory | None = None) -> None:
        self._factory = factory

    def load_session(self, session_id: str) -> TraversalState | None:
        with _translate_errors(f"load session {session_id}"), db_session(self._factory) as session:
            record = get_session_record(session, session_id)
            return TraversalState.from_dict(record.state) if record else None

    def save_session(self, state: TraversalState) -> None:
        with (
            _translate_errors(f"save session {state.session_id}"),
            db_transaction(self._factory) as session,
        ):
            upsert_session_record(session, state)

    def list_sessions(self, flow_id: str) -> list[TraversalState]:
        with _translate_errors(f"list sessions of {flow_id}"), db_session(self._factory) as session:
            return [
                TraversalState.from_dict(r.state) for r in get_session_records_by_flow(session, flow_id)
            ]

    def has_completed(self, flow_id: str, user_id: str) -> bool:
        with (
            _translate_errors(f"check completion of {flow_id} by {user_id}"),
            db_session(self._factory) as session,
        ):
            return has_completed_session_record(session, flow_id, user_id)

    def delete_completed(self, flow_id: str, user_id: str) -> int:
        with (
            _translate_errors(f"delete completed sessions of {flow_id} for {user_id}"),
            db_transaction(self._factory) as session,
        ):
            return delete_completed_session_records(session, flow_id, user_id)
