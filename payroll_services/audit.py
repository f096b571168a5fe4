"""
payroll_services.audit -- audit collaborators for lifecycle events.

Responsibility:
    Persist the ``AuditEvent`` descriptions emitted by the payroll run
    lifecycle.  ``InMemoryAuditSink`` keeps them in a list;
    ``SqlAlchemyAuditSink`` appends them to the ``payroll_audit_events``
    table as a SHA-256 hash chain.

Architecture position:
    Services layer.  Owns the audit ORM model (registered on the kernel
    ``Base`` so ``create_tables`` picks it up).

Invariants enforced:
    - Audit rows are append-only; UPDATE and DELETE through the ORM raise.
    - hash = H(run_id | action | payload_hash | prev_hash); prev_hash is
      None only for the genesis row.
    - seq is unique and strictly increasing.

Failure modes:
    - AuditRecordError when an event cannot be appended.  The lifecycle
      downgrades it to a warning; the business change stays committed.
    - AuditChainBrokenError from ``verify_chain`` on any tampered row.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from payroll_kernel.db.base import Base
from payroll_kernel.exceptions import AuditChainBrokenError, AuditRecordError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.utils.hashing import hash_audit_event, hash_payload
from payroll_modules.runs.models import AuditEvent

logger = get_logger("services.audit")


@runtime_checkable
class AuditSink(Protocol):
    """Audit collaborator: fire-and-forget from the lifecycle's viewpoint."""

    def record(self, audit_event: AuditEvent) -> None: ...

    def events_for(self, run_id: UUID) -> list[AuditEvent]: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryAuditSink:
    """List-backed sink with a fault-injection hook for tests."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()
        self._failures = 0

    def fail_next(self, times: int = 1) -> None:
        with self._lock:
            self._failures = times

    def record(self, audit_event: AuditEvent) -> None:
        with self._lock:
            if self._failures > 0:
                self._failures -= 1
                raise AuditRecordError(str(audit_event.run_id), audit_event.action, "injected failure")
            self._events.append(audit_event)

    def events_for(self, run_id: UUID) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self._events if e.run_id == run_id]

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)


# ---------------------------------------------------------------------------
# SQLAlchemy, hash-chained
# ---------------------------------------------------------------------------


class AuditEventModel(Base):
    """
    Append-only audit row with hash chain linkage.

    Guarantees:
        - seq is unique and monotonically increasing.
        - hash = H(run_id | action | payload_hash | prev_hash).
    Non-goals:
        - Does not check hash correctness at INSERT time; the sink does.
    """

    __tablename__ = "payroll_audit_events"
    __table_args__ = (
        Index("idx_payroll_audit_run", "run_id"),
        Index("idx_payroll_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    run_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def to_dto(self) -> AuditEvent:
        occurred_at = self.occurred_at
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=UTC)
        return AuditEvent(
            id=self.id,
            run_id=self.run_id,
            action=self.action,
            actor_id=self.actor_id,
            occurred_at=occurred_at,
            from_status=self.from_status,
            to_status=self.to_status,
            before=self.before,
            after=self.after,
        )


@event.listens_for(AuditEventModel, "before_update")
def _reject_audit_update(mapper, connection, target) -> None:
    raise AuditRecordError(str(target.run_id), target.action, "audit events are append-only")


@event.listens_for(AuditEventModel, "before_delete")
def _reject_audit_delete(mapper, connection, target) -> None:
    raise AuditRecordError(str(target.run_id), target.action, "audit events are append-only")


def audit_payload(audit_event: AuditEvent) -> dict[str, Any]:
    """The hashed content of an event."""
    return {
        "event_id": str(audit_event.id),
        "run_id": str(audit_event.run_id),
        "action": audit_event.action,
        "actor_id": audit_event.actor_id,
        "from_status": audit_event.from_status,
        "to_status": audit_event.to_status,
        "before": audit_event.before,
        "after": audit_event.after,
    }


class SqlAlchemyAuditSink:
    """
    Hash-chained audit table.

    Each ``record`` runs in its own transaction so an audit outage never
    rolls back the lifecycle change it describes.  ``seq`` is allocated as
    max + 1 under the sink lock; the unique constraint rejects a racing
    writer in another process.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def record(self, audit_event: AuditEvent) -> None:
        try:
            payload_hash = hash_payload(audit_payload(audit_event))
        except (TypeError, ValueError) as exc:
            raise AuditRecordError(
                str(audit_event.run_id), audit_event.action, f"unhashable payload: {exc}"
            ) from exc
        with self._lock:
            session = self._session_factory()
            try:
                last = session.execute(
                    select(AuditEventModel).order_by(AuditEventModel.seq.desc()).limit(1)
                ).scalar_one_or_none()
                prev_hash = last.hash if last is not None else None
                seq = (last.seq if last is not None else 0) + 1

                row = AuditEventModel(
                    id=audit_event.id,
                    seq=seq,
                    run_id=audit_event.run_id,
                    action=audit_event.action,
                    actor_id=audit_event.actor_id,
                    from_status=audit_event.from_status,
                    to_status=audit_event.to_status,
                    before=audit_event.before,
                    after=audit_event.after,
                    occurred_at=audit_event.occurred_at,
                    payload_hash=payload_hash,
                    prev_hash=prev_hash,
                    hash=hash_audit_event(
                        str(audit_event.run_id), audit_event.action, payload_hash, prev_hash
                    ),
                )
                session.add(row)
                session.commit()
            except (SQLAlchemyError, OSError, TypeError, ValueError) as exc:
                session.rollback()
                raise AuditRecordError(
                    str(audit_event.run_id), audit_event.action, str(exc)
                ) from exc
            finally:
                session.close()

        logger.info("audit_event_created", extra={
            "run_id": str(audit_event.run_id),
            "action": audit_event.action,
            "seq": seq,
        })

    def events_for(self, run_id: UUID) -> list[AuditEvent]:
        with self._session_factory() as session:
            rows = session.execute(
                select(AuditEventModel)
                .where(AuditEventModel.run_id == run_id)
                .order_by(AuditEventModel.seq)
            ).scalars().all()
            return [row.to_dto() for row in rows]

    def count(self) -> int:
        with self._session_factory() as session:
            return session.execute(select(func.count(AuditEventModel.id))).scalar_one()

    def verify_chain(self) -> bool:
        """
        Recompute every hash and link in sequence order.

        Raises:
            AuditChainBrokenError: at the first row that does not verify.
        """
        with self._session_factory() as session:
            rows = session.execute(
                select(AuditEventModel).order_by(AuditEventModel.seq)
            ).scalars().all()

            prev_hash: str | None = None
            for row in rows:
                if row.prev_hash != prev_hash:
                    logger.critical("audit_chain_broken", extra={"seq": row.seq})
                    raise AuditChainBrokenError(str(row.id), prev_hash or "None", row.prev_hash or "None")

                payload_hash = hash_payload(audit_payload(row.to_dto()))
                expected = hash_audit_event(str(row.run_id), row.action, payload_hash, row.prev_hash)
                if payload_hash != row.payload_hash or expected != row.hash:
                    logger.critical("audit_chain_broken", extra={"seq": row.seq})
                    raise AuditChainBrokenError(str(row.id), expected, row.hash)
                prev_hash = row.hash

        logger.info("audit_chain_valid", extra={"event_count": len(rows)})
        return True
