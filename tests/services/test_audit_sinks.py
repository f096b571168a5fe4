"""
Tests for the audit sinks.

The SQLAlchemy sink is checked for append-only enforcement and hash chain
verification, including tampering that bypasses the ORM.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import sessionmaker

from payroll_kernel.exceptions import AuditChainBrokenError, AuditRecordError
from payroll_modules.runs.models import AuditEvent
from payroll_services.audit import (
    AuditEventModel,
    AuditSink,
    InMemoryAuditSink,
    SqlAlchemyAuditSink,
)


def _event(run_id, action="run_created", occurred_at=None, **kwargs):
    return AuditEvent(
        run_id=run_id,
        action=action,
        actor_id=kwargs.pop("actor_id", "preparer-1"),
        occurred_at=occurred_at,
        **kwargs,
    )


class TestInMemoryAuditSink:

    def test_implements_protocol(self, memory_audit):
        assert isinstance(memory_audit, AuditSink)

    def test_events_filtered_by_run(self, memory_audit, deterministic_clock):
        run_a, run_b = uuid4(), uuid4()
        memory_audit.record(_event(run_a, occurred_at=deterministic_clock.now()))
        memory_audit.record(_event(run_b, occurred_at=deterministic_clock.now()))
        memory_audit.record(_event(run_a, "calculate", occurred_at=deterministic_clock.now()))

        assert [e.action for e in memory_audit.events_for(run_a)] == ["run_created", "calculate"]
        assert len(memory_audit.events) == 3

    def test_fail_next_drops_one_event(self, memory_audit, deterministic_clock):
        run_id = uuid4()
        memory_audit.fail_next()

        with pytest.raises(AuditRecordError) as exc_info:
            memory_audit.record(_event(run_id, occurred_at=deterministic_clock.now()))
        memory_audit.record(_event(run_id, "calculate", occurred_at=deterministic_clock.now()))

        assert exc_info.value.action == "run_created"
        assert [e.action for e in memory_audit.events_for(run_id)] == ["calculate"]


class TestSqlAlchemyAuditSink:

    def _record_three(self, sink, clock):
        run_id = uuid4()
        start = clock.now()
        sink.record(_event(run_id, occurred_at=start, to_status="draft", after={"version": 1}))
        sink.record(_event(
            run_id, "calculate", occurred_at=start + timedelta(minutes=1),
            from_status="draft", to_status="calculated",
            before={"version": 1}, after={"version": 2, "totals": {"total_paye": "631250"}},
        ))
        sink.record(_event(
            run_id, "verify", occurred_at=start + timedelta(minutes=2),
            from_status="calculated", to_status="verified",
        ))
        return run_id

    def test_implements_protocol(self, sql_audit):
        assert isinstance(sql_audit, AuditSink)

    def test_record_and_read_back(self, sql_audit, deterministic_clock):
        run_id = self._record_three(sql_audit, deterministic_clock)

        events = sql_audit.events_for(run_id)

        assert [e.action for e in events] == ["run_created", "calculate", "verify"]
        assert events[1].after == {"version": 2, "totals": {"total_paye": "631250"}}
        assert events[1].occurred_at == deterministic_clock.now() + timedelta(minutes=1)
        assert events[1].occurred_at.tzinfo is not None
        assert sql_audit.count() == 3

    def test_chain_links_consecutive_rows(self, sql_audit, sqlite_session_factory, deterministic_clock):
        self._record_three(sql_audit, deterministic_clock)

        with sqlite_session_factory() as session:
            rows = session.execute(
                select(AuditEventModel).order_by(AuditEventModel.seq)
            ).scalars().all()

        assert [r.seq for r in rows] == [1, 2, 3]
        assert rows[0].prev_hash is None
        assert rows[1].prev_hash == rows[0].hash
        assert rows[2].prev_hash == rows[1].hash

    def test_intact_chain_verifies(self, sql_audit, deterministic_clock, captured_logs):
        self._record_three(sql_audit, deterministic_clock)

        assert sql_audit.verify_chain()
        valid = [r for r in captured_logs() if r["message"] == "audit_chain_valid"]
        assert valid[0]["event_count"] == 3

    def test_empty_chain_verifies(self, sql_audit):
        assert sql_audit.verify_chain()

    def test_payload_tampering_detected(self, sql_audit, sqlite_session_factory, deterministic_clock):
        self._record_three(sql_audit, deterministic_clock)
        with sqlite_session_factory() as session:
            session.execute(
                update(AuditEventModel.__table__)
                .where(AuditEventModel.__table__.c.seq == 2)
                .values(actor_id="someone-else")
            )
            session.commit()

        with pytest.raises(AuditChainBrokenError):
            sql_audit.verify_chain()

    def test_relinking_detected(self, sql_audit, sqlite_session_factory, deterministic_clock):
        self._record_three(sql_audit, deterministic_clock)
        with sqlite_session_factory() as session:
            session.execute(
                update(AuditEventModel.__table__)
                .where(AuditEventModel.__table__.c.seq == 3)
                .values(prev_hash=None)
            )
            session.commit()

        with pytest.raises(AuditChainBrokenError):
            sql_audit.verify_chain()

    def test_orm_update_rejected(self, sql_audit, sqlite_session_factory, deterministic_clock):
        self._record_three(sql_audit, deterministic_clock)

        with sqlite_session_factory() as session:
            row = session.execute(
                select(AuditEventModel).where(AuditEventModel.seq == 1)
            ).scalar_one()
            row.action = "rewritten"
            with pytest.raises(AuditRecordError):
                session.flush()
            session.rollback()

        assert sql_audit.verify_chain()

    def test_orm_delete_rejected(self, sql_audit, sqlite_session_factory, deterministic_clock):
        self._record_three(sql_audit, deterministic_clock)

        with sqlite_session_factory() as session:
            row = session.execute(
                select(AuditEventModel).where(AuditEventModel.seq == 1)
            ).scalar_one()
            session.delete(row)
            with pytest.raises(AuditRecordError):
                session.flush()
            session.rollback()

        assert sql_audit.count() == 3

    def test_database_failure_raises_record_error(self, deterministic_clock):
        # No tables created on this engine.
        engine = create_engine("sqlite://")
        sink = SqlAlchemyAuditSink(sessionmaker(bind=engine))

        with pytest.raises(AuditRecordError) as exc_info:
            sink.record(_event(uuid4(), occurred_at=deterministic_clock.now()))

        assert exc_info.value.action == "run_created"
        engine.dispose()

    def test_unhashable_payload_raises_record_error(self, sql_audit, deterministic_clock):
        run_id = uuid4()

        with pytest.raises(AuditRecordError) as exc_info:
            sql_audit.record(_event(
                run_id, occurred_at=deterministic_clock.now(), after={"payslip": object()},
            ))

        assert "unhashable payload" in exc_info.value.detail
        assert sql_audit.count() == 0
