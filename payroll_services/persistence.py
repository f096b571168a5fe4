"""
payroll_services.persistence -- payroll run repositories.

Responsibility:
    One persistence interface (``RunRepository``) for runs, their
    compensation inputs and their computed lines, with two
    implementations: an in-memory store for tests and single-process use,
    and a SQLAlchemy store over the ``payroll_modules.runs.orm`` tables.
    The lifecycle service never knows which one it is talking to.

Architecture position:
    Services layer.  May import payroll_kernel and payroll_modules models
    and ORM.

Invariants enforced:
    - ``atomic()`` is all-or-nothing: lines, totals and status written
      inside one unit of work are either all visible afterwards or none are.
    - ``save_run`` compares the stored version with ``expected_version``
      and raises ``ConcurrentModificationError`` on mismatch.
    - Lines and inputs are replaced wholesale, never patched.
    - Stored rows re-enter the domain through the strict DTO schema.

Failure modes:
    - RunNotFoundError for unknown run ids.
    - StorageError for every other collaborator failure (database errors,
      corrupt rows, injected faults).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidInputError,
    RunNotFoundError,
    StorageError,
)
from payroll_kernel.logging_config import get_logger
from payroll_modules.runs.models import EmployeeCompensationInput, PayrollLine, PayrollRun
from payroll_modules.runs.orm import CompensationInputModel, PayrollLineModel, PayrollRunModel

logger = get_logger("services.persistence")


@runtime_checkable
class RunRepository(Protocol):
    """Persistence collaborator for payroll runs."""

    def load_run(self, run_id: UUID) -> PayrollRun: ...

    def save_run(self, run: PayrollRun, expected_version: int | None) -> None: ...

    def load_lines(self, run_id: UUID) -> tuple[PayrollLine, ...]: ...

    def save_lines(self, run_id: UUID, lines: Sequence[PayrollLine]) -> None: ...

    def load_inputs(self, run_id: UUID) -> tuple[EmployeeCompensationInput, ...]: ...

    def save_inputs(self, run_id: UUID, inputs: Sequence[EmployeeCompensationInput]) -> None: ...

    def atomic(self): ...

    def list_runs(self) -> list[PayrollRun]: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryRunRepository:
    """
    Dict-backed repository.

    A unit of work snapshots the three stores on entry and restores them if
    the block raises.  The store lock is held for the whole unit of work so
    a rollback never discards another thread's committed writes.
    """

    def __init__(self) -> None:
        self._runs: dict[UUID, PayrollRun] = {}
        self._lines: dict[UUID, tuple[PayrollLine, ...]] = {}
        self._inputs: dict[UUID, tuple[EmployeeCompensationInput, ...]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._faults: dict[str, int] = {}

    # -- fault injection (tests) ------------------------------------------

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise StorageError."""
        with self._lock:
            self._faults[operation] = times

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._faults.get(operation, 0)
        if remaining > 0:
            self._faults[operation] = remaining - 1
            raise StorageError(operation, "injected failure")

    # -- unit of work -----------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = (dict(self._runs), dict(self._lines), dict(self._inputs))
            self._depth = 1
            try:
                yield
            except BaseException:
                self._runs, self._lines, self._inputs = snapshot
                logger.warning("unit_of_work_rolled_back", extra={"store": "memory"})
                raise
            finally:
                self._depth = 0

    # -- runs -------------------------------------------------------------

    def load_run(self, run_id: UUID) -> PayrollRun:
        with self._lock:
            self._maybe_fail("load_run")
            run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def save_run(self, run: PayrollRun, expected_version: int | None) -> None:
        with self._lock:
            self._maybe_fail("save_run")
            stored = self._runs.get(run.id)
            if expected_version is None:
                if stored is not None:
                    raise StorageError("save_run", f"payroll run {run.id} already exists")
            elif stored is None:
                raise RunNotFoundError(str(run.id))
            elif stored.version != expected_version:
                raise ConcurrentModificationError(str(run.id), expected_version, stored.version)
            self._runs[run.id] = run

    def list_runs(self) -> list[PayrollRun]:
        with self._lock:
            self._maybe_fail("list_runs")
            return list(self._runs.values())

    # -- lines ------------------------------------------------------------

    def load_lines(self, run_id: UUID) -> tuple[PayrollLine, ...]:
        with self._lock:
            self._maybe_fail("load_lines")
            return self._lines.get(run_id, ())

    def save_lines(self, run_id: UUID, lines: Sequence[PayrollLine]) -> None:
        with self._lock:
            self._maybe_fail("save_lines")
            self._lines[run_id] = tuple(lines)

    # -- inputs -----------------------------------------------------------

    def load_inputs(self, run_id: UUID) -> tuple[EmployeeCompensationInput, ...]:
        with self._lock:
            self._maybe_fail("load_inputs")
            return self._inputs.get(run_id, ())

    def save_inputs(self, run_id: UUID, inputs: Sequence[EmployeeCompensationInput]) -> None:
        with self._lock:
            self._maybe_fail("save_inputs")
            self._inputs[run_id] = tuple(inputs)


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


class SqlAlchemyRunRepository:
    """
    Repository over the payroll ORM tables.

    ``atomic()`` opens one session per thread and commits it on exit;
    operations called outside a unit of work run in their own short
    transaction.  The version check is a conditional UPDATE, so it also
    holds across processes.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._local = threading.local()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return

        session = self._session_factory()
        self._local.session = session
        try:
            yield
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("unit_of_work_rolled_back", extra={"store": "sql"}, exc_info=True)
            raise StorageError("commit", str(exc)) from exc
        except BaseException:
            session.rollback()
            logger.warning("unit_of_work_rolled_back", extra={"store": "sql"})
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        with self.atomic():
            try:
                yield self._local.session
            except SQLAlchemyError as exc:
                raise StorageError(operation, str(exc)) from exc
            except InvalidInputError as exc:
                raise StorageError(operation, f"stored row failed validation: {exc}") from exc

    # -- runs -------------------------------------------------------------

    def load_run(self, run_id: UUID) -> PayrollRun:
        with self._session("load_run") as session:
            model = session.execute(
                select(PayrollRunModel)
                .where(PayrollRunModel.id == run_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if model is None:
                raise RunNotFoundError(str(run_id))
            return model.to_dto()

    def save_run(self, run: PayrollRun, expected_version: int | None) -> None:
        with self._session("save_run") as session:
            if expected_version is None:
                if session.get(PayrollRunModel, run.id) is not None:
                    raise StorageError("save_run", f"payroll run {run.id} already exists")
                session.add(PayrollRunModel.from_dto(run))
                session.flush()
                return

            result = session.execute(
                update(PayrollRunModel)
                .where(PayrollRunModel.id == run.id)
                .where(PayrollRunModel.version == expected_version)
                .values(**PayrollRunModel.column_values(run))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            actual = session.execute(
                select(PayrollRunModel.version).where(PayrollRunModel.id == run.id)
            ).scalar_one_or_none()
            if actual is None:
                raise RunNotFoundError(str(run.id))
            raise ConcurrentModificationError(str(run.id), expected_version, actual)

    def list_runs(self) -> list[PayrollRun]:
        with self._session("list_runs") as session:
            models = session.execute(
                select(PayrollRunModel)
                .order_by(PayrollRunModel.pay_period_start.desc())
                .execution_options(populate_existing=True)
            ).scalars().all()
            return [m.to_dto() for m in models]

    # -- lines ------------------------------------------------------------

    def load_lines(self, run_id: UUID) -> tuple[PayrollLine, ...]:
        with self._session("load_lines") as session:
            models = session.execute(
                select(PayrollLineModel)
                .where(PayrollLineModel.run_id == run_id)
                .order_by(PayrollLineModel.position)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)

    def save_lines(self, run_id: UUID, lines: Sequence[PayrollLine]) -> None:
        with self._session("save_lines") as session:
            session.execute(delete(PayrollLineModel).where(PayrollLineModel.run_id == run_id))
            session.add_all(_positioned(PayrollLineModel, run_id, lines))
            session.flush()

    # -- inputs -----------------------------------------------------------

    def load_inputs(self, run_id: UUID) -> tuple[EmployeeCompensationInput, ...]:
        with self._session("load_inputs") as session:
            models = session.execute(
                select(CompensationInputModel)
                .where(CompensationInputModel.run_id == run_id)
                .order_by(CompensationInputModel.position)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)

    def save_inputs(self, run_id: UUID, inputs: Sequence[EmployeeCompensationInput]) -> None:
        with self._session("save_inputs") as session:
            session.execute(
                delete(CompensationInputModel).where(CompensationInputModel.run_id == run_id)
            )
            session.add_all(_positioned(CompensationInputModel, run_id, inputs))
            session.flush()


def _positioned(model_cls, run_id: UUID, dtos: Iterable) -> list:
    return [model_cls.from_dto(dto, run_id=run_id, position=i) for i, dto in enumerate(dtos)]
