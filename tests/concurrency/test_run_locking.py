"""
Concurrency tests for the payroll run lifecycle.

A guard evaluator that blocks worker threads holds one calculation inside
its critical section while the main thread races it.
"""

import threading
from datetime import date

import pytest

from payroll_kernel.exceptions import ConcurrentModificationError
from payroll_modules.runs.models import PayrollRunStatus
from payroll_modules.runs.service import PayrollRunService
from payroll_services.run_locks import RunLockRegistry
from payroll_services.workflow_executor import (
    GuardExecutor,
    WorkflowExecutor,
    default_guard_executor,
)


class _BlockingChecklistGuard:
    """Blocks worker threads in the checklist guard until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, context):
        if threading.current_thread() is not threading.main_thread():
            self.entered.set()
            assert self.release.wait(timeout=5)
        return context["checklist"].is_complete


@pytest.fixture
def blocking_guard():
    return _BlockingChecklistGuard()


@pytest.fixture
def racing_service(memory_repository, memory_audit, deterministic_clock, statutory_config, blocking_guard):
    guards: GuardExecutor = default_guard_executor()
    guards.register("checklist_complete", blocking_guard)
    return PayrollRunService(
        memory_repository,
        memory_audit,
        config=statutory_config,
        clock=deterministic_clock,
        workflow_executor=WorkflowExecutor(clock=deterministic_clock, guard_executor=guards),
    )


def _new_run(service, name, preparer, compensation):
    run = service.create_run(name, date(2024, 7, 1), date(2024, 7, 31), preparer).run
    service.set_inputs(run.id, [compensation], preparer)
    return run


def _calculate_in_thread(service, run_id, checklist, preparer, outcome):
    def target():
        try:
            outcome.append(service.calculate(run_id, checklist, preparer))
        except Exception as exc:  # noqa: BLE001
            outcome.append(exc)

    thread = threading.Thread(target=target)
    thread.start()
    return thread


class TestSameRun:

    def test_second_calculate_is_rejected(
        self, racing_service, blocking_guard, memory_audit, preparer, checklist, scenario_input,
    ):
        run = _new_run(racing_service, "July", preparer, scenario_input)
        outcome = []
        worker = _calculate_in_thread(racing_service, run.id, checklist, preparer, outcome)
        assert blocking_guard.entered.wait(timeout=5)

        try:
            with pytest.raises(ConcurrentModificationError) as exc_info:
                racing_service.calculate(run.id, checklist, preparer)
        finally:
            blocking_guard.release.set()
            worker.join(timeout=5)

        assert exc_info.value.run_id == str(run.id)
        assert len(outcome) == 1
        assert outcome[0].run.status is PayrollRunStatus.CALCULATED
        calculations = [e for e in memory_audit.events_for(run.id) if e.action == "calculate"]
        assert len(calculations) == 1

    def test_transition_blocked_while_calculating(
        self, racing_service, blocking_guard, preparer, checklist, scenario_input,
    ):
        run = _new_run(racing_service, "July", preparer, scenario_input)
        outcome = []
        worker = _calculate_in_thread(racing_service, run.id, checklist, preparer, outcome)
        assert blocking_guard.entered.wait(timeout=5)

        try:
            with pytest.raises(ConcurrentModificationError):
                racing_service.cancel(run.id, preparer)
        finally:
            blocking_guard.release.set()
            worker.join(timeout=5)

        assert racing_service.get_run(run.id).status is PayrollRunStatus.CALCULATED

    def test_contention_is_logged(
        self, racing_service, blocking_guard, preparer, checklist, scenario_input, captured_logs,
    ):
        run = _new_run(racing_service, "July", preparer, scenario_input)
        worker = _calculate_in_thread(racing_service, run.id, checklist, preparer, [])
        assert blocking_guard.entered.wait(timeout=5)

        try:
            with pytest.raises(ConcurrentModificationError):
                racing_service.verify(run.id, preparer)
        finally:
            blocking_guard.release.set()
            worker.join(timeout=5)

        contended = [r for r in captured_logs() if r["message"] == "run_lock_contended"]
        assert contended[0]["run_id"] == str(run.id)
        assert contended[0]["operation"] == "verify"


class TestDifferentRuns:

    def test_other_run_proceeds(
        self, racing_service, blocking_guard, preparer, checklist, scenario_input, make_input,
    ):
        held = _new_run(racing_service, "July", preparer, scenario_input)
        free = _new_run(racing_service, "July (casuals)", preparer, make_input("CAS-1"))
        outcome = []
        worker = _calculate_in_thread(racing_service, held.id, checklist, preparer, outcome)
        assert blocking_guard.entered.wait(timeout=5)

        try:
            result = racing_service.calculate(free.id, checklist, preparer)
        finally:
            blocking_guard.release.set()
            worker.join(timeout=5)

        assert result.run.status is PayrollRunStatus.CALCULATED
        assert outcome[0].run.status is PayrollRunStatus.CALCULATED


class TestRunLockRegistry:

    def test_lock_released_after_block(self):
        registry = RunLockRegistry()

        with registry.hold("run-1"):
            assert registry.is_locked("run-1")

        assert not registry.is_locked("run-1")

    def test_lock_released_on_error(self):
        registry = RunLockRegistry()

        with pytest.raises(RuntimeError):
            with registry.hold("run-1"):
                raise RuntimeError("boom")

        assert not registry.is_locked("run-1")

    def test_reentry_from_same_thread_fails_fast(self):
        registry = RunLockRegistry()

        with registry.hold("run-1"):
            with pytest.raises(ConcurrentModificationError):
                with registry.hold("run-1"):
                    pass

    def test_timeout_waits_then_fails(self):
        registry = RunLockRegistry(timeout_seconds=0.05)

        with registry.hold("run-1"):
            with pytest.raises(ConcurrentModificationError):
                with registry.hold("run-1"):
                    pass

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError):
            RunLockRegistry(timeout_seconds=-1)

    def test_entries_dropped_after_release(self):
        registry = RunLockRegistry()

        for n in range(50):
            with registry.hold(f"run-{n}"):
                assert registry.tracked_runs() == 1

        assert registry.tracked_runs() == 0

    def test_entry_kept_while_contended(self):
        registry = RunLockRegistry()

        with registry.hold("run-1"):
            with pytest.raises(ConcurrentModificationError):
                with registry.hold("run-1"):
                    pass
            assert registry.tracked_runs() == 1
            assert registry.is_locked("run-1")

        assert registry.tracked_runs() == 0

    def test_service_leaves_no_entries(self, memory_repository, memory_audit, statutory_config, preparer):
        registry = RunLockRegistry()
        service = PayrollRunService(
            memory_repository, memory_audit, config=statutory_config, lock_registry=registry,
        )
        run = service.create_run("July 2024", date(2024, 7, 1), date(2024, 7, 31), preparer).run

        service.cancel(run.id, preparer)

        assert registry.tracked_runs() == 0
