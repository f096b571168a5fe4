"""
payroll_services -- Package init and public API.

Responsibility:
    Stateful collaborators of the payroll run lifecycle: repositories,
    audit sinks, the workflow executor, per-run locks and history queries.
    This is the only layer that holds database sessions.

Architecture position:
    Services -- stateful infrastructure over engines + kernel.

    Dependency direction:
        payroll_services/ -> payroll_engines/  (allowed)
        payroll_services/ -> payroll_kernel/   (allowed)
        payroll_engines/  -> payroll_services/ (FORBIDDEN)
        payroll_kernel/   -> payroll_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("services")

from payroll_services.audit import (  # noqa: E402
    AuditSink,
    InMemoryAuditSink,
    SqlAlchemyAuditSink,
)
from payroll_services.history import (  # noqa: E402
    HistoryFilters,
    HistoryPage,
    PayrollHistoryQuery,
    RunDetails,
)
from payroll_services.persistence import (  # noqa: E402
    InMemoryRunRepository,
    RunRepository,
    SqlAlchemyRunRepository,
)
from payroll_services.run_locks import RunLockRegistry  # noqa: E402
from payroll_services.workflow_executor import (  # noqa: E402
    GuardExecutor,
    TransitionResult,
    WorkflowExecutor,
    default_guard_executor,
)

__all__ = [
    "AuditSink",
    "GuardExecutor",
    "HistoryFilters",
    "HistoryPage",
    "InMemoryAuditSink",
    "InMemoryRunRepository",
    "PayrollHistoryQuery",
    "RunDetails",
    "RunLockRegistry",
    "RunRepository",
    "SqlAlchemyAuditSink",
    "SqlAlchemyRunRepository",
    "TransitionResult",
    "WorkflowExecutor",
    "default_guard_executor",
]
