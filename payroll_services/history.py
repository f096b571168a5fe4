"""
payroll_services.history -- read-only payroll history queries.

Responsibility:
    Search and browse past payroll runs: free-text match on run name,
    filters on pay month, pay year and status, paginated results, a recent
    runs listing, run details with lines, and the audit log of a run.

Architecture position:
    Services layer.  Reads through ``RunRepository`` and ``AuditSink`` and
    never writes.

Failure modes:
    - RunNotFoundError from ``details`` for unknown run ids.
    - ValueError for a negative limit or offset.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from payroll_kernel.logging_config import get_logger
from payroll_modules.runs.models import AuditEvent, PayrollLine, PayrollRun, PayrollRunStatus
from payroll_services.audit import AuditSink
from payroll_services.persistence import RunRepository

logger = get_logger("services.history")

DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class HistoryFilters:
    """Search criteria; unset fields do not filter."""
    search_term: str | None = None
    pay_month: str | None = None
    pay_year: int | None = None
    status: PayrollRunStatus | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError("limit cannot be negative")
        if self.offset < 0:
            raise ValueError("offset cannot be negative")

    def matches(self, run: PayrollRun) -> bool:
        if self.search_term and self.search_term.strip().lower() not in run.name.lower():
            return False
        if self.pay_month is not None and run.pay_month != self.pay_month:
            return False
        if self.pay_year is not None and run.pay_year != self.pay_year:
            return False
        if self.status is not None and run.status is not self.status:
            return False
        return True


@dataclass(frozen=True)
class HistoryPage:
    runs: tuple[PayrollRun, ...]
    total: int
    has_more: bool


@dataclass(frozen=True)
class RunDetails:
    run: PayrollRun
    lines: tuple[PayrollLine, ...]


def _newest_first(runs: list[PayrollRun]) -> list[PayrollRun]:
    return sorted(runs, key=lambda r: (r.pay_period_start, r.name), reverse=True)


class PayrollHistoryQuery:
    """Read side over runs, lines and audit events."""

    def __init__(self, repository: RunRepository, audit_sink: AuditSink) -> None:
        self._repository = repository
        self._audit_sink = audit_sink

    def search(self, filters: HistoryFilters | None = None) -> HistoryPage:
        """Runs matching ``filters``, newest pay period first."""
        filters = filters or HistoryFilters()
        matched = _newest_first([r for r in self._repository.list_runs() if filters.matches(r)])
        end = filters.offset + filters.limit
        page = tuple(matched[filters.offset:end])

        logger.debug("history_search", extra={
            "search_term": filters.search_term,
            "pay_month": filters.pay_month,
            "pay_year": filters.pay_year,
            "status": filters.status.value if filters.status else None,
            "total": len(matched),
            "returned": len(page),
        })
        return HistoryPage(runs=page, total=len(matched), has_more=end < len(matched))

    def recent(self, limit: int = 5) -> tuple[PayrollRun, ...]:
        return self.search(HistoryFilters(limit=limit)).runs

    def details(self, run_id: UUID) -> RunDetails:
        run = self._repository.load_run(run_id)
        return RunDetails(run=run, lines=self._repository.load_lines(run_id))

    def audit_log(self, run_id: UUID) -> list[AuditEvent]:
        return sorted(self._audit_sink.events_for(run_id), key=lambda e: e.occurred_at)
