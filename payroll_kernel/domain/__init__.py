"""
Pure domain layer.

Value objects and helpers with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)
"""

from payroll_kernel.domain.amounts import (
    ZERO,
    percent_of,
    require_whole_units,
    round_half_up,
    to_amount,
)
from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payroll_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "ZERO",
    "percent_of",
    "require_whole_units",
    "round_half_up",
    "to_amount",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
]
