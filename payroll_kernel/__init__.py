"""
Payroll Kernel

Shared foundations for the payroll calculation and run lifecycle engine:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- Injectable clock
- Whole-unit amount arithmetic (single currency, no sub-units)
- Workflow value objects for run state machines
- SQLAlchemy declarative base and session management
"""

__version__ = "0.1.0"
