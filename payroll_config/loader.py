"""
Statutory configuration loader (``payroll_config.loader``).

Responsibility
--------------
Loads a statutory YAML file and parses it into the typed
``payroll_config.schema`` dataclasses.  Runtime callers go through
``payroll_config.get_active_config()``; this module is the tooling it uses.

Invariants enforced
-------------------
* Numbers are parsed through ``str`` into ``Decimal`` so YAML floats never
  leak binary rounding into rates or thresholds.
* Every parsed object is a frozen dataclass from ``schema.py``; bracket
  consistency is checked at construction.
* ``compute_checksum`` is a SHA-256 of the raw file bytes, so two loads of
  the same file always carry the same identity.

Failure modes
-------------
* Missing file, malformed YAML, missing keys, unparseable numbers or dates
  all raise ``ConfigurationError`` naming the source file.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from payroll_config.schema import (
    ContributionRates,
    LevyDef,
    LifecycleSettings,
    StatutoryConfig,
    TaxBracket,
    TaxTable,
)
from payroll_kernel.exceptions import ConfigurationError
from payroll_kernel.utils.hashing import hash_bytes


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    """Parse a YAML scalar into ``Decimal`` via its string form."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Cannot parse number from {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse number from {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Number must be finite, got {value!r}")
    return result


def compute_checksum(raw: bytes) -> str:
    return hash_bytes(raw)


def parse_bracket(data: dict[str, Any]) -> TaxBracket:
    upper = data.get("upper")
    return TaxBracket(
        lower=parse_decimal(data["lower"]),
        upper=parse_decimal(upper) if upper is not None else None,
        rate=parse_decimal(data["rate"]),
        fixed_amount=parse_decimal(data["fixed_amount"]),
        description=data.get("description", ""),
    )


def parse_tax_table(data: dict[str, Any]) -> TaxTable:
    brackets = tuple(parse_bracket(b) for b in data.get("brackets", []))
    return TaxTable(
        name=data["name"],
        effective_from=parse_date(data["effective_from"]),
        brackets=brackets,
        non_resident_rate=parse_decimal(data["non_resident_rate"]),
        minimum_tax_above_nil_band=parse_decimal(
            data.get("minimum_tax_above_nil_band", 1)
        ),
    )


def parse_levy(data: dict[str, Any]) -> LevyDef:
    return LevyDef(
        code=data["code"],
        rate=parse_decimal(data["rate"]),
        description=data.get("description", ""),
    )


def parse_contributions(data: dict[str, Any]) -> ContributionRates:
    return ContributionRates(
        employee_rate=parse_decimal(data["employee_rate"]),
        employer_rate=parse_decimal(data["employer_rate"]),
        levy_one=parse_levy(data["levy_one"]),
        levy_two=parse_levy(data["levy_two"]),
    )


def parse_lifecycle(data: dict[str, Any]) -> LifecycleSettings:
    defaults = LifecycleSettings()
    return LifecycleSettings(
        approver_roles=tuple(data.get("approver_roles", defaults.approver_roles)),
        lock_timeout_seconds=float(
            data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
        ),
    )


def parse_statutory_config(
    data: dict[str, Any], checksum: str = "", source: str = ""
) -> StatutoryConfig:
    """Build a ``StatutoryConfig`` from an already-loaded mapping."""
    source = source or "<mapping>"
    try:
        return StatutoryConfig(
            jurisdiction=data["jurisdiction"],
            currency=data["currency"],
            tax_table=parse_tax_table(data["paye"]),
            contributions=parse_contributions(data["contributions"]),
            lifecycle=parse_lifecycle(data.get("lifecycle") or {}),
            checksum=checksum,
            source=source,
        )
    except KeyError as exc:
        raise ConfigurationError(source, f"missing required key {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(source, str(exc)) from exc


def load_statutory_config(path: Path) -> StatutoryConfig:
    """
    Load and validate a statutory configuration file.

    Raises:
        ConfigurationError: for any read, parse or validation failure.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(str(path), f"cannot read file: {exc}") from exc
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"malformed YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return parse_statutory_config(data, checksum=compute_checksum(raw), source=str(path))
