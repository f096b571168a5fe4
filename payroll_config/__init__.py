"""
payroll_config -- single public entrypoint for statutory configuration.

Responsibility:
    Provides the one way to obtain statutory tables at runtime through
    ``get_active_config()``.  Engines and services never read YAML files or
    environment variables themselves.

Architecture position:
    Configuration.  Sits above ``payroll_kernel`` and below
    ``payroll_engines`` / ``payroll_modules`` / ``payroll_services``.  The
    kernel never imports from ``payroll_config``.

Invariants enforced:
    - The PAYE bracket table is validated once, at load, and is immutable
      afterwards.
    - Same YAML bytes always produce the same checksum.

Failure modes:
    - ``ConfigurationError`` -- unreadable file, malformed YAML, or a table
      that fails validation.

Audit relevance:
    Every load emits a ``PAYROLL_CONFIG_TRACE`` log entry with the table
    name, effective date and checksum, tying computed payroll lines back to
    the exact statutory table that produced them.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from payroll_config.loader import load_statutory_config
from payroll_config.schema import (
    ContributionRates,
    LevyDef,
    LifecycleSettings,
    StatutoryConfig,
    TaxBracket,
    TaxTable,
)

__all__ = [
    "ContributionRates",
    "DEFAULT_CONFIG_PATH",
    "ENV_CONFIG_PATH",
    "LevyDef",
    "LifecycleSettings",
    "StatutoryConfig",
    "TaxBracket",
    "TaxTable",
    "clear_config_cache",
    "get_active_config",
]

_logger = logging.getLogger("payroll_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "tables" / "statutory_2023_07.yaml"
ENV_CONFIG_PATH = "PAYROLL_STATUTORY_CONFIG"

_cache: dict[Path, StatutoryConfig] = {}
_cache_lock = threading.Lock()


def get_active_config(path: Path | str | None = None) -> StatutoryConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: the explicit ``path`` argument, then the
    ``PAYROLL_STATUTORY_CONFIG`` environment variable, then the bundled
    2023-07 table.  Loaded configurations are cached per resolved path.

    Raises:
        ConfigurationError: If the file cannot be read or fails validation.
    """
    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH
    resolved = Path(path).resolve()

    with _cache_lock:
        cached = _cache.get(resolved)
    if cached is not None:
        return cached

    config = load_statutory_config(resolved)
    with _cache_lock:
        config = _cache.setdefault(resolved, config)

    _logger.info(
        "PAYROLL_CONFIG_TRACE",
        extra={
            "trace_type": "PAYROLL_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "tax_table": config.tax_table.name,
            "effective_from": config.tax_table.effective_from.isoformat(),
            "bracket_count": len(config.tax_table.brackets),
            "jurisdiction": config.jurisdiction,
            "currency": config.currency,
        },
    )
    return config


def clear_config_cache() -> None:
    """Forget cached configurations. FOR TESTING ONLY."""
    with _cache_lock:
        _cache.clear()
