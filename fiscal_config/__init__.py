"""
fiscal_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_config()`` is the only way services, scripts and tests
    obtain settings.  No other component reads the settings files or the
    ``FISCAL_*`` environment variables.

Architecture position:
    Configuration -- sits above ``fiscal_kernel`` and ``fiscal_engines`` and
    below ``fiscal_services``.  The kernel and the engines never import it;
    services pass the values they need (category signs, batch sizes, unit
    aliases) down as arguments.

Invariants enforced:
    - Resolution order: ``defaults.yaml``, then ``config_path`` or
      ``FISCAL_CONFIG_PATH``, then ``FISCAL_DATABASE_URL`` and
      ``FISCAL_LOG_LEVEL``.
    - The returned FiscalSettings is frozen and carries the checksum of the
      merged source.

Audit relevance:
    Every load emits ``fiscal_config_loaded`` with the checksum, so a report
    can be tied back to the exact settings it ran with.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from fiscal_config.catalog import cfop_catalog, describe_cfop
from fiscal_config.loader import compute_checksum, load_settings
from fiscal_config.schema import (
    DatabaseSettings,
    DRECategoryDef,
    DRESettings,
    FiscalSettings,
    LedgerSettings,
    LoggingSettings,
    ReprocessSettings,
    UnitSettings,
)

_logger = logging.getLogger("fiscal_kernel.config")

_ENV_KEYS = ("FISCAL_DATABASE_URL", "FISCAL_LOG_LEVEL")


@lru_cache(maxsize=16)
def _load(config_path: str | None, env_items: tuple[tuple[str, str], ...]) -> FiscalSettings:
    settings = load_settings(
        Path(config_path) if config_path else None,
        dict(env_items),
    )
    _logger.info(
        "fiscal_config_loaded",
        extra={
            "config_path": config_path,
            "checksum": settings.checksum,
            "version": settings.version,
        },
    )
    return settings


def get_active_config(config_path: Path | str | None = None) -> FiscalSettings:
    """
    Return the active settings.

    Results are cached per (path, environment override values), so a
    changed environment variable yields a fresh load.

    Raises:
        FileNotFoundError: the override file does not exist.
        KeyError / ValueError: the merged settings are invalid.
    """
    path = config_path or os.environ.get("FISCAL_CONFIG_PATH") or None
    env_items = tuple(
        (key, os.environ[key]) for key in _ENV_KEYS if os.environ.get(key)
    )
    return _load(str(path) if path else None, env_items)


def clear_config_cache() -> None:
    """Drop cached settings.  FOR TESTING ONLY."""
    _load.cache_clear()


__all__ = [
    "DRECategoryDef",
    "DRESettings",
    "DatabaseSettings",
    "FiscalSettings",
    "LedgerSettings",
    "LoggingSettings",
    "ReprocessSettings",
    "UnitSettings",
    "cfop_catalog",
    "clear_config_cache",
    "compute_checksum",
    "describe_cfop",
    "get_active_config",
]
