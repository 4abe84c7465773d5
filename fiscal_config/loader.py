"""
Configuration loader (``fiscal_config.loader``).

Responsibility
--------------
Reads YAML settings files and parses them into the frozen dataclasses of
``fiscal_config.schema``.  Runtime callers go through
``fiscal_config.get_active_config()``; this module is its implementation.

Invariants enforced
-------------------
* An override file is deep-merged over ``defaults.yaml``: mappings merge
  key by key, every other value replaces.
* Environment overrides (``FISCAL_DATABASE_URL``, ``FISCAL_LOG_LEVEL``)
  are applied after the files.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON of
  the merged settings.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``database.url``  -> ``KeyError``.
* Invalid category sign  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

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

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    result = copy.deepcopy(data)
    if env.get("FISCAL_DATABASE_URL"):
        result.setdefault("database", {})["url"] = env["FISCAL_DATABASE_URL"]
    if env.get("FISCAL_LOG_LEVEL"):
        result.setdefault("logging", {})["level"] = env["FISCAL_LOG_LEVEL"].upper()
    return result


def parse_dre(data: Mapping[str, Any]) -> DRESettings:
    categories = tuple(
        DRECategoryDef(
            code=str(code),
            title=str(entry.get("title", code)),
            sign=int(entry.get("sign", 1)),
        )
        for code, entry in (data.get("categories") or {}).items()
    )
    return DRESettings(
        categories=categories,
        include_cte_freight=bool(data.get("include_cte_freight", True)),
        freight_deduction_title=str(
            data.get("freight_deduction_title", "Fretes (CT-e)")
        ),
        include_unconditional_discounts=bool(
            data.get("include_unconditional_discounts", False)
        ),
        discount_deduction_title=str(
            data.get("discount_deduction_title", "Descontos incondicionais")
        ),
    )


def parse_units(data: Mapping[str, Any]) -> UnitSettings:
    aliases = tuple(
        (str(unit).upper(), tuple(str(name) for name in names or ()))
        for unit, names in sorted((data.get("aliases") or {}).items())
    )
    return UnitSettings(aliases=aliases)


def parse_settings(data: Mapping[str, Any]) -> FiscalSettings:
    database = data["database"]
    reprocess = data.get("reprocess") or {}
    return FiscalSettings(
        version=int(data.get("version", 1)),
        database=DatabaseSettings(
            url=database["url"],
            echo=bool(database.get("echo", False)),
        ),
        logging=LoggingSettings(
            level=str((data.get("logging") or {}).get("level", "INFO")).upper()
        ),
        dre=parse_dre(data.get("dre") or {}),
        ledger=LedgerSettings(
            decimal_places=int((data.get("ledger") or {}).get("decimal_places", 9))
        ),
        reprocess=ReprocessSettings(
            default_batch_size=int(reprocess.get("default_batch_size", 500)),
            max_batch_size=int(reprocess.get("max_batch_size", 5000)),
            sample_limit=int(reprocess.get("sample_limit", 20)),
        ),
        units=parse_units(data.get("units") or {}),
        checksum=compute_checksum(dict(data)),
    )


def load_settings(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> FiscalSettings:
    """Defaults, then the override file, then the environment."""
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
    data = apply_env_overrides(data, env or {})
    return parse_settings(data)
