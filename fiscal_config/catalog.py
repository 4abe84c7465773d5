"""
CFOP catalog.

``cfop_catalog.csv`` ships with the package (``code;description``, UTF-8) and
is read once per process.
"""

from __future__ import annotations

import csv
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

CATALOG_PATH = Path(__file__).parent / "cfop_catalog.csv"


@lru_cache(maxsize=1)
def cfop_catalog() -> Mapping[str, str]:
    entries: dict[str, str] = {}
    with open(CATALOG_PATH, encoding="utf-8", newline="") as f:
        for row in csv.reader(f, delimiter=";"):
            if len(row) < 2 or not row[0].strip().isdigit():
                continue
            entries[row[0].strip()] = row[1].strip()
    return MappingProxyType(entries)


def describe_cfop(code: Any) -> str | None:
    """Catalog description of a CFOP code, or None when unknown."""
    if code is None:
        return None
    digits = "".join(ch for ch in str(code) if ch.isdigit())
    return cfop_catalog().get(digits)
