"""
fiscal_engines.units -- SC / KG / FD unit conversion.

Responsibility:
    Single source of truth for converting between raw green-coffee sacas
    (SC), roasted-coffee kilograms (KG) and 5 kg packaged fardos (FD).  The
    inventory ledger carries every product in SC-equivalents; this module is
    the only place that knows the yield and pack-size constants.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Total functions: every conversion accepts Decimal/int/float/str/None
      and returns a Decimal.  Non-finite, unparseable, None or zero input
      yields exactly Decimal("0"); nothing raises.
    - Consistency: fardos_from_kg(kg_from_sc(x)) == fardos_from_sc(x) and
      the forward/backward pairs invert each other (up to the Decimal
      context precision).

Failure modes:
    - None.  Callers that must distinguish "zero" from "garbage" validate
      their input before converting.

Usage:
    from fiscal_engines.units import sc_from_fardos, to_sc_equivalent

    sc_from_fardos(Decimal("96"))          # Decimal("10")
    to_sc_equivalent(Decimal("480"), "KG")  # Decimal("10")
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from fiscal_kernel.db.types import to_decimal
from fiscal_kernel.domain.natop import strip_key

# One raw saca roasts into 48 kg of finished product.
RAW_SC_TO_TORRADO_KG = Decimal("48")

# One fardo packs 5 kg.
FARDO_KG = Decimal("5")

RAW_SC_TO_FARDOS = RAW_SC_TO_TORRADO_KG / FARDO_KG  # 9.6

ZERO = Decimal("0")


class ProductUnit(str, Enum):
    """Units a product can be declared in."""

    SC = "SC"
    KG = "KG"
    FD = "FD"


DEFAULT_UNIT_ALIASES: Mapping[ProductUnit, tuple[str, ...]] = {
    ProductUnit.SC: ("SC", "SACA", "SACAS", "SC60KG"),
    ProductUnit.KG: ("KG", "KILO", "KILOS", "KILOGRAMA", "KILOGRAMAS"),
    ProductUnit.FD: ("FD", "FARDO", "FARDOS"),
}


def _finite(value: Any) -> Decimal:
    number = to_decimal(value)
    if not number.is_finite() or number.is_zero():
        return ZERO
    return number


def sc_from_fardos(fardos: Any) -> Decimal:
    """Fardos to SC-equivalent: f * 5 / 48."""
    f = _finite(fardos)
    return f * FARDO_KG / RAW_SC_TO_TORRADO_KG


to_sc_equivalent_from_fardos = sc_from_fardos


def sc_from_kg(kg: Any) -> Decimal:
    k = _finite(kg)
    return k / RAW_SC_TO_TORRADO_KG


def fardos_from_sc(sc: Any) -> Decimal:
    s = _finite(sc)
    return s * RAW_SC_TO_FARDOS


def kg_from_sc(sc: Any) -> Decimal:
    s = _finite(sc)
    return s * RAW_SC_TO_TORRADO_KG


def fardos_from_kg(kg: Any) -> Decimal:
    k = _finite(kg)
    return k / FARDO_KG


def cost_per_fardo(avg_cost_per_sc: Any) -> Decimal:
    """Average cost of one fardo given the average cost per SC."""
    c = _finite(avg_cost_per_sc)
    return c * FARDO_KG / RAW_SC_TO_TORRADO_KG


def _alias_table(
    aliases: Mapping[Any, Iterable[str]] | None,
) -> dict[str, ProductUnit]:
    table: dict[str, ProductUnit] = {}
    for unit, names in DEFAULT_UNIT_ALIASES.items():
        for name in names:
            table[name] = unit
    if aliases:
        for unit, names in aliases.items():
            target = ProductUnit(str(unit).upper())
            for name in names:
                key = strip_key(name)
                if key:
                    table[key] = target
    return table


def normalize_unit(
    raw: Any,
    aliases: Mapping[Any, Iterable[str]] | None = None,
) -> ProductUnit | None:
    """
    Map a document unit ("Saca", "kg.", "FARDOS") to a ProductUnit.

    ``aliases`` extends the built-in table (e.g. from configuration).
    Returns None for unknown units.
    """
    if isinstance(raw, ProductUnit):
        return raw
    key = strip_key(raw)
    if key is None:
        return None
    return _alias_table(aliases).get(key)


def to_sc_equivalent(qty: Any, unit: Any) -> Decimal:
    """Express ``qty`` of ``unit`` in SC; unknown units yield 0."""
    resolved = normalize_unit(unit)
    if resolved is ProductUnit.SC:
        return _finite(qty)
    if resolved is ProductUnit.KG:
        return sc_from_kg(qty)
    if resolved is ProductUnit.FD:
        return sc_from_fardos(qty)
    return ZERO


def from_sc_equivalent(sc: Any, unit: Any) -> Decimal:
    resolved = normalize_unit(unit)
    if resolved is ProductUnit.SC:
        return _finite(sc)
    if resolved is ProductUnit.KG:
        return kg_from_sc(sc)
    if resolved is ProductUnit.FD:
        return fardos_from_sc(sc)
    return ZERO


def convert_quantity(qty: Any, from_unit: Any, to_unit: Any) -> Decimal:
    """Convert between any two supported units through SC equivalence."""
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    if source is None or target is None:
        return ZERO
    if source is target:
        return _finite(qty)
    if source is ProductUnit.KG and target is ProductUnit.FD:
        return fardos_from_kg(qty)
    return from_sc_equivalent(to_sc_equivalent(qty, source), target)
