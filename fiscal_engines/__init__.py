"""
Module: fiscal_engines
Responsibility:
    Pure calculation engines: unit conversion, classification resolution,
    the weighted-average inventory fold and DRE aggregation.  This is the
    import surface used by fiscal_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import fiscal_kernel (domain, exceptions, logging, db.types).
    MUST NOT import fiscal_services or fiscal_config.

Invariants enforced:
    - Engines never read the clock; dates are passed in.
    - Decimal-only arithmetic for quantities and amounts.
    - Identical inputs always produce identical outputs.
"""

from fiscal_engines.classification import (
    AliasStrategy,
    CfopRuleStrategy,
    ClassificationLookup,
    InMemoryClassificationLookup,
    NaturezaView,
    resolve_classification,
)
from fiscal_engines.dre import (
    DeductionLine,
    DRECategoryGroup,
    DREDeductionItem,
    DREMovementLine,
    DREPeriod,
    DREProductItem,
    DREReport,
    aggregate_dre,
)
from fiscal_engines.ledger import (
    CostedMovement,
    LedgerLine,
    LedgerState,
    LedgerStep,
    OpeningBalance,
    ReplayResult,
    ResumePoint,
    apply_movement,
    canonical_order,
    replay,
    resume_index,
    resume_point,
    seed,
)
from fiscal_engines.units import (
    FARDO_KG,
    RAW_SC_TO_FARDOS,
    RAW_SC_TO_TORRADO_KG,
    ProductUnit,
    convert_quantity,
    cost_per_fardo,
    fardos_from_kg,
    fardos_from_sc,
    from_sc_equivalent,
    kg_from_sc,
    normalize_unit,
    sc_from_fardos,
    sc_from_kg,
    to_sc_equivalent,
    to_sc_equivalent_from_fardos,
)

__all__ = [
    "AliasStrategy",
    "CfopRuleStrategy",
    "ClassificationLookup",
    "CostedMovement",
    "DRECategoryGroup",
    "DREDeductionItem",
    "DREMovementLine",
    "DREPeriod",
    "DREProductItem",
    "DREReport",
    "DeductionLine",
    "FARDO_KG",
    "InMemoryClassificationLookup",
    "LedgerLine",
    "LedgerState",
    "LedgerStep",
    "NaturezaView",
    "OpeningBalance",
    "ProductUnit",
    "RAW_SC_TO_FARDOS",
    "RAW_SC_TO_TORRADO_KG",
    "ReplayResult",
    "ResumePoint",
    "aggregate_dre",
    "apply_movement",
    "canonical_order",
    "convert_quantity",
    "cost_per_fardo",
    "fardos_from_kg",
    "fardos_from_sc",
    "from_sc_equivalent",
    "kg_from_sc",
    "normalize_unit",
    "replay",
    "resume_index",
    "resume_point",
    "resolve_classification",
    "sc_from_fardos",
    "sc_from_kg",
    "seed",
    "to_sc_equivalent",
    "to_sc_equivalent_from_fardos",
]
