"""
Movement value objects -- what a fiscal document line means.

Responsibility:
    Define the immutable shapes that flow between document ingestion, the
    classification resolver, the inventory ledger and the DRE aggregator:
    the normalized DocumentLine coming in, the MovementDescriptor or
    UnclassifiedMovement coming out of classification, and the status enums
    persisted alongside every movement record.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - All value objects are frozen dataclasses.
    - dre_sign is always +1 or -1 (MovementDescriptor.__post_init__).
    - An UnclassifiedMovement always carries a reason; it is never converted
      into a descriptor by defaulting a category.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class Direction(str, Enum):
    """Movement direction from the company's point of view."""

    IN = "IN"
    OUT = "OUT"


class ClassificationSource(str, Enum):
    """Which resolution strategy produced a descriptor."""

    ALIAS = "ALIAS"
    CFOP_RULE = "CFOP_RULE"


class UnclassifiedReason(str, Enum):
    """Why a line could not be classified (or costed)."""

    NO_RULE = "NO_RULE"                    # no alias and no CFOP rule matched
    MISSING_CFOP = "MISSING_CFOP"          # line carries no CFOP code
    UNMAPPED_PRODUCT = "UNMAPPED_PRODUCT"  # classified, but no product to cost
    UNSUPPORTED_UNIT = "UNSUPPORTED_UNIT"  # unit not convertible to the product's


class MovementFlag(str, Enum):
    """Data-quality flags raised by the ledger without blocking."""

    NEGATIVE_INVENTORY = "NEGATIVE_INVENTORY"


class ClassificationStatus(str, Enum):
    CLASSIFIED = "CLASSIFIED"
    UNCLASSIFIED = "UNCLASSIFIED"


class LedgerStatus(str, Enum):
    """Where a persisted movement stands relative to its product ledger."""

    PENDING = "PENDING"
    APPLIED = "APPLIED"
    FLAGGED = "FLAGGED"
    NOT_COSTED = "NOT_COSTED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"  # dated before the product's opening


class LineOutcome(str, Enum):
    """Per-line result reported by a batch import."""

    APPLIED = "APPLIED"
    FLAGGED = "FLAGGED"
    RECORDED = "RECORDED"  # classified, kept out of the ledger by its natureza
    UNCLASSIFIED = "UNCLASSIFIED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"  # invoice item already has a live movement record


@dataclass(frozen=True)
class DocumentLine:
    """
    A normalized document line handed over by ingestion.

    ``product_id`` is resolved upstream through InvoiceItemProductMapping;
    ``qty_native`` is already expressed in the product's declared unit.
    """

    company_id: UUID
    cfop_code: str | None
    direction: Direction
    nat_op: str | None
    is_self_issued_entrada: bool
    date: date
    qty_native: Decimal
    unit: str | None
    total_value: Decimal
    product_id: UUID | None = None
    source_ref: str | None = None
    invoice_item_id: UUID | None = None


@dataclass(frozen=True)
class MovementDescriptor:
    """The normalized, typed meaning of a classified line."""

    natureza_operacao_id: UUID
    natureza_name: str
    dre_include: bool
    dre_category: str | None
    dre_label: str | None
    dre_sign: int
    direction: Direction
    affects_inventory: bool
    source: ClassificationSource

    def __post_init__(self) -> None:
        if self.dre_sign not in (1, -1):
            raise ValueError(f"dre_sign must be +1 or -1, got {self.dre_sign}")


@dataclass(frozen=True)
class UnclassifiedMovement:
    """No strategy matched the line; it stays out of costing and the DRE."""

    line: DocumentLine
    reason: UnclassifiedReason = UnclassifiedReason.NO_RULE


@dataclass(frozen=True)
class NaturezaView:
    """Read-only projection of a NaturezaOperacao used for resolution."""

    id: UUID
    name: str
    dre_include: bool
    dre_category: str | None
    dre_label: str | None
    dre_sign: int
    affects_inventory: bool = True
