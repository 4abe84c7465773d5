"""ORM models for the fiscal kernel."""

from fiscal_kernel.models.classification import (
    CfopRule,
    NaturezaOperacao,
    NaturezaOperacaoAlias,
)
from fiscal_kernel.models.company import Company, Product, ProductUnitConversion
from fiscal_kernel.models.documents import (
    Cte,
    Invoice,
    InvoiceItem,
    InvoiceItemMappingRule,
    InvoiceItemProductMapping,
)
from fiscal_kernel.models.dre import DREDeduction
from fiscal_kernel.models.inventory import (
    InventoryOpening,
    LedgerCheckpoint,
    LedgerEntry,
    MovementRecord,
)
from fiscal_kernel.models.reprocess import (
    ReprocessBatch,
    ReprocessMode,
    ReprocessStatus,
)
from fiscal_kernel.models.sequence import SequenceCounter

__all__ = [
    "CfopRule",
    "Company",
    "Cte",
    "DREDeduction",
    "InventoryOpening",
    "Invoice",
    "InvoiceItem",
    "InvoiceItemMappingRule",
    "InvoiceItemProductMapping",
    "LedgerCheckpoint",
    "LedgerEntry",
    "MovementRecord",
    "NaturezaOperacao",
    "NaturezaOperacaoAlias",
    "Product",
    "ProductUnitConversion",
    "ReprocessBatch",
    "ReprocessMode",
    "ReprocessStatus",
    "SequenceCounter",
]
