"""Read-only selectors over the fiscal kernel models."""

from fiscal_kernel.selectors.base import BaseSelector
from fiscal_kernel.selectors.classification_selector import ClassificationSelector
from fiscal_kernel.selectors.dre_selector import DeductionRow, DREMovementRow, DRESelector
from fiscal_kernel.selectors.inventory_selector import (
    InventorySelector,
    KardexLine,
    LedgerBalance,
)

__all__ = [
    "BaseSelector",
    "ClassificationSelector",
    "DREMovementRow",
    "DRESelector",
    "DeductionRow",
    "InventorySelector",
    "KardexLine",
    "LedgerBalance",
]
