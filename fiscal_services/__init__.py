"""
fiscal_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (fiscal_engines/) with database sessions and configuration.  This is
    the only layer that holds sessions, reads settings and uses wall-clock
    time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        fiscal_services/ -> fiscal_engines/  (allowed)
        fiscal_services/ -> fiscal_kernel/   (allowed)
        fiscal_services/ -> fiscal_config/   (allowed)
        fiscal_engines/  -> fiscal_services/ (FORBIDDEN)
        fiscal_kernel/   -> fiscal_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush and never commit, except DocumentImportService, which
      runs each line in its own ``session_scope``.
"""

from fiscal_services.classification_service import ClassificationService
from fiscal_services.dre_service import DREService
from fiscal_services.import_service import (
    DocumentImportService,
    ImportReport,
    LineResult,
    ProductMappingService,
    lines_from_invoice,
    to_product_unit,
)
from fiscal_services.ledger_service import (
    LedgerService,
    ProductLockRegistry,
    ReplayOutcome,
)
from fiscal_services.reprocess_service import (
    ReprocessResult,
    ReprocessService,
    ReprocessStats,
)

__all__ = [
    "ClassificationService",
    "DREService",
    "DocumentImportService",
    "ImportReport",
    "LedgerService",
    "LineResult",
    "ProductLockRegistry",
    "ProductMappingService",
    "ReplayOutcome",
    "ReprocessResult",
    "ReprocessService",
    "ReprocessStats",
    "lines_from_invoice",
    "to_product_unit",
]
