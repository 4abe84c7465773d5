"""
Typed Exception Hierarchy for the Fiscal Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to tell a configuration fault (two aliases claiming
the same identity key) from a data-ordering fault (a movement older than the
ledger's last applied date) without parsing messages.  Every error therefore
has:
  1. Its own class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured attributes carrying the offending identifiers

Not every data-quality problem is an exception.  Two outcomes are values:
  - UnclassifiedMovement (fiscal_kernel.domain.movement) -- no alias and no
    CFOP rule matched; the line is recorded and excluded from costing/DRE.
  - NEGATIVE_INVENTORY (fiscal_kernel.domain.movement.MovementFlag) -- an
    outbound movement drove the balance below zero; applied and flagged.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FiscalKernelError (base)
    |
    +-- ClassificationError
    |   +-- AmbiguousAliasError
    |   +-- NaturezaNotFoundError
    |   +-- NaturezaMergeError
    |
    +-- InventoryError
    |   +-- OutOfOrderReplayError
    |   +-- OpeningAlreadySeededError
    |   +-- OpeningAlreadyExistsError
    |   +-- InvalidOpeningError
    |
    +-- EntityError
    |   +-- CompanyNotFoundError
    |   +-- ProductNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- CompanyScopeError
    |
    +-- DocumentError
    |   +-- UnsupportedDocumentLayoutError
    |   +-- UnsupportedUnitError
    |
    +-- ReportError
    |   +-- InvalidPeriodError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Classification  | AMBIGUOUS_ALIAS             | >1 alias for one identity tuple, or a
                |                             | conflicting alias write
                | NATUREZA_NOT_FOUND          | Natureza id unknown for the company
                | NATUREZA_MERGE_INVALID      | Merge without valid sources
----------------|-----------------------------|-----------------------------------------
Inventory       | OUT_OF_ORDER_REPLAY         | Movement date < last applied date
                | OPENING_ALREADY_SEEDED      | Seeding a ledger state twice
                | OPENING_ALREADY_EXISTS      | Second opening for one product
                | INVALID_OPENING             | Opening lacks a derivable quantity
----------------|-----------------------------|-----------------------------------------
Entity          | COMPANY_NOT_FOUND           | Company id unknown
                | PRODUCT_NOT_FOUND           | Product id unknown for the company
                | DOCUMENT_NOT_FOUND          | Invoice/CT-e unknown for the company
                | COMPANY_SCOPE_VIOLATION     | Reference to another company's row
----------------|-----------------------------|-----------------------------------------
Document        | UNSUPPORTED_DOCUMENT_LAYOUT | Direction cannot be inferred
                | UNSUPPORTED_UNIT            | Unit outside SC/KG/FD with no rule
----------------|-----------------------------|-----------------------------------------
Report          | INVALID_PERIOD              | start_date > end_date
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Checkpoint version changed underneath
"""

from datetime import date


class FiscalKernelError(Exception):
    """
    Base exception for all fiscal kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FISCAL_KERNEL_ERROR"


# Classification exceptions


class ClassificationError(FiscalKernelError):
    """Base exception for classification configuration errors."""

    code: str = "CLASSIFICATION_ERROR"


class AmbiguousAliasError(ClassificationError):
    """More than one alias answers for a single identity tuple."""

    code: str = "AMBIGUOUS_ALIAS"

    def __init__(
        self,
        company_id: str,
        nat_op_key: str,
        cfop_code: str,
        cfop_type: str,
        is_self_issued_entrada: bool,
        candidates: int = 2,
    ):
        self.company_id = company_id
        self.nat_op_key = nat_op_key
        self.cfop_code = cfop_code
        self.cfop_type = cfop_type
        self.is_self_issued_entrada = is_self_issued_entrada
        self.candidates = candidates
        super().__init__(
            f"Ambiguous natOp alias for company {company_id}: "
            f"'{nat_op_key}' / CFOP {cfop_code} / {cfop_type} / "
            f"self_issued={is_self_issued_entrada} ({candidates} candidates)"
        )


class NaturezaNotFoundError(ClassificationError):
    """Natureza de operação not found for the company."""

    code: str = "NATUREZA_NOT_FOUND"

    def __init__(self, natureza_id: str, company_id: str | None = None):
        self.natureza_id = natureza_id
        self.company_id = company_id
        super().__init__(f"Natureza de operação not found: {natureza_id}")


class NaturezaMergeError(ClassificationError):
    """A natureza merge request cannot be honoured."""

    code: str = "NATUREZA_MERGE_INVALID"

    def __init__(self, target_id: str, reason: str):
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"Cannot merge into natureza {target_id}: {reason}")


# Inventory exceptions


class InventoryError(FiscalKernelError):
    """Base exception for inventory ledger errors."""

    code: str = "INVENTORY_ERROR"


class OutOfOrderReplayError(InventoryError):
    """Movement precedes the ledger's last applied date."""

    code: str = "OUT_OF_ORDER_REPLAY"

    def __init__(
        self,
        product_id: str,
        movement_date: date,
        last_applied_date: date,
        movement_id: str | None = None,
    ):
        self.product_id = product_id
        self.movement_date = movement_date
        self.last_applied_date = last_applied_date
        self.movement_id = movement_id
        super().__init__(
            f"Movement dated {movement_date.isoformat()} precedes last applied "
            f"date {last_applied_date.isoformat()} for product {product_id}; "
            "replay from the opening is required"
        )


class OpeningAlreadySeededError(InventoryError):
    """Ledger state was already seeded from an opening."""

    code: str = "OPENING_ALREADY_SEEDED"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Ledger for product {product_id} is already seeded")


class OpeningAlreadyExistsError(InventoryError):
    """A product may carry at most one inventory opening."""

    code: str = "OPENING_ALREADY_EXISTS"

    def __init__(self, company_id: str, product_id: str):
        self.company_id = company_id
        self.product_id = product_id
        super().__init__(
            f"Inventory opening already exists for product {product_id}"
        )


class InvalidOpeningError(InventoryError):
    """Opening lacks enough data to derive its SC-equivalent or value."""

    code: str = "INVALID_OPENING"

    def __init__(self, product_id: str, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Invalid opening for product {product_id}: {reason}")


# Entity exceptions


class EntityError(FiscalKernelError):
    """Base exception for entity lookup errors."""

    code: str = "ENTITY_ERROR"


class CompanyNotFoundError(EntityError):
    """Company with given ID was not found."""

    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


class ProductNotFoundError(EntityError):
    """Product with given ID was not found for the company."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str, company_id: str | None = None):
        self.product_id = product_id
        self.company_id = company_id
        super().__init__(f"Product not found: {product_id}")


class DocumentNotFoundError(EntityError):
    """Fiscal document with given key was not found for the company."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, chave: str, company_id: str | None = None):
        self.chave = chave
        self.company_id = company_id
        super().__init__(f"Fiscal document not found: {chave}")


class CompanyScopeError(EntityError):
    """A reference crosses company boundaries."""

    code: str = "COMPANY_SCOPE_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, company_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.company_id = company_id
        super().__init__(
            f"{entity_type} {entity_id} does not belong to company {company_id}"
        )


# Document exceptions


class DocumentError(FiscalKernelError):
    """Base exception for fiscal document errors."""

    code: str = "DOCUMENT_ERROR"


class UnsupportedDocumentLayoutError(DocumentError):
    """Document direction cannot be derived from its parties."""

    code: str = "UNSUPPORTED_DOCUMENT_LAYOUT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Unsupported document layout: {reason}")


class UnsupportedUnitError(DocumentError):
    """Unit cannot be converted to the product's declared unit."""

    code: str = "UNSUPPORTED_UNIT"

    def __init__(self, unit: str | None, target_unit: str | None = None):
        self.unit = unit
        self.target_unit = target_unit
        super().__init__(
            f"Cannot convert unit {unit!r} to {target_unit!r}"
        )


# Report exceptions


class ReportError(FiscalKernelError):
    """Base exception for reporting errors."""

    code: str = "REPORT_ERROR"


class InvalidPeriodError(ReportError):
    """Report period is inverted."""

    code: str = "INVALID_PERIOD"

    def __init__(self, start_date: date, end_date: date):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Invalid period: {start_date.isoformat()} is after "
            f"{end_date.isoformat()}"
        )


# Concurrency exceptions


class ConcurrencyError(FiscalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
