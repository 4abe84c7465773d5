"""
Domain layer - pure value objects and text rules.

Nothing in this package touches the database, the clock or the filesystem.
"""

from fiscal_kernel.domain.direction import (
    derive_document_direction,
    direction_from_cfop,
    normalize_tax_id,
)
from fiscal_kernel.domain.movement import (
    ClassificationSource,
    ClassificationStatus,
    Direction,
    DocumentLine,
    LedgerStatus,
    LineOutcome,
    MovementDescriptor,
    MovementFlag,
    NaturezaView,
    UnclassifiedMovement,
    UnclassifiedReason,
)
from fiscal_kernel.domain.natop import (
    build_cfop_composite,
    determine_primary_cfop,
    nat_op_key,
    normalize_nat_op,
    sanitize_nat_op,
    strip_key,
)

__all__ = [
    "ClassificationSource",
    "ClassificationStatus",
    "Direction",
    "DocumentLine",
    "LedgerStatus",
    "LineOutcome",
    "MovementDescriptor",
    "MovementFlag",
    "NaturezaView",
    "UnclassifiedMovement",
    "UnclassifiedReason",
    "build_cfop_composite",
    "derive_document_direction",
    "determine_primary_cfop",
    "direction_from_cfop",
    "nat_op_key",
    "normalize_nat_op",
    "normalize_tax_id",
    "sanitize_nat_op",
    "strip_key",
]
