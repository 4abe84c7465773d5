"""Kernel services: flush-only, the caller owns the transaction."""

from fiscal_kernel.services.base import BaseService
from fiscal_kernel.services.sequence_service import (
    SequenceService,
    movement_sequence_name,
)

__all__ = ["BaseService", "SequenceService", "movement_sequence_name"]
