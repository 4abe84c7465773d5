"""
BaseService -- common constructor for session-bound services.

Responsibility:
    Every service that writes receives a SQLAlchemy ``Session`` from its
    caller and persists with ``session.flush()``, never
    ``session.commit()``.  The caller (a ``session_scope`` block, a batch
    driver or a test) owns commit and rollback, so a multi-step operation
    such as "classify, persist, apply to ledger" is atomic.

Architecture position:
    Kernel > Services.  Extended by SequenceService and by the stateful
    services in fiscal_services.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """Flush-only service bound to the caller's session."""

    def __init__(self, session: Session):
        self.session = session
