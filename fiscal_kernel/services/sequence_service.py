"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing integers per sequence name.  Movement
    records use one sequence per company ("movement:<company_id>") as the
    tie-breaker between movements that share a date, which makes the
    canonical ledger order (date, sequence) total.

Architecture position:
    Kernel > Services.  Called by the document import and ledger services.

Invariants enforced:
    - The locked counter row is the only source of the next value;
      MAX(sequence) + 1 is never used.
    - The increment is visible only after the caller commits; a rollback
      returns the value.

Failure modes:
    - IntegrityError on a concurrent first use of a name, handled by a
      savepoint rollback and a locked re-read.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.models.sequence import SequenceCounter
from fiscal_kernel.services.base import BaseService

logger = get_logger("services.sequence")


def movement_sequence_name(company_id: UUID) -> str:
    return f"movement:{company_id}"


class SequenceService(BaseService):
    """
    Transactional named counters.

    Usage:
        with session_scope() as session:
            seq = SequenceService(session).next_value(movement_sequence_name(cid))
    """

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter row, increment it and return it."""
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self.session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self.session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
