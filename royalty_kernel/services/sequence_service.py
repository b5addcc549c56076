"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Strictly increasing, gap-free batch numbers.  A dedicated counter row,
    locked with ``SELECT ... FOR UPDATE``, is the only source of truth;
    max()+1 over the data table is never used.  The lock is held to commit, so
    only batch opening uses it; audit entries draw from a database sequence.

Failure modes:
    - IntegrityError when two transactions create the same counter
      concurrently: handled by a savepoint rollback and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional sequence numbers.

    The increment becomes visible when the caller's transaction commits and
    disappears if it rolls back.
    """

    BATCH_NUMBER = "batch_number"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it and return the new value.

        Returns:
            An integer > 0, greater than any value previously returned for
            this sequence name.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use; another transaction may be creating it too
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
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
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int:
        """Current value without incrementing (0 if never allocated)."""
        value = self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()
        return value or 0
