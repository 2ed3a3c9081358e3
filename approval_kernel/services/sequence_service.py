"""
SequenceService -- per (type, day) request numbers via an atomic upsert.

Responsibility:
    Issues human-readable request identifiers ``PREFIX-TYPE-YYMMDD-NNN``.
    The counter for a (sequence type, calendar day) pair lives in one row
    of ``sequence_counters``; the first allocation of a day creates it with
    value 1, later allocations increment it.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the orchestrator when a request is created, and by the
    sequence administration CLI.

Invariants enforced:
    - Uniqueness: creation and increment are ONE statement,
      ``INSERT ... ON CONFLICT (sequence_type, date_key) DO UPDATE SET
      current_value = current_value + 1 RETURNING current_value``.
      Read-then-write is FORBIDDEN -- it races under concurrent creations.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.
    - Formatting never truncates: counters wider than ``min_width`` keep
      all their digits.

Failure modes:
    - StorageUnavailableError: the statement timed out or the connection
      was lost.  No identifier is issued; the enclosing creation fails.
    - SequenceConflictError: the upsert returned no row.

Audit relevance:
    Allocation is logged at DEBUG level.  Resets are audited by the caller
    (``SEQUENCE_RESET``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import BigInteger, String, UniqueConstraint, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Mapped, Session, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.db.engine import translate_storage_errors
from approval_kernel.exceptions import SequenceConflictError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

DEFAULT_PREFIX = "WFMT"
DEFAULT_MIN_WIDTH = 3


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is the counter of one request type on one calendar day.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("sequence_type", "date_key", name="uq_sequence_counters_type_day"),
    )

    # Request type tag (e.g. "MAF", "PR")
    sequence_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Calendar day, YYYY-MM-DD
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


@dataclass(frozen=True)
class SequenceCounterInfo:
    sequence_type: str
    date_key: str
    current_value: int


def date_key_for(as_of: date | datetime) -> str:
    if isinstance(as_of, datetime):
        as_of = as_of.date()
    return as_of.strftime("%Y-%m-%d")


def format_identifier(
    prefix: str,
    sequence_type: str,
    as_of: date | datetime,
    value: int,
    min_width: int = DEFAULT_MIN_WIDTH,
) -> str:
    """``PREFIX-TYPE-YYMMDD-NNN``, counter zero-padded to at least min_width."""
    if isinstance(as_of, datetime):
        as_of = as_of.date()
    return f"{prefix}-{sequence_type}-{as_of.strftime('%y%m%d')}-{value:0{min_width}d}"


class SequenceService:
    """
    Service for allocating request sequence numbers.

    Contract:
        ``next_value`` returns a value no concurrent caller for the same
        (type, day) will ever receive.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT guarantee gap-free numbering across rolled-back
          transactions on every backend.
    """

    def __init__(
        self,
        session: Session,
        prefix: str = DEFAULT_PREFIX,
        min_width: int = DEFAULT_MIN_WIDTH,
    ):
        self._session = session
        self._prefix = prefix
        self._min_width = min_width

    def _insert_for_dialect(self):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(SequenceCounter)
        if dialect == "sqlite":
            return sqlite.insert(SequenceCounter)
        raise ValueError(f"Unsupported database dialect for sequence allocation: {dialect}")

    def next_value(self, sequence_type: str, as_of: date | datetime) -> int:
        """
        Atomically increment and read the counter for (type, day).

        Postconditions:
            - Returns 1 on the first call for a (type, day) pair and the
              previous value + 1 afterwards.

        Raises:
            StorageUnavailableError: The upsert could not be executed.
        """
        if not sequence_type:
            raise ValueError("sequence_type must be non-empty")
        key = date_key_for(as_of)

        stmt = self._insert_for_dialect().values(
            sequence_type=sequence_type,
            date_key=key,
            current_value=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["sequence_type", "date_key"],
            set_={"current_value": SequenceCounter.current_value + 1},
        ).returning(SequenceCounter.current_value)

        with translate_storage_errors("sequence.next_value"):
            value = self._session.execute(stmt).scalar_one_or_none()
        if value is None:
            raise SequenceConflictError(sequence_type, key)

        logger.debug(
            "sequence_allocated",
            extra={"sequence_type": sequence_type, "date_key": key, "value": value},
        )
        return value

    def next_identifier(self, sequence_type: str, as_of: date | datetime) -> str:
        """Allocate a value and format it as ``PREFIX-TYPE-YYMMDD-NNN``."""
        value = self.next_value(sequence_type, as_of)
        return format_identifier(self._prefix, sequence_type, as_of, value, self._min_width)

    def current_value(self, sequence_type: str, date_key: str) -> int | None:
        """Current counter value, or None if no number was issued that day."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.sequence_type == sequence_type,
                SequenceCounter.date_key == date_key,
            )
        ).scalar_one_or_none()

    def list_counters(self, sequence_type: str | None = None) -> tuple[SequenceCounterInfo, ...]:
        """All counters, newest day first."""
        stmt = select(SequenceCounter)
        if sequence_type is not None:
            stmt = stmt.where(SequenceCounter.sequence_type == sequence_type)
        stmt = stmt.order_by(SequenceCounter.date_key.desc(), SequenceCounter.sequence_type)
        return tuple(
            SequenceCounterInfo(c.sequence_type, c.date_key, c.current_value)
            for c in self._session.execute(stmt).scalars()
        )

    def reset(self, sequence_type: str, date_key: str, value: int = 0) -> int | None:
        """
        Set a counter to ``value``; returns the previous value.

        WARNING: resetting below an issued value makes the next allocation
        collide with an existing sequence number (the unique constraint on
        requests rejects it).  Administrative use only.
        """
        if value < 0:
            raise ValueError("Sequence value must be non-negative")

        counter = self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.sequence_type == sequence_type,
                SequenceCounter.date_key == date_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            previous = None
            self._session.add(
                SequenceCounter(sequence_type=sequence_type, date_key=date_key, current_value=value)
            )
        else:
            previous = counter.current_value
            counter.current_value = value

        self._session.flush()
        logger.info(
            "sequence_reset",
            extra={
                "sequence_type": sequence_type,
                "date_key": date_key,
                "previous_value": previous,
                "value": value,
            },
        )
        return previous
