"""Append-only transfer event log model definitions."""

from __future__ import annotations

import logging

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, LargeBinary, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class TransferEventRow(Base):
    """Observed Transfer log, unique and totally ordered by (block, log_index)."""

    __tablename__ = "events"
    __table_args__ = (
        PrimaryKeyConstraint("block", "log_index", name="pk_events"),
        CheckConstraint("block >= 0", name="ck_events_block_nonneg"),
        CheckConstraint("log_index >= 0", name="ck_events_log_index_nonneg"),
        Index("ix_events_block", "block"),
        Index("ix_events_txhash", "txhash"),
    )

    block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    txhash: Mapped[str] = mapped_column(Text, nullable=False)
    from_address: Mapped[str] = mapped_column(Text, nullable=False)
    to_address: Mapped[str] = mapped_column(Text, nullable=False)
    # uint256 as decimal text.
    value: Mapped[str] = mapped_column(Text, nullable=False)
    topic0: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
