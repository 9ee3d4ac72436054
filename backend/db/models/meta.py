"""Process-wide ledger pointer state."""

from __future__ import annotations

import logging

from sqlalchemy import PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class LedgerMetaEntry(Base):
    """Key/value pointer row (last_processed_block, current_token_address)."""

    __tablename__ = "meta"
    __table_args__ = (PrimaryKeyConstraint("key", name="pk_meta"),)

    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str | None] = mapped_column(Text)
