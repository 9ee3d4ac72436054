"""Materialized current-balance model definitions."""

from __future__ import annotations

import logging

from sqlalchemy import PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class HolderBalance(Base):
    """Current non-zero balance per lower-cased holder address."""

    __tablename__ = "holders"
    __table_args__ = (PrimaryKeyConstraint("address", name="pk_holders"),)

    address: Mapped[str] = mapped_column(Text, nullable=False)
    balance: Mapped[str] = mapped_column(Text, nullable=False)
