"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.events import TransferEventRow
from backend.db.models.holders import HolderBalance
from backend.db.models.meta import LedgerMetaEntry

logger = logging.getLogger(__name__)

__all__ = [
    "HolderBalance",
    "LedgerMetaEntry",
    "TransferEventRow",
]
