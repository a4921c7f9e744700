"""
Document Numbering.

Human-readable numbers of the form ``{prefix}{yyyymm}{seq:04d}``
(``PC2024050001``, ``FT2024050012``).  Each prefix and month has its own
atomic counter, so numbers are never reused even after deletions.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pettycash.logger import StructuredLogger
from pettycash.repositories.sequence_repository import SequenceRepository
from pettycash.services.base_service import BaseService
from pettycash.utils.general import utc_now


class DocumentNumberService(BaseService):
    """Issues the next claim or transfer number for a prefix and month."""

    def __init__(self, sequence_repo: SequenceRepository, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._repo = sequence_repo

    def next_number(self, prefix: str, on: Optional[date] = None) -> str:
        period = (on or utc_now().date()).strftime("%Y%m")
        seq = self._repo.next_value(f"{prefix}:{period}")
        return f"{prefix}{period}{seq:04d}"
