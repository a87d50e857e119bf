from __future__ import annotations

import secrets
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from opai.cpq.models import CpqQuote


class QuoteCodeGenerator:
    """Issue quote codes shaped ``PREFIX-YEAR-SEQ-RAND`` for one conversion.

    The tenant's quote count is read once; every code issued afterwards by the
    same generator takes the next sequence number, so quotes created together
    get ascending sequences. The random hex suffix keeps two conversions that
    read the same count from producing identical codes. Uniqueness itself is
    enforced by the unique constraint on ``cpq_quote.code``.
    """

    def __init__(self, session: Session, tenant_id: str, prefix: str = "CPQ", year: int | None = None) -> None:
        self.session = session
        self.tenant_id = tenant_id
        self.prefix = prefix
        self.year = year if year is not None else datetime.now(timezone.utc).year
        self._base: int | None = None
        self._issued = 0

    def _base_count(self) -> int:
        if self._base is None:
            self._base = (
                self.session.scalar(
                    select(func.count()).select_from(CpqQuote).where(CpqQuote.tenant_id == self.tenant_id)
                )
                or 0
            )
        return self._base

    def next_code(self) -> str:
        sequence = self._base_count() + self._issued + 1
        self._issued += 1
        suffix = secrets.token_hex(2).upper()
        return f"{self.prefix}-{self.year}-{sequence:03d}-{suffix}"
