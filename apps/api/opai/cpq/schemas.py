from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class StaffingLineInput(BaseModel):
    job_title_id: UUID | None = None
    job_title: str | None = None
    custom_name: str | None = None
    cargo_id: UUID | None = None
    rol_id: UUID | None = None
    base_salary: Decimal | None = None
    headcount: int = Field(default=1, ge=1)
    num_puestos: int = Field(default=1, ge=1)
    start_time: str | None = None
    end_time: str | None = None
    weekdays: list[str | None] | None = None


class QuoteSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quote_id: UUID
    code: str
    installation_name: str | None = None
