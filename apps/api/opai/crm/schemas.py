from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from opai.cpq.cost_groups import DEFAULT_COST_GROUPS
from opai.cpq.schemas import QuoteSummary, StaffingLineInput


LeadStatus = Literal["pending", "in_review", "approved", "rejected"]
ContactResolutionMode = Literal["create", "overwrite", "use_existing"]


@dataclass(frozen=True)
class CreateContact:
    pass


@dataclass(frozen=True)
class OverwriteContact:
    contact_id: UUID


@dataclass(frozen=True)
class UseExistingContact:
    contact_id: UUID


ContactResolution = CreateContact | OverwriteContact | UseExistingContact


class LeadCreate(BaseModel):
    source: str | None = None
    company_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    industry: str | None = None
    website: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


class LeadRead(BaseModel):
    id: UUID
    tenant_id: str
    status: LeadStatus | str
    source: str | None
    company_name: str | None
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    industry: str | None
    website: str | None
    notes: str | None
    metadata: dict[str, Any] | None
    approved_at: datetime | None
    approved_by: str | None
    converted_account_id: UUID | None
    converted_contact_id: UUID | None
    converted_deal_id: UUID | None
    created_at: datetime
    updated_at: datetime


class LeadRejectRequest(BaseModel):
    reason: str = Field(min_length=1)
    note: str | None = None


class InstallationInput(BaseModel):
    name: str = ""
    address: str | None = None
    city: str | None = None
    commune: str | None = None
    lat: float | None = None
    lng: float | None = None
    use_existing_installation_id: UUID | None = None
    staffing: list[StaffingLineInput] = Field(default_factory=list)


class LeadApproveRequest(BaseModel):
    check_duplicates: bool = False

    use_existing_account_id: UUID | None = None
    account_name: str | None = None
    rut: str | None = None
    legal_name: str | None = None
    legal_representative_name: str | None = None
    legal_representative_rut: str | None = None
    industry: str | None = None
    segment: str | None = None
    website: str | None = None
    account_notes: str | None = None
    account_logo_url: str | None = None

    contact_resolution: ContactResolutionMode = "create"
    contact_id: UUID | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    role_title: str | None = None

    deal_title: str | None = None
    deal_amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    deal_probability: int | None = Field(default=None, ge=0, le=100)
    deal_expected_close_date: date | None = None
    notes: str | None = None

    installations: list[InstallationInput] = Field(default_factory=list)
    installation_name: str | None = None
    installation_address: str | None = None
    installation_city: str | None = None
    installation_commune: str | None = None

    selected_cost_groups: list[str] = Field(default_factory=lambda: list(DEFAULT_COST_GROUPS))

    @model_validator(mode="after")
    def validate_contact_resolution(self) -> "LeadApproveRequest":
        if self.contact_resolution != "create" and self.contact_id is None:
            raise ValueError(f"contact_id is required when contact_resolution is {self.contact_resolution}")
        return self

    @property
    def resolution(self) -> ContactResolution:
        if self.contact_resolution == "overwrite" and self.contact_id is not None:
            return OverwriteContact(self.contact_id)
        if self.contact_resolution == "use_existing" and self.contact_id is not None:
            return UseExistingContact(self.contact_id)
        return CreateContact()

    @property
    def installation_names(self) -> list[str]:
        names = [item.name.strip() for item in self.installations if item.name and item.name.strip()]
        if not names and self.installation_name and self.installation_name.strip():
            names.append(self.installation_name.strip())
        return names


class DuplicateAccount(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    rut: str | None
    type: str


class ExistingContact(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None


class InstallationConflict(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class DuplicateCheckResponse(BaseModel):
    duplicates: list[DuplicateAccount] = Field(default_factory=list)
    existing_contact: ExistingContact | None = None
    installation_conflicts: list[InstallationConflict] = Field(default_factory=list)
    has_conflicts: bool = False
    message: str | None = None


class ApprovedAccount(BaseModel):
    id: UUID
    name: str


class ApprovedContact(BaseModel):
    id: UUID
    first_name: str
    last_name: str


class ApprovedDeal(BaseModel):
    id: UUID
    title: str


class LeadApproveResponse(BaseModel):
    lead_id: UUID
    account: ApprovedAccount
    contact: ApprovedContact
    deal: ApprovedDeal
    quotes: list[QuoteSummary]
