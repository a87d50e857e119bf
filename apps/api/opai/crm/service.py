from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from opai import events
from opai.crm.actor import ActorUser, require_tenant
from opai.crm.conversion import UNNAMED_ACCOUNT, LeadConversionService, resolve_account_name, usable_value
from opai.crm.errors import AlreadyConvertedError, NotFoundError
from opai.crm.identity import IdentityResolver
from opai.crm.metadata import REJECTION, merge_namespace
from opai.crm.models import CRMLead
from opai.crm.schemas import (
    DuplicateCheckResponse,
    LeadApproveRequest,
    LeadApproveResponse,
    LeadCreate,
    LeadRead,
    LeadRejectRequest,
)
from opai.services.history import write_history_log


logger = logging.getLogger("opai.crm.leads")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadService:
    def __init__(
        self,
        identity_resolver: IdentityResolver | None = None,
        conversion_service: LeadConversionService | None = None,
    ) -> None:
        self.identity_resolver = identity_resolver or IdentityResolver()
        self.conversion_service = conversion_service or LeadConversionService()

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate) -> LeadRead:
        tenant_id = require_tenant(actor_user)
        lead = CRMLead(
            tenant_id=tenant_id,
            status="pending",
            source=dto.source,
            company_name=dto.company_name,
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=str(dto.email) if dto.email is not None else None,
            phone=dto.phone,
            industry=dto.industry,
            website=dto.website,
            notes=dto.notes,
            lead_metadata=dto.metadata,
        )
        session.add(lead)
        try:
            session.flush()
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead create conflict")
        session.refresh(lead)
        logger.info("lead.created", extra={"lead_id": str(lead.id)})
        return self._to_read(lead)

    def get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadRead:
        return self._to_read(self._get_lead(session, actor_user, lead_id))

    def check_duplicates(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadApproveRequest,
    ) -> DuplicateCheckResponse:
        lead = self._get_lead(session, actor_user, lead_id)
        account_name = resolve_account_name(lead, dto)
        return self.identity_resolver.check_duplicates(
            session,
            lead.tenant_id,
            account_name=None if account_name == UNNAMED_ACCOUNT else account_name,
            email=usable_value(dto.email) or usable_value(lead.email),
            installation_names=dto.installation_names,
            existing_account_id=dto.use_existing_account_id,
        )

    def approve_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadApproveRequest,
    ) -> LeadApproveResponse:
        return self.conversion_service.approve(session, actor_user, lead_id, dto)

    def reject_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadRejectRequest,
    ) -> LeadRead:
        lead = self._get_lead(session, actor_user, lead_id)
        if lead.status == "approved":
            raise AlreadyConvertedError("approved lead cannot be rejected")

        rejected_at = utcnow()
        metadata = merge_namespace(
            lead.lead_metadata,
            REJECTION,
            {
                "reason": dto.reason,
                "note": dto.note,
                "rejectedAt": rejected_at.isoformat(),
                "rejectedBy": actor_user.user_id,
            },
        )
        result = session.execute(
            update(CRMLead)
            .where(CRMLead.id == lead.id, CRMLead.status != "approved", CRMLead.row_version == lead.row_version)
            .values(status="rejected", lead_metadata=metadata, updated_at=rejected_at, row_version=CRMLead.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise AlreadyConvertedError("lead was approved or changed by a concurrent request")
        session.refresh(lead)
        write_history_log(
            session,
            tenant_id=lead.tenant_id,
            actor_id=actor_user.user_id,
            action="lead_rejected",
            entity_type="lead",
            entity_id=str(lead.id),
            details={"reason": dto.reason},
        )
        session.commit()
        session.refresh(lead)

        events.publish(
            events.build_envelope(
                events.LEAD_REJECTED,
                tenant_id=lead.tenant_id,
                actor_user_id=actor_user.user_id,
                payload={"lead_id": str(lead.id), "reason": dto.reason},
                occurred_at=rejected_at,
            )
        )
        logger.info("lead.rejected", extra={"lead_id": str(lead.id)})
        return self._to_read(lead)

    def _get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> CRMLead:
        tenant_id = require_tenant(actor_user)
        lead = session.scalar(select(CRMLead).where(CRMLead.id == lead_id, CRMLead.tenant_id == tenant_id))
        if lead is None:
            raise NotFoundError("lead not found")
        return lead

    def _to_read(self, lead: CRMLead) -> LeadRead:
        return LeadRead(
            id=lead.id,
            tenant_id=lead.tenant_id,
            status=lead.status,
            source=lead.source,
            company_name=lead.company_name,
            first_name=lead.first_name,
            last_name=lead.last_name,
            email=lead.email,
            phone=lead.phone,
            industry=lead.industry,
            website=lead.website,
            notes=lead.notes,
            metadata=lead.lead_metadata,
            approved_at=lead.approved_at,
            approved_by=lead.approved_by,
            converted_account_id=lead.converted_account_id,
            converted_contact_id=lead.converted_contact_id,
            converted_deal_id=lead.converted_deal_id,
            created_at=lead.created_at,
            updated_at=lead.updated_at,
        )


lead_service = LeadService()
