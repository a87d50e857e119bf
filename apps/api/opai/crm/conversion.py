from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, NoReturn

from fastapi import HTTPException
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from opai import events
from opai.context import bind_context
from opai.core.config import get_settings
from opai.cpq.codes import QuoteCodeGenerator
from opai.cpq.quotes import create_fallback_quote, create_installation_quote
from opai.cpq.schedule import fold_text
from opai.cpq.schemas import QuoteSummary
from opai.crm.actor import ActorUser, require_tenant
from opai.crm.errors import (
    AlreadyConvertedError,
    ApprovalConflictError,
    LeadRejectedError,
    NotFoundError,
    PreconditionMissingError,
    UnexpectedConversionError,
)
from opai.crm.metadata import COMPANY_ENRICHMENT, INBOUND_EMAIL, get_namespace, merge_namespace
from opai.crm.models import (
    CRMAccount,
    CRMContact,
    CRMDeal,
    CRMDealContact,
    CRMDealQuote,
    CRMDealStageHistory,
    CRMEmailMessage,
    CRMEmailThread,
    CRMFileLink,
    CRMInstallation,
    CRMLead,
    CRMNote,
    CRMPipelineStage,
)
from opai.crm.schemas import (
    ApprovedAccount,
    ApprovedContact,
    ApprovedDeal,
    InstallationInput,
    LeadApproveRequest,
    LeadApproveResponse,
    OverwriteContact,
    UseExistingContact,
)
from opai.metrics import observe_lead_conversion, observe_quote_created
from opai.services.history import write_history_log


logger = logging.getLogger("opai.crm.conversion")
tracer = trace.get_tracer("opai.crm.conversion")

UNAVAILABLE_SENTINELS = {"no disponible", "n/a", "not available", "na"}

GENERIC_EMAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "hotmail.com",
    "outlook.com",
    "outlook.es",
    "yahoo.com",
    "yahoo.es",
    "live.com",
    "live.cl",
    "msn.com",
    "icloud.com",
    "me.com",
    "mac.com",
    "protonmail.com",
    "proton.me",
    "mail.com",
    "aol.com",
    "zoho.com",
    "yandex.com",
    "tutanota.com",
}

EMAIL_FORWARD_SOURCE = "email_forward"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def usable_value(value: str | None) -> str | None:
    """Strip ``value``; blanks and "not available" placeholders become ``None``."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped or fold_text(stripped) in UNAVAILABLE_SENTINELS:
        return None
    return stripped


UNNAMED_ACCOUNT = "Cliente sin nombre"
QUOTE_CODE_CONSTRAINT_MARKERS = ("uq_cpq_quote_code", "cpq_quote.code")
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}


def is_retryable_conflict(exc: IntegrityError | OperationalError) -> bool:
    """True for races a fresh attempt can win: quote code collisions and serialization or lock failures."""
    message = str(exc.orig)
    if isinstance(exc, IntegrityError):
        return any(marker in message for marker in QUOTE_CODE_CONSTRAINT_MARKERS)
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in RETRYABLE_SQLSTATES or "database is locked" in message


def website_from_email(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    if not domain or domain in GENERIC_EMAIL_DOMAINS:
        return None
    return f"https://{domain}"


def resolve_account_name(lead: CRMLead, dto: LeadApproveRequest) -> str:
    for candidate in (dto.account_name, lead.company_name):
        value = usable_value(candidate)
        if value:
            return value
    person = " ".join(part.strip() for part in (lead.first_name, lead.last_name) if part and part.strip())
    if person:
        return person
    if lead.email and lead.email.strip():
        return lead.email.strip()
    return UNNAMED_ACCOUNT


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


@dataclass
class _ConversionResult:
    response: LeadApproveResponse
    quote_kinds: list[str] = field(default_factory=list)


class LeadConversionService:
    """Turns a lead into account, contact, deal, installations and quotes in one unit of work."""

    def approve(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadApproveRequest,
    ) -> LeadApproveResponse:
        tenant_id = require_tenant(actor_user)
        started = time.perf_counter()
        with bind_context(tenant_id=tenant_id, lead_id=lead_id):
            with tracer.start_as_current_span("crm.lead.convert") as span:
                span.set_attribute("lead_id", str(lead_id))
                span.set_attribute("tenant_id", tenant_id)
                if actor_user.correlation_id:
                    span.set_attribute("correlation_id", actor_user.correlation_id)
                try:
                    result = self._convert(session, actor_user, tenant_id, lead_id, dto)
                    session.commit()
                except HTTPException as exc:
                    session.rollback()
                    outcome = getattr(exc, "code", "rejected")
                    observe_lead_conversion(outcome, time.perf_counter() - started)
                    span.set_status(Status(StatusCode.ERROR, str(exc.detail)))
                    logger.info(
                        "lead_conversion.rejected",
                        extra={"lead_id": str(lead_id), "outcome": outcome, "error": str(exc.detail)},
                    )
                    raise
                except (IntegrityError, OperationalError) as exc:
                    session.rollback()
                    if not is_retryable_conflict(exc):
                        self._fail_unexpected(span, lead_id, exc, time.perf_counter() - started)
                    observe_lead_conversion("conflict", time.perf_counter() - started)
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, "approval conflict"))
                    logger.warning(
                        "lead_conversion.conflict",
                        extra={"lead_id": str(lead_id), "outcome": "conflict", "error": str(exc)},
                    )
                    raise ApprovalConflictError(details={"lead_id": str(lead_id)}) from exc
                except Exception as exc:
                    session.rollback()
                    self._fail_unexpected(span, lead_id, exc, time.perf_counter() - started)

            self._after_commit(actor_user, tenant_id, result, time.perf_counter() - started)
        return result.response

    def _fail_unexpected(self, span: trace.Span, lead_id: uuid.UUID, exc: Exception, duration: float) -> NoReturn:
        observe_lead_conversion("failed", duration)
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, "unexpected"))
        logger.error(
            "lead_conversion.failed",
            exc_info=exc,
            extra={"lead_id": str(lead_id), "outcome": "failed", "error": str(exc)},
        )
        raise UnexpectedConversionError(details={"lead_id": str(lead_id)}) from exc

    def _after_commit(
        self,
        actor_user: ActorUser,
        tenant_id: str,
        result: _ConversionResult,
        duration: float,
    ) -> None:
        response = result.response
        observe_lead_conversion("approved", duration)
        for kind in result.quote_kinds:
            observe_quote_created(kind)

        identifiers = {
            "lead_id": str(response.lead_id),
            "account_id": str(response.account.id),
            "contact_id": str(response.contact.id),
            "deal_id": str(response.deal.id),
            "quote_ids": [str(quote.quote_id) for quote in response.quotes],
        }
        events.publish(
            events.build_envelope(
                events.LEAD_APPROVED,
                tenant_id=tenant_id,
                actor_user_id=actor_user.user_id,
                payload=identifiers,
            )
        )
        logger.info("lead_conversion.completed", extra={**identifiers, "outcome": "approved"})

    def _convert(
        self,
        session: Session,
        actor_user: ActorUser,
        tenant_id: str,
        lead_id: uuid.UUID,
        dto: LeadApproveRequest,
    ) -> _ConversionResult:
        lead = session.scalar(select(CRMLead).where(CRMLead.id == lead_id, CRMLead.tenant_id == tenant_id))
        if lead is None:
            raise NotFoundError("lead not found")
        if lead.status == "approved":
            raise AlreadyConvertedError("lead has already been approved")
        if lead.status == "rejected":
            raise LeadRejectedError("rejected lead cannot be approved")
        read_version = lead.row_version

        initial_stage = session.scalar(
            select(CRMPipelineStage)
            .where(CRMPipelineStage.tenant_id == tenant_id, CRMPipelineStage.is_active.is_(True))
            .order_by(CRMPipelineStage.sort_order.asc())
            .limit(1)
        )
        if initial_stage is None:
            raise PreconditionMissingError("no active pipeline stage configured")

        account = self._resolve_account(session, actor_user, tenant_id, lead, dto)
        contact = self._resolve_contact(session, tenant_id, lead, account, dto)
        deal = self._create_deal(session, actor_user, tenant_id, account, contact, initial_stage, dto)

        enrichment = merge_namespace(
            lead.lead_metadata,
            COMPANY_ENRICHMENT,
            {
                "website": account.website,
                "rut": account.rut,
                "legalName": account.legal_name,
                "legalRepresentativeName": account.legal_representative_name,
                "legalRepresentativeRut": account.legal_representative_rut,
                "industry": account.industry,
                "segment": account.segment,
                "logoUrl": account.logo_url,
                "companyInfo": account.notes,
                "capturedAt": utcnow().isoformat(),
            },
        )
        # Conditional on the version read above: a concurrent approval that
        # committed first leaves no matching row.
        result = session.execute(
            update(CRMLead)
            .where(
                CRMLead.id == lead.id,
                CRMLead.status.not_in(("approved", "rejected")),
                CRMLead.row_version == read_version,
            )
            .values(
                status="approved",
                approved_at=utcnow(),
                approved_by=actor_user.user_id,
                converted_account_id=account.id,
                converted_contact_id=contact.id,
                converted_deal_id=deal.id,
                lead_metadata=enrichment,
                updated_at=utcnow(),
                row_version=CRMLead.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyConvertedError("lead was approved or changed by a concurrent request", {"lead_id": str(lead.id)})
        session.refresh(lead)

        if lead.source == EMAIL_FORWARD_SOURCE:
            self._carry_inbound_email(session, actor_user, tenant_id, lead, account, contact, deal)

        settings = get_settings()
        codes = QuoteCodeGenerator(session, tenant_id, prefix=settings.quote_code_prefix)
        quotes: list[QuoteSummary] = []
        quote_kinds: list[str] = []

        for payload in dto.installations:
            if not payload.name.strip() and payload.use_existing_installation_id is None:
                continue
            installation = self._resolve_installation(session, tenant_id, account, payload)
            if not payload.staffing:
                continue
            quote = create_installation_quote(
                session,
                tenant_id=tenant_id,
                actor_id=actor_user.user_id,
                codes=codes,
                account=account,
                contact_id=contact.id,
                deal_id=deal.id,
                installation=installation,
                staffing=payload.staffing,
                cost_groups=dto.selected_cost_groups,
                notes=deal.notes,
            )
            quotes.append(QuoteSummary(quote_id=quote.id, code=quote.code, installation_name=installation.name))
            quote_kinds.append("installation")

        if not dto.installations and dto.installation_name and dto.installation_name.strip():
            self._resolve_installation(
                session,
                tenant_id,
                account,
                InstallationInput(
                    name=dto.installation_name.strip(),
                    address=dto.installation_address,
                    city=dto.installation_city,
                    commune=dto.installation_commune,
                ),
            )

        if not quotes:
            quote, installation = create_fallback_quote(
                session,
                tenant_id=tenant_id,
                actor_id=actor_user.user_id,
                codes=codes,
                account=account,
                contact_id=contact.id,
                deal_id=deal.id,
                cost_groups=dto.selected_cost_groups,
            )
            quotes.append(
                QuoteSummary(
                    quote_id=quote.id,
                    code=quote.code,
                    installation_name=installation.name if installation is not None else None,
                )
            )
            quote_kinds.append("fallback")

        for summary in quotes:
            session.add(CRMDealQuote(tenant_id=tenant_id, deal_id=deal.id, quote_id=summary.quote_id))
        session.add(CRMDealContact(tenant_id=tenant_id, deal_id=deal.id, contact_id=contact.id, role="primary"))
        session.flush()

        write_history_log(
            session,
            tenant_id=tenant_id,
            actor_id=actor_user.user_id,
            action="lead_approved",
            entity_type="lead",
            entity_id=str(lead.id),
            details={
                "account_id": str(account.id),
                "contact_id": str(contact.id),
                "deal_id": str(deal.id),
                "quote_ids": [str(summary.quote_id) for summary in quotes],
            },
        )

        response = LeadApproveResponse(
            lead_id=lead.id,
            account=ApprovedAccount(id=account.id, name=account.name),
            contact=ApprovedContact(id=contact.id, first_name=contact.first_name, last_name=contact.last_name),
            deal=ApprovedDeal(id=deal.id, title=deal.title),
            quotes=quotes,
        )
        return _ConversionResult(response=response, quote_kinds=quote_kinds)

    def _resolve_account(
        self,
        session: Session,
        actor_user: ActorUser,
        tenant_id: str,
        lead: CRMLead,
        dto: LeadApproveRequest,
    ) -> CRMAccount:
        website = (
            usable_value(dto.website)
            or usable_value(lead.website)
            or website_from_email(dto.email or lead.email)
        )
        incoming = {
            "rut": usable_value(dto.rut),
            "legal_name": usable_value(dto.legal_name),
            "legal_representative_name": usable_value(dto.legal_representative_name),
            "legal_representative_rut": usable_value(dto.legal_representative_rut),
            "industry": usable_value(dto.industry) or usable_value(lead.industry),
            "segment": usable_value(dto.segment),
            "website": website,
            "notes": usable_value(dto.account_notes),
            "logo_url": usable_value(dto.account_logo_url),
        }

        if dto.use_existing_account_id is not None:
            account = session.scalar(
                select(CRMAccount).where(
                    CRMAccount.id == dto.use_existing_account_id,
                    CRMAccount.tenant_id == tenant_id,
                )
            )
            if account is None:
                raise NotFoundError("account not found", {"account_id": str(dto.use_existing_account_id)})
            for attribute, value in incoming.items():
                if value is not None:
                    setattr(account, attribute, value)
            account.row_version = account.row_version + 1
            session.add(account)
            session.flush()
            return account

        account = CRMAccount(
            tenant_id=tenant_id,
            name=resolve_account_name(lead, dto),
            type="prospect",
            status="inactive",
            is_active=False,
            owner_user_id=actor_user.user_id,
            **incoming,
        )
        session.add(account)
        session.flush()
        return account

    def _resolve_contact(
        self,
        session: Session,
        tenant_id: str,
        lead: CRMLead,
        account: CRMAccount,
        dto: LeadApproveRequest,
    ) -> CRMContact:
        first_name = usable_value(dto.contact_first_name) or usable_value(lead.first_name)
        last_name = usable_value(dto.contact_last_name) or usable_value(lead.last_name)
        email = usable_value(dto.email) or usable_value(lead.email)
        phone = usable_value(dto.phone) or usable_value(lead.phone)
        role_title = usable_value(dto.role_title)

        resolution = dto.resolution
        if isinstance(resolution, (OverwriteContact, UseExistingContact)):
            contact = session.scalar(
                select(CRMContact).where(CRMContact.id == resolution.contact_id, CRMContact.tenant_id == tenant_id)
            )
            if contact is None:
                raise NotFoundError("contact not found", {"contact_id": str(resolution.contact_id)})
            if isinstance(resolution, OverwriteContact):
                if first_name is not None:
                    contact.first_name = first_name
                if last_name is not None:
                    contact.last_name = last_name
                if email is not None:
                    contact.email = email
                if phone is not None:
                    contact.phone = phone
                if role_title is not None:
                    contact.role_title = role_title
            contact.account_id = account.id
            contact.row_version = contact.row_version + 1
        else:
            contact = CRMContact(
                tenant_id=tenant_id,
                account_id=account.id,
                first_name=first_name or "Contacto",
                last_name=last_name or "",
                email=email,
                phone=phone,
                role_title=role_title,
            )

        contact.is_primary = True
        session.add(contact)
        session.flush()
        session.execute(
            update(CRMContact)
            .where(
                CRMContact.account_id == account.id,
                CRMContact.id != contact.id,
                CRMContact.is_primary.is_(True),
            )
            .values(is_primary=False)
            .execution_options(synchronize_session="fetch")
        )
        return contact

    def _create_deal(
        self,
        session: Session,
        actor_user: ActorUser,
        tenant_id: str,
        account: CRMAccount,
        contact: CRMContact,
        initial_stage: CRMPipelineStage,
        dto: LeadApproveRequest,
    ) -> CRMDeal:
        notes = dto.notes.strip() if dto.notes and dto.notes.strip() else None
        deal = CRMDeal(
            tenant_id=tenant_id,
            account_id=account.id,
            primary_contact_id=contact.id,
            stage_id=initial_stage.id,
            title=usable_value(dto.deal_title) or f"Oportunidad {account.name}",
            amount=dto.deal_amount if dto.deal_amount is not None else Decimal("0"),
            probability=dto.deal_probability or 0,
            expected_close_date=dto.deal_expected_close_date,
            notes=notes,
            status="open",
        )
        session.add(deal)
        session.flush()

        session.add(
            CRMDealStageHistory(
                tenant_id=tenant_id,
                deal_id=deal.id,
                from_stage_id=None,
                to_stage_id=initial_stage.id,
                changed_by=actor_user.user_id,
                notes=notes,
            )
        )
        session.flush()
        if notes:
            session.add(
                CRMNote(
                    tenant_id=tenant_id,
                    entity_type="deal",
                    entity_id=deal.id,
                    content=notes,
                    created_by=actor_user.user_id,
                )
            )
            session.flush()
        return deal

    def _carry_inbound_email(
        self,
        session: Session,
        actor_user: ActorUser,
        tenant_id: str,
        lead: CRMLead,
        account: CRMAccount,
        contact: CRMContact,
        deal: CRMDeal,
    ) -> None:
        lead_files = session.scalars(
            select(CRMFileLink).where(
                CRMFileLink.tenant_id == tenant_id,
                CRMFileLink.entity_type == "lead",
                CRMFileLink.entity_id == lead.id,
            )
        ).all()
        for link in lead_files:
            for entity_type, entity_id in (("deal", deal.id), ("account", account.id)):
                session.add(
                    CRMFileLink(
                        tenant_id=tenant_id,
                        file_id=link.file_id,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        created_by=actor_user.user_id,
                    )
                )

        inbound = get_namespace(lead.lead_metadata, INBOUND_EMAIL)
        if inbound is not None:
            subject = str(inbound.get("subject") or "(sin asunto)")
            received_at = _parse_timestamp(inbound.get("receivedAt")) or lead.created_at
            thread = CRMEmailThread(
                tenant_id=tenant_id,
                account_id=account.id,
                contact_id=contact.id,
                deal_id=deal.id,
                subject=subject,
                last_message_at=received_at,
            )
            session.add(thread)
            session.flush()
            session.add(
                CRMEmailMessage(
                    tenant_id=tenant_id,
                    thread_id=thread.id,
                    direction="in",
                    provider="inbound",
                    from_email=str(inbound.get("from") or lead.email or ""),
                    to_emails=[],
                    subject=subject,
                    html_body=inbound.get("html"),
                    text_body=inbound.get("text"),
                    source=EMAIL_FORWARD_SOURCE,
                    received_at=received_at,
                    created_by=actor_user.user_id,
                )
            )
        session.flush()

    def _resolve_installation(
        self,
        session: Session,
        tenant_id: str,
        account: CRMAccount,
        payload: InstallationInput,
    ) -> CRMInstallation:
        if payload.use_existing_installation_id is not None:
            installation = session.scalar(
                select(CRMInstallation).where(
                    CRMInstallation.id == payload.use_existing_installation_id,
                    CRMInstallation.tenant_id == tenant_id,
                )
            )
            if installation is None or installation.account_id != account.id:
                raise NotFoundError(
                    "installation not found for account",
                    {"installation_id": str(payload.use_existing_installation_id), "account_id": str(account.id)},
                )
            return installation

        name = payload.name.strip()
        existing = session.scalar(
            select(CRMInstallation)
            .where(
                CRMInstallation.tenant_id == tenant_id,
                CRMInstallation.account_id == account.id,
                func.lower(CRMInstallation.name) == name.lower(),
            )
            .limit(1)
        )
        if existing is not None:
            return existing

        installation = CRMInstallation(
            tenant_id=tenant_id,
            account_id=account.id,
            name=name,
            address=usable_value(payload.address),
            city=usable_value(payload.city),
            commune=usable_value(payload.commune),
            lat=payload.lat,
            lng=payload.lng,
            is_active=False,
        )
        session.add(installation)
        session.flush()
        return installation


lead_conversion_service = LeadConversionService()
