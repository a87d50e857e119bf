from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from opai.core.config import get_settings
from opai.cpq.codes import QuoteCodeGenerator
from opai.cpq.cost_groups import apply_cost_groups
from opai.cpq.models import CpqPosition, CpqQuote
from opai.cpq.references import Unresolvable, job_title_label, resolve_cargo, resolve_job_title, resolve_rol
from opai.cpq.schedule import normalize_time, normalize_weekdays
from opai.cpq.schemas import StaffingLineInput
from opai.crm.errors import PreconditionMissingError
from opai.crm.models import CRMAccount, CRMInstallation, CRMNote


def _base_salary(value: Decimal | None) -> Decimal:
    if value is None or value <= 0:
        return Decimal(get_settings().staffing_default_base_salary)
    return value


def _new_quote(
    session: Session,
    *,
    tenant_id: str,
    actor_id: str,
    codes: QuoteCodeGenerator,
    account: CRMAccount,
    contact_id: uuid.UUID,
    deal_id: uuid.UUID,
    installation_id: uuid.UUID | None,
    total_positions: int,
    total_guards: int,
    notes: str | None,
) -> CpqQuote:
    quote = CpqQuote(
        tenant_id=tenant_id,
        code=codes.next_code(),
        status="draft",
        client_name=account.name,
        account_id=account.id,
        contact_id=contact_id,
        deal_id=deal_id,
        installation_id=installation_id,
        total_positions=total_positions,
        total_guards=total_guards,
        monthly_cost=Decimal("0"),
        currency=get_settings().quote_default_currency,
        notes=notes,
        created_by=actor_id,
    )
    session.add(quote)
    session.flush()
    return quote


def create_installation_quote(
    session: Session,
    *,
    tenant_id: str,
    actor_id: str,
    codes: QuoteCodeGenerator,
    account: CRMAccount,
    contact_id: uuid.UUID,
    deal_id: uuid.UUID,
    installation: CRMInstallation,
    staffing: Sequence[StaffingLineInput],
    cost_groups: Iterable[str] | None,
    notes: str | None = None,
) -> CpqQuote:
    """Expand an installation's staffing plan into a draft quote.

    Positions are created in the order of ``staffing``. Cost fields on each
    position start at zero and are filled by the pricing pass later. Raises
    ``PreconditionMissingError`` when no active cargo or rol can be resolved.
    """
    settings = get_settings()
    quote = _new_quote(
        session,
        tenant_id=tenant_id,
        actor_id=actor_id,
        codes=codes,
        account=account,
        contact_id=contact_id,
        deal_id=deal_id,
        installation_id=installation.id,
        total_positions=sum(line.num_puestos for line in staffing),
        total_guards=sum(line.headcount for line in staffing),
        notes=notes,
    )
    if notes and notes.strip():
        session.add(
            CRMNote(
                tenant_id=tenant_id,
                entity_type="quote",
                entity_id=quote.id,
                content=notes.strip(),
                created_by=actor_id,
            )
        )

    for index, line in enumerate(staffing):
        label = job_title_label(line.custom_name, line.job_title)
        job_title = resolve_job_title(session, line.job_title_id, label)
        cargo = resolve_cargo(session, line.cargo_id)
        if isinstance(cargo, Unresolvable):
            raise PreconditionMissingError(cargo.reason, {"installation_name": installation.name})
        rol = resolve_rol(session, line.rol_id)
        if isinstance(rol, Unresolvable):
            raise PreconditionMissingError(rol.reason, {"installation_name": installation.name})

        session.add(
            CpqPosition(
                quote_id=quote.id,
                puesto_trabajo_id=job_title.id,
                cargo_id=cargo.id,
                rol_id=rol.id,
                custom_name=line.custom_name.strip() if line.custom_name and line.custom_name.strip() else None,
                weekdays=normalize_weekdays(line.weekdays),
                start_time=normalize_time(line.start_time, settings.staffing_default_start_time),
                end_time=normalize_time(line.end_time, settings.staffing_default_end_time),
                num_guards=line.headcount,
                num_puestos=line.num_puestos,
                base_salary=_base_salary(line.base_salary),
                employer_cost=Decimal("0"),
                net_salary=Decimal("0"),
                monthly_position_cost=Decimal("0"),
                sort_order=index,
            )
        )
        session.flush()

    apply_cost_groups(session, tenant_id, quote, cost_groups)
    return quote


def create_fallback_quote(
    session: Session,
    *,
    tenant_id: str,
    actor_id: str,
    codes: QuoteCodeGenerator,
    account: CRMAccount,
    contact_id: uuid.UUID,
    deal_id: uuid.UUID,
    cost_groups: Iterable[str] | None,
) -> tuple[CpqQuote, CRMInstallation | None]:
    latest_installation = session.scalar(
        select(CRMInstallation)
        .where(CRMInstallation.tenant_id == tenant_id, CRMInstallation.account_id == account.id)
        .order_by(CRMInstallation.created_at.desc())
        .limit(1)
    )
    quote = _new_quote(
        session,
        tenant_id=tenant_id,
        actor_id=actor_id,
        codes=codes,
        account=account,
        contact_id=contact_id,
        deal_id=deal_id,
        installation_id=latest_installation.id if latest_installation is not None else None,
        total_positions=0,
        total_guards=0,
        notes=None,
    )
    apply_cost_groups(session, tenant_id, quote, cost_groups)
    return quote, latest_installation
