from __future__ import annotations

import re
import uuid
from collections.abc import Generator
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opai import events, models  # noqa: F401
from opai.core.config import get_settings
from opai.core.database import Base
from opai.cpq.codes import QuoteCodeGenerator
from opai.cpq.models import (
    CpqCargo,
    CpqPosition,
    CpqPuestoTrabajo,
    CpqQuote,
    CpqQuoteCostItem,
    CpqQuoteUniformItem,
    CpqRol,
)
from opai.cpq.seed import seed_cpq_catalogs, seed_pipeline_stages
from opai.crm.actor import ActorUser
from opai.crm.conversion import UNNAMED_ACCOUNT, LeadConversionService
from opai.crm.errors import (
    AlreadyConvertedError,
    ApprovalConflictError,
    LeadRejectedError,
    NotFoundError,
    PreconditionMissingError,
    UnexpectedConversionError,
)
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
from opai.crm.schemas import LeadApproveRequest, LeadRejectRequest
from opai.crm import service as service_module
from opai.crm.service import LeadService
from opai.models.history import HistoryLog


TENANT = "tenant-a"
CODE_RE = re.compile(r"^CPQ-\d{4}-\d{3}-[0-9A-F]{4}$")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> Session:
    seed_cpq_catalogs(db_session)
    seed_pipeline_stages(db_session, TENANT)
    return db_session


@pytest.fixture()
def actor() -> ActorUser:
    return ActorUser(user_id="user-1", tenant_id=TENANT, permissions={"crm.leads.approve"}, correlation_id="corr-1")


def _lead(session: Session, **overrides: object) -> CRMLead:
    values: dict[str, object] = {
        "tenant_id": TENANT,
        "status": "pending",
        "source": "web",
        "company_name": "Acme Seguridad",
        "first_name": "Jamie",
        "last_name": "Soto",
        "email": "jamie@acme.cl",
        "phone": "+56911112222",
    }
    values.update(overrides)
    lead = CRMLead(**values)
    session.add(lead)
    session.commit()
    return lead


def _count(session: Session, model: type) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def _graph_counts(session: Session) -> dict[str, int]:
    return {
        model.__tablename__: _count(session, model)
        for model in (
            CRMAccount,
            CRMContact,
            CRMDeal,
            CRMDealStageHistory,
            CRMDealContact,
            CRMDealQuote,
            CRMInstallation,
            CRMNote,
            CpqQuote,
            CpqPosition,
            HistoryLog,
        )
    }


def _staffing_line(**overrides: object) -> dict[str, object]:
    line: dict[str, object] = {
        "custom_name": "Control de Acceso",
        "headcount": 2,
        "num_puestos": 1,
        "start_time": "08:00",
        "end_time": "20:00",
        "weekdays": ["lunes", "martes", "miercoles", "jueves", "viernes"],
        "base_salary": "600000",
    }
    line.update(overrides)
    return line


def test_approve_without_installations_builds_full_graph_with_fallback_quote(
    seeded: Session, actor: ActorUser
) -> None:
    lead = _lead(seeded, lead_metadata={"inboundEmail": {"subject": "kept"}})

    result = LeadConversionService().approve(
        seeded,
        actor,
        lead.id,
        LeadApproveRequest(
            rut="76.543.210-K",
            legal_name="Acme Seguridad SpA",
            notes="Cliente referido",
            selected_cost_groups=["uniform", "system"],
        ),
    )

    assert result.account.name == "Acme Seguridad"
    assert result.deal.title == "Oportunidad Acme Seguridad"
    assert len(result.quotes) == 1
    assert result.quotes[0].installation_name is None
    assert CODE_RE.match(result.quotes[0].code)

    seeded.expire_all()
    stored_lead = seeded.get(CRMLead, lead.id)
    assert stored_lead is not None
    assert stored_lead.status == "approved"
    assert stored_lead.approved_by == "user-1"
    assert stored_lead.approved_at is not None
    assert stored_lead.converted_account_id == result.account.id
    assert stored_lead.converted_contact_id == result.contact.id
    assert stored_lead.converted_deal_id == result.deal.id
    assert stored_lead.lead_metadata["inboundEmail"] == {"subject": "kept"}
    assert stored_lead.lead_metadata["companyEnrichment"]["rut"] == "76.543.210-K"
    assert stored_lead.lead_metadata["companyEnrichment"]["version"] == 1

    account = seeded.get(CRMAccount, result.account.id)
    assert account is not None
    assert account.type == "prospect"
    assert account.status == "inactive"
    assert account.website == "https://acme.cl"

    contact = seeded.get(CRMContact, result.contact.id)
    assert contact is not None
    assert contact.is_primary is True
    assert contact.account_id == account.id

    deal = seeded.get(CRMDeal, result.deal.id)
    assert deal is not None
    history = seeded.scalars(select(CRMDealStageHistory).where(CRMDealStageHistory.deal_id == deal.id)).all()
    assert len(history) == 1
    assert history[0].from_stage_id is None
    assert history[0].to_stage_id == deal.stage_id
    assert _count(seeded, CRMNote) == 1

    quote = seeded.get(CpqQuote, result.quotes[0].quote_id)
    assert quote is not None
    assert quote.installation_id is None
    assert quote.total_positions == 0
    assert quote.deal_id == deal.id
    assert _count(seeded, CpqQuoteUniformItem) == 7
    assert seeded.scalar(select(CRMDealQuote).where(CRMDealQuote.quote_id == quote.id)) is not None
    deal_contact = seeded.scalar(select(CRMDealContact).where(CRMDealContact.deal_id == deal.id))
    assert deal_contact is not None
    assert deal_contact.role == "primary"

    log = seeded.scalar(select(HistoryLog).where(HistoryLog.action == "lead_approved"))
    assert log is not None
    assert log.details["deal_id"] == str(deal.id)

    assert [event["event_type"] for event in events.published_events] == ["crm.lead.approved"]


def test_account_name_falls_back_to_person_name(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded, company_name=None, first_name="Ana", last_name="Pérez", email="ana@gmail.com")

    result = LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert result.account.name == "Ana Pérez"
    account = seeded.get(CRMAccount, result.account.id)
    assert account is not None
    assert account.website is None


def test_deal_without_notes_still_records_initial_stage(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    result = LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest(deal_title="Custom"))

    assert result.deal.title == "Custom"
    assert _count(seeded, CRMDealStageHistory) == 1
    assert _count(seeded, CRMNote) == 0


def test_two_installations_only_staffed_one_gets_a_quote(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)
    dto = LeadApproveRequest.model_validate(
        {
            "installations": [
                {
                    "name": "Planta Norte",
                    "address": "Av. Siempre Viva 123",
                    "staffing": [
                        _staffing_line(),
                        _staffing_line(custom_name=None, job_title="Ronda", headcount=1, weekdays=["Miércoles", "xx"]),
                        _staffing_line(custom_name="Portero nocturno", base_salary="0", start_time="8:00 pm", end_time="bad", weekdays=None, num_puestos=2),
                    ],
                },
                {"name": "Bodega Sur"},
            ],
            "selected_cost_groups": [],
        }
    )

    result = LeadConversionService().approve(seeded, actor, lead.id, dto)

    assert len(result.quotes) == 1
    assert result.quotes[0].installation_name == "Planta Norte"

    installations = {item.name: item for item in seeded.scalars(select(CRMInstallation)).all()}
    assert set(installations) == {"Planta Norte", "Bodega Sur"}

    quote = seeded.get(CpqQuote, result.quotes[0].quote_id)
    assert quote is not None
    assert quote.installation_id == installations["Planta Norte"].id
    assert quote.total_positions == 4
    assert quote.total_guards == 5
    assert quote.monthly_cost == Decimal("0")
    assert seeded.scalar(select(CpqQuote).where(CpqQuote.installation_id == installations["Bodega Sur"].id)) is None

    positions = seeded.scalars(select(CpqPosition).order_by(CpqPosition.sort_order.asc())).all()
    assert [position.sort_order for position in positions] == [0, 1, 2]
    assert positions[0].weekdays == ["lunes", "martes", "miercoles", "jueves", "viernes"]
    assert positions[1].weekdays == ["miercoles"]
    assert positions[2].weekdays == ["lunes", "martes", "miercoles", "jueves", "viernes", "sabado", "domingo"]
    assert positions[2].start_time == "20:00"
    assert positions[2].end_time == "20:00"
    assert positions[2].base_salary == Decimal("550000")
    assert positions[0].base_salary == Decimal("600000")
    for position in positions:
        assert position.employer_cost == Decimal("0")
        assert position.net_salary == Decimal("0")
        assert position.monthly_position_cost == Decimal("0")

    ronda = seeded.scalar(select(CpqPuestoTrabajo).where(CpqPuestoTrabajo.name == "Ronda"))
    assert ronda is not None
    assert positions[1].puesto_trabajo_id == ronda.id
    created_title = seeded.scalar(select(CpqPuestoTrabajo).where(CpqPuestoTrabajo.name == "Portero nocturno"))
    assert created_title is not None

    first_cargo = seeded.scalar(select(CpqCargo).order_by(CpqCargo.name.asc()).limit(1))
    first_rol = seeded.scalar(select(CpqRol).order_by(CpqRol.name.asc()).limit(1))
    assert first_cargo is not None and first_rol is not None
    assert {position.cargo_id for position in positions} == {first_cargo.id}
    assert {position.rol_id for position in positions} == {first_rol.id}


def test_multiple_quotes_in_one_conversion_get_ascending_sequences(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)
    dto = LeadApproveRequest.model_validate(
        {
            "installations": [
                {"name": "Sede A", "staffing": [_staffing_line()]},
                {"name": "Sede B", "staffing": [_staffing_line()]},
            ]
        }
    )

    result = LeadConversionService().approve(seeded, actor, lead.id, dto)

    sequences = [int(item.code.split("-")[2]) for item in result.quotes]
    assert sequences == [1, 2]
    assert [item.installation_name for item in result.quotes] == ["Sede A", "Sede B"]


def test_approving_twice_fails_with_already_converted(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)
    service = LeadConversionService()
    service.approve(seeded, actor, lead.id, LeadApproveRequest())
    before = _graph_counts(seeded)

    with pytest.raises(AlreadyConvertedError) as exc_info:
        service.approve(seeded, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "already_converted"
    assert _graph_counts(seeded) == before


def test_unknown_lead_is_not_found(seeded: Session, actor: ActorUser) -> None:
    with pytest.raises(NotFoundError):
        LeadConversionService().approve(seeded, actor, uuid.uuid4(), LeadApproveRequest())


def test_lead_from_other_tenant_is_not_found(seeded: Session) -> None:
    lead = _lead(seeded, tenant_id="tenant-b")
    actor = ActorUser(user_id="user-1", tenant_id=TENANT)

    with pytest.raises(NotFoundError):
        LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())


def test_rejected_lead_cannot_be_approved(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded, status="rejected")

    with pytest.raises(LeadRejectedError) as exc_info:
        LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 409


def test_missing_pipeline_stage_is_a_precondition_failure(db_session: Session, actor: ActorUser) -> None:
    seed_cpq_catalogs(db_session)
    lead = _lead(db_session)

    with pytest.raises(PreconditionMissingError) as exc_info:
        LeadConversionService().approve(db_session, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 412
    assert _count(db_session, CRMAccount) == 0
    db_session.expire_all()
    assert db_session.get(CRMLead, lead.id).status == "pending"  # type: ignore[union-attr]


def test_missing_active_cargo_aborts_whole_conversion(seeded: Session, actor: ActorUser) -> None:
    for cargo in seeded.scalars(select(CpqCargo)).all():
        cargo.active = False
    seeded.commit()
    lead = _lead(seeded)
    before = _graph_counts(seeded)
    dto = LeadApproveRequest.model_validate(
        {"installations": [{"name": "Planta", "staffing": [_staffing_line()]}]}
    )

    with pytest.raises(PreconditionMissingError) as exc_info:
        LeadConversionService().approve(seeded, actor, lead.id, dto)

    assert "cargo" in str(exc_info.value.detail)
    assert _graph_counts(seeded) == before
    assert events.published_events == []


def test_installation_owned_by_other_account_leaves_no_trace(seeded: Session, actor: ActorUser) -> None:
    other = CRMAccount(tenant_id=TENANT, name="Otra Empresa")
    seeded.add(other)
    seeded.flush()
    foreign = CRMInstallation(tenant_id=TENANT, account_id=other.id, name="Ajena")
    seeded.add(foreign)
    seeded.commit()
    lead = _lead(seeded)
    before = _graph_counts(seeded)
    dto = LeadApproveRequest.model_validate(
        {
            "installations": [
                {"name": "Propia", "staffing": [_staffing_line()]},
                {"name": "", "use_existing_installation_id": str(foreign.id), "staffing": [_staffing_line()]},
            ]
        }
    )

    with pytest.raises(NotFoundError):
        LeadConversionService().approve(seeded, actor, lead.id, dto)

    assert _graph_counts(seeded) == before
    seeded.expire_all()
    stored = seeded.get(CRMLead, lead.id)
    assert stored is not None
    assert stored.status == "pending"
    assert stored.converted_account_id is None
    assert stored.lead_metadata is None


def test_explicit_installation_under_existing_account_is_reused(seeded: Session, actor: ActorUser) -> None:
    account = CRMAccount(tenant_id=TENANT, name="Acme Seguridad")
    seeded.add(account)
    seeded.flush()
    site = CRMInstallation(tenant_id=TENANT, account_id=account.id, name="Casa Matriz")
    seeded.add(site)
    seeded.commit()
    lead = _lead(seeded)
    dto = LeadApproveRequest.model_validate(
        {
            "use_existing_account_id": str(account.id),
            "installations": [
                {"use_existing_installation_id": str(site.id), "staffing": [_staffing_line()]},
                {"name": "casa matriz"},
            ],
        }
    )

    result = LeadConversionService().approve(seeded, actor, lead.id, dto)

    assert result.account.id == account.id
    assert result.quotes[0].installation_name == "Casa Matriz"
    assert _count(seeded, CRMInstallation) == 1


def test_blank_and_sentinel_values_never_overwrite_existing_account(seeded: Session, actor: ActorUser) -> None:
    account = CRMAccount(
        tenant_id=TENANT,
        name="Acme Seguridad",
        rut="76.111.111-1",
        legal_name="Acme Seguridad SpA",
        legal_representative_name="Rosa Díaz",
        industry="Retail",
    )
    seeded.add(account)
    seeded.commit()
    lead = _lead(seeded, industry=None)

    LeadConversionService().approve(
        seeded,
        actor,
        lead.id,
        LeadApproveRequest(
            use_existing_account_id=account.id,
            rut="  ",
            legal_name="No disponible",
            legal_representative_name="N/A",
            industry="Minería",
            segment="Enterprise",
        ),
    )

    seeded.expire_all()
    stored = seeded.get(CRMAccount, account.id)
    assert stored is not None
    assert stored.rut == "76.111.111-1"
    assert stored.legal_name == "Acme Seguridad SpA"
    assert stored.legal_representative_name == "Rosa Díaz"
    assert stored.industry == "Minería"
    assert stored.segment == "Enterprise"


def test_existing_account_not_found(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    with pytest.raises(NotFoundError):
        LeadConversionService().approve(
            seeded, actor, lead.id, LeadApproveRequest(use_existing_account_id=uuid.uuid4())
        )

    assert _count(seeded, CRMAccount) == 0


def test_use_existing_contact_becomes_sole_primary(seeded: Session, actor: ActorUser) -> None:
    account = CRMAccount(tenant_id=TENANT, name="Acme Seguridad")
    seeded.add(account)
    seeded.flush()
    old_primary = CRMContact(tenant_id=TENANT, account_id=account.id, first_name="Old", is_primary=True)
    chosen = CRMContact(tenant_id=TENANT, account_id=account.id, first_name="Chosen", email="chosen@acme.cl")
    seeded.add_all([old_primary, chosen])
    seeded.commit()
    lead = _lead(seeded)

    result = LeadConversionService().approve(
        seeded,
        actor,
        lead.id,
        LeadApproveRequest(
            use_existing_account_id=account.id,
            contact_resolution="use_existing",
            contact_id=chosen.id,
            contact_first_name="Ignored",
        ),
    )

    seeded.expire_all()
    assert result.contact.id == chosen.id
    assert seeded.get(CRMContact, chosen.id).is_primary is True  # type: ignore[union-attr]
    assert seeded.get(CRMContact, chosen.id).first_name == "Chosen"  # type: ignore[union-attr]
    assert seeded.get(CRMContact, old_primary.id).is_primary is False  # type: ignore[union-attr]
    assert _count(seeded, CRMContact) == 2


def test_overwrite_contact_updates_fields_and_repoints_account(seeded: Session, actor: ActorUser) -> None:
    elsewhere = CRMAccount(tenant_id=TENANT, name="Anterior")
    seeded.add(elsewhere)
    seeded.flush()
    contact = CRMContact(tenant_id=TENANT, account_id=elsewhere.id, first_name="Viejo", phone="123")
    seeded.add(contact)
    seeded.commit()
    lead = _lead(seeded)

    result = LeadConversionService().approve(
        seeded,
        actor,
        lead.id,
        LeadApproveRequest(
            contact_resolution="overwrite",
            contact_id=contact.id,
            contact_first_name="Nuevo",
            phone="",
            role_title="Gerente",
        ),
    )

    seeded.expire_all()
    stored = seeded.get(CRMContact, contact.id)
    assert stored is not None
    assert stored.first_name == "Nuevo"
    assert stored.role_title == "Gerente"
    assert stored.phone == "+56911112222"
    assert stored.account_id == result.account.id


def test_missing_contact_for_overwrite_is_not_found(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    with pytest.raises(NotFoundError):
        LeadConversionService().approve(
            seeded,
            actor,
            lead.id,
            LeadApproveRequest(contact_resolution="overwrite", contact_id=uuid.uuid4()),
        )

    assert _count(seeded, CRMAccount) == 0


def test_contact_resolution_requires_contact_id() -> None:
    with pytest.raises(ValueError):
        LeadApproveRequest(contact_resolution="use_existing")


def test_flat_installation_is_created_and_anchors_fallback_quote(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    result = LeadConversionService().approve(
        seeded,
        actor,
        lead.id,
        LeadApproveRequest(installation_name="Oficina Central", installation_city="Santiago"),
    )

    installation = seeded.scalar(select(CRMInstallation))
    assert installation is not None
    assert installation.name == "Oficina Central"
    assert installation.city == "Santiago"
    assert len(result.quotes) == 1
    assert result.quotes[0].installation_name == "Oficina Central"


def test_email_forward_lead_carries_files_and_inbound_email(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(
        seeded,
        source="email_forward",
        lead_metadata={
            "inboundEmail": {
                "subject": "Cotización guardias",
                "from": "jamie@acme.cl",
                "text": "Necesitamos 2 guardias",
                "html": "<p>Necesitamos 2 guardias</p>",
                "receivedAt": "2026-09-30T12:00:00Z",
            }
        },
    )
    file_id = uuid.uuid4()
    seeded.add(CRMFileLink(tenant_id=TENANT, file_id=file_id, entity_type="lead", entity_id=lead.id))
    seeded.commit()

    result = LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    links = seeded.scalars(select(CRMFileLink).where(CRMFileLink.file_id == file_id)).all()
    assert sorted(link.entity_type for link in links) == ["account", "deal", "lead"]
    thread = seeded.scalar(select(CRMEmailThread))
    assert thread is not None
    assert thread.deal_id == result.deal.id
    assert thread.subject == "Cotización guardias"
    message = seeded.scalar(select(CRMEmailMessage))
    assert message is not None
    assert message.direction == "in"
    assert message.from_email == "jamie@acme.cl"
    assert message.text_body == "Necesitamos 2 guardias"


def test_quote_code_collision_surfaces_as_retryable_conflict(
    seeded: Session, actor: ActorUser, monkeypatch: pytest.MonkeyPatch
) -> None:
    seeded.add(CpqQuote(tenant_id=TENANT, code="CPQ-2026-001-DEAD"))
    seeded.commit()
    lead = _lead(seeded)
    before = _graph_counts(seeded)
    monkeypatch.setattr(QuoteCodeGenerator, "next_code", lambda self: "CPQ-2026-001-DEAD")

    with pytest.raises(ApprovalConflictError) as exc_info:
        LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 503
    assert exc_info.value.code == "retry_approval"
    assert "retry" in str(exc_info.value.detail)
    assert _graph_counts(seeded) == before
    seeded.expire_all()
    assert seeded.get(CRMLead, lead.id).status == "pending"  # type: ignore[union-attr]


def test_unexpected_failure_rolls_back_and_is_reported_generically(
    seeded: Session, actor: ActorUser, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(*args: object, **kwargs: object) -> int:
        raise RuntimeError("catalog exploded")

    monkeypatch.setattr("opai.cpq.quotes.apply_cost_groups", explode)
    lead = _lead(seeded)
    before = _graph_counts(seeded)

    with pytest.raises(UnexpectedConversionError) as exc_info:
        LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 500
    assert _graph_counts(seeded) == before
    assert events.published_events == []


def test_reject_lead_records_rejection_namespace(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded, lead_metadata={"companyEnrichment": {"website": "https://acme.cl"}})

    result = LeadService().reject_lead(seeded, actor, lead.id, LeadRejectRequest(reason="duplicado", note="ya es cliente"))

    assert result.status == "rejected"
    assert result.metadata is not None
    assert result.metadata["rejection"]["reason"] == "duplicado"
    assert result.metadata["rejection"]["rejectedBy"] == "user-1"
    assert result.metadata["companyEnrichment"] == {"website": "https://acme.cl"}
    assert [event["event_type"] for event in events.published_events] == ["crm.lead.rejected"]


def test_approved_lead_cannot_be_rejected(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)
    service = LeadService()
    service.approve_lead(seeded, actor, lead.id, LeadApproveRequest())

    with pytest.raises(AlreadyConvertedError):
        service.reject_lead(seeded, actor, lead.id, LeadRejectRequest(reason="tarde"))


def test_omitted_cost_groups_apply_defaults_to_fallback_quote(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    result = LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert LeadApproveRequest().selected_cost_groups == ["uniform", "system", "equipment"]
    quote_id = result.quotes[0].quote_id
    uniforms = seeded.scalars(select(CpqQuoteUniformItem).where(CpqQuoteUniformItem.quote_id == quote_id)).all()
    cost_items = seeded.scalars(select(CpqQuoteCostItem).where(CpqQuoteCostItem.quote_id == quote_id)).all()
    assert len(uniforms) == 7
    assert len(cost_items) == 4


def test_explicit_empty_cost_groups_add_no_catalog_items(seeded: Session, actor: ActorUser) -> None:
    lead = _lead(seeded)

    LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest(selected_cost_groups=[]))

    assert _count(seeded, CpqQuoteUniformItem) == 0
    assert _count(seeded, CpqQuoteCostItem) == 0


def test_non_quote_integrity_error_is_not_retryable(
    seeded: Session, actor: ActorUser, monkeypatch: pytest.MonkeyPatch
) -> None:
    def duplicate_stage(session: Session, *args: object, **kwargs: object) -> int:
        session.add(CRMPipelineStage(tenant_id=TENANT, name="Prospección", sort_order=9))
        session.flush()
        return 0

    monkeypatch.setattr("opai.cpq.quotes.apply_cost_groups", duplicate_stage)
    lead = _lead(seeded)
    before = _graph_counts(seeded)

    with pytest.raises(UnexpectedConversionError) as exc_info:
        LeadConversionService().approve(seeded, actor, lead.id, LeadApproveRequest())

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "unexpected"
    assert _graph_counts(seeded) == before
    seeded.expire_all()
    assert seeded.get(CRMLead, lead.id).status == "pending"  # type: ignore[union-attr]


def test_concurrent_approval_commits_only_one_deal(tmp_path: Path, actor: ActorUser) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as setup:
        seed_cpq_catalogs(setup)
        seed_pipeline_stages(setup, TENANT)
        lead_id = _lead(setup).id

    competing: dict[str, uuid.UUID] = {}

    class InterleavedConversion(LeadConversionService):
        def _resolve_account(self, session, actor_user, tenant_id, lead, dto):  # type: ignore[no-untyped-def]
            if not competing:
                with SessionLocal() as other:
                    winner = LeadConversionService().approve(other, actor_user, lead.id, LeadApproveRequest())
                competing["deal_id"] = winner.deal.id
            return super()._resolve_account(session, actor_user, tenant_id, lead, dto)

    try:
        with SessionLocal() as session:
            with pytest.raises(AlreadyConvertedError):
                InterleavedConversion().approve(session, actor, lead_id, LeadApproveRequest())

        with SessionLocal() as check:
            assert _count(check, CRMDeal) == 1
            assert _count(check, CRMAccount) == 1
            assert _count(check, CpqQuote) == 1
            stored = check.get(CRMLead, lead_id)
            assert stored is not None
            assert stored.status == "approved"
            assert stored.converted_deal_id == competing["deal_id"]
        assert [event["event_type"] for event in events.published_events] == ["crm.lead.approved"]
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_rejection_of_a_concurrently_changed_lead_is_refused(
    seeded: Session, actor: ActorUser, monkeypatch: pytest.MonkeyPatch
) -> None:
    lead = _lead(seeded)
    merge = service_module.merge_namespace

    def merge_after_competing_write(*args: object, **kwargs: object) -> dict:
        seeded.execute(
            update(CRMLead)
            .where(CRMLead.id == lead.id)
            .values(row_version=CRMLead.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        return merge(*args, **kwargs)

    monkeypatch.setattr(service_module, "merge_namespace", merge_after_competing_write)

    with pytest.raises(AlreadyConvertedError):
        LeadService().reject_lead(seeded, actor, lead.id, LeadRejectRequest(reason="duplicado"))

    seeded.expire_all()
    stored = seeded.get(CRMLead, lead.id)
    assert stored is not None
    assert stored.status == "pending"
    assert stored.lead_metadata is None
    assert events.published_events == []


def test_duplicate_check_ignores_placeholder_account_name(seeded: Session, actor: ActorUser) -> None:
    seeded.add(CRMAccount(tenant_id=TENANT, name=UNNAMED_ACCOUNT))
    seeded.commit()
    lead = _lead(seeded, company_name=None, first_name=None, last_name=None, email=None)

    result = LeadService().check_duplicates(seeded, actor, lead.id, LeadApproveRequest())

    assert result.duplicates == []
    assert result.has_conflicts is False


def test_duplicate_check_still_matches_real_account_names(seeded: Session, actor: ActorUser) -> None:
    seeded.add(CRMAccount(tenant_id=TENANT, name="ACME SEGURIDAD"))
    seeded.commit()
    lead = _lead(seeded, email=None)

    result = LeadService().check_duplicates(seeded, actor, lead.id, LeadApproveRequest())

    assert [item.name for item in result.duplicates] == ["ACME SEGURIDAD"]
    assert result.has_conflicts is True


def test_non_ascii_job_title_is_matched_exactly(seeded: Session, actor: ActorUser) -> None:
    seeded.add(CpqPuestoTrabajo(name="Ñandú"))
    seeded.commit()
    lead = _lead(seeded)
    dto = LeadApproveRequest.model_validate(
        {"installations": [{"name": "Planta", "staffing": [_staffing_line(custom_name=None, job_title="Ñandú")]}]}
    )

    LeadConversionService().approve(seeded, actor, lead.id, dto)

    titles = seeded.scalars(select(CpqPuestoTrabajo).where(CpqPuestoTrabajo.name == "Ñandú")).all()
    assert len(titles) == 1
    position = seeded.scalar(select(CpqPosition))
    assert position is not None
    assert position.puesto_trabajo_id == titles[0].id
