from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opai import models  # noqa: F401
from opai.core.database import Base
from opai.cpq.cost_groups import apply_cost_groups, expand_cost_groups
from opai.cpq.models import (
    CpqCatalogItem,
    CpqQuote,
    CpqQuoteCostItem,
    CpqQuoteExamItem,
    CpqQuoteMeal,
    CpqQuoteUniformItem,
)
from opai.cpq.seed import seed_cpq_catalogs


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


def _quote(session: Session, tenant_id: str = "tenant-a") -> CpqQuote:
    quote = CpqQuote(tenant_id=tenant_id, code="CPQ-2026-001-ABCD")
    session.add(quote)
    session.flush()
    return quote


def _count(session: Session, model: type) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def test_equipment_expands_to_phone_radio_flashlight_only() -> None:
    assert sorted(expand_cost_groups(["equipment"])) == ["flashlight", "phone", "radio"]


def test_vehicle_expands_to_vehicle_item_types_only() -> None:
    assert sorted(expand_cost_groups(["vehicle"])) == ["vehicle_fuel", "vehicle_rent", "vehicle_tag"]


def test_unknown_groups_are_ignored_and_types_deduplicated() -> None:
    assert expand_cost_groups(["uniform", "bogus", "uniform"]) == ["uniform"]
    assert expand_cost_groups(None) == []


def test_seeded_catalog_selection_shapes(db_session: Session) -> None:
    seed_cpq_catalogs(db_session)
    quote = _quote(db_session)

    created = apply_cost_groups(db_session, "tenant-a", quote, ["uniform", "exam", "meal", "equipment", "system"])

    assert _count(db_session, CpqQuoteUniformItem) == 7
    assert _count(db_session, CpqQuoteExamItem) == 5
    assert _count(db_session, CpqQuoteMeal) == 4
    assert _count(db_session, CpqQuoteCostItem) == 4
    assert created == 20

    meal = db_session.scalar(select(CpqQuoteMeal).where(CpqQuoteMeal.meal_type == "Almuerzo"))
    assert meal is not None
    assert meal.meals_per_day == 0
    assert meal.days_of_service == 0

    for item in db_session.scalars(select(CpqQuoteCostItem)).all():
        assert item.calc_mode == "per_month"
        assert item.quantity == 1
        assert item.is_enabled is True


def test_uniform_without_default_items_selects_nothing(db_session: Session) -> None:
    db_session.add(CpqCatalogItem(type="uniform", name="Casco", unit="unidad", base_price=Decimal("12000"), is_default=False))
    db_session.flush()
    quote = _quote(db_session)

    created = apply_cost_groups(db_session, "tenant-a", quote, ["uniform"])

    assert created == 0
    assert _count(db_session, CpqQuoteUniformItem) == 0


def test_catalog_filter_keeps_active_tenant_and_global_items(db_session: Session) -> None:
    db_session.add_all(
        [
            CpqCatalogItem(tenant_id=None, type="radio", name="Radio global", base_price=Decimal("1")),
            CpqCatalogItem(tenant_id="tenant-a", type="radio", name="Radio propia", base_price=Decimal("1"), default_visibility="hidden"),
            CpqCatalogItem(tenant_id="tenant-b", type="radio", name="Radio ajena", base_price=Decimal("1")),
            CpqCatalogItem(tenant_id=None, type="radio", name="Radio inactiva", base_price=Decimal("1"), active=False),
            CpqCatalogItem(tenant_id=None, type="vehicle_rent", name="Arriendo", base_price=Decimal("1")),
        ]
    )
    db_session.flush()
    quote = _quote(db_session)

    apply_cost_groups(db_session, "tenant-a", quote, ["equipment"])

    selections = db_session.scalars(select(CpqQuoteCostItem)).all()
    names = sorted(db_session.get(CpqCatalogItem, item.catalog_item_id).name for item in selections)
    assert names == ["Radio global", "Radio propia"]
    visibilities = {db_session.get(CpqCatalogItem, item.catalog_item_id).name: item.visibility for item in selections}
    assert visibilities["Radio propia"] == "hidden"
