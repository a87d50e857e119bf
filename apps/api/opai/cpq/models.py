from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from opai.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CpqPuestoTrabajo(Base):
    """Job title catalog, shared by every tenant."""

    __tablename__ = "cpq_puesto_trabajo"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CpqCargo(Base):
    __tablename__ = "cpq_cargo"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CpqRol(Base):
    __tablename__ = "cpq_rol"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CpqCatalogItem(Base):
    __tablename__ = "cpq_catalog_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, default="month", server_default="month")
    base_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    default_visibility: Mapped[str] = mapped_column(
        String(16), nullable=False, default="visible", server_default="visible"
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CpqQuote(Base):
    __tablename__ = "cpq_quote"
    __table_args__ = (UniqueConstraint("code", name="uq_cpq_quote_code"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    client_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    installation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_installation.id", ondelete="SET NULL"),
        nullable=True,
    )
    total_positions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_guards: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    monthly_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="CLP", server_default="CLP")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    positions: Mapped[list[CpqPosition]] = relationship(
        "CpqPosition",
        back_populates="quote",
        order_by="CpqPosition.sort_order",
        cascade="all, delete-orphan",
    )


class CpqPosition(Base):
    __tablename__ = "cpq_position"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    puesto_trabajo_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_puesto_trabajo.id", ondelete="RESTRICT"),
        nullable=False,
    )
    cargo_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_cargo.id", ondelete="RESTRICT"),
        nullable=False,
    )
    rol_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_rol.id", ondelete="RESTRICT"),
        nullable=False,
    )
    custom_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    weekdays: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    num_guards: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    num_puestos: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    base_salary: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    employer_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    net_salary: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    monthly_position_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    quote: Mapped[CpqQuote] = relationship("CpqQuote", back_populates="positions")


class CpqQuoteUniformItem(Base):
    __tablename__ = "cpq_quote_uniform_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    catalog_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_catalog_item.id", ondelete="RESTRICT"),
        nullable=False,
    )
    unit_price_override: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class CpqQuoteExamItem(Base):
    __tablename__ = "cpq_quote_exam_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    catalog_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_catalog_item.id", ondelete="RESTRICT"),
        nullable=False,
    )
    unit_price_override: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class CpqQuoteMeal(Base):
    __tablename__ = "cpq_quote_meal"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    meal_type: Mapped[str] = mapped_column(Text, nullable=False)
    meals_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    days_of_service: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    price_override: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="visible", server_default="visible")


class CpqQuoteCostItem(Base):
    __tablename__ = "cpq_quote_cost_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    catalog_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cpq_catalog_item.id", ondelete="RESTRICT"),
        nullable=False,
    )
    calc_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="per_month", server_default="per_month")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    unit_price_override: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="visible", server_default="visible")
