"""create cpq catalogs and quotes

Revision ID: 202610010003
Revises: 202610010002
Create Date: 2026-10-01 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010003"
down_revision: str | None = "202610010002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    for table_name in ("cpq_puesto_trabajo", "cpq_cargo", "cpq_rol"):
        columns = [
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
        ]
        if table_name != "cpq_puesto_trabajo":
            columns.append(sa.Column("description", sa.Text(), nullable=True))
        columns.extend(
            [
                sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
                sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
                sa.PrimaryKeyConstraint("id"),
                sa.UniqueConstraint("name"),
            ]
        )
        op.create_table(table_name, *columns)

    op.create_table(
        "cpq_catalog_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="month"),
        sa.Column("base_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("default_visibility", sa.String(length=16), nullable=False, server_default="visible"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cpq_catalog_item_tenant_id", "cpq_catalog_item", ["tenant_id"], unique=False)
    op.create_index("ix_cpq_catalog_item_type", "cpq_catalog_item", ["type"], unique=False)

    op.create_table(
        "cpq_quote",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("client_name", sa.Text(), nullable=True),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("deal_id", sa.Uuid(), nullable=True),
        sa.Column("installation_id", sa.Uuid(), nullable=True),
        sa.Column("total_positions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_guards", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_cost", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="CLP"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["installation_id"], ["crm_installation.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_cpq_quote_code"),
    )
    op.create_index("ix_cpq_quote_tenant_id", "cpq_quote", ["tenant_id"], unique=False)

    op.create_table(
        "cpq_position",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("puesto_trabajo_id", sa.Uuid(), nullable=False),
        sa.Column("cargo_id", sa.Uuid(), nullable=False),
        sa.Column("rol_id", sa.Uuid(), nullable=False),
        sa.Column("custom_name", sa.Text(), nullable=True),
        sa.Column("weekdays", sa.JSON(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("num_guards", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("num_puestos", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("base_salary", sa.Numeric(18, 2), nullable=False),
        sa.Column("employer_cost", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_salary", sa.Numeric(18, 2), nullable=False),
        sa.Column("monthly_position_cost", sa.Numeric(18, 2), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["quote_id"], ["cpq_quote.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["puesto_trabajo_id"], ["cpq_puesto_trabajo.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["cargo_id"], ["cpq_cargo.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["rol_id"], ["cpq_rol.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table_name in ("cpq_quote_uniform_item", "cpq_quote_exam_item"):
        op.create_table(
            table_name,
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("quote_id", sa.Uuid(), nullable=False),
            sa.Column("catalog_item_id", sa.Uuid(), nullable=False),
            sa.Column("unit_price_override", sa.Numeric(18, 2), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
            sa.ForeignKeyConstraint(["quote_id"], ["cpq_quote.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["catalog_item_id"], ["cpq_catalog_item.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "cpq_quote_meal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("meal_type", sa.Text(), nullable=False),
        sa.Column("meals_per_day", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("days_of_service", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_override", sa.Numeric(18, 2), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("visibility", sa.String(length=16), nullable=False, server_default="visible"),
        sa.ForeignKeyConstraint(["quote_id"], ["cpq_quote.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "cpq_quote_cost_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("catalog_item_id", sa.Uuid(), nullable=False),
        sa.Column("calc_mode", sa.String(length=16), nullable=False, server_default="per_month"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price_override", sa.Numeric(18, 2), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("visibility", sa.String(length=16), nullable=False, server_default="visible"),
        sa.ForeignKeyConstraint(["quote_id"], ["cpq_quote.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["catalog_item_id"], ["cpq_catalog_item.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "crm_deal_quote",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("deal_id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deal_id"], ["crm_deal.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["quote_id"], ["cpq_quote.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("deal_id", "quote_id", name="uq_crm_deal_quote"),
    )
    op.create_index("ix_crm_deal_quote_tenant_id", "crm_deal_quote", ["tenant_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_deal_quote_tenant_id", table_name="crm_deal_quote")
    op.drop_table("crm_deal_quote")
    op.drop_table("cpq_quote_cost_item")
    op.drop_table("cpq_quote_meal")
    op.drop_table("cpq_quote_exam_item")
    op.drop_table("cpq_quote_uniform_item")
    op.drop_table("cpq_position")
    op.drop_index("ix_cpq_quote_tenant_id", table_name="cpq_quote")
    op.drop_table("cpq_quote")
    op.drop_index("ix_cpq_catalog_item_type", table_name="cpq_catalog_item")
    op.drop_index("ix_cpq_catalog_item_tenant_id", table_name="cpq_catalog_item")
    op.drop_table("cpq_catalog_item")
    op.drop_table("cpq_rol")
    op.drop_table("cpq_cargo")
    op.drop_table("cpq_puesto_trabajo")
