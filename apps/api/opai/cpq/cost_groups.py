from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from opai.cpq.models import (
    CpqCatalogItem,
    CpqQuote,
    CpqQuoteCostItem,
    CpqQuoteExamItem,
    CpqQuoteMeal,
    CpqQuoteUniformItem,
)

COST_GROUP_TYPES: dict[str, tuple[str, ...]] = {
    "uniform": ("uniform",),
    "exam": ("exam",),
    "meal": ("meal",),
    "equipment": ("phone", "radio", "flashlight"),
    "transport": ("transport",),
    "vehicle": ("vehicle_rent", "vehicle_fuel", "vehicle_tag"),
    "infrastructure": ("infrastructure", "fuel"),
    "system": ("system",),
}

DEFAULT_COST_GROUPS = ["uniform", "system", "equipment"]


def expand_cost_groups(groups: Iterable[str] | None) -> list[str]:
    """Map coarse cost-group tags to catalog item types; unknown tags are ignored."""
    item_types: list[str] = []
    for group in groups or []:
        for item_type in COST_GROUP_TYPES.get(group, ()):
            if item_type not in item_types:
                item_types.append(item_type)
    return item_types


def apply_cost_groups(session: Session, tenant_id: str, quote: CpqQuote, groups: Iterable[str] | None) -> int:
    item_types = expand_cost_groups(groups)
    if not item_types:
        return 0

    items = session.scalars(
        select(CpqCatalogItem)
        .where(
            CpqCatalogItem.active.is_(True),
            CpqCatalogItem.type.in_(item_types),
            or_(CpqCatalogItem.tenant_id == tenant_id, CpqCatalogItem.tenant_id.is_(None)),
        )
        .order_by(CpqCatalogItem.type.asc(), CpqCatalogItem.name.asc())
    ).all()

    selections = 0
    for item in items:
        if item.type == "uniform":
            if not item.is_default:
                continue
            session.add(CpqQuoteUniformItem(quote_id=quote.id, catalog_item_id=item.id, active=True))
        elif item.type == "exam":
            session.add(CpqQuoteExamItem(quote_id=quote.id, catalog_item_id=item.id, active=True))
        elif item.type == "meal":
            session.add(
                CpqQuoteMeal(
                    quote_id=quote.id,
                    meal_type=item.name,
                    meals_per_day=0,
                    days_of_service=0,
                    is_enabled=True,
                    visibility=item.default_visibility,
                )
            )
        else:
            session.add(
                CpqQuoteCostItem(
                    quote_id=quote.id,
                    catalog_item_id=item.id,
                    calc_mode="per_month",
                    quantity=1,
                    is_enabled=True,
                    visibility=item.default_visibility,
                )
            )
        selections += 1

    session.flush()
    return selections
