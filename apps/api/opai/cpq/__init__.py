from opai.cpq.codes import QuoteCodeGenerator
from opai.cpq.cost_groups import COST_GROUP_TYPES, DEFAULT_COST_GROUPS, apply_cost_groups, expand_cost_groups
from opai.cpq.models import (
    CpqCargo,
    CpqCatalogItem,
    CpqPosition,
    CpqPuestoTrabajo,
    CpqQuote,
    CpqQuoteCostItem,
    CpqQuoteExamItem,
    CpqQuoteMeal,
    CpqQuoteUniformItem,
    CpqRol,
)
from opai.cpq.quotes import create_fallback_quote, create_installation_quote
from opai.cpq.schedule import WEEKDAYS, normalize_time, normalize_weekdays
from opai.cpq.schemas import QuoteSummary, StaffingLineInput

__all__ = [
    "COST_GROUP_TYPES",
    "DEFAULT_COST_GROUPS",
    "WEEKDAYS",
    "CpqCargo",
    "CpqCatalogItem",
    "CpqPosition",
    "CpqPuestoTrabajo",
    "CpqQuote",
    "CpqQuoteCostItem",
    "CpqQuoteExamItem",
    "CpqQuoteMeal",
    "CpqQuoteUniformItem",
    "CpqRol",
    "QuoteCodeGenerator",
    "QuoteSummary",
    "StaffingLineInput",
    "apply_cost_groups",
    "create_fallback_quote",
    "create_installation_quote",
    "expand_cost_groups",
    "normalize_time",
    "normalize_weekdays",
]
