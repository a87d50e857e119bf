from opai.models.history import HistoryLog
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

__all__ = [
	"HistoryLog",
	"CRMAccount",
	"CRMContact",
	"CRMDeal",
	"CRMDealContact",
	"CRMDealQuote",
	"CRMDealStageHistory",
	"CRMEmailMessage",
	"CRMEmailThread",
	"CRMFileLink",
	"CRMInstallation",
	"CRMLead",
	"CRMNote",
	"CRMPipelineStage",
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
]
