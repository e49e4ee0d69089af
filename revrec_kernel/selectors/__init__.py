"""Read-only selectors: lineage trace and revenue balances."""

from revrec_kernel.selectors.base import BaseSelector
from revrec_kernel.selectors.revenue_selector import (
    ContractDeferral,
    ContractDetail,
    ContractSummary,
    DeferredRevenueBalance,
    RevenueSelector,
    WaterfallRow,
)
from revrec_kernel.selectors.trace_selector import (
    PostingStatus,
    TimelineEntry,
    TraceResult,
    TraceSelector,
)

__all__ = [
    "BaseSelector",
    "ContractDeferral",
    "ContractDetail",
    "ContractSummary",
    "DeferredRevenueBalance",
    "PostingStatus",
    "RevenueSelector",
    "TimelineEntry",
    "TraceResult",
    "TraceSelector",
    "WaterfallRow",
]
