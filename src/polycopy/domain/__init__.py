"""Domain models."""

from polycopy.domain.models import (
    DUST_THRESHOLD,
    RESOLVED_HIGH,
    RESOLVED_LOW,
    ZERO_THRESHOLD,
    BatchOutcome,
    BulkCloseSummary,
    CloseDetail,
    ConnectionState,
    LiquidationJob,
    LiquidationResult,
    MonitorConnectionState,
    OrderBook,
    OrderBookLevel,
    Position,
    RedeemableSummary,
    RedemptionBatch,
    RedemptionSummary,
    TradeEvent,
    TradeObservation,
)

__all__ = [
    "DUST_THRESHOLD",
    "ZERO_THRESHOLD",
    "RESOLVED_HIGH",
    "RESOLVED_LOW",
    "Position",
    "OrderBook",
    "OrderBookLevel",
    "LiquidationJob",
    "LiquidationResult",
    "CloseDetail",
    "BulkCloseSummary",
    "BatchOutcome",
    "RedemptionBatch",
    "RedeemableSummary",
    "RedemptionSummary",
    "TradeObservation",
    "TradeEvent",
    "ConnectionState",
    "MonitorConnectionState",
]
