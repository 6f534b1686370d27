"""Services - observation, monitoring, liquidation and redemption."""

from polycopy.services.liquidation import LiquidationEngine, LiquidationProgress
from polycopy.services.observation_store import ObservationStore
from polycopy.services.redemption import RedemptionEngine, RedemptionProgress, group_by_condition
from polycopy.services.trade_monitor import TradeMonitor, normalize_trade, parse_timestamp
from polycopy.services.trade_poller import TradePoller

__all__ = [
    "ObservationStore",
    "TradeMonitor",
    "TradePoller",
    "LiquidationEngine",
    "LiquidationProgress",
    "RedemptionEngine",
    "RedemptionProgress",
    "group_by_condition",
    "normalize_trade",
    "parse_timestamp",
]
