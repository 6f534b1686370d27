"""External system adapters - data API, CLOB, chain and live feed."""

from polycopy.integrations.clob import CLOBClient, OrderSubmission
from polycopy.integrations.ctf import CTFClient, RedemptionResult, RedemptionStatus
from polycopy.integrations.data_api import DataApiClient
from polycopy.integrations.rtds import RtdsClient, RtdsMessage, RtdsStatus

__all__ = [
    "DataApiClient",
    "CLOBClient",
    "OrderSubmission",
    "CTFClient",
    "RedemptionResult",
    "RedemptionStatus",
    "RtdsClient",
    "RtdsMessage",
    "RtdsStatus",
]
