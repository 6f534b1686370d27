"""Domain models for positions, liquidation, redemption and trade observation.

All money and token quantities are Decimal so that fill accounting is exact:
`remaining + sold == requested` must hold after every fill.
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from polycopy.core.errors import ErrorKind

# Sell sizes and leftovers at or below this are treated as dust
DUST_THRESHOLD = Decimal("0.01")

# Positions with size at or below this are ignored for redemption
ZERO_THRESHOLD = Decimal("0.0001")

# Price band treated as a settled market
RESOLVED_HIGH = Decimal("0.99")
RESOLVED_LOW = Decimal("0.01")


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Convert an API number (str, int, float or None) to Decimal."""
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


# =============================================================================
# Positions and order books
# =============================================================================


@dataclass(frozen=True)
class Position:
    """A held outcome token, as reported by the positions API."""

    asset: str
    condition_id: str
    size: Decimal
    avg_price: Decimal = Decimal("0")
    current_value: Decimal = Decimal("0")
    cur_price: Decimal = Decimal("0")
    title: str = ""
    outcome: str = ""
    slug: str = ""
    redeemable: bool = False
    cash_pnl: Decimal = Decimal("0")
    event_slug: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Position":
        return cls(
            asset=str(data.get("asset", "")),
            condition_id=str(data.get("conditionId", "")),
            size=to_decimal(data.get("size")),
            avg_price=to_decimal(data.get("avgPrice")),
            current_value=to_decimal(data.get("currentValue")),
            cur_price=to_decimal(data.get("curPrice")),
            title=data.get("title") or "",
            outcome=data.get("outcome") or "",
            slug=data.get("slug") or "",
            redeemable=data.get("redeemable") is True,
            cash_pnl=to_decimal(data.get("cashPnl")),
            event_slug=data.get("eventSlug") or "",
        )

    @property
    def is_resolved(self) -> bool:
        """Price has settled near 1 or near 0."""
        return self.cur_price >= RESOLVED_HIGH or self.cur_price <= RESOLVED_LOW

    @property
    def is_redeemable(self) -> bool:
        return self.redeemable and self.is_resolved and self.size > ZERO_THRESHOLD

    @property
    def display_name(self) -> str:
        return self.title or self.slug or self.condition_id


@dataclass(frozen=True)
class OrderBookLevel:
    """A single price level in an order book."""

    price: Decimal
    size: Decimal


@dataclass(frozen=True)
class OrderBook:
    """Bids and asks for one asset, in the order the exchange sent them."""

    asset: str
    bids: tuple[OrderBookLevel, ...] = field(default_factory=tuple)
    asks: tuple[OrderBookLevel, ...] = field(default_factory=tuple)

    @property
    def best_bid(self) -> Optional[OrderBookLevel]:
        """Highest-priced bid; on equal prices the first one seen wins."""
        best: Optional[OrderBookLevel] = None
        for level in self.bids:
            if best is None or level.price > best.price:
                best = level
        return best


# =============================================================================
# Liquidation
# =============================================================================


@dataclass
class LiquidationJob:
    """Mutable accounting for one liquidation run."""

    asset: str
    requested: Decimal
    remaining: Decimal = field(init=False)
    sold: Decimal = Decimal("0")
    proceeds: Decimal = Decimal("0")
    retries: int = 0

    def __post_init__(self):
        self.remaining = self.requested

    def can_attempt(self, retry_limit: int) -> bool:
        return self.remaining > DUST_THRESHOLD and self.retries < retry_limit

    def record_fill(self, amount: Decimal, price: Decimal) -> None:
        if amount <= 0 or amount > self.remaining:
            raise ValueError(f"Fill of {amount} outside remaining {self.remaining}")
        self.retries = 0
        self.sold += amount
        self.proceeds += amount * price
        self.remaining -= amount

    def record_failure(self) -> None:
        self.retries += 1


@dataclass(frozen=True)
class LiquidationResult:
    """Outcome of liquidating one position."""

    success: bool
    sold: Decimal
    remaining: Decimal
    proceeds: Decimal
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        error: str,
        remaining: Decimal = Decimal("0"),
    ) -> "LiquidationResult":
        return cls(
            success=False,
            sold=Decimal("0"),
            remaining=remaining,
            proceeds=Decimal("0"),
            error=error,
            error_kind=kind,
        )

    @classmethod
    def from_job(
        cls,
        job: LiquidationJob,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
    ) -> "LiquidationResult":
        return cls(
            success=job.sold > 0,
            sold=job.sold,
            remaining=job.remaining,
            proceeds=job.proceeds,
            error=error,
            error_kind=error_kind,
        )


@dataclass(frozen=True)
class CloseDetail:
    """Per-position line of a close-all run."""

    asset: str
    title: str
    success: bool
    sold: Decimal
    value: Decimal
    error: Optional[str] = None


@dataclass
class BulkCloseSummary:
    """Outcome of closing every open position."""

    success: bool = False
    closed_count: int = 0
    failed_count: int = 0
    total_value: Decimal = Decimal("0")
    details: list[CloseDetail] = field(default_factory=list)
    message: str = ""


# =============================================================================
# Redemption
# =============================================================================


class BatchOutcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RedemptionBatch:
    """All redeemable positions sharing one condition id."""

    condition_id: str
    positions: list[Position] = field(default_factory=list)
    outcome: BatchOutcome = BatchOutcome.PENDING
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    tx_hash: Optional[str] = None

    @property
    def value(self) -> Decimal:
        return sum((p.current_value for p in self.positions), Decimal("0"))

    @property
    def title(self) -> str:
        if not self.positions:
            return self.condition_id
        return self.positions[0].display_name

    @property
    def payload(self) -> Position:
        """Position whose condition id is submitted for the whole batch."""
        return self.positions[0]

    @property
    def succeeded(self) -> bool:
        return self.outcome == BatchOutcome.SUCCEEDED

    def mark_succeeded(self, tx_hash: Optional[str] = None) -> None:
        self.outcome = BatchOutcome.SUCCEEDED
        self.tx_hash = tx_hash

    def mark_failed(
        self,
        error: str,
        tx_hash: Optional[str] = None,
        kind: ErrorKind = ErrorKind.TRANSPORT_FAILURE,
    ) -> None:
        self.outcome = BatchOutcome.FAILED
        self.error = error
        self.error_kind = kind
        self.tx_hash = tx_hash


@dataclass(frozen=True)
class RedeemableSummary:
    positions: list[Position]
    count: int
    total_value: Decimal


@dataclass
class RedemptionSummary:
    """Outcome of a redeem-all run."""

    success: bool = False
    redeemed_count: int = 0
    failed_count: int = 0
    total_value: Decimal = Decimal("0")
    batches: list[RedemptionBatch] = field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Trade observations
# =============================================================================


@dataclass(frozen=True)
class TradeObservation:
    """A tracked wallet's trade. Identity is the transaction hash."""

    transaction_hash: str
    wallet: str
    asset: str
    side: str
    size: Decimal
    price: Decimal
    timestamp: int
    condition_id: str = ""
    title: str = ""
    slug: str = ""
    event_slug: str = ""
    outcome: str = ""
    outcome_index: int = 0
    bot: bool = False
    bot_executed_time: int = 0

    @property
    def usdc_size(self) -> Decimal:
        return self.size * self.price

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["size"] = str(self.size)
        data["price"] = str(self.price)
        data["usdc_size"] = str(self.usdc_size)
        return data


@dataclass(frozen=True)
class TradeEvent:
    """Payload of a local "trade" emission.

    source is "stream" for the live monitor and "poll" for the fallback
    poller. paused mirrors BotState at emission time so a copier can skip
    new buys.
    """

    observation: TradeObservation
    source: str
    paused: bool = False


# =============================================================================
# Monitor connection state machine
# =============================================================================


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FALLBACK_ACTIVE = "fallback_active"


@dataclass
class MonitorConnectionState:
    """Streaming connection state with reconnect bookkeeping.

    FALLBACK_ACTIVE is absorbing: only reset() leaves it.
    """

    state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempts: int = 0

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def fallback_active(self) -> bool:
        return self.state == ConnectionState.FALLBACK_ACTIVE

    def begin_connect(self) -> bool:
        """Move to CONNECTING. Returns False when fallback blocks it."""
        if self.fallback_active:
            return False
        self.state = ConnectionState.CONNECTING
        return True

    def mark_connected(self) -> None:
        if self.fallback_active:
            return
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0

    def mark_disconnected(self) -> None:
        if self.fallback_active:
            return
        self.state = ConnectionState.DISCONNECTED

    def next_backoff_delay(self, base_delay: float, max_attempts: int) -> Optional[float]:
        """Consume one reconnect attempt.

        Returns the delay before the attempt (base * 2**attempt), or None once
        max_attempts have been used and the caller should fall back.
        """
        if self.fallback_active or self.reconnect_attempts >= max_attempts:
            return None
        delay = base_delay * (2 ** self.reconnect_attempts)
        self.reconnect_attempts += 1
        return delay

    def activate_fallback(self) -> bool:
        """Enter FALLBACK_ACTIVE. Returns True only on the first transition."""
        if self.fallback_active:
            return False
        self.state = ConnectionState.FALLBACK_ACTIVE
        return True

    def reset(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
