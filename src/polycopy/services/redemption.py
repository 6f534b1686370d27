"""Resolved-Position Redemption Engine.

Finds positions in settled markets, groups them by condition id and
submits one redeemPositions transaction per condition, sequentially, with a
fixed pause between transactions. A failing condition is recorded and the
run moves on.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from polycopy.core.cache import CacheKeys
from polycopy.core.errors import ErrorKind, PolycopyError
from polycopy.core.events import invoke_listener
from polycopy.domain.models import (
    Position,
    RedeemableSummary,
    RedemptionBatch,
    RedemptionSummary,
)
from polycopy.integrations.ctf import CTFClient
from polycopy.integrations.data_api import DataApiClient

log = structlog.get_logger()

DEFAULT_BATCH_DELAY = 2.0


@dataclass
class RedemptionProgress:
    """Optional redeem-all progress hooks; each may be sync or async."""

    on_init: Optional[Callable[[list[RedemptionBatch], Decimal], Any]] = None
    on_redeeming: Optional[Callable[[int, RedemptionBatch], Any]] = None
    on_redeemed: Optional[Callable[[int, RedemptionBatch], Any]] = None
    on_complete: Optional[Callable[[RedemptionSummary], Any]] = None


def group_by_condition(positions: Iterable[Position]) -> dict[str, RedemptionBatch]:
    """Group positions by condition id, keeping first-seen order."""
    batches: dict[str, RedemptionBatch] = {}
    for position in positions:
        batch = batches.get(position.condition_id)
        if batch is None:
            batch = batches[position.condition_id] = RedemptionBatch(
                condition_id=position.condition_id
            )
        batch.positions.append(position)
    return batches


class RedemptionEngine:
    """Redeems resolved positions of the operator wallet."""

    def __init__(
        self,
        data_api: DataApiClient,
        ctf: CTFClient,
        wallet: str,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._data_api = data_api
        self._ctf = ctf
        self._wallet = wallet
        self._batch_delay = batch_delay
        self._sleep = sleep
        self._log = log.bind(component="redemption_engine")

    async def get_redeemable(self) -> RedeemableSummary:
        """Positions whose market has settled and can be redeemed.

        Raises:
            TransportFailure: If positions cannot be loaded.
        """
        positions = await self._data_api.get_positions(
            self._wallet, fresh=True, cache_key=CacheKeys.MY_POSITIONS
        )
        redeemable = [p for p in positions if p.is_redeemable]
        return RedeemableSummary(
            positions=redeemable,
            count=len(redeemable),
            total_value=sum((p.current_value for p in redeemable), Decimal("0")),
        )

    async def redeem_all(self, progress: Optional[RedemptionProgress] = None) -> RedemptionSummary:
        """Redeem every resolved position, one condition at a time."""
        progress = progress or RedemptionProgress()
        summary = RedemptionSummary()

        try:
            redeemable = await self.get_redeemable()
        except PolycopyError as e:
            self._log.error("redemption_positions_failed", error=str(e))
            summary.error = str(e)
            await invoke_listener(progress.on_complete, summary)
            return summary

        if not redeemable.positions:
            summary.success = True
            summary.error = "No positions to redeem"
            await invoke_listener(progress.on_init, [], Decimal("0"))
            await invoke_listener(progress.on_complete, summary)
            return summary

        batches = list(group_by_condition(redeemable.positions).values())
        summary.batches = batches
        await invoke_listener(progress.on_init, batches, redeemable.total_value)
        self._log.info(
            "redemption_started",
            batches=len(batches),
            positions=redeemable.count,
            total_value=str(redeemable.total_value),
        )

        for index, batch in enumerate(batches):
            await invoke_listener(progress.on_redeeming, index, batch)
            await self._redeem_batch(batch)

            if batch.succeeded:
                summary.redeemed_count += 1
                summary.total_value += batch.value
            else:
                summary.failed_count += 1

            await invoke_listener(progress.on_redeemed, index, batch)

            if index < len(batches) - 1:
                await self._sleep(self._batch_delay)

        summary.success = summary.redeemed_count > 0 or summary.failed_count == 0
        if summary.redeemed_count:
            self._data_api.cache.invalidate(CacheKeys.MY_POSITIONS)

        self._log.info(
            "redemption_finished",
            redeemed=summary.redeemed_count,
            failed=summary.failed_count,
            total_value=str(summary.total_value),
        )
        await invoke_listener(progress.on_complete, summary)
        return summary

    async def _redeem_batch(self, batch: RedemptionBatch) -> None:
        # Every member shares the condition id, so one call covers the batch.
        condition_id = batch.payload.condition_id
        try:
            result = await self._ctf.redeem_positions(condition_id)
        except Exception as e:
            self._log.error(
                "redemption_batch_error",
                condition_id=condition_id,
                title=batch.title,
                error=str(e),
            )
            kind = ErrorKind.TRANSPORT_FAILURE
            if isinstance(e, PolycopyError) and e.kind is not None:
                kind = e.kind
            batch.mark_failed(str(e), kind=kind)
            return

        if result.success:
            batch.mark_succeeded(result.tx_hash)
            self._log.info(
                "redemption_batch_succeeded",
                condition_id=condition_id,
                title=batch.title,
                value=str(batch.value),
                tx_hash=result.tx_hash,
            )
        else:
            batch.mark_failed(
                result.error or "Redemption failed",
                result.tx_hash,
                kind=result.error_kind or ErrorKind.TRANSPORT_FAILURE,
            )
            self._log.warning(
                "redemption_batch_failed",
                condition_id=condition_id,
                title=batch.title,
                error=batch.error,
                error_kind=batch.error_kind,
            )
