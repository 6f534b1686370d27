"""
Unit tests for the redemption engine.
"""
from decimal import Decimal
from typing import Any, Callable, Optional, get_type_hints
from unittest.mock import MagicMock

import httpx
import pytest

from polycopy.core.errors import ErrorKind, FeeUnavailableError, TransportFailure
from polycopy.domain.models import BatchOutcome, RedemptionBatch, RedemptionSummary
from polycopy.integrations.ctf import RedemptionResult, RedemptionStatus
from polycopy.integrations.data_api import DataApiClient
from polycopy.services.redemption import RedemptionEngine, RedemptionProgress, group_by_condition

WALLET = "0x" + "1" * 40
COND_A = "0x" + "a" * 64
COND_B = "0x" + "b" * 64


def success(condition_id):
    return RedemptionResult(
        status=RedemptionStatus.SUCCESS, condition_id=condition_id, tx_hash="0xfeed"
    )


def reverted(condition_id):
    return RedemptionResult(
        status=RedemptionStatus.FAILED,
        condition_id=condition_id,
        tx_hash="0xdead",
        error="Transaction reverted",
        error_kind=ErrorKind.REVERTED,
    )


@pytest.fixture
def engine(mock_data_api, mock_ctf, no_sleep):
    return RedemptionEngine(
        data_api=mock_data_api,
        ctf=mock_ctf,
        wallet=WALLET,
        batch_delay=2.0,
        sleep=no_sleep,
    )


class TestGetRedeemable:
    """Redeemable filtering."""

    @pytest.mark.asyncio
    async def test_filters_resolved_redeemable_positions(
        self, engine, mock_data_api, position_factory
    ):
        mock_data_api.get_positions.return_value = [
            position_factory(asset="won", cur_price="0.995", current_value="10", redeemable=True),
            position_factory(asset="lost", cur_price="0.005", current_value="0", redeemable=True),
            position_factory(asset="open", cur_price="0.5", redeemable=True),
            position_factory(asset="flag", cur_price="1", redeemable=False),
            position_factory(asset="dust", size="0.0001", cur_price="1", redeemable=True),
        ]

        summary = await engine.get_redeemable()

        assert [p.asset for p in summary.positions] == ["won", "lost"]
        assert summary.count == 2
        assert summary.total_value == Decimal("10")

    @pytest.mark.asyncio
    async def test_band_edges_are_inclusive(self, engine, mock_data_api, position_factory):
        mock_data_api.get_positions.return_value = [
            position_factory(asset="hi", cur_price="0.99", redeemable=True),
            position_factory(asset="lo", cur_price="0.01", redeemable=True),
            position_factory(asset="mid", cur_price="0.98", redeemable=True),
        ]

        summary = await engine.get_redeemable()

        assert [p.asset for p in summary.positions] == ["hi", "lo"]


class TestGroupByCondition:
    def test_groups_in_first_seen_order(self, position_factory):
        positions = [
            position_factory(asset="1", condition_id=COND_B, current_value="1"),
            position_factory(asset="2", condition_id=COND_A, current_value="2"),
            position_factory(asset="3", condition_id=COND_B, current_value="3"),
        ]

        batches = group_by_condition(positions)

        assert list(batches) == [COND_B, COND_A]
        assert [p.asset for p in batches[COND_B].positions] == ["1", "3"]
        assert batches[COND_B].value == Decimal("4")
        assert batches[COND_B].payload.asset == "1"

    def test_title_falls_back_to_slug_then_condition(self, position_factory):
        batches = group_by_condition(
            [
                position_factory(condition_id=COND_A, title="", slug="a-slug"),
                position_factory(condition_id=COND_B, title="", slug=""),
            ]
        )

        assert batches[COND_A].title == "a-slug"
        assert batches[COND_B].title == COND_B


class TestRedeemAll:
    """Batch redemption."""

    @pytest.mark.asyncio
    async def test_nothing_to_redeem(self, engine, mock_data_api, mock_ctf):
        summary = await engine.redeem_all()

        assert summary.success is True
        assert summary.error == "No positions to redeem"
        assert summary.redeemed_count == 0
        mock_ctf.redeem_positions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_batch_reverts_other_succeeds(
        self, engine, mock_data_api, mock_ctf, no_sleep, position_factory
    ):
        mock_data_api.get_positions.return_value = [
            position_factory(asset="a1", condition_id=COND_A, cur_price="1", current_value="5", redeemable=True),
            position_factory(asset="a2", condition_id=COND_A, cur_price="1", current_value="7", redeemable=True),
            position_factory(asset="b1", condition_id=COND_B, cur_price="0", current_value="3", redeemable=True),
        ]
        mock_ctf.redeem_positions.side_effect = [reverted(COND_A), success(COND_B)]

        summary = await engine.redeem_all()

        assert summary.success is True
        assert summary.redeemed_count == 1
        assert summary.failed_count == 1
        assert summary.total_value == Decimal("3")
        assert summary.batches[0].outcome == BatchOutcome.FAILED
        assert summary.batches[0].error == "Transaction reverted"
        assert summary.batches[0].error_kind == ErrorKind.REVERTED
        assert summary.batches[1].error_kind is None
        assert summary.batches[1].outcome == BatchOutcome.SUCCEEDED
        assert [c.args[0] for c in mock_ctf.redeem_positions.await_args_list] == [COND_A, COND_B]
        no_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_all_batches_fail(self, engine, mock_data_api, mock_ctf, position_factory):
        mock_data_api.get_positions.return_value = [
            position_factory(condition_id=COND_A, cur_price="1", redeemable=True),
        ]
        mock_ctf.redeem_positions.side_effect = FeeUnavailableError("Could not determine gas price")

        summary = await engine.redeem_all()

        assert summary.success is False
        assert summary.failed_count == 1
        assert summary.batches[0].error == "Could not determine gas price"
        assert summary.batches[0].error_kind == ErrorKind.FEE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_is_transport_failure(
        self, engine, mock_data_api, mock_ctf, position_factory
    ):
        mock_data_api.get_positions.return_value = [
            position_factory(condition_id=COND_A, cur_price="1", redeemable=True),
        ]
        mock_ctf.redeem_positions.side_effect = RuntimeError("nonce too low")

        summary = await engine.redeem_all()

        assert summary.batches[0].error == "nonce too low"
        assert summary.batches[0].error_kind == ErrorKind.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_one_transaction_per_condition(
        self, engine, mock_data_api, mock_ctf, no_sleep, position_factory
    ):
        conditions = ["0x" + c * 64 for c in "123"]
        mock_data_api.get_positions.return_value = [
            position_factory(asset=str(i), condition_id=cond, cur_price="1", redeemable=True)
            for i, cond in enumerate(conditions + conditions)
        ]
        mock_ctf.redeem_positions.side_effect = [success(c) for c in conditions]

        summary = await engine.redeem_all()

        assert mock_ctf.redeem_positions.await_count == 3
        assert summary.redeemed_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_progress_callbacks(self, engine, mock_data_api, mock_ctf, position_factory):
        mock_data_api.get_positions.return_value = [
            position_factory(condition_id=COND_A, cur_price="1", current_value="4", redeemable=True),
        ]
        mock_ctf.redeem_positions.return_value = success(COND_A)
        progress = RedemptionProgress(
            on_init=MagicMock(),
            on_redeeming=MagicMock(),
            on_redeemed=MagicMock(),
            on_complete=MagicMock(),
        )

        summary = await engine.redeem_all(progress)

        batches, total = progress.on_init.call_args.args
        assert len(batches) == 1
        assert total == Decimal("4")
        progress.on_redeeming.assert_called_once_with(0, batches[0])
        progress.on_redeemed.assert_called_once_with(0, batches[0])
        progress.on_complete.assert_called_once_with(summary)

    @pytest.mark.asyncio
    async def test_positions_failure_is_reported(self, engine, mock_data_api, mock_ctf):
        mock_data_api.get_positions.side_effect = TransportFailure("HTTP 502")

        summary = await engine.redeem_all()

        assert summary.success is False
        assert "HTTP 502" in summary.error
        mock_ctf.redeem_positions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_positions_body_is_reported(self, mock_ctf, no_sleep):
        data_api = DataApiClient(base_url="https://data-api.test")
        data_api._client = httpx.AsyncClient(
            base_url="https://data-api.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
        )
        engine = RedemptionEngine(data_api=data_api, ctf=mock_ctf, wallet=WALLET, sleep=no_sleep)

        summary = await engine.redeem_all()
        await data_api.close()

        assert summary.success is False
        assert "not valid JSON" in summary.error
        mock_ctf.redeem_positions.assert_not_awaited()


class TestRedemptionProgress:
    def test_hook_signatures(self):
        hints = get_type_hints(RedemptionProgress)

        assert hints["on_init"] == Optional[Callable[[list[RedemptionBatch], Decimal], Any]]
        assert hints["on_redeemed"] == Optional[Callable[[int, RedemptionBatch], Any]]
        assert hints["on_complete"] == Optional[Callable[[RedemptionSummary], Any]]
