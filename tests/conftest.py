"""
Shared pytest fixtures for polycopy tests.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from polycopy.core.cache import ResponseCache
from polycopy.core.config import PolycopySettings
from polycopy.domain.models import Position

WALLET = "0x" + "1" * 40
TRACKED = "0x" + "ab" * 20


def make_position(
    asset: str = "asset-1",
    size: str = "100",
    condition_id: str = "0x" + "c" * 64,
    cur_price: str = "0.5",
    current_value: str = "50",
    redeemable: bool = False,
    title: str = "Will it rain?",
    slug: str = "will-it-rain",
) -> Position:
    return Position(
        asset=asset,
        condition_id=condition_id,
        size=Decimal(size),
        cur_price=Decimal(cur_price),
        current_value=Decimal(current_value),
        redeemable=redeemable,
        title=title,
        slug=slug,
    )


@pytest.fixture
def settings():
    """Minimal valid settings."""
    return PolycopySettings(
        private_key="0x" + "a" * 64,
        proxy_wallet=WALLET,
        user_addresses=(TRACKED,),
    )


@pytest.fixture
def cache():
    return ResponseCache()


@pytest.fixture
def mock_data_api(cache):
    """Mock DataApiClient with a real cache."""
    api = MagicMock()
    api.cache = cache
    api.get_positions = AsyncMock(return_value=[])
    api.fetch_positions = AsyncMock(return_value=[])
    return api


@pytest.fixture
def mock_clob():
    """Mock CLOBClient."""
    clob = MagicMock()
    clob.get_order_book = AsyncMock()
    clob.submit_market_sell = AsyncMock()
    clob.update_balance_allowance = AsyncMock()
    clob.get_balance = AsyncMock(return_value=Decimal("0"))
    return clob


@pytest.fixture
def mock_ctf():
    """Mock CTFClient."""
    ctf = MagicMock()
    ctf.redeem_positions = AsyncMock()
    return ctf


@pytest.fixture
def no_sleep():
    """Awaitable sleep that records delays instead of waiting."""
    return AsyncMock()


@pytest.fixture
def position_factory():
    return make_position
