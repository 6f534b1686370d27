"""Trade Observation Store - async SQLite persistence for observed trades.

One table per tracked wallet (user_activities_<address>), created on first
insert. The transaction hash is the primary key, so the live monitor and
the polling fallback can both write without producing duplicates.
"""

import asyncio
import re
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite
import structlog

from polycopy.core.errors import TransportFailure
from polycopy.domain.models import TradeObservation

log = structlog.get_logger()

TABLE_PREFIX = "user_activities_"

DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 100

TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    transaction_hash TEXT PRIMARY KEY,
    wallet TEXT NOT NULL,
    asset TEXT NOT NULL,
    condition_id TEXT NOT NULL DEFAULT '',
    side TEXT NOT NULL,
    size TEXT NOT NULL,
    price TEXT NOT NULL,
    usdc_size TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    slug TEXT NOT NULL DEFAULT '',
    event_slug TEXT NOT NULL DEFAULT '',
    outcome TEXT NOT NULL DEFAULT '',
    outcome_index INTEGER NOT NULL DEFAULT 0,
    bot INTEGER NOT NULL DEFAULT 0,
    bot_executed_time INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {table}(timestamp);
CREATE INDEX IF NOT EXISTS idx_{table}_bot ON {table}(bot, timestamp);
"""

INSERT_SQL = """
INSERT OR IGNORE INTO {table} (
    transaction_hash, wallet, asset, condition_id, side, size, price,
    usdc_size, timestamp, title, slug, event_slug, outcome, outcome_index,
    bot, bot_executed_time
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def clamp_limit(limit: Optional[int], default: int = DEFAULT_QUERY_LIMIT) -> int:
    """Clamp a caller-supplied row limit to 1..100."""
    if not limit:
        return default
    return max(1, min(int(limit), MAX_QUERY_LIMIT))


class ObservationStore:
    """SQLite-backed store of trades seen on tracked wallets.

    Observations are never updated after insert except for the bot
    execution marker set by the copier.
    """

    def __init__(self, db_path: str = "./data/polycopy.db"):
        self._db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._known_tables: set[str] = set()
        self._log = log.bind(component="observation_store")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        if self._connection is not None:
            return

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._log.info("connecting_observation_store", db_path=str(self._db_path))
        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._known_tables.clear()
            self._log.info("observation_store_closed")

    async def __aenter__(self) -> "ObservationStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise TransportFailure("Observation store not connected. Call connect() first.")
        return self._connection

    @staticmethod
    def table_name(address: str) -> str:
        """Per-wallet table name; anything outside [0-9a-z_] becomes '_'."""
        return TABLE_PREFIX + re.sub(r"[^0-9a-z_]", "_", address.lower())

    # =========================================================================
    # Collections
    # =========================================================================

    async def has_collection(self, address: str) -> bool:
        table = self.table_name(address)
        if table in self._known_tables:
            return True
        cursor = await self._conn().execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        row = await cursor.fetchone()
        if row is not None:
            self._known_tables.add(table)
        return row is not None

    async def _ensure_collection(self, address: str) -> str:
        table = self.table_name(address)
        if table not in self._known_tables:
            await self._conn().executescript(TABLE_SQL.format(table=table))
            self._known_tables.add(table)
            self._log.debug("collection_created", table=table)
        return table

    # =========================================================================
    # Writes
    # =========================================================================

    async def record_if_new(self, observation: TradeObservation) -> bool:
        """Insert an observation unless its transaction hash is already stored.

        Returns:
            True if a row was inserted.
        """
        async with self._lock:
            table = await self._ensure_collection(observation.wallet)
            cursor = await self._conn().execute(
                INSERT_SQL.format(table=table),
                (
                    observation.transaction_hash,
                    observation.wallet.lower(),
                    observation.asset,
                    observation.condition_id,
                    observation.side,
                    str(observation.size),
                    str(observation.price),
                    str(observation.usdc_size),
                    observation.timestamp,
                    observation.title,
                    observation.slug,
                    observation.event_slug,
                    observation.outcome,
                    observation.outcome_index,
                    int(observation.bot),
                    observation.bot_executed_time,
                ),
            )
            await self._conn().commit()
            inserted = cursor.rowcount == 1

        if inserted:
            self._log.debug(
                "observation_recorded",
                wallet=observation.wallet,
                tx_hash=observation.transaction_hash,
            )
        return inserted

    async def mark_bot_executed(
        self, address: str, transaction_hash: str, executed_at: int
    ) -> bool:
        """Flag an observation as copied by the bot."""
        if not await self.has_collection(address):
            return False
        async with self._lock:
            cursor = await self._conn().execute(
                f"UPDATE {self.table_name(address)} "
                "SET bot = 1, bot_executed_time = ? WHERE transaction_hash = ?",
                (executed_at, transaction_hash),
            )
            await self._conn().commit()
            return cursor.rowcount == 1

    # =========================================================================
    # Queries
    # =========================================================================

    async def exists(self, address: str, transaction_hash: str) -> bool:
        if not await self.has_collection(address):
            return False
        cursor = await self._conn().execute(
            f"SELECT 1 FROM {self.table_name(address)} WHERE transaction_hash = ?",
            (transaction_hash,),
        )
        return await cursor.fetchone() is not None

    async def find_bot_trades_since(
        self,
        address: str,
        since: int,
        limit: int = 10,
        offset: int = 0,
        oldest_first: bool = False,
    ) -> list[TradeObservation]:
        """Bot-executed observations with timestamp > since.

        Newest first unless oldest_first is set; offset pages through
        the same ordering.
        """
        if not await self.has_collection(address):
            return []
        order = "ASC" if oldest_first else "DESC"
        cursor = await self._conn().execute(
            f"SELECT * FROM {self.table_name(address)} "
            f"WHERE bot = 1 AND timestamp > ? ORDER BY timestamp {order}, rowid {order} "
            "LIMIT ? OFFSET ?",
            (since, clamp_limit(limit), max(0, offset)),
        )
        return [self._row_to_observation(row) for row in await cursor.fetchall()]

    async def query_recent(
        self,
        address: str,
        since: Optional[int] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[TradeObservation]:
        """Latest observations for a wallet, newest first."""
        if not await self.has_collection(address):
            return []
        query = f"SELECT * FROM {self.table_name(address)}"
        params: list = []
        if since is not None:
            query += " WHERE timestamp > ?"
            params.append(since)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(clamp_limit(limit))

        cursor = await self._conn().execute(query, params)
        return [self._row_to_observation(row) for row in await cursor.fetchall()]

    async def recent_bot_trades(
        self, addresses: Iterable[str], limit: int = DEFAULT_QUERY_LIMIT
    ) -> list[TradeObservation]:
        """Bot-executed observations across wallets, newest first, capped at 100."""
        limit = clamp_limit(limit)
        trades: list[TradeObservation] = []
        for address in addresses:
            trades.extend(await self.find_bot_trades_since(address, since=-1, limit=limit))
        trades.sort(key=lambda t: t.timestamp, reverse=True)
        return trades[:limit]

    @staticmethod
    def _row_to_observation(row: aiosqlite.Row) -> TradeObservation:
        return TradeObservation(
            transaction_hash=row["transaction_hash"],
            wallet=row["wallet"],
            asset=row["asset"],
            side=row["side"],
            size=Decimal(row["size"]),
            price=Decimal(row["price"]),
            timestamp=row["timestamp"],
            condition_id=row["condition_id"],
            title=row["title"],
            slug=row["slug"],
            event_slug=row["event_slug"],
            outcome=row["outcome"],
            outcome_index=row["outcome_index"],
            bot=bool(row["bot"]),
            bot_executed_time=row["bot_executed_time"],
        )
