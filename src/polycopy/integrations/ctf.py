"""CTF (Conditional Tokens Framework) client for position redemption.

After a market resolves, winning outcome tokens are redeemed for USDC.e via
the redeemPositions() function of the Gnosis Conditional Tokens contract on
Polygon. web3 is synchronous, so every RPC call runs in a thread pool.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog

from polycopy.core.errors import (
    ErrorKind,
    FeeUnavailableError,
    InvalidArgumentError,
    TransportFailure,
)

log = structlog.get_logger()


# Polygon mainnet addresses
CTF_ADDRESS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # USDC.e

DEFAULT_INDEX_SETS = (1, 2)
DEFAULT_GAS_LIMIT = 500000
DEFAULT_GAS_PRICE_MULTIPLIER_PCT = 120
RECEIPT_TIMEOUT_SECONDS = 120

# Token balances are 6-decimal fixed point
TOKEN_UNIT = Decimal("1000000")


CTF_ABI = [
    {
        "inputs": [
            {"name": "collateralToken", "type": "address"},
            {"name": "parentCollectionId", "type": "bytes32"},
            {"name": "conditionId", "type": "bytes32"},
            {"name": "indexSets", "type": "uint256[]"},
        ],
        "name": "redeemPositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class RedemptionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class RedemptionResult:
    """Result of a CTF redeemPositions transaction."""

    status: RedemptionStatus
    condition_id: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def success(self) -> bool:
        return self.status == RedemptionStatus.SUCCESS


def encode_condition_id(condition_id: str) -> bytes:
    """Parse a condition id as a big integer and left-pad it to bytes32.

    Raises:
        InvalidArgumentError: If the id is not hex or exceeds 32 bytes.
    """
    text = condition_id[2:] if condition_id.lower().startswith("0x") else condition_id
    try:
        value = int(text, 16)
        return value.to_bytes(32, "big")
    except (ValueError, OverflowError) as e:
        raise InvalidArgumentError(f"Invalid condition id: {condition_id}", cause=e)


def adjusted_gas_price(gas_price: Optional[int], multiplier_pct: int) -> int:
    """Scale a network gas price by multiplier_pct / 100 in integer arithmetic."""
    if not gas_price:
        raise FeeUnavailableError("Could not determine gas price")
    return gas_price * multiplier_pct // 100


class CTFClient:
    """Client for the Conditional Tokens Framework contract.

    Only one redemption transaction is in flight at a time; the engine
    submits batches sequentially.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        ctf_address: str = CTF_ADDRESS,
        usdc_address: str = USDC_ADDRESS,
        executor: Optional[ThreadPoolExecutor] = None,
        gas_price_multiplier_pct: int = DEFAULT_GAS_PRICE_MULTIPLIER_PCT,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self._rpc_url = rpc_url
        self._private_key = private_key
        self._ctf_address = ctf_address
        self._usdc_address = usdc_address
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._gas_price_multiplier_pct = gas_price_multiplier_pct
        self._gas_limit = gas_limit
        self._log = log.bind(component="ctf_client")

        self._w3 = None
        self._account = None
        self._ctf_contract = None
        self._connected = False

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def is_connected(self) -> bool:
        return self._connected and self._w3 is not None

    async def connect(self) -> None:
        """Connect to the Polygon RPC and bind the contract."""
        if self._connected:
            return

        from eth_account import Account
        from web3 import Web3

        self._w3 = Web3(Web3.HTTPProvider(self._rpc_url))

        if not await self._run_sync(self._w3.is_connected):
            self._w3 = None
            raise TransportFailure(f"Failed to connect to RPC: {self._rpc_url}")

        self._account = Account.from_key(self._private_key)
        ctf_checksum = Web3.to_checksum_address(self._ctf_address)
        self._ctf_contract = self._w3.eth.contract(address=ctf_checksum, abi=CTF_ABI)

        self._connected = True
        self._log.info(
            "ctf_client_connected",
            rpc=self._rpc_url,
            address=self._account.address,
            ctf_address=ctf_checksum,
        )

    async def close(self) -> None:
        self._w3 = None
        self._account = None
        self._ctf_contract = None
        self._connected = False
        self._log.debug("ctf_client_closed")

    async def __aenter__(self) -> "CTFClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _run_sync(self, func, *args, **kwargs):
        """Run a synchronous function in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise TransportFailure("CTF client not connected. Call connect() first.")

    async def get_gas_price(self) -> int:
        """Current network gas price in wei."""
        self._ensure_connected()
        return await self._run_sync(lambda: self._w3.eth.gas_price)

    async def balance_of(self, token_id: str, owner: Optional[str] = None) -> Decimal:
        """ERC1155 balance of an outcome token, in token units."""
        self._ensure_connected()

        from web3 import Web3

        holder = Web3.to_checksum_address(owner or self._account.address)
        raw = await self._run_sync(
            lambda: self._ctf_contract.functions.balanceOf(holder, int(token_id)).call()
        )
        return Decimal(raw) / TOKEN_UNIT

    async def redeem_positions(
        self,
        condition_id: str,
        index_sets: Optional[list[int]] = None,
    ) -> RedemptionResult:
        """Submit redeemPositions for a condition and wait for the receipt.

        Binary markets redeem both outcomes with index_sets [1, 2]; the
        contract only pays out for the winning side.

        Returns:
            RedemptionResult: SUCCESS when the receipt status is 1, otherwise
            FAILED with "Transaction reverted" or the raw transport error.

        Raises:
            InvalidArgumentError: If the condition id cannot be encoded.
            FeeUnavailableError: If no gas price estimate is available.
        """
        self._ensure_connected()

        from web3 import Web3

        condition_bytes = encode_condition_id(condition_id)
        sets = list(index_sets or DEFAULT_INDEX_SETS)

        gas_price_wei = adjusted_gas_price(
            await self.get_gas_price(), self._gas_price_multiplier_pct
        )

        self._log.info(
            "redeeming_positions",
            condition_id=condition_id[:16] + "...",
            index_sets=sets,
            wallet=self._account.address,
            gas_price_gwei=gas_price_wei / 1e9,
        )

        try:
            nonce = await self._run_sync(
                lambda: self._w3.eth.get_transaction_count(self._account.address)
            )
            tx_data = self._ctf_contract.functions.redeemPositions(
                Web3.to_checksum_address(self._usdc_address),
                bytes(32),
                condition_bytes,
                sets,
            )
            tx = await self._run_sync(
                lambda: tx_data.build_transaction(
                    {
                        "from": self._account.address,
                        "nonce": nonce,
                        "gasPrice": gas_price_wei,
                        "gas": self._gas_limit,
                    }
                )
            )

            signed_tx = await self._run_sync(
                lambda: self._w3.eth.account.sign_transaction(tx, self._private_key)
            )
            raw_tx = getattr(signed_tx, "raw_transaction", None) or signed_tx.rawTransaction
            tx_hash = await self._run_sync(
                lambda: self._w3.eth.send_raw_transaction(raw_tx)
            )
            tx_hash_hex = tx_hash.hex()

            self._log.info(
                "redemption_tx_submitted",
                tx_hash=tx_hash_hex,
                gas_limit=self._gas_limit,
            )

            receipt = await self._run_sync(
                lambda: self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS
                )
            )
        except Exception as e:
            self._log.error(
                "redemption_error",
                condition_id=condition_id[:16] + "...",
                error=str(e),
            )
            return RedemptionResult(
                status=RedemptionStatus.FAILED,
                condition_id=condition_id,
                error=str(e),
                error_kind=ErrorKind.TRANSPORT_FAILURE,
            )

        if receipt["status"] == 1:
            self._log.info(
                "redemption_successful",
                tx_hash=tx_hash_hex,
                block=receipt["blockNumber"],
                gas_used=receipt["gasUsed"],
            )
            return RedemptionResult(
                status=RedemptionStatus.SUCCESS,
                condition_id=condition_id,
                tx_hash=tx_hash_hex,
                block_number=receipt["blockNumber"],
                gas_used=receipt["gasUsed"],
            )

        self._log.error(
            "redemption_tx_reverted",
            tx_hash=tx_hash_hex,
            block=receipt["blockNumber"],
        )
        return RedemptionResult(
            status=RedemptionStatus.FAILED,
            condition_id=condition_id,
            tx_hash=tx_hash_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            error="Transaction reverted",
            error_kind=ErrorKind.REVERTED,
        )
