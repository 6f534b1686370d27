"""
Configuration management with TOML + environment variable support.

Configuration hierarchy (later overrides earlier):
1. Default values in code
2. TOML file
3. Environment variables (POLYCOPY_* prefix)
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from polycopy.core.errors import ConfigurationError


class ConfigManager:
    """Centralized configuration with TOML + env var support.

    Usage:
        config = ConfigManager(Path("config/default.toml"))
        retry_limit = config.get_int("liquidation.retry_limit", 3)
        addresses = config.get_list("tracking.user_addresses")
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        env_prefix: str = "POLYCOPY_",
    ) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: Path to TOML config file (optional)
            env_prefix: Prefix for environment variable overrides
        """
        self._data: dict[str, Any] = {}
        self._env_prefix = env_prefix

        if config_path and config_path.exists():
            self._load_toml(config_path)

    def _load_toml(self, path: Path) -> None:
        with open(path, "rb") as f:
            self._data = tomllib.load(f)

    def _get_nested(self, data: dict[str, Any], key: str) -> tuple[bool, Any]:
        """Get a nested value using dot notation.

        Returns (found, value) tuple.
        """
        current = data
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return False, None
            current = current[part]
        return True, current

    def _get_env_value(self, key: str) -> tuple[bool, Any]:
        """Get value from environment variable.

        Converts key like "liquidation.retry_limit" to
        "POLYCOPY_LIQUIDATION_RETRY_LIMIT".
        """
        env_key = self._env_prefix + key.upper().replace(".", "_")
        if env_key in os.environ:
            return True, self._parse_env_value(os.environ[env_key])
        return False, None

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable string to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        # Wallet addresses and keys are hex strings, never numbers
        if value.lower().startswith("0x"):
            if "," in value:
                return [v.strip() for v in value.split(",") if v.strip()]
            return value

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",") if v.strip()]

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with dot notation.

        Environment variables take precedence over TOML values.
        """
        found, value = self._get_env_value(key)
        if found:
            return value

        found, value = self._get_nested(self._data, key)
        if found:
            return value

        return default

    def get_section(self, section: str) -> dict[str, Any]:
        """Get entire configuration section."""
        found, value = self._get_nested(self._data, section)
        if found and isinstance(value, dict):
            return value
        return {}

    def get_decimal(self, key: str, default: Decimal = Decimal("0")) -> Decimal:
        value = self.get(key)
        if value is None:
            return default
        return Decimal(str(value))

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get(key)
        if value is None:
            return default
        return float(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        return int(value)

    def get_list(self, key: str, default: Optional[list[Any]] = None) -> list[Any]:
        """Get configuration value as list.

        Comma-separated strings are split into their parts.
        """
        if default is None:
            default = []
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [value]


@dataclass(frozen=True)
class PolycopySettings:
    """Runtime settings resolved from a ConfigManager.

    Attributes:
        private_key: Polygon wallet private key for signing orders and transactions.
        proxy_wallet: Wallet whose positions are liquidated/redeemed.
        signature_type: Signature type (0=EOA, 1=Magic, 2=Gnosis Safe proxy).
        user_addresses: Tracked wallets to copy, as configured.
        retry_limit: Consecutive failed fills tolerated per liquidation.
        too_old_hours: Observations older than this are not persisted.
    """

    private_key: str
    proxy_wallet: str
    signature_type: int = 0

    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""

    clob_url: str = "https://clob.polymarket.com"
    data_api_url: str = "https://data-api.polymarket.com"
    rtds_url: str = "wss://ws-live-data.polymarket.com"
    polygon_rpc_url: str = "https://polygon-rpc.com"

    user_addresses: tuple[str, ...] = field(default_factory=tuple)

    retry_limit: int = 3
    too_old_hours: int = 24
    ws_reconnect_attempts: int = 10
    ws_reconnect_delay_seconds: float = 1.0
    poll_interval_seconds: float = 2.0

    close_all_delay_seconds: float = 1.0
    redemption_delay_seconds: float = 2.0
    redemption_gas_limit: int = 500000
    gas_price_multiplier_pct: int = 120

    positions_ttl_seconds: float = 10.0
    balance_ttl_seconds: float = 10.0
    order_book_ttl_seconds: float = 3.0

    database_path: str = "./data/polycopy.db"

    @classmethod
    def from_config(cls, config: ConfigManager) -> "PolycopySettings":
        """Build settings from configuration.

        Raises:
            ConfigurationError: If the signing identity is missing.
        """
        private_key = config.get("wallet.private_key", "") or ""
        proxy_wallet = config.get("wallet.proxy_wallet", "") or ""
        if not private_key:
            raise ConfigurationError("wallet.private_key is not configured")
        if not proxy_wallet:
            raise ConfigurationError("wallet.proxy_wallet is not configured")

        close_all_delay = config.get_float("liquidation.close_all_delay_seconds", 1.0)
        if not 0.5 <= close_all_delay <= 1.0:
            raise ConfigurationError(
                "liquidation.close_all_delay_seconds must be between 0.5 and 1.0"
            )

        return cls(
            private_key=str(private_key),
            proxy_wallet=str(proxy_wallet),
            signature_type=config.get_int("wallet.signature_type", 0),
            api_key=config.get("clob.api_key", "") or "",
            api_secret=config.get("clob.api_secret", "") or "",
            api_passphrase=config.get("clob.api_passphrase", "") or "",
            clob_url=config.get("clob.url", cls.clob_url),
            data_api_url=config.get("data_api.url", cls.data_api_url),
            rtds_url=config.get("monitor.ws_url", cls.rtds_url),
            polygon_rpc_url=config.get("chain.rpc_url", cls.polygon_rpc_url),
            user_addresses=tuple(
                str(a) for a in config.get_list("tracking.user_addresses")
            ),
            retry_limit=config.get_int("liquidation.retry_limit", 3),
            too_old_hours=config.get_int("tracking.too_old_hours", 24),
            ws_reconnect_attempts=config.get_int("monitor.reconnect_attempts", 10),
            ws_reconnect_delay_seconds=config.get_float(
                "monitor.reconnect_delay_seconds", 1.0
            ),
            poll_interval_seconds=config.get_float("monitor.poll_interval_seconds", 2.0),
            close_all_delay_seconds=close_all_delay,
            redemption_delay_seconds=config.get_float(
                "redemption.batch_delay_seconds", 2.0
            ),
            redemption_gas_limit=config.get_int("redemption.gas_limit", 500000),
            gas_price_multiplier_pct=config.get_int(
                "redemption.gas_price_multiplier_pct", 120
            ),
            positions_ttl_seconds=config.get_float("cache.positions_ttl_seconds", 10.0),
            balance_ttl_seconds=config.get_float("cache.balance_ttl_seconds", 10.0),
            order_book_ttl_seconds=config.get_float("cache.order_book_ttl_seconds", 3.0),
            database_path=config.get("database.path", cls.database_path),
        )
