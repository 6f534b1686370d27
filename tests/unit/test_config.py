"""
Unit tests for ConfigManager and PolycopySettings.

Tests verify:
- TOML loading
- Environment variable overrides
- Settings validation
"""
from decimal import Decimal
from pathlib import Path

import pytest

from polycopy.core.config import ConfigManager, PolycopySettings
from polycopy.core.errors import ConfigurationError

WALLET_TOML = """
[wallet]
private_key = "0xkey"
proxy_wallet = "0xproxy"
signature_type = 2
"""


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text)
    return path


class TestConfigManager:
    """Tests for basic ConfigManager functionality."""

    def test_empty_config(self):
        config = ConfigManager()
        assert config.get("any.key") is None
        assert config.get("any.key", "default") == "default"

    def test_missing_file_is_ignored(self, tmp_path):
        config = ConfigManager(tmp_path / "nope.toml")
        assert config.get_section("wallet") == {}
        assert config.get("wallet.private_key") is None

    def test_load_toml_file(self, tmp_path):
        config = ConfigManager(
            write_config(
                tmp_path,
                """
[liquidation]
retry_limit = 5
close_all_delay_seconds = 0.75

[tracking]
user_addresses = ["0xaaa", "0xbbb"]
""",
            )
        )

        assert config.get_int("liquidation.retry_limit") == 5
        assert config.get_float("liquidation.close_all_delay_seconds") == 0.75
        assert config.get_decimal("liquidation.close_all_delay_seconds") == Decimal("0.75")
        assert config.get_list("tracking.user_addresses") == ["0xaaa", "0xbbb"]
        assert config.get_section("liquidation")["retry_limit"] == 5

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        config = ConfigManager(write_config(tmp_path, "[liquidation]\nretry_limit = 5\n"))
        monkeypatch.setenv("POLYCOPY_LIQUIDATION_RETRY_LIMIT", "7")

        assert config.get_int("liquidation.retry_limit") == 7

    def test_env_value_parsing(self, monkeypatch):
        monkeypatch.setenv("POLYCOPY_A_FLAG", "yes")
        monkeypatch.setenv("POLYCOPY_A_FLOAT", "0.5")
        monkeypatch.setenv("POLYCOPY_A_KEY", "0x0123")
        monkeypatch.setenv("POLYCOPY_A_ADDRESSES", "0xaaa, 0xbbb")
        config = ConfigManager()

        assert config.get("a.flag") is True
        assert config.get("a.float") == 0.5
        # Hex strings stay strings even when they look numeric
        assert config.get("a.key") == "0x0123"
        assert config.get_list("a.addresses") == ["0xaaa", "0xbbb"]

    def test_get_bool_from_string(self):
        config = ConfigManager()
        config._data = {"x": {"on": "on", "off": "0"}}

        assert config.get_bool("x.on") is True
        assert config.get_bool("x.off") is False
        assert config.get_bool("x.missing", default=True) is True


class TestPolycopySettings:
    def test_from_config_with_defaults(self, tmp_path):
        settings = PolycopySettings.from_config(ConfigManager(write_config(tmp_path, WALLET_TOML)))

        assert settings.private_key == "0xkey"
        assert settings.proxy_wallet == "0xproxy"
        assert settings.signature_type == 2
        assert settings.retry_limit == 3
        assert settings.too_old_hours == 24
        assert settings.close_all_delay_seconds == 1.0
        assert settings.redemption_delay_seconds == 2.0
        assert settings.gas_price_multiplier_pct == 120
        assert settings.redemption_gas_limit == 500000
        assert settings.rtds_url == "wss://ws-live-data.polymarket.com"
        assert settings.user_addresses == ()

    def test_tracked_addresses_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POLYCOPY_TRACKING_USER_ADDRESSES", "0xaaa,0xbbb")

        settings = PolycopySettings.from_config(ConfigManager(write_config(tmp_path, WALLET_TOML)))

        assert settings.user_addresses == ("0xaaa", "0xbbb")

    @pytest.mark.parametrize("missing", ["private_key", "proxy_wallet"])
    def test_wallet_identity_required(self, tmp_path, missing):
        text = "\n".join(line for line in WALLET_TOML.splitlines() if missing not in line)

        with pytest.raises(ConfigurationError) as excinfo:
            PolycopySettings.from_config(ConfigManager(write_config(tmp_path, text)))

        assert missing in str(excinfo.value)

    @pytest.mark.parametrize("delay", ["0.25", "1.5"])
    def test_close_all_delay_range(self, tmp_path, monkeypatch, delay):
        monkeypatch.setenv("POLYCOPY_LIQUIDATION_CLOSE_ALL_DELAY_SECONDS", delay)

        with pytest.raises(ConfigurationError):
            PolycopySettings.from_config(ConfigManager(write_config(tmp_path, WALLET_TOML)))

    def test_default_config_file_loads(self, monkeypatch):
        path = Path(__file__).resolve().parents[2] / "config" / "default.toml"
        monkeypatch.setenv("POLYCOPY_WALLET_PRIVATE_KEY", "0xkey")
        monkeypatch.setenv("POLYCOPY_WALLET_PROXY_WALLET", "0xproxy")

        settings = PolycopySettings.from_config(ConfigManager(path))

        assert settings.proxy_wallet == "0xproxy"
        assert 0.5 <= settings.close_all_delay_seconds <= 1.0
