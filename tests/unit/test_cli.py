"""
Unit tests for command-line parsing.
"""
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest

from polycopy import __version__
from polycopy.__main__ import find_config_file, main, parse_args


class TestParseArgs:
    def test_sell_percentage_is_decimal(self):
        args = parse_args(["sell", "7132", "33.5"])

        assert args.command == "sell"
        assert args.asset == "7132"
        assert args.percentage == Decimal("33.5")

    def test_sell_rejects_non_number(self):
        with pytest.raises(SystemExit):
            parse_args(["sell", "7132", "half"])

    def test_global_options(self):
        args = parse_args(["--config", "x.toml", "--log-level", "DEBUG", "--json-logs", "redeem"])

        assert args.config == Path("x.toml")
        assert args.log_level == "DEBUG"
        assert args.json_logs is True
        assert args.command == "redeem"

    def test_balance_command(self):
        assert parse_args(["balance"]).command == "balance"

    def test_trades_limit_default(self):
        assert parse_args(["trades"]).limit == 50
        assert parse_args(["trades", "--limit", "5"]).limit == 5


class TestFindConfigFile:
    def test_specified_file_wins(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text("")

        assert find_config_file(path) == path

    def test_search_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_config_file(None) is None

        (tmp_path / "polycopy.toml").write_text("")
        assert find_config_file(tmp_path / "missing.toml") == Path("polycopy.toml")


class TestMain:
    def test_version_command(self, capsys):
        assert main(["version"]) == 0
        assert capsys.readouterr().out.strip() == f"polycopy {__version__}"

    def test_missing_wallet_is_configuration_error(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("POLYCOPY_WALLET_PRIVATE_KEY", raising=False)
        monkeypatch.delenv("POLYCOPY_WALLET_PROXY_WALLET", raising=False)

        assert main(["positions"]) == 2


class FakeApp:
    """Stands in for PolycopyApp inside run_command."""

    positions = []
    usdc = Decimal("0")

    def __init__(self, settings):
        self.connected = None

    async def connect(self, **kwargs):
        self.connected = kwargs

    async def close(self):
        pass

    async def list_positions(self):
        return self.positions

    async def balance(self):
        return self.usdc


@pytest.fixture
def configured(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "polycopy.toml").write_text(
        '[wallet]\nprivate_key = "0x' + "a" * 64 + '"\nproxy_wallet = "0x' + "1" * 40 + '"\n'
    )
    monkeypatch.setattr("polycopy.app.PolycopyApp", FakeApp)


class TestCommands:
    def test_balance(self, configured, capsys, monkeypatch):
        monkeypatch.setattr(FakeApp, "usdc", Decimal("1234.567"))

        assert main(["balance"]) == 0
        assert capsys.readouterr().out.strip() == "USDC balance: $1234.57"

    def test_positions_prints_total_pnl(self, configured, capsys, monkeypatch, position_factory):
        monkeypatch.setattr(
            FakeApp,
            "positions",
            [
                replace(position_factory(asset="a", current_value="60"), cash_pnl=Decimal("10.5")),
                replace(position_factory(asset="b", current_value="15"), cash_pnl=Decimal("-4.25")),
            ],
        )

        assert main(["positions"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert "pnl=+10.50" in lines[0]
        assert "pnl=-4.25" in lines[1]
        assert lines[-1] == "2 positions, total value $75.00, total PnL +6.25"
