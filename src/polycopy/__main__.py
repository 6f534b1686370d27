"""polycopy - Entry Point

Usage:
    python -m polycopy [--config PATH] [--log-level LEVEL] [--json-logs] COMMAND

Commands:
    positions           - List open positions
    balance             - Show USDC balance available for trading
    sell ASSET PERCENT  - Sell PERCENT (0-100) of one position
    close-all           - Sell every open position
    redeemable          - List positions ready for redemption
    redeem              - Redeem every resolved position
    monitor             - Watch tracked wallets until interrupted
    trades              - Show recent bot-executed trades
    version             - Show version

Examples:
    python -m polycopy positions
    python -m polycopy sell 7132...9921 50
    python -m polycopy --config config/production.toml redeem
    python -m polycopy trades --limit 20
"""

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from polycopy import __version__


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="polycopy",
        description="Polymarket trade observer with position liquidation and redemption",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"polycopy {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("positions", help="List open positions")
    subparsers.add_parser("balance", help="Show USDC trading balance")

    sell = subparsers.add_parser("sell", help="Sell part or all of one position")
    sell.add_argument("asset", help="Outcome token id")
    sell.add_argument("percentage", type=_percentage, help="Percentage to sell (0-100)")

    subparsers.add_parser("close-all", help="Sell every open position")
    subparsers.add_parser("redeemable", help="List redeemable positions")
    subparsers.add_parser("redeem", help="Redeem all resolved positions")
    subparsers.add_parser("monitor", help="Watch tracked wallets")

    trades = subparsers.add_parser("trades", help="Recent bot-executed trades")
    trades.add_argument("--limit", type=int, default=50, help="Rows to show (max 100)")

    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def _percentage(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}")


def find_config_file(specified: Path | None) -> Path | None:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("polycopy.toml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def _print_close_progress():
    from polycopy.services.liquidation import LiquidationProgress

    def on_closing(index, position):
        print(f"[{index + 1}] Closing {position.display_name} ({position.size} tokens)...")

    def on_closed(index, position, result):
        if result.success:
            print(f"    sold {result.sold:.4f} for ${result.proceeds:.2f}")
        else:
            print(f"    failed: {result.error}")

    return LiquidationProgress(
        on_init=lambda total: print(f"Closing {total} positions"),
        on_closing=on_closing,
        on_closed=on_closed,
    )


def _print_redeem_progress():
    from polycopy.services.redemption import RedemptionProgress

    def on_init(batches, total_value):
        print(f"Redeeming {len(batches)} markets worth ${total_value:.2f}")

    def on_redeemed(index, batch):
        status = "ok" if batch.succeeded else f"failed: {batch.error}"
        print(f"[{index + 1}] {batch.title} (${batch.value:.2f}) {status}")

    return RedemptionProgress(on_init=on_init, on_redeemed=on_redeemed)


async def run_command(args: argparse.Namespace) -> int:
    """Run one command against a connected app."""
    from polycopy.app import PolycopyApp
    from polycopy.core.config import ConfigManager, PolycopySettings
    from polycopy.core.errors import ConfigurationError, PolycopyError
    from polycopy.core.logging import setup_logging

    config_path = find_config_file(args.config)
    config = ConfigManager(config_path) if config_path else ConfigManager()

    log_level = args.log_level or config.get("logging.level", "INFO")
    json_logs = args.json_logs or config.get_bool("logging.json", False)
    setup_logging(
        level=log_level,
        json_output=json_logs,
        log_file=config.get("logging.file"),
        command=args.command,
    )

    import structlog
    log = structlog.get_logger()

    try:
        settings = PolycopySettings.from_config(config)
    except ConfigurationError as e:
        log.error("configuration_error", error=str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    log.info(
        "starting_polycopy",
        version=__version__,
        command=args.command,
        config=str(config_path) if config_path else "defaults",
    )

    app = PolycopyApp(settings)
    try:
        if args.command == "positions":
            await app.connect()
            positions = await app.list_positions()
            total = sum((p.current_value for p in positions), Decimal("0"))
            pnl = sum((p.cash_pnl for p in positions), Decimal("0"))
            for p in positions:
                print(
                    f"{p.asset}  {p.display_name} [{p.outcome}]  "
                    f"size={p.size} price={p.cur_price} value=${p.current_value:.2f} "
                    f"pnl={p.cash_pnl:+.2f}"
                )
            print(f"{len(positions)} positions, total value ${total:.2f}, total PnL {pnl:+.2f}")
            return 0

        if args.command == "balance":
            await app.connect(trading=True)
            balance = await app.balance()
            print(f"USDC balance: ${balance:.2f}")
            return 0

        if args.command == "sell":
            await app.connect(trading=True)
            result = await app.liquidation.liquidate(args.asset, args.percentage)
            print(
                f"sold={result.sold:.4f} remaining={result.remaining:.4f} "
                f"proceeds=${result.proceeds:.2f}"
            )
            if result.error:
                print(f"error: {result.error}")
            return 0 if result.success else 1

        if args.command == "close-all":
            await app.connect(trading=True)
            summary = await app.liquidation.close_all(_print_close_progress())
            print(summary.message)
            return 0 if summary.success else 1

        if args.command == "redeemable":
            await app.connect()
            redeemable = await app.redemption.get_redeemable()
            for p in redeemable.positions:
                print(f"{p.condition_id}  {p.display_name}  value=${p.current_value:.2f}")
            print(f"{redeemable.count} redeemable, total value ${redeemable.total_value:.2f}")
            return 0

        if args.command == "redeem":
            await app.connect(chain=True)
            summary = await app.redemption.redeem_all(_print_redeem_progress())
            print(
                f"Redeemed {summary.redeemed_count}, failed {summary.failed_count}, "
                f"value ${summary.total_value:.2f}"
            )
            if summary.error:
                print(summary.error)
            return 0 if summary.success else 1

        if args.command == "monitor":
            await app.connect(store=True)
            app.emitter.on("trade", lambda event: print(
                f"{event.source}: {event.observation.wallet} {event.observation.side} "
                f"{event.observation.size} @ {event.observation.price} "
                f"{event.observation.title}"
            ))
            await app.run_monitor()
            return 0

        if args.command == "trades":
            await app.connect(store=True)
            for t in await app.recent_trades(args.limit):
                print(
                    f"{t.timestamp}  {t.wallet}  {t.side} {t.size} @ {t.price}  "
                    f"${t.usdc_size:.2f}  {t.title}"
                )
            return 0

        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2
    except PolycopyError as e:
        log.error("command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.close()


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"polycopy {__version__}")
        return 0

    if args.command is None:
        parse_args(["--help"])

    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
