"""Command-line interface for the auto-repay bot."""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from .config import load_config
from .constants import ASSETS, QUOTE_DECIMALS
from .engine.positions import sort_positions
from .engine.units import base_units_to_decimal
from .logging_setup import configure_logging
from .models import Account, HealthResult, PriceTable
from .services import RepayBot


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="autorepay",
        description="Flash-loan auto-repay bot for leveraged vault accounts",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Continuous scan-and-repair loop")
    sub.add_parser("scan", help="Single scan; repair unhealthy accounts and exit")

    check_parser = sub.add_parser("check", help="Print the health of one vault")
    check_parser.add_argument("address", help="Vault account address")

    return parser


def _install_signal_handlers(bot: RepayBot) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_shutdown)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass


def format_health_report(
    address: str, account: Account, health: HealthResult, prices: PriceTable
) -> str:
    lines = [
        f"Vault:       {address}",
        f"Owner:       {account.owner}",
        f"Health:      {health.score}",
        f"Assets:      ${base_units_to_decimal(health.total_asset_value, QUOTE_DECIMALS):,.2f} (weighted)",
        f"Liabilities: ${base_units_to_decimal(health.total_liability_value, QUOTE_DECIMALS):,.2f} (weighted)",
    ]
    sorted_positions = sort_positions(account.balances(), prices)
    sections = (("Collateral", sorted_positions.collateral), ("Loans", sorted_positions.loans))
    for label, entries in sections:
        if entries:
            lines.append(f"{label}:")
            for p in entries:
                value = base_units_to_decimal(p.value, QUOTE_DECIMALS)
                lines.append(f"  {ASSETS[p.market_index].symbol:<8} ${value:,.2f}")
    return "\n".join(lines)


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    bot = RepayBot.from_config(config)

    if args.command == "run":
        _install_signal_handlers(bot)
        await bot.run()
    elif args.command == "scan":
        outcomes = await bot.scan_and_wait()
        print(f"Scan complete, {len(outcomes)} repairs attempted")
    elif args.command == "check":
        account, health, prices = await bot.check_account(args.address)
        print(format_health_report(args.address, account, health, prices))
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
