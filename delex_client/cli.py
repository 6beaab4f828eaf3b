"""Command-line interface for the DeLex client."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation

from .config import load_config
from .errors import LedgerError
from .logging_setup import configure_logging
from .models import DECIMALS, IntentKind, TransactionIntent
from .services import DelexClient

logger = logging.getLogger(__name__)

# Commands that only read, so a failed binding is reported rather than fatal
_READ_COMMANDS = {"pools", "stats", "positions", "quote"}


def parse_amount(text: str, decimals: int = DECIMALS) -> int:
    """Convert a decimal amount string (``"1.5"``) into raw token units."""
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"Invalid amount: {text!r}") from e
    if not value.is_finite() or value < 0:
        raise argparse.ArgumentTypeError(f"Amount must be a non-negative number: {text!r}")
    raw = value.scaleb(decimals)
    if raw != raw.to_integral_value():
        raise argparse.ArgumentTypeError(
            f"Amount {text!r} has more than {decimals} decimal places"
        )
    return int(raw)


def format_amount(raw: int, decimals: int = DECIMALS) -> str:
    return f"{Decimal(raw).scaleb(-decimals):,.6f}"


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="delex-client",
        description="DeLex exchange and lending client",
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

    pools_parser = sub.add_parser("pools", help="List pools")
    pools_parser.add_argument("--sort", choices=["tvl", "apy", "name"], default="tvl")
    pools_parser.add_argument(
        "--filter", choices=["all", "high-liquidity"], default="all"
    )
    sub.add_parser("stats", help="Protocol totals")
    sub.add_parser("positions", help="Balances, LP shares and lending positions")

    quote_parser = sub.add_parser("quote", help="Quote a swap")
    swap_parser = sub.add_parser("swap", help="Swap tokens")
    for p in (quote_parser, swap_parser):
        p.add_argument("token_in")
        p.add_argument("token_out")
        p.add_argument("amount", type=parse_amount)

    create_parser = sub.add_parser("create-pool", help="Create a pool for a token pair")
    create_parser.add_argument("token_a")
    create_parser.add_argument("token_b")

    add_parser = sub.add_parser("add-liquidity", help="Add liquidity to a pool")
    add_parser.add_argument("token_a")
    add_parser.add_argument("token_b")
    add_parser.add_argument("amount_a", type=parse_amount)
    add_parser.add_argument("amount_b", type=parse_amount)

    remove_parser = sub.add_parser("remove-liquidity", help="Burn LP shares")
    remove_parser.add_argument("pool_id")
    remove_parser.add_argument("shares", type=parse_amount)

    for name, help_text in (
        ("deposit", "Deposit collateral"),
        ("borrow", "Borrow against collateral"),
        ("repay", "Repay a loan"),
        ("withdraw", "Withdraw collateral"),
    ):
        lending_parser = sub.add_parser(name, help=help_text)
        lending_parser.add_argument("pool_id")
        lending_parser.add_argument("token")
        lending_parser.add_argument("amount", type=parse_amount)

    faucet_parser = sub.add_parser("faucet", help="Mint test tokens")
    faucet_parser.add_argument("token")

    sub.add_parser("debug", help="Raw contract reads")

    watch_parser = sub.add_parser("watch", help="Keep refreshing until interrupted")
    watch_parser.add_argument(
        "seconds",
        nargs="?",
        type=float,
        default=None,
        help="Refresh interval in seconds (overrides config)",
    )

    return parser


_LENDING_KINDS = {
    "deposit": IntentKind.DEPOSIT,
    "borrow": IntentKind.BORROW,
    "repay": IntentKind.REPAY,
    "withdraw": IntentKind.WITHDRAW,
}


def _print_progress(intent: TransactionIntent) -> None:
    line = f"[{intent.kind.value}] {intent.status.value}"
    if intent.tx_hash:
        line += f" {intent.tx_hash}"
    if intent.error:
        line += f" ({intent.error})"
    print(line)


async def _execute(client: DelexClient, args: argparse.Namespace) -> None:
    """Run one command against a started client."""
    command = args.command

    if command == "pools":
        print(client.build_pools_report(args.sort, args.filter))
    elif command == "stats":
        print(client.build_stats_report())
    elif command == "positions":
        print(client.build_positions_report())
    elif command == "quote":
        quote = client.quote(args.token_in, args.token_out, args.amount)
        print(
            f"{format_amount(quote.amount_in)} {args.token_in} -> "
            f"{format_amount(quote.amount_out)} {args.token_out} "
            f"(minimum {format_amount(quote.min_amount_out)})"
        )
    elif command == "debug":
        print(await client.build_debug_report())
    elif command == "watch":
        await client.run_forever(args.seconds)
    elif command == "swap":
        await client.swap(args.token_in, args.token_out, args.amount)
    elif command == "create-pool":
        token_a = client.token_address(args.token_a)
        token_b = client.token_address(args.token_b)
        if client.snapshot.pool_for_pair(token_a, token_b) is not None:
            raise LookupError("Pool exists")
        await client.submit(IntentKind.CREATE_POOL, token_a=token_a, token_b=token_b)
    elif command == "add-liquidity":
        await client.add_liquidity(args.token_a, args.token_b, args.amount_a, args.amount_b)
    elif command == "remove-liquidity":
        await client.submit(
            IntentKind.REMOVE_LIQUIDITY, pool_id=args.pool_id, shares=args.shares
        )
    elif command in _LENDING_KINDS:
        await client.submit(
            _LENDING_KINDS[command],
            pool_id=args.pool_id,
            token=client.token_address(args.token),
            amount=args.amount,
        )
    elif command == "faucet":
        await client.submit(IntentKind.FAUCET, token=client.token_address(args.token))


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; return the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    client = DelexClient(config)
    client.orchestrator.subscribe(_print_progress)

    try:
        await client.start()
        if not client.binding.ready and args.command not in _READ_COMMANDS:
            logger.error("Contracts are not initialized; cannot run %s", args.command)
            return 1
        await _execute(client, args)
    except (LedgerError, LookupError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    finally:
        await client.stop()
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
