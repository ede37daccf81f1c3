"""Command-line entry point.

Usage:
    poolswap tokens
    poolswap quote ETH USDC 1.5 [--reverse]
    poolswap swap USDC rUSDY 100 [--slippage-bps 50]
    poolswap serve
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation

import uvicorn

from poolswap.config import Settings, get_settings
from poolswap.errors import InvalidSlippageTolerance, SwapError, UnknownToken
from poolswap.factory import create_stack
from poolswap.notifications.status import RecordingStatusNotifier
from poolswap.routing.base import SwapDirection, SwapRequest

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    log_level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Not a number: {value}")


async def cmd_tokens(settings: Settings) -> int:
    stack = create_stack(settings)
    for token in stack.registry:
        flags = " (native)" if token.is_native else ""
        if token.requires_allowance_reset:
            flags += " (reset before approve)"
        print(f"{token.symbol:<6} {token.decimals:>2}  {token.address}{flags}")
    return 0


async def cmd_quote(settings: Settings, args: argparse.Namespace) -> int:
    stack = create_stack(settings)
    try:
        await stack.initialize()
        direction = SwapDirection.REVERSE if args.reverse else SwapDirection.FORWARD
        quote = await stack.calculator.calculate(args.from_token, args.to_token, args.amount, direction)
    except SwapError as e:
        print(f"No quote: {e.user_message}")
        return 1
    finally:
        await stack.close()

    print(f"Route:   {quote.plan.describe()} ({quote.plan.kind})")
    for leg, (amount_in, amount_out) in zip(quote.plan.legs, quote.leg_amounts):
        print(f"  {leg.describe()}: {amount_in} -> {amount_out}")
    print(f"Input:   {quote.input_amount} {quote.from_token}")
    print(f"Output:  {quote.output_amount} {quote.to_token}")
    print(f"Rate:    {quote.exchange_rate:.8f}")
    if quote.price_impact is not None:
        print(f"Impact:  {quote.price_impact * 100:.4f}%")
    return 0


async def cmd_swap(settings: Settings, args: argparse.Namespace) -> int:
    if not settings.dry_run:
        print("Swaps from the command line only run against the simulated chain (DRY_RUN=true)")
        return 2

    stack = create_stack(settings)
    notifier = RecordingStatusNotifier()
    executor = stack.create_executor(notifier)
    await stack.initialize()

    request = SwapRequest(
        from_token=args.from_token,
        to_token=args.to_token,
        amount=args.amount,
        direction=SwapDirection.REVERSE if args.reverse else SwapDirection.FORWARD,
        slippage_tolerance_bps=args.slippage_bps,
    )
    quote = await executor.quote(request)
    if quote is None:
        error = executor.last_error
        print(f"No quote: {error.user_message if error else 'nothing to quote'}")
        return 1

    print(f"Quoted {quote.input_amount} {quote.from_token} -> {quote.output_amount} {quote.to_token}")
    result = await executor.execute()

    print(" -> ".join(result.trace))
    for tx_hash in result.tx_hashes:
        print(f"  tx {tx_hash}")
    print(result.user_message)
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="poolswap", description="Swap route quoting and execution")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tokens", help="List supported tokens")

    for name, help_text in (("quote", "Quote a swap"), ("swap", "Execute a swap (dry run)")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("from_token")
        cmd.add_argument("to_token")
        cmd.add_argument("amount", type=_decimal)
        cmd.add_argument("--reverse", action="store_true", help="Amount is the desired output")
        if name == "swap":
            cmd.add_argument("--slippage-bps", type=int, default=None, help="Slippage tolerance")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command == "serve":
        uvicorn.run(
            "poolswap.api.app:create_app",
            factory=True,
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
        )
        return 0

    if getattr(args, "slippage_bps", 0) is None:
        args.slippage_bps = settings.default_slippage_bps

    try:
        if args.command == "tokens":
            return asyncio.run(cmd_tokens(settings))
        if args.command == "quote":
            return asyncio.run(cmd_quote(settings, args))
        return asyncio.run(cmd_swap(settings, args))
    except (UnknownToken, InvalidSlippageTolerance, ValueError) as e:
        print(f"Error: {e}")
        return 2
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
