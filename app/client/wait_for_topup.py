"""Wait for a topup to land after checkout redirect-back.

Usage: python -m app.client.wait_for_topup --user-id UID --checkout-id CID [--base-url URL]
Exit codes: 0 credited, 1 payment failed, 2 still pending (balance will reflect shortly), 130 cancelled.
"""

import argparse
import asyncio
import signal
import sys

import httpx

from app.client.api import ApiError, BalanceApiClient
from app.client.poller import PollOutcome, ReconciliationPoller
from app.core.config import get_settings
from app.core.logging import configure_logging

EXIT_CODES = {
    PollOutcome.SUCCESS: 0,
    PollOutcome.FAILED: 1,
    PollOutcome.PENDING: 2,
    PollOutcome.CANCELLED: 130,
}

MESSAGES = {
    PollOutcome.SUCCESS: "Balance loaded.",
    PollOutcome.FAILED: "Payment was not completed.",
    PollOutcome.PENDING: (
        "Your payment is safe and your balance will reflect shortly. "
        "Refresh later or contact support if it does not."
    ),
    PollOutcome.CANCELLED: "Stopped waiting.",
}


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Wait for a checkout to be credited")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--checkout-id", required=True)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--interval", type=float, default=settings.poll_interval_seconds)
    parser.add_argument("--max-attempts", type=int, default=settings.poll_max_attempts)
    parser.add_argument("--no-stream", action="store_true", help="Poll only, skip the event stream")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(debug=get_settings().debug)
    cancel = asyncio.Event()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        pass

    async with BalanceApiClient(args.base_url) as api:
        poller = ReconciliationPoller(
            verify=lambda: api.verify_checkout(args.checkout_id, args.user_id),
            read_balance=lambda: api.get_balance(args.user_id),
            balance_updates=None if args.no_stream else api.balance_events(args.user_id),
            interval=args.interval,
            max_attempts=args.max_attempts,
        )
        try:
            result = await poller.run(cancel)
        except (ApiError, httpx.HTTPError) as e:
            print(f"Could not verify payment: {e}", file=sys.stderr)
            return EXIT_CODES[PollOutcome.FAILED]

    print(MESSAGES[result.outcome])
    if result.balance is not None:
        print(f"Balance: {result.balance}")
    return EXIT_CODES[result.outcome]


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
