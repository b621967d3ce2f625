"""Application entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone

from aurora.commands import CommandDispatcher
from aurora.config import Settings, load_settings
from aurora.correlator import ResponseCorrelator
from aurora.db import Database
from aurora.errors import BridgeError
from aurora.models import InboundReply
from aurora.orchestrator import ReplyTimeouts, SmsBridge, format_result
from aurora.parser import FallbackPolicy
from aurora.sms.africastalking import AfricasTalkingGateway

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


def build_bridge(settings: Settings, db: Database) -> SmsBridge:
    """Wire the bridge from settings; nothing below reads the environment."""

    dispatcher = CommandDispatcher(
        gateway=AfricasTalkingGateway(settings),
        short_code=settings.kplc_short_code,
    )
    timeouts = ReplyTimeouts(
        inquiry_seconds=settings.sms_inquiry_timeout_seconds,
        purchase_seconds=settings.sms_purchase_timeout_seconds,
        poll_interval_seconds=settings.sms_poll_interval_seconds,
    )
    policy = FallbackPolicy(
        balance_range=(settings.fallback_balance_min, settings.fallback_balance_max),
        units_range=(settings.fallback_units_min, settings.fallback_units_max),
        reference_prefix=settings.reference_prefix,
        rng=random.Random(),
    )
    return SmsBridge(dispatcher, ResponseCorrelator(db), timeouts, policy)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aurora", description="KPLC SMS bridge")
    sub = parser.add_subparsers(dest="action", required=True)

    for name, help_text in (
        ("balance", "Send a balance inquiry"),
        ("units", "Send a units inquiry"),
        ("last", "Ask for the last payment"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("account")
        cmd.add_argument("phone")

    buy = sub.add_parser("buy", help="Purchase prepaid tokens")
    buy.add_argument("account")
    buy.add_argument("amount")
    buy.add_argument("phone")

    record = sub.add_parser("record", help="Store an inbound reply as the webhook would")
    record.add_argument("phone")
    record.add_argument("text")

    sub.add_parser("purge", help="Delete inbox replies older than the retention window")
    return parser


async def run(argv: list[str] | None = None) -> int:
    """Execute one CLI action and return the process exit code."""

    args = _parser().parse_args(argv)
    settings = load_settings()

    db = Database(settings.database_path)
    db.initialize()

    if args.action == "record":
        reply_id = db.record_reply(
            InboundReply(
                sender_address=settings.kplc_short_code,
                recipient_address=args.phone,
                raw_text=args.text,
                received_at=datetime.now(timezone.utc),
            )
        )
        print(f"Stored reply {reply_id}")
        return 0
    if args.action == "purge":
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.inbox_retention_days)
        print(f"Removed {db.purge_older_than(cutoff)} replies")
        return 0

    bridge = build_bridge(settings, db)
    try:
        if args.action == "balance":
            result = await bridge.fetch_balance(args.account, args.phone)
        elif args.action == "units":
            result = await bridge.check_units(args.account, args.phone)
        elif args.action == "last":
            result = await bridge.last_payment(args.account, args.phone)
        else:
            result = await bridge.purchase_tokens(args.account, args.amount, args.phone)
    except BridgeError as exc:
        LOGGER.error("%s failed: %s", args.action, exc)
        return 1

    print(format_result(result))
    return 0


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
