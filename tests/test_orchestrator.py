"""End-to-end tests for SmsBridge with fake gateway and real SQLite inbox."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from aurora.commands import CommandDispatcher
from aurora.correlator import ResponseCorrelator
from aurora.db import Database, InboxStore
from aurora.errors import InvalidCommandError, StoreError, TransportError
from aurora.models import CommandKind, InboundReply, Provenance, SendResult
from aurora.orchestrator import OperationState, ReplyTimeouts, SmsBridge, format_result
from aurora.parser import FallbackPolicy

PHONE = "+254700000000"
FAST = ReplyTimeouts(inquiry_seconds=0.3, purchase_seconds=0.3, poll_interval_seconds=0.05)


class RepliesOnSend:
    """Gateway that makes the inbox receive ``reply_text`` once a command is sent."""

    def __init__(self, db: Database, reply_text: str | None, success: bool = True) -> None:
        self._db = db
        self._reply_text = reply_text
        self._success = success
        self.sent: list[str] = []

    async def send(self, destination, text, sender):  # noqa: ANN001, ANN201
        self.sent.append(text)
        if not self._success:
            return SendResult(success=False, error_reason="UserInBlacklist")
        if self._reply_text is not None:
            self._db.record_reply(
                InboundReply(
                    sender_address=destination,
                    recipient_address=sender,
                    raw_text=self._reply_text,
                    received_at=datetime.now(timezone.utc),
                )
            )
        return SendResult(success=True, provider_message_id="ATXid_1")


class BrokenStore(InboxStore):
    def query_latest(self, recipient_address, after, category=None):  # noqa: ANN001, ANN201
        raise StoreError("database is locked")


def _bridge(db: Database, gateway: object, store: InboxStore | None = None) -> SmsBridge:
    return SmsBridge(
        dispatcher=CommandDispatcher(gateway, short_code="95551"),
        correlator=ResponseCorrelator(store or db),
        timeouts=FAST,
        fallback_policy=FallbackPolicy(rng=random.Random(1)),
    )


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "aurora.db")
    database.initialize()
    return database


@pytest.mark.asyncio
async def test_fetch_balance_reply_derived(db):
    gateway = RepliesOnSend(db, "Your KPLC account 123456789 has a balance of KSh 150.50. Current reading: 12345.")

    result = await _bridge(db, gateway).fetch_balance("12345", PHONE)

    assert gateway.sent == ["BAL 12345"]
    assert result.command_kind is CommandKind.BALANCE_INQUIRY
    assert result.provenance is Provenance.REPLY_DERIVED
    assert result.balance == Decimal("150.50")
    assert result.current_reading == 12345


@pytest.mark.asyncio
async def test_purchase_tokens_reply_derived(db):
    gateway = RepliesOnSend(
        db, "Token purchase successful. Token: 12345678901234567890 Units: 8.5 kWh Reference: TXN123456789"
    )

    result = await _bridge(db, gateway).purchase_tokens("12345", 200, PHONE)

    assert gateway.sent == ["BUY 12345 200"]
    assert result.token_code == "12345678901234567890"
    assert result.reference_number == "TXN123456789"


@pytest.mark.asyncio
async def test_purchase_without_reply_is_fallback_without_token(db):
    gateway = RepliesOnSend(db, None)

    result = await _bridge(db, gateway).purchase_tokens("12345", "500", PHONE)

    assert result.provenance is Provenance.FALLBACK
    assert result.token_code is None
    assert result.amount == Decimal("500.00")
    rendered = format_result(result)
    assert "Token not confirmed" in rendered
    assert "Amount: KSh 500.00 (estimated)" in rendered


@pytest.mark.asyncio
async def test_balance_without_reply_is_fallback(db):
    result = await _bridge(db, RepliesOnSend(db, None)).fetch_balance("12345", PHONE)

    assert result.provenance is Provenance.FALLBACK
    assert Decimal("100") <= result.balance <= Decimal("500")
    rendered = format_result(result)
    assert "estimates" in rendered
    assert "(estimated)" in rendered


@pytest.mark.asyncio
async def test_check_units_and_last_payment(db):
    units = await _bridge(db, RepliesOnSend(db, "Units remaining: 42.5")).check_units("12345", PHONE)
    assert units.units == Decimal("42.5")

    last = await _bridge(db, RepliesOnSend(db, "Last paid KSh 1,000 on 02/03/2025")).last_payment(
        "12345", "+254700000009"
    )
    assert last.last_payment_amount == Decimal("1000.00")


@pytest.mark.asyncio
async def test_invalid_amount_raises_before_send(db):
    gateway = RepliesOnSend(db, None)

    with pytest.raises(InvalidCommandError):
        await _bridge(db, gateway).purchase_tokens("12345", "abc", PHONE)
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_transport_error_propagates(db):
    with pytest.raises(TransportError):
        await _bridge(db, RepliesOnSend(db, None, success=False)).fetch_balance("12345", PHONE)


@pytest.mark.asyncio
async def test_store_error_propagates(db):
    with pytest.raises(StoreError):
        await _bridge(db, RepliesOnSend(db, None), store=BrokenStore()).fetch_balance("12345", PHONE)


@pytest.mark.asyncio
async def test_cancel_event_returns_fallback_early(db):
    bridge = SmsBridge(
        dispatcher=CommandDispatcher(RepliesOnSend(db, None), short_code="95551"),
        correlator=ResponseCorrelator(db),
        timeouts=ReplyTimeouts(inquiry_seconds=30.0, purchase_seconds=30.0, poll_interval_seconds=5.0),
    )
    cancel = asyncio.Event()
    task = asyncio.create_task(bridge.fetch_balance("12345", PHONE, cancel_event=cancel))
    await asyncio.sleep(0.05)
    cancel.set()

    result = await asyncio.wait_for(task, timeout=1.0)

    assert result.provenance is Provenance.FALLBACK


def test_reply_timeouts_per_kind():
    timeouts = ReplyTimeouts()

    assert timeouts.for_kind(CommandKind.TOKEN_PURCHASE) == 60.0
    assert timeouts.for_kind(CommandKind.BALANCE_INQUIRY) == 45.0
    assert timeouts.poll_interval_seconds == 2.0


def test_operation_states_are_documented():
    assert OperationState.__doc__
    assert [state.value for state in OperationState] == [
        "built",
        "dispatched",
        "awaiting_reply",
        "replied_matched",
        "timed_out",
        "normalized",
    ]
