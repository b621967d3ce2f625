"""High-level SMS operations: dispatch, wait, normalize."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from aurora.commands import CommandDispatcher, validate_command
from aurora.correlator import ResponseCorrelator
from aurora.models import CommandKind, NormalizedResult, OutboundCommand, Provenance
from aurora.parser import FallbackPolicy, ParseContext, parse_reply

LOGGER = logging.getLogger(__name__)


class OperationState(str, Enum):
    """Lifecycle steps logged as a bridge operation runs.

    A reply wait ends in either REPLIED_MATCHED or TIMED_OUT.
    """

    BUILT = "built"
    DISPATCHED = "dispatched"
    AWAITING_REPLY = "awaiting_reply"
    REPLIED_MATCHED = "replied_matched"
    TIMED_OUT = "timed_out"
    NORMALIZED = "normalized"


@dataclass(frozen=True, slots=True)
class ReplyTimeouts:
    """How long to wait for each kind of reply."""

    inquiry_seconds: float = 45.0
    purchase_seconds: float = 60.0
    poll_interval_seconds: float = 2.0

    def for_kind(self, kind: CommandKind) -> float:
        if kind is CommandKind.TOKEN_PURCHASE:
            return self.purchase_seconds
        return self.inquiry_seconds


class SmsBridge:
    """Runs one command through dispatch, reply correlation and parsing.

    Each call is independent; concurrent calls share only the dispatcher and
    the inbox store, neither of which holds per-call state.
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        correlator: ResponseCorrelator,
        timeouts: ReplyTimeouts | None = None,
        fallback_policy: FallbackPolicy | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._correlator = correlator
        self._timeouts = timeouts or ReplyTimeouts()
        self._fallback_policy = fallback_policy or FallbackPolicy()

    async def fetch_balance(
        self,
        account_identifier: str,
        requester_address: str,
        cancel_event: asyncio.Event | None = None,
    ) -> NormalizedResult:
        command = OutboundCommand(CommandKind.BALANCE_INQUIRY, account_identifier, requester_address)
        return await self.run(command, cancel_event)

    async def purchase_tokens(
        self,
        account_identifier: str,
        amount: Decimal | int | str,
        requester_address: str,
        cancel_event: asyncio.Event | None = None,
    ) -> NormalizedResult:
        command = OutboundCommand(
            CommandKind.TOKEN_PURCHASE,
            account_identifier,
            requester_address,
            amount=_to_decimal(amount),
        )
        return await self.run(command, cancel_event)

    async def check_units(
        self,
        account_identifier: str,
        requester_address: str,
        cancel_event: asyncio.Event | None = None,
    ) -> NormalizedResult:
        command = OutboundCommand(CommandKind.UNITS_INQUIRY, account_identifier, requester_address)
        return await self.run(command, cancel_event)

    async def last_payment(
        self,
        account_identifier: str,
        requester_address: str,
        cancel_event: asyncio.Event | None = None,
    ) -> NormalizedResult:
        command = OutboundCommand(CommandKind.LAST_PAYMENT_INQUIRY, account_identifier, requester_address)
        return await self.run(command, cancel_event)

    async def run(self, command: OutboundCommand, cancel_event: asyncio.Event | None = None) -> NormalizedResult:
        """Drive one command to a NormalizedResult.

        Raises InvalidCommandError, TransportError or StoreError. A missing
        reply is not an error and yields a fallback-tagged result.
        """
        validate_command(command)
        self._transition(command, OperationState.BUILT)

        receipt = await self._dispatcher.dispatch(command)
        self._transition(command, OperationState.DISPATCHED)

        self._transition(command, OperationState.AWAITING_REPLY)
        reply = await self._correlator.await_reply(
            command.requester_address,
            receipt.submitted_at,
            timeout_seconds=self._timeouts.for_kind(command.kind),
            poll_interval_seconds=self._timeouts.poll_interval_seconds,
            cancel_event=cancel_event,
        )
        if reply is None:
            self._transition(command, OperationState.TIMED_OUT)
        else:
            self._transition(command, OperationState.REPLIED_MATCHED)

        context = ParseContext(
            command_kind=command.kind,
            account_identifier=command.account_identifier,
            requested_amount=command.amount,
        )
        result = parse_reply(reply.raw_text if reply else None, context, self._fallback_policy)
        self._transition(command, OperationState.NORMALIZED)
        if result.is_estimated:
            LOGGER.warning(
                "%s for %s returned estimated data (provenance=%s)",
                command.kind.value,
                command.account_identifier,
                result.provenance.value,
            )
        return result

    def _transition(self, command: OutboundCommand, state: OperationState) -> None:
        LOGGER.info("%s %s -> %s", command.kind.value, command.account_identifier, state.value)


def _to_decimal(amount: Decimal | int | str) -> Decimal | None:
    if isinstance(amount, Decimal):
        return amount
    try:
        return Decimal(str(amount))
    except ArithmeticError:
        # Left for validate_command to reject.
        return None


def format_result(result: NormalizedResult) -> str:
    """Render a result for display, labelling every estimated value."""

    def label(name: str, text: str) -> str:
        if result.provenance_of(name) is Provenance.FALLBACK:
            return f"{text} (estimated)"
        return text

    lines: list[str] = []
    if result.provenance is Provenance.FALLBACK:
        lines.append("No reply from KPLC; figures below are estimates, not account data.")

    if result.command_kind is CommandKind.TOKEN_PURCHASE:
        if result.token_code:
            lines.append(label("token_code", f"Token: {result.token_code}"))
        else:
            lines.append("Token not confirmed. Do not assume the purchase succeeded.")
        if result.amount is not None:
            lines.append(label("amount", f"Amount: KSh {result.amount:.2f}"))
        if result.units is not None:
            lines.append(label("units", f"Units: {result.units} kWh"))
    if result.balance is not None:
        lines.append(label("balance", f"Balance: KSh {result.balance:.2f}"))
    if result.units is not None and result.command_kind is not CommandKind.TOKEN_PURCHASE:
        lines.append(label("units", f"Units: {result.units} kWh"))
    if result.current_reading is not None:
        lines.append(label("current_reading", f"Meter reading: {result.current_reading}"))
    if result.consumption is not None:
        lines.append(label("consumption", f"Consumption: {result.consumption} kWh"))
    if result.bill_amount is not None:
        lines.append(label("bill_amount", f"Bill: KSh {result.bill_amount:.2f}"))
    if result.due_date is not None:
        lines.append(label("due_date", f"Due: {result.due_date.isoformat()}"))
    if result.last_payment_amount is not None:
        lines.append(label("last_payment_amount", f"Last payment: KSh {result.last_payment_amount:.2f}"))
    if result.last_payment_date is not None:
        lines.append(label("last_payment_date", f"Paid on: {result.last_payment_date.isoformat()}"))
    if result.account_status:
        lines.append(label("account_status", f"Status: {result.account_status}"))
    if result.account_number:
        lines.append(label("account_number", f"Account: {result.account_number}"))
    lines.append(label("reference_number", f"Reference: {result.reference_number}"))
    return "\n".join(lines)
