"""Command text construction and dispatch to the utility short code.

The short code accepts one command per SMS:

    BAL <account>            balance inquiry
    BUY <account> <amount>   token purchase, amount in whole KES
    UNITS <account>          remaining units
    LAST <account>           last payment
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from aurora.errors import InvalidCommandError, TransportError
from aurora.models import CommandKind, DispatchReceipt, OutboundCommand

if TYPE_CHECKING:
    from aurora.sms.base import SmsGateway

LOGGER = logging.getLogger(__name__)

_KEYWORDS: dict[CommandKind, str] = {
    CommandKind.BALANCE_INQUIRY: "BAL",
    CommandKind.TOKEN_PURCHASE: "BUY",
    CommandKind.UNITS_INQUIRY: "UNITS",
    CommandKind.LAST_PAYMENT_INQUIRY: "LAST",
}


def validate_command(command: OutboundCommand) -> None:
    """Raise InvalidCommandError if the command breaks its invariants."""

    if command.kind not in _KEYWORDS:
        raise InvalidCommandError(f"Unsupported command kind: {command.kind!r}")
    account = command.account_identifier
    if not isinstance(account, str) or not account.strip():
        raise InvalidCommandError("account_identifier must be a non-empty string")
    if any(ch.isspace() for ch in account.strip()):
        raise InvalidCommandError(f"account_identifier must be a single token: {account!r}")

    if command.kind is CommandKind.TOKEN_PURCHASE:
        if command.amount is None:
            raise InvalidCommandError("amount is required for token purchase")
        _format_amount(command.amount)
    elif command.amount is not None:
        raise InvalidCommandError(f"amount is only valid for token purchase, not {command.kind.value}")


def _format_amount(amount: object) -> str:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidCommandError(f"amount is not a number: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise InvalidCommandError(f"amount must be positive, got {amount!r}")
    if value != value.to_integral_value():
        raise InvalidCommandError(f"amount must be whole KES, got {amount!r}")
    return str(int(value))


def build_command_text(command: OutboundCommand) -> str:
    """Return the exact SMS body for a command."""

    validate_command(command)
    keyword = _KEYWORDS[command.kind]
    account = command.account_identifier.strip()
    if command.kind is CommandKind.TOKEN_PURCHASE:
        return f"{keyword} {account} {_format_amount(command.amount)}"
    return f"{keyword} {account}"


class CommandDispatcher:
    """Sends validated commands to the configured short code.

    Holds no per-command state; one dispatcher can serve concurrent callers.
    """

    def __init__(self, gateway: SmsGateway, short_code: str) -> None:
        if not short_code.strip():
            raise ValueError("short_code must be provided")
        self._gateway = gateway
        self._short_code = short_code

    @property
    def short_code(self) -> str:
        return self._short_code

    async def dispatch(self, command: OutboundCommand) -> DispatchReceipt:
        """Submit one outbound SMS for the command.

        Raises:
            InvalidCommandError: the command is malformed; nothing is sent.
            TransportError: the gateway failed to accept the message.
        """
        text = build_command_text(command)
        # Taken before sending so a fast reply still falls inside the window.
        submitted_at = datetime.now(timezone.utc)
        LOGGER.info(
            "Dispatching %s to %s for %s", command.kind.value, self._short_code, command.requester_address
        )
        try:
            result = await self._gateway.send(self._short_code, text, command.requester_address)
        except TransportError:
            raise
        except Exception as exc:
            LOGGER.exception("Gateway raised while sending %s", command.kind.value)
            raise TransportError(f"SMS gateway error: {exc}") from exc

        if not result.success:
            reason = result.error_reason or "unknown error"
            LOGGER.warning("Gateway rejected %s: %s", command.kind.value, reason)
            raise TransportError(f"Failed to send SMS: {reason}")

        return DispatchReceipt(
            command=command,
            command_text=text,
            destination=self._short_code,
            submitted_at=submitted_at,
            provider_message_id=result.provider_message_id,
        )
