"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class CommandKind(str, Enum):
    """Commands understood by the utility short code."""

    BALANCE_INQUIRY = "balance_inquiry"
    TOKEN_PURCHASE = "token_purchase"
    UNITS_INQUIRY = "units_inquiry"
    LAST_PAYMENT_INQUIRY = "last_payment_inquiry"


class Provenance(str, Enum):
    """Where a value came from."""

    REPLY_DERIVED = "reply_derived"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class OutboundCommand:
    """A single user action addressed to the utility short code."""

    kind: CommandKind
    account_identifier: str
    requester_address: str
    amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class InboundReply:
    """Reply stored in the inbox by the webhook collaborator."""

    sender_address: str
    recipient_address: str
    raw_text: str
    received_at: datetime


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome reported by an outbound gateway."""

    success: bool
    provider_message_id: str | None = None
    error_reason: str | None = None


@dataclass(frozen=True, slots=True)
class DispatchReceipt:
    """Proof that a command was handed to the gateway."""

    command: OutboundCommand
    command_text: str
    destination: str
    submitted_at: datetime
    provider_message_id: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizedResult:
    """Structured view of a utility reply, or of its fallback substitute.

    ``provenance`` describes the record as a whole. ``field_provenance`` lists
    every populated field whose value was synthesized rather than read from
    the reply; callers must label those values as estimates.
    """

    command_kind: CommandKind
    account_identifier: str
    reference_number: str
    provenance: Provenance
    balance: Decimal | None = None
    units: Decimal | None = None
    token_code: str | None = None
    current_reading: int | None = None
    previous_reading: int | None = None
    consumption: int | None = None
    bill_amount: Decimal | None = None
    due_date: date | None = None
    account_number: str | None = None
    last_payment_amount: Decimal | None = None
    last_payment_date: date | None = None
    account_status: str | None = None
    amount: Decimal | None = None
    raw_text: str | None = None
    field_provenance: dict[str, Provenance] = field(default_factory=dict)

    @property
    def is_estimated(self) -> bool:
        """True when any part of the result is not backed by the reply."""

        if self.provenance is Provenance.FALLBACK:
            return True
        return any(tag is Provenance.FALLBACK for tag in self.field_provenance.values())

    def provenance_of(self, name: str) -> Provenance:
        """Return the provenance of a single field."""

        if self.provenance is Provenance.FALLBACK:
            return Provenance.FALLBACK
        return self.field_provenance.get(name, Provenance.REPLY_DERIVED)
