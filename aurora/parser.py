"""Turn free-text utility replies into NormalizedResult records.

Extraction is driven by ``DEFAULT_RULES``: an ordered table of
(field, pattern, transform). For each field the first rule whose pattern
matches and whose transform accepts the captured text wins. A transform
returning None (negative amount, impossible date) counts as a miss and the
next rule for that field is tried.

Fields the command needs but the reply did not supply are synthesized from a
FallbackPolicy and tagged Provenance.FALLBACK. A token code is never
synthesized.
"""

from __future__ import annotations

import logging
import random
import re
import string
import time
from dataclasses import dataclass, field, fields
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable

from aurora.models import CommandKind, NormalizedResult, Provenance

LOGGER = logging.getLogger(__name__)

_CENTS = Decimal("0.01")

# Previous reading is not available over SMS; this fixed step stands in for it.
PLACEHOLDER_CONSUMPTION_KWH = 100

# A number that is not part of a date or a longer digit run.
_AMOUNT = r"(?<![\d/.,-])(-?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?)(?![\d/-])"
_INTEGER = r"(?<![\d/.,-])(-?\d+)(?![\d/-]|\.\d)"
_DATE = r"(?<!\d)(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})(?!\d)"


def _money(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0:
        return None
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _quantity(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0:
        return None
    return value


def _reading(raw: str) -> int | None:
    value = int(raw)
    return value if value >= 0 else None


def _day_month_year(raw: str) -> date | None:
    day, month, year = (int(part) for part in re.split(r"[/-]", raw))
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _token(raw: str) -> str | None:
    return raw if len(raw) == 20 and raw.isdigit() else None


def _text(raw: str) -> str | None:
    raw = raw.strip()
    return raw or None


def _status(raw: str) -> str | None:
    return raw.lower()


@dataclass(frozen=True, slots=True)
class ExtractionRule:
    """Maps the first capture group of ``pattern`` onto a result field.

    ``kinds`` limits the rule to replies for those commands; empty means any.
    """

    field: str
    pattern: re.Pattern[str]
    transform: Callable[[str], Any]
    kinds: frozenset[CommandKind] = frozenset()

    def applies_to(self, command_kind: CommandKind | None) -> bool:
        return not self.kinds or command_kind is None or command_kind in self.kinds

    def apply(self, text: str) -> Any:
        match = self.pattern.search(text)
        if match is None:
            return None
        try:
            return self.transform(match.group(1))
        except (ValueError, ArithmeticError):
            return None


def _rule(
    field_name: str,
    pattern: str,
    transform: Callable[[str], Any],
    kinds: frozenset[CommandKind] = frozenset(),
) -> ExtractionRule:
    return ExtractionRule(field_name, re.compile(pattern, re.IGNORECASE | re.DOTALL), transform, kinds)


# Keyword-led rules allow only a short gap of non-digits before the value,
# so a later meter number or token is never taken for it.
_GAP = r"\D{0,30}?"

DEFAULT_RULES: tuple[ExtractionRule, ...] = (
    _rule("balance", r"\b(?:balance|bal|amount)\b" + _GAP + _AMOUNT, _money),
    _rule("units", _AMOUNT + r"\s*kwh\b", _quantity),
    _rule("units", r"\b(?:units|kwh)\b(?:\s+(?:remaining|left|balance))?\s*[:=]?\s*" + _AMOUNT, _quantity),
    _rule("token_code", r"\b(?:token|code)\b.*?(?<!\d)(\d{20})(?!\d)", _token),
    _rule("current_reading", r"\b(?:meter\s+)?reading\b\s*(?:is\s+)?[:=]?\s*" + _INTEGER, _reading),
    _rule("bill_amount", r"\b(?:bill|due|amount)\b" + _GAP + _AMOUNT, _money),
    _rule("due_date", r"\b(?:due|expires?)\b" + _GAP + _DATE, _day_month_year),
    _rule("account_number", r"(?:\b(?:account|acc)\b|\ba/c\b)" + _GAP + r"(?<!\d)(\d+)(?!\d)", _text),
    _rule(
        "reference_number",
        r"\b(?:ref|reference|receipt)\b(?:\s*(?:no|number))?\.?\s*[:#]?\s*([A-Z0-9]*\d[A-Z0-9]*)\b",
        _text,
    ),
    _rule("account_status", r"\b(?:status|state)\b.*?\b(active|inactive|connected|disconnected)\b", _status),
    _rule("last_payment_amount", r"\b(?:last|paid)\b" + _GAP + _AMOUNT, _money),
    _rule("last_payment_date", r"\b(?:paid|payment)\b" + _GAP + _DATE, _day_month_year),
    _rule(
        "amount",
        r"\b(?:ksh|kes|cost)\b\.?\s*[:=]?\s*" + _AMOUNT,
        _money,
        kinds=frozenset({CommandKind.TOKEN_PURCHASE}),
    ),
)

_RESULT_FIELDS = frozenset(
    f.name
    for f in fields(NormalizedResult)
    if f.name not in {"command_kind", "account_identifier", "provenance", "raw_text", "field_provenance"}
)

_CRITICAL_FIELDS: dict[CommandKind, str] = {
    CommandKind.BALANCE_INQUIRY: "balance",
    CommandKind.UNITS_INQUIRY: "units",
    CommandKind.TOKEN_PURCHASE: "token_code",
    CommandKind.LAST_PAYMENT_INQUIRY: "last_payment_amount",
}


@dataclass(frozen=True, slots=True)
class ParseContext:
    """What was asked, so the parser knows which fields matter."""

    command_kind: CommandKind
    account_identifier: str
    requested_amount: Decimal | None = None


@dataclass(slots=True)
class FallbackPolicy:
    """Ranges and identifiers used when a reply cannot supply a value."""

    balance_range: tuple[float, float] = (100.0, 500.0)
    units_range: tuple[float, float] = (10.0, 100.0)
    reference_prefix: str = "SMS"
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], float] = time.time

    def placeholder_balance(self) -> Decimal:
        return self._uniform(self.balance_range)

    def placeholder_units(self) -> Decimal:
        return self._uniform(self.units_range)

    def reference(self) -> str:
        suffix = "".join(self.rng.choices(string.ascii_uppercase + string.digits, k=6))
        return f"{self.reference_prefix}{int(self.clock() * 1000)}-{suffix}"

    def _uniform(self, bounds: tuple[float, float]) -> Decimal:
        low, high = bounds
        value = Decimal(str(self.rng.uniform(low, high))).quantize(_CENTS, rounding=ROUND_HALF_UP)
        # Rounding can step just outside the range.
        return min(max(value, Decimal(str(low)).quantize(_CENTS)), Decimal(str(high)).quantize(_CENTS))


def extract_fields(
    text: str,
    rules: tuple[ExtractionRule, ...] = DEFAULT_RULES,
    command_kind: CommandKind | None = None,
) -> dict[str, Any]:
    """Apply the rule table and return every field that matched.

    With ``command_kind`` set, rules scoped to other commands are skipped.
    """

    found: dict[str, Any] = {}
    for rule in rules:
        if rule.field in found or not rule.applies_to(command_kind):
            continue
        value = rule.apply(text)
        if value is not None:
            found[rule.field] = value
    return found


def parse_reply(
    raw_text: str | None,
    context: ParseContext,
    policy: FallbackPolicy | None = None,
    rules: tuple[ExtractionRule, ...] = DEFAULT_RULES,
) -> NormalizedResult:
    """Build a NormalizedResult from a reply, or from nothing.

    Never raises: anything the text does not yield is either left empty or
    synthesized and tagged as fallback.
    """
    policy = policy or FallbackPolicy()
    text = raw_text.strip() if isinstance(raw_text, str) else ""

    found: dict[str, Any] = {}
    if text:
        try:
            extracted = extract_fields(text, rules, context.command_kind)
            found = {k: v for k, v in extracted.items() if k in _RESULT_FIELDS}
        except Exception:  # noqa: BLE001
            LOGGER.exception("Rule table failed on reply; treating as unparsed")
            found = {}

    provenance = Provenance.REPLY_DERIVED if found else Provenance.FALLBACK
    synthesized: dict[str, Provenance] = {}

    reading = found.get("current_reading")
    if reading is not None:
        previous = max(0, reading - PLACEHOLDER_CONSUMPTION_KWH)
        found["previous_reading"] = previous
        found["consumption"] = reading - previous
        synthesized["previous_reading"] = Provenance.FALLBACK
        synthesized["consumption"] = Provenance.FALLBACK

    critical = _CRITICAL_FIELDS.get(context.command_kind)
    if critical is not None and critical not in found:
        value = _fallback_value(critical, policy)
        if value is not None:
            found[critical] = value
            synthesized[critical] = Provenance.FALLBACK
        LOGGER.info(
            "Reply for %s lacked %s; %s",
            context.command_kind.value,
            critical,
            "left empty" if value is None else "using placeholder",
        )

    if (
        context.command_kind is CommandKind.TOKEN_PURCHASE
        and "amount" not in found
        and context.requested_amount is not None
    ):
        found["amount"] = Decimal(context.requested_amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
        synthesized["amount"] = Provenance.FALLBACK

    if "account_number" not in found and context.account_identifier:
        found["account_number"] = context.account_identifier
        synthesized["account_number"] = Provenance.FALLBACK

    if "reference_number" not in found:
        found["reference_number"] = policy.reference()
        synthesized["reference_number"] = Provenance.FALLBACK

    return NormalizedResult(
        command_kind=context.command_kind,
        account_identifier=context.account_identifier,
        provenance=provenance,
        raw_text=text or None,
        field_provenance=synthesized,
        **found,
    )


def _fallback_value(field_name: str, policy: FallbackPolicy) -> Any:
    if field_name == "balance":
        return policy.placeholder_balance()
    if field_name == "units":
        return policy.placeholder_units()
    if field_name == "last_payment_amount":
        return Decimal("0.00")
    # token_code: a made-up token could be mistaken for a redeemable one.
    return None
