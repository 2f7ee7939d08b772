"""Confidence scoring for a (bank transaction, payment transaction) pair.

The score is a weighted sum of four independent components:

    amount       40   relative error between |bank amount| and payment amount
    date         30   calendar days between posting date and payment creation
    reference    20   payment id suffix in the bank reference
    description  10   booking keywords in the bank description

Each component is capped at its weight, the total is capped at 100 and rounded
half-up to an integer. Everything here is pure and uses Decimal arithmetic so the
same inputs always give the same score.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from bankrecon.engine.models import (
    BankTransaction,
    Discrepancy,
    PaymentTransaction,
    Severity,
)

AMOUNT_WEIGHT = Decimal("40")
DATE_WEIGHT = Decimal("30")
REFERENCE_WEIGHT = Decimal("20")
DESCRIPTION_WEIGHT = Decimal("10")
MAX_SCORE = Decimal("100")

PAYMENT_ID_SUFFIX_LENGTH = 8
DESCRIPTION_KEYWORDS = ("booking", "reservation")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component contributions and the final integer score."""
    amount: Decimal
    date: Decimal
    reference: Decimal
    description: Decimal
    total: int


def relative_amount_error(bank_txn: BankTransaction, payment: PaymentTransaction) -> Optional[Decimal]:
    """Return |abs(bank) - payment| / payment, or None when payment amount is not positive."""
    if payment.amount <= 0:
        return None
    return abs(bank_txn.abs_amount - payment.amount) / payment.amount


def date_gap_days(bank_txn: BankTransaction, payment: PaymentTransaction) -> int:
    """Whole calendar days between the bank posting date and the payment creation date."""
    # Calendar-date difference, not elapsed time: 01:00 and 23:00 on one day count as 0 days.
    return abs((bank_txn.date.date() - payment.created_at.date()).days)


def amount_component(bank_txn: BankTransaction, payment: PaymentTransaction) -> Decimal:
    diff = relative_amount_error(bank_txn, payment)
    if diff is None:
        return Decimal("0")
    if diff == 0:
        return AMOUNT_WEIGHT
    if diff < Decimal("0.01"):
        return Decimal("35")
    if diff < Decimal("0.05"):
        return Decimal("25")
    return max(Decimal("0"), Decimal("20") - diff * 100)


def date_component(bank_txn: BankTransaction, payment: PaymentTransaction) -> Decimal:
    days = date_gap_days(bank_txn, payment)
    if days == 0:
        return DATE_WEIGHT
    if days <= 1:
        return Decimal("25")
    if days <= 3:
        return Decimal("15")
    return max(Decimal("0"), Decimal("10") - days)


def reference_component(bank_txn: BankTransaction, payment: PaymentTransaction) -> Decimal:
    suffix = payment.id[-PAYMENT_ID_SUFFIX_LENGTH:]
    if bank_txn.reference and suffix and suffix in bank_txn.reference:
        return REFERENCE_WEIGHT
    if "payment" in bank_txn.description.lower():
        return Decimal("10")
    return Decimal("0")


def description_component(bank_txn: BankTransaction, payment: PaymentTransaction) -> Decimal:
    description = bank_txn.description.lower()
    if any(keyword in description for keyword in DESCRIPTION_KEYWORDS):
        return DESCRIPTION_WEIGHT
    return Decimal("0")


def score_breakdown(bank_txn: BankTransaction, payment: PaymentTransaction) -> ScoreBreakdown:
    """Score a candidate pair and keep the individual contributions."""
    amount = min(AMOUNT_WEIGHT, amount_component(bank_txn, payment))
    date = min(DATE_WEIGHT, date_component(bank_txn, payment))
    reference = min(REFERENCE_WEIGHT, reference_component(bank_txn, payment))
    description = min(DESCRIPTION_WEIGHT, description_component(bank_txn, payment))

    total = min(MAX_SCORE, amount + date + reference + description)
    return ScoreBreakdown(
        amount=amount,
        date=date,
        reference=reference,
        description=description,
        total=int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
    )


def calculate_match_confidence(bank_txn: BankTransaction, payment: PaymentTransaction) -> int:
    """Return the 0-100 match confidence for a candidate pair."""
    return score_breakdown(bank_txn, payment).total


def detect_discrepancies(bank_txn: BankTransaction, payment: PaymentTransaction) -> List[Discrepancy]:
    """List the amount/date disagreements between the two sides of a match."""
    found: List[Discrepancy] = []

    if bank_txn.abs_amount != payment.amount:
        diff = relative_amount_error(bank_txn, payment)
        if diff is not None and diff < Decimal("0.01"):
            severity = Severity.LOW
        elif diff is not None and diff < Decimal("0.05"):
            severity = Severity.MEDIUM
        else:
            severity = Severity.HIGH
        found.append(Discrepancy(
            field="amount",
            bank_value=bank_txn.abs_amount,
            system_value=payment.amount,
            severity=severity,
        ))

    days = date_gap_days(bank_txn, payment)
    if days:
        found.append(Discrepancy(
            field="date",
            bank_value=bank_txn.date.date().isoformat(),
            system_value=payment.created_at.date().isoformat(),
            severity=Severity.LOW if days <= 1 else Severity.MEDIUM,
        ))

    return found
