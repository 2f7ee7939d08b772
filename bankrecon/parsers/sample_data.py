"""Synthetic statements and payments for demos and tests."""

import random
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    PaymentTransaction,
    TransactionType,
)

SAMPLE_BANK_NAME = "Commercial Bank of Ethiopia"
OPENING_BALANCE = Decimal("150000")
CREDIT_SHARE = 0.7
PAYMENT_SHARE = 0.6


def _token(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(string.ascii_uppercase + string.digits) for _ in range(length))


def generate_sample_data(
    rng: Optional[random.Random] = None,
    transaction_count: int = 20,
    now: Optional[datetime] = None,
    statement_id: Optional[str] = None,
) -> Tuple[BankStatement, List[PaymentTransaction]]:
    """
    Generate a pending statement plus payments for some of its credits.

    Roughly 70% of the lines are customer credits, the rest bank charges. About 60%
    of the credits get a payment with the same amount created within a day of the
    posting; half of those carry the payment id suffix in the bank reference.

    Args:
        rng: Random source; pass a seeded instance for reproducible data.
        transaction_count: Number of bank lines.
        now: Statement date; lines fall in the 30 days before it.
        statement_id: Id of the statement; derived from now when omitted.

    Returns:
        Tuple of (statement, payment transactions).
    """
    rng = rng or random.Random()
    now = (now or datetime.now()).replace(microsecond=0)
    statement_id = statement_id or f"stmt_{int(now.timestamp())}"

    lines = []
    for _ in range(transaction_count):
        amount = Decimal(rng.randint(1000, 10999))
        is_credit = rng.random() < CREDIT_SHARE
        posted = now - timedelta(seconds=rng.randint(0, 30 * 24 * 60 * 60))
        lines.append((posted, amount, is_credit))
    # Newest first, like the statement listing
    lines.sort(key=lambda line: line[0], reverse=True)

    transactions: List[BankTransaction] = []
    payments: List[PaymentTransaction] = []
    balance = OPENING_BALANCE

    for position, (posted, amount, is_credit) in enumerate(lines, start=1):
        reference = f"REF{_token(rng, 9)}"
        if is_credit:
            balance += amount
            description = f"Payment received from Customer {rng.randint(0, 999)}"
            if rng.random() < PAYMENT_SHARE:
                payment_id = f"pay_{_token(rng, 12).lower()}"
                if rng.random() < 0.5:
                    reference = f"REF{payment_id[-8:]}"
                    description = f"Booking payment received from Customer {rng.randint(0, 999)}"
                payments.append(PaymentTransaction(
                    id=payment_id,
                    amount=amount,
                    created_at=posted - timedelta(hours=rng.randint(0, 20)),
                    description=f"Booking payment {payment_id}",
                    booking_id=f"bk_{_token(rng, 6).lower()}",
                ))
        else:
            balance -= amount
            description = "Bank charges and fees"

        transactions.append(BankTransaction(
            id=f"{statement_id}_tx_{position:04d}",
            date=posted,
            description=description,
            reference=reference,
            amount=amount if is_credit else -amount,
            balance=balance,
            type=TransactionType.CREDIT if is_credit else TransactionType.DEBIT,
            flags=["duplicate_check"] if rng.random() < 0.2 else [],
        ))

    statement = BankStatement(
        id=statement_id,
        bank_name=SAMPLE_BANK_NAME,
        account_number=f"****{rng.randint(0, 9999):04d}",
        statement_date=now,
        uploaded_at=now,
        transactions=transactions,
        unmatched_count=len(transactions),
    )
    return statement, payments
