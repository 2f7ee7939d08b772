"""Data models for the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple, Union

# Tagged union for discrepancy and rule values.
ScalarValue = Union[str, int, Decimal, bool]


def to_naive_utc(value: datetime) -> datetime:
    """Convert an offset-aware datetime to naive UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class TransactionType(Enum):
    """Transaction type classification."""
    CREDIT = "credit"
    DEBIT = "debit"

    @classmethod
    def for_amount(cls, amount: Decimal) -> "TransactionType":
        return cls.CREDIT if amount >= 0 else cls.DEBIT


class ReconciliationStatus(Enum):
    """Reconciliation progress of a bank statement."""
    PENDING = "pending"    # no match attempted yet
    PARTIAL = "partial"    # attempted, some transactions unmatched
    COMPLETE = "complete"  # every transaction matched


class MatchType(Enum):
    """How a reconciliation match was produced."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"


class Severity(Enum):
    """Severity of a field discrepancy inside a match."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TransactionFilter(Enum):
    """Match-state filter for transaction listings."""
    ALL = "all"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


@dataclass
class BankTransaction:
    """One line item of a bank statement, plus its match state."""
    id: str
    date: datetime
    description: str
    reference: str
    amount: Decimal
    balance: Decimal = Decimal("0")
    type: Optional[TransactionType] = None
    flags: List[str] = field(default_factory=list)
    matched: bool = False
    matched_transaction_id: Optional[str] = None
    match_confidence: Optional[int] = None

    def __post_init__(self):
        self.date = to_naive_utc(self.date)
        if self.type is None:
            self.type = TransactionType.for_amount(self.amount)

    @property
    def abs_amount(self) -> Decimal:
        """Return absolute value of transaction amount."""
        return abs(self.amount)

    def mark_matched(self, payment_transaction_id: str, confidence: int) -> None:
        self.matched = True
        self.matched_transaction_id = payment_transaction_id
        self.match_confidence = confidence

    def clear_match(self) -> None:
        self.matched = False
        self.matched_transaction_id = None
        self.match_confidence = None

    def __repr__(self) -> str:
        return (
            f"BankTransaction(id={self.id!r}, date={self.date.strftime('%Y-%m-%d')}, "
            f"amount={self.amount}, desc={self.description[:30]!r}, matched={self.matched})"
        )


@dataclass
class PaymentTransaction:
    """A completed payment from the booking payment subsystem (read-only here)."""
    id: str
    amount: Decimal
    created_at: datetime
    currency: str = "ETB"
    description: str = ""
    booking_id: Optional[str] = None

    def __post_init__(self):
        self.created_at = to_naive_utc(self.created_at)


@dataclass(frozen=True)
class Discrepancy:
    """A field on which the two sides of a match disagree."""
    field: str
    bank_value: ScalarValue
    system_value: ScalarValue
    severity: Severity


@dataclass(frozen=True)
class ReconciliationMatch:
    """A committed pairing of one bank transaction with one payment transaction.

    Matches are never edited; unmatching removes the record.
    """
    bank_transaction_id: str
    payment_transaction_id: str
    confidence: int
    match_type: MatchType
    match_criteria: Tuple[str, ...] = ()
    discrepancies: Tuple[Discrepancy, ...] = ()
    created_at: Optional[datetime] = None


@dataclass
class BankStatement:
    """An uploaded or generated bank statement with cached match counters."""
    id: str
    bank_name: str
    account_number: str
    statement_date: datetime
    uploaded_at: datetime
    transactions: List[BankTransaction] = field(default_factory=list)
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING
    matched_count: int = 0
    unmatched_count: int = 0
    discrepancies: int = 0

    def __post_init__(self):
        self.statement_date = to_naive_utc(self.statement_date)
        self.uploaded_at = to_naive_utc(self.uploaded_at)

    def find_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        for txn in self.transactions:
            if txn.id == transaction_id:
                return txn
        return None

    def unmatched_transactions(self) -> List[BankTransaction]:
        return [t for t in self.transactions if not t.matched]

    def refresh_counters(self, discrepancy_count: int, attempted: bool = True) -> None:
        """
        Recompute counters and status from the transaction list.

        Args:
            discrepancy_count: Discrepancy entries across this statement's matches.
            attempted: Whether a match operation has touched the statement. A pending
                statement stays pending until then; status never returns to pending.
        """
        self.matched_count = sum(1 for t in self.transactions if t.matched)
        self.unmatched_count = len(self.transactions) - self.matched_count
        self.discrepancies = discrepancy_count

        if not attempted and self.reconciliation_status == ReconciliationStatus.PENDING:
            return
        if self.matched_count == len(self.transactions):
            self.reconciliation_status = ReconciliationStatus.COMPLETE
        else:
            self.reconciliation_status = ReconciliationStatus.PARTIAL

    @property
    def reconciliation_rate(self) -> float:
        """Matched share of transactions as percentage."""
        total = len(self.transactions)
        if total == 0:
            return 0.0
        return (self.matched_count / total) * 100


@dataclass
class ReconciliationRun:
    """Outcome of one auto-reconciliation pass over a statement."""
    statement_id: str
    new_matches: List[ReconciliationMatch] = field(default_factory=list)
    skipped_matched: int = 0
    without_candidates: int = 0
    below_threshold: int = 0

    @property
    def matched_count(self) -> int:
        """Number of transactions newly matched by this run."""
        return len(self.new_matches)


@dataclass
class StoreOverview:
    """Totals across every stored statement."""
    total_statements: int = 0
    total_transactions: int = 0
    matched_transactions: int = 0

    @property
    def reconciliation_rate(self) -> float:
        if self.total_transactions == 0:
            return 0.0
        return (self.matched_transactions / self.total_transactions) * 100
