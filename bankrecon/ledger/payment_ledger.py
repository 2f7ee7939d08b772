"""Read-only view over the payment subsystem's completed transactions."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from bankrecon.engine.models import PaymentTransaction
from bankrecon.errors import NotFoundError
from bankrecon.parsers.csv_parser import PaymentCSVParser

logger = logging.getLogger(__name__)


class PaymentLedger(ABC):
    """Source of payment transactions the engine matches against."""

    @abstractmethod
    def get_all_transactions(self) -> List[PaymentTransaction]:
        """Return every known payment transaction."""

    def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        for payment in self.get_all_transactions():
            if payment.id == transaction_id:
                return payment
        return None

    def require_transaction(self, transaction_id: str) -> PaymentTransaction:
        payment = self.get_transaction(transaction_id)
        if payment is None:
            raise NotFoundError(f"Payment transaction not found: {transaction_id!r}")
        return payment


class InMemoryPaymentLedger(PaymentLedger):
    """Ledger backed by a dict; listings come back newest first."""

    def __init__(self, transactions: Iterable[PaymentTransaction] = ()):
        self._transactions: Dict[str, PaymentTransaction] = {}
        for payment in transactions:
            self.add(payment)

    def add(self, payment: PaymentTransaction) -> None:
        self._transactions[payment.id] = payment

    def get_all_transactions(self) -> List[PaymentTransaction]:
        return sorted(self._transactions.values(), key=lambda p: p.created_at, reverse=True)

    def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return self._transactions.get(transaction_id)

    def __len__(self) -> int:
        return len(self._transactions)


class CsvPaymentLedger(InMemoryPaymentLedger):
    """Ledger loaded from a CSV/Excel export of the payment service."""

    def __init__(self, file_path: str | Path, column_mapping: Optional[Dict[str, str]] = None):
        self.file_path = Path(file_path)
        payments = PaymentCSVParser(column_mapping=column_mapping).parse(self.file_path)
        super().__init__(payments)
        logger.info("Loaded %d payment transactions from %s", len(payments), self.file_path)
