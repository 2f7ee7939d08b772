"""OFX/QFX bank statement parser."""

import io
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from ofxparse import OfxParser as OfxLib

from bankrecon.engine.models import BankTransaction, TransactionType, to_naive_utc
from bankrecon.errors import ParseError


class OFXStatement:
    """Transactions plus the account details found in an OFX file."""

    def __init__(self, transactions: List[BankTransaction], account_id: str = "", closing_date: Optional[datetime] = None):
        self.transactions = transactions
        self.account_id = account_id
        self.closing_date = closing_date


class OFXParser:
    """Parse OFX/QFX bank statement content into BankTransaction objects."""

    def parse_bytes(self, data: bytes, id_prefix: str) -> OFXStatement:
        """
        Parse OFX content.

        Args:
            data: Raw OFX/QFX bytes.
            id_prefix: Prefix for generated transaction ids, usually the statement id.

        Returns:
            OFXStatement with transactions of every account in the file.

        Raises:
            ParseError: If the content cannot be parsed or holds no transactions.
        """
        if not data or not data.strip():
            raise ParseError("File is empty")

        try:
            ofx = OfxLib.parse(io.BytesIO(data))
        except Exception as e:
            raise ParseError(f"Failed to parse OFX file: {e}") from e

        transactions: List[BankTransaction] = []
        account_id = ""
        closing_date = None

        for account in self._get_accounts(ofx):
            account_id = account_id or str(getattr(account, "account_id", "") or "")
            statement = account.statement
            closing_date = closing_date or getattr(statement, "end_date", None)
            if closing_date is not None:
                closing_date = to_naive_utc(closing_date)
            account_txns = [
                self._convert_transaction(stmt_txn, f"{id_prefix}_tx_{len(transactions) + i:04d}")
                for i, stmt_txn in enumerate(statement.transactions, start=1)
            ]
            self._fill_balances(account_txns, getattr(statement, "balance", None))
            transactions.extend(account_txns)

        if not transactions:
            raise ParseError("Statement contains no transactions")
        return OFXStatement(transactions, account_id=account_id, closing_date=closing_date)

    def _get_accounts(self, ofx):
        """Extract accounts from parsed OFX data."""
        accounts = getattr(ofx, "accounts", None)
        if accounts:
            return accounts
        if getattr(ofx, "account", None) is not None:
            return [ofx.account]
        raise ParseError("No accounts found in OFX file")

    def _fill_balances(self, transactions: List[BankTransaction], closing_balance) -> None:
        """Derive a running balance that ends at the statement's ledger balance."""
        ordered = sorted(transactions, key=lambda t: t.date)
        closing = Decimal(str(closing_balance)) if closing_balance is not None else sum(
            (t.amount for t in ordered), Decimal("0")
        )
        balance = closing - sum((t.amount for t in ordered), Decimal("0"))
        for txn in ordered:
            balance += txn.amount
            txn.balance = balance

    def _convert_transaction(self, stmt_txn, txn_id: str) -> BankTransaction:
        """Convert an OFX statement transaction to our BankTransaction model."""
        amount = Decimal(str(stmt_txn.amount))

        txn_date = stmt_txn.date
        if isinstance(txn_date, str):
            txn_date = datetime.strptime(txn_date[:8], "%Y%m%d")
        elif txn_date is not None:
            txn_date = to_naive_utc(txn_date)

        reference = getattr(stmt_txn, "checknum", "") or getattr(stmt_txn, "id", "") or ""

        return BankTransaction(
            id=txn_id,
            date=txn_date,
            description=getattr(stmt_txn, "memo", "") or getattr(stmt_txn, "payee", "") or "",
            reference=str(reference),
            amount=amount,
            type=TransactionType.for_amount(amount),
        )
