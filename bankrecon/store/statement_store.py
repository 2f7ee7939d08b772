"""Authoritative in-process store of bank statements and reconciliation matches."""

import logging
from typing import Dict, List, Optional, Set, Tuple

from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    ReconciliationMatch,
    ReconciliationStatus,
    StoreOverview,
    TransactionFilter,
)
from bankrecon.errors import NotFoundError, ValidationError
from bankrecon.store.repository import InMemoryStatementRepository, StatementRepository

logger = logging.getLogger(__name__)


class StatementStore:
    """
    Owns statements, their transactions and the match records that reference them.

    Every mutation goes through commit_match/remove_match, which keep a transaction's
    match fields and its ReconciliationMatch record in step, then recompute the
    statement counters and persist the statement.
    """

    def __init__(self, repository: Optional[StatementRepository] = None):
        self.repository = repository or InMemoryStatementRepository()
        self._statements: Dict[str, BankStatement] = {}
        self._owner: Dict[str, str] = {}
        self._matches: Dict[str, ReconciliationMatch] = {}
        self.reload()

    def reload(self) -> None:
        """Replace in-memory state with what the repository holds."""
        statements, matches = self.repository.load()
        self._statements = {}
        self._owner = {}
        self._matches = {}

        for statement in statements:
            self._index(statement)
        for match in matches:
            if match.bank_transaction_id not in self._owner:
                logger.warning("Ignoring match for unknown bank transaction %s", match.bank_transaction_id)
                continue
            self._matches[match.bank_transaction_id] = match
        for statement in self._statements.values():
            self._refresh(statement, attempted=False)

        logger.debug("Store loaded %d statements, %d matches", len(self._statements), len(self._matches))

    def _index(self, statement: BankStatement) -> None:
        self._statements[statement.id] = statement
        for txn in statement.transactions:
            self._owner[txn.id] = statement.id

    def _forget(self, statement: BankStatement) -> None:
        self._statements.pop(statement.id, None)
        for txn in statement.transactions:
            self._owner.pop(txn.id, None)

    # Reads

    @property
    def statements(self) -> List[BankStatement]:
        return list(self._statements.values())

    def find_statement(self, statement_id: str) -> Optional[BankStatement]:
        return self._statements.get(statement_id)

    def get_statement(self, statement_id: str) -> BankStatement:
        """
        Raises:
            NotFoundError: If no statement has this id.
        """
        statement = self._statements.get(statement_id)
        if statement is None:
            raise NotFoundError(f"Statement not found: {statement_id!r}")
        return statement

    def find_transaction(self, bank_transaction_id: str) -> Optional[Tuple[BankStatement, BankTransaction]]:
        """Locate a bank transaction and its owning statement."""
        statement_id = self._owner.get(bank_transaction_id)
        if statement_id is None:
            return None
        statement = self._statements[statement_id]
        txn = statement.find_transaction(bank_transaction_id)
        if txn is None:
            return None
        return statement, txn

    def matches(self, statement_id: Optional[str] = None) -> List[ReconciliationMatch]:
        """All match records, or only those referencing one statement's transactions."""
        if statement_id is None:
            return list(self._matches.values())
        statement = self.get_statement(statement_id)
        return [
            self._matches[t.id]
            for t in statement.transactions
            if t.id in self._matches
        ]

    def match_for(self, bank_transaction_id: str) -> Optional[ReconciliationMatch]:
        return self._matches.get(bank_transaction_id)

    def allocated_payment_ids(self) -> Set[str]:
        return {m.payment_transaction_id for m in self._matches.values()}

    def match_for_payment(self, payment_transaction_id: str) -> Optional[ReconciliationMatch]:
        for match in self._matches.values():
            if match.payment_transaction_id == payment_transaction_id:
                return match
        return None

    def search_transactions(
        self,
        statement_id: str,
        query: str = "",
        status_filter: TransactionFilter = TransactionFilter.ALL,
    ) -> List[BankTransaction]:
        """Case-insensitive substring search over description and reference."""
        statement = self.get_statement(statement_id)
        needle = query.strip().lower()
        results = []
        for txn in statement.transactions:
            if needle and needle not in txn.description.lower() and needle not in txn.reference.lower():
                continue
            if status_filter == TransactionFilter.MATCHED and not txn.matched:
                continue
            if status_filter == TransactionFilter.UNMATCHED and txn.matched:
                continue
            results.append(txn)
        return results

    def overview(self) -> StoreOverview:
        return StoreOverview(
            total_statements=len(self._statements),
            total_transactions=sum(len(s.transactions) for s in self._statements.values()),
            matched_transactions=sum(s.matched_count for s in self._statements.values()),
        )

    def check_consistency(self) -> List[str]:
        """Return every violated match/counter invariant; empty when consistent."""
        problems: List[str] = []
        for statement in self._statements.values():
            matched = 0
            for txn in statement.transactions:
                has_id = txn.matched_transaction_id is not None
                has_confidence = txn.match_confidence is not None
                has_record = txn.id in self._matches
                if not (txn.matched == has_id == has_confidence == has_record):
                    problems.append(
                        f"{statement.id}/{txn.id}: matched={txn.matched} "
                        f"paymentId={has_id} confidence={has_confidence} record={has_record}"
                    )
                if has_record and has_id and self._matches[txn.id].payment_transaction_id != txn.matched_transaction_id:
                    problems.append(f"{statement.id}/{txn.id}: record points at a different payment")
                matched += txn.matched
            if statement.matched_count != matched:
                problems.append(f"{statement.id}: matchedCount {statement.matched_count} != {matched}")
            if statement.matched_count + statement.unmatched_count != len(statement.transactions):
                problems.append(f"{statement.id}: counters do not add up to transaction count")
        return problems

    # Mutations

    def add_statement(self, statement: BankStatement) -> BankStatement:
        """
        Register a new statement and persist it.

        A statement the repository refuses to save is not kept in memory either.

        Raises:
            ValidationError: If the statement id or any transaction id is already used.
        """
        if statement.id in self._statements:
            raise ValidationError(f"Statement already exists: {statement.id!r}")
        seen: Set[str] = set()
        for txn in statement.transactions:
            if txn.id in self._owner or txn.id in seen:
                raise ValidationError(f"Duplicate bank transaction id: {txn.id!r}")
            seen.add(txn.id)

        self._index(statement)
        self._refresh(statement, attempted=False)
        try:
            self.persist(statement)
        except Exception:
            self._forget(statement)
            raise
        logger.info("Added statement %s with %d transactions", statement.id, len(statement.transactions))
        return statement

    def commit_match(self, statement: BankStatement, txn: BankTransaction, match: ReconciliationMatch) -> None:
        """Apply one match to a transaction and record it. Does not persist."""
        if txn.matched or txn.id in self._matches:
            raise ValidationError(f"Bank transaction already matched: {txn.id!r}")
        if match.bank_transaction_id != txn.id:
            raise ValidationError("Match record does not reference this transaction")
        txn.mark_matched(match.payment_transaction_id, match.confidence)
        self._matches[txn.id] = match

    def remove_match(self, txn: BankTransaction) -> Optional[ReconciliationMatch]:
        """Clear a transaction's match state and drop its record. Does not persist."""
        txn.clear_match()
        return self._matches.pop(txn.id, None)

    def revert(
        self,
        statement: BankStatement,
        transactions: List[BankTransaction],
        status: ReconciliationStatus,
    ) -> None:
        """Drop matches a failed run applied and restore the statement's counters. Does not persist."""
        for txn in transactions:
            self.remove_match(txn)
        statement.reconciliation_status = status
        self._refresh(statement, attempted=False)

    def refresh(self, statement: BankStatement) -> None:
        """Recompute counters after a match operation and persist the statement."""
        self._refresh(statement, attempted=True)
        self.persist(statement)

    def _refresh(self, statement: BankStatement, attempted: bool) -> None:
        discrepancy_count = sum(
            len(self._matches[t.id].discrepancies)
            for t in statement.transactions
            if t.id in self._matches
        )
        statement.refresh_counters(discrepancy_count, attempted=attempted)

    def persist(self, statement: BankStatement) -> None:
        self.repository.save_statement(
            statement,
            self.matches(statement.id),
            self.statements,
            self.matches(),
        )
