"""Tests for the statement store."""

from datetime import datetime
from decimal import Decimal

import pytest

from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    MatchType,
    ReconciliationMatch,
    ReconciliationStatus,
    TransactionFilter,
)
from bankrecon.errors import NotFoundError, ValidationError
from bankrecon.store.repository import InMemoryStatementRepository, PerStatementRepository
from bankrecon.store.statement_store import StatementStore

D = datetime(2025, 1, 15, 10, 0)


def make_bank(id: str, amount: str, description: str = "Transfer", reference: str = "") -> BankTransaction:
    return BankTransaction(
        id=id,
        date=D,
        description=description,
        reference=reference,
        amount=Decimal(amount),
    )


def make_statement(id: str, *transactions: BankTransaction) -> BankStatement:
    return BankStatement(
        id=id,
        bank_name="Awash Bank",
        account_number="****1234",
        statement_date=D,
        uploaded_at=D,
        transactions=list(transactions),
    )


def make_match(bank_id: str, payment_id: str = "pt1") -> ReconciliationMatch:
    return ReconciliationMatch(
        bank_transaction_id=bank_id,
        payment_transaction_id=payment_id,
        confidence=100,
        match_type=MatchType.MANUAL,
        match_criteria=("manual_selection",),
        created_at=D,
    )


@pytest.fixture
def store():
    store = StatementStore()
    store.add_statement(make_statement(
        "stmt_1",
        make_bank("stmt_1_tx_0001", "1000", "Booking payment from Abebe", "REF0001"),
        make_bank("stmt_1_tx_0002", "-25", "Bank charges and fees", "CHG77"),
        make_bank("stmt_1_tx_0003", "2500", "Transfer from Selam", "REF0003"),
    ))
    return store


class TestAddStatement:

    def test_new_statement_is_pending(self, store):
        statement = store.get_statement("stmt_1")
        assert statement.reconciliation_status == ReconciliationStatus.PENDING
        assert statement.matched_count == 0
        assert statement.unmatched_count == 3

    def test_duplicate_statement_id(self, store):
        with pytest.raises(ValidationError):
            store.add_statement(make_statement("stmt_1"))

    def test_duplicate_transaction_id_across_statements(self, store):
        with pytest.raises(ValidationError):
            store.add_statement(make_statement("stmt_2", make_bank("stmt_1_tx_0001", "5")))
        assert store.find_statement("stmt_2") is None

    def test_rejected_save_is_not_kept(self, tmp_path):
        store = StatementStore(PerStatementRepository(tmp_path))

        with pytest.raises(ValidationError):
            store.add_statement(make_statement("stmt 1", make_bank("stmt 1_tx_0001", "100")))

        assert store.find_statement("stmt 1") is None
        assert store.find_transaction("stmt 1_tx_0001") is None
        assert store.statements == []

    def test_unknown_statement(self, store):
        with pytest.raises(NotFoundError):
            store.get_statement("nope")
        assert store.find_statement("nope") is None


class TestMatches:

    def test_commit_and_refresh(self, store):
        statement, txn = store.find_transaction("stmt_1_tx_0001")
        store.commit_match(statement, txn, make_match(txn.id))
        store.refresh(statement)

        assert txn.matched
        assert store.match_for(txn.id).payment_transaction_id == "pt1"
        assert store.allocated_payment_ids() == {"pt1"}
        assert store.match_for_payment("pt1").bank_transaction_id == txn.id
        assert statement.matched_count == 1
        assert statement.reconciliation_status == ReconciliationStatus.PARTIAL

    def test_commit_twice_rejected(self, store):
        statement, txn = store.find_transaction("stmt_1_tx_0001")
        store.commit_match(statement, txn, make_match(txn.id))
        with pytest.raises(ValidationError):
            store.commit_match(statement, txn, make_match(txn.id, "pt2"))

    def test_match_must_reference_transaction(self, store):
        statement, txn = store.find_transaction("stmt_1_tx_0001")
        with pytest.raises(ValidationError):
            store.commit_match(statement, txn, make_match("stmt_1_tx_0003"))

    def test_remove_match(self, store):
        statement, txn = store.find_transaction("stmt_1_tx_0001")
        store.commit_match(statement, txn, make_match(txn.id))
        removed = store.remove_match(txn)

        assert removed.bank_transaction_id == txn.id
        assert not txn.matched
        assert store.matches("stmt_1") == []

    def test_complete_when_all_matched(self, store):
        statement = store.get_statement("stmt_1")
        for txn in statement.transactions:
            store.commit_match(statement, txn, make_match(txn.id, f"pay_{txn.id}"))
        store.refresh(statement)
        assert statement.reconciliation_status == ReconciliationStatus.COMPLETE
        assert statement.reconciliation_rate == 100.0


class TestSearch:

    def test_query_matches_description_and_reference(self, store):
        assert [t.id for t in store.search_transactions("stmt_1", "BOOKING")] == ["stmt_1_tx_0001"]
        assert [t.id for t in store.search_transactions("stmt_1", "chg")] == ["stmt_1_tx_0002"]

    def test_filters(self, store):
        statement, txn = store.find_transaction("stmt_1_tx_0003")
        store.commit_match(statement, txn, make_match(txn.id))

        matched = store.search_transactions("stmt_1", status_filter=TransactionFilter.MATCHED)
        unmatched = store.search_transactions("stmt_1", "ref", TransactionFilter.UNMATCHED)
        assert [t.id for t in matched] == ["stmt_1_tx_0003"]
        assert [t.id for t in unmatched] == ["stmt_1_tx_0001"]


class TestOverview:

    def test_empty_store(self):
        overview = StatementStore().overview()
        assert overview.total_statements == 0
        assert overview.reconciliation_rate == 0.0

    def test_totals(self, store):
        store.add_statement(make_statement("stmt_2", make_bank("stmt_2_tx_0001", "10")))
        statement, txn = store.find_transaction("stmt_2_tx_0001")
        store.commit_match(statement, txn, make_match(txn.id))
        store.refresh(statement)

        overview = store.overview()
        assert overview.total_statements == 2
        assert overview.total_transactions == 4
        assert overview.matched_transactions == 1
        assert overview.reconciliation_rate == 25.0


class TestConsistency:

    def test_clean_store(self, store):
        assert store.check_consistency() == []

    def test_detects_match_without_record(self, store):
        _, txn = store.find_transaction("stmt_1_tx_0002")
        txn.mark_matched("pt9", 80)
        problems = store.check_consistency()
        assert any("stmt_1_tx_0002" in p for p in problems)


class TestReload:

    def test_state_survives_reload(self):
        repository = InMemoryStatementRepository()
        store = StatementStore(repository)
        store.add_statement(make_statement("stmt_1", make_bank("stmt_1_tx_0001", "1000"), make_bank("stmt_1_tx_0002", "5")))
        statement, txn = store.find_transaction("stmt_1_tx_0001")
        store.commit_match(statement, txn, make_match(txn.id))
        store.refresh(statement)

        reloaded = StatementStore(repository)
        statement = reloaded.get_statement("stmt_1")

        assert reloaded.match_for("stmt_1_tx_0001").match_type == MatchType.MANUAL
        assert statement.find_transaction("stmt_1_tx_0001").matched
        assert statement.reconciliation_status == ReconciliationStatus.PARTIAL
        assert statement.matched_count == 1
        assert reloaded.check_consistency() == []
        assert repository.save_count == 2

    def test_store_does_not_share_objects_with_repository(self):
        repository = InMemoryStatementRepository()
        store = StatementStore(repository)
        store.add_statement(make_statement("stmt_1", make_bank("stmt_1_tx_0001", "1000")))

        store.get_statement("stmt_1").transactions[0].description = "changed"

        assert StatementStore(repository).get_statement("stmt_1").transactions[0].description == "Transfer"
