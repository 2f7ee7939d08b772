"""Tests for the JSON reconciliation report."""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from bankrecon.engine.matcher import ReconciliationEngine
from bankrecon.engine.models import BankStatement, BankTransaction, PaymentTransaction
from bankrecon.errors import NotFoundError
from bankrecon.ledger.payment_ledger import InMemoryPaymentLedger
from bankrecon.reports.json_report import build_report, export_json_report, format_rate
from bankrecon.store.statement_store import StatementStore

D = datetime(2025, 1, 15, 10, 0)


def make_bank(id: str, amount: str, description: str = "Transfer") -> BankTransaction:
    return BankTransaction(id=id, date=D, description=description, reference="", amount=Decimal(amount))


@pytest.fixture
def store():
    """Three-line statement with one auto match."""
    store = StatementStore()
    store.add_statement(BankStatement(
        id="stmt_1",
        bank_name="Commercial Bank of Ethiopia",
        account_number="****7890",
        statement_date=D,
        uploaded_at=D,
        transactions=[
            make_bank("stmt_1_tx_0001", "1000.25", "Booking payment"),
            make_bank("stmt_1_tx_0002", "-40"),
            make_bank("stmt_1_tx_0003", "75"),
        ],
    ))
    ledger = InMemoryPaymentLedger([PaymentTransaction(id="pt1", amount=Decimal("1000"), created_at=D)])
    ReconciliationEngine(store, ledger).reconcile("stmt_1")
    return store


class TestBuildReport:

    def test_summary(self, store):
        summary = build_report(store, "stmt_1")["summary"]
        assert summary == {
            "totalTransactions": 3,
            "matchedTransactions": 1,
            "unmatchedTransactions": 2,
            "reconciliationRate": "33.33",
        }

    def test_statement_and_matches(self, store):
        report = build_report(store, "stmt_1")

        assert report["statement"]["id"] == "stmt_1"
        assert report["statement"]["reconciliationStatus"] == "partial"
        assert report["statement"]["transactions"][0]["amount"] == "1000.25"
        assert report["statement"]["transactions"][0]["matchedTransactionId"] == "pt1"
        assert len(report["matches"]) == 1
        assert report["matches"][0]["matchType"] == "fuzzy"
        assert report["matches"][0]["discrepancies"][0]["field"] == "amount"

    def test_report_is_read_only(self, store):
        before = store.repository.save_count
        build_report(store, "stmt_1")
        assert store.repository.save_count == before

    def test_unknown_statement(self, store):
        with pytest.raises(NotFoundError):
            build_report(store, "stmt_missing")


class TestFormatRate:

    def test_two_decimals(self, store):
        assert format_rate(store.get_statement("stmt_1")) == "33.33"

    def test_empty_statement(self):
        statement = BankStatement(
            id="stmt_empty", bank_name="x", account_number="", statement_date=D, uploaded_at=D,
        )
        assert format_rate(statement) == "0.00"

    def test_complete(self):
        statement = BankStatement(
            id="stmt_done", bank_name="x", account_number="", statement_date=D, uploaded_at=D,
            transactions=[make_bank("a", "1")], matched_count=1,
        )
        assert format_rate(statement) == "100.00"


class TestExport:

    def test_writes_named_file(self, store, tmp_path):
        path = export_json_report(store, "stmt_1", tmp_path / "reports")

        assert path.name == "reconciliation_report_stmt_1.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["summary"]["reconciliationRate"] == "33.33"
