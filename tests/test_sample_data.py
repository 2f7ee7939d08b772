"""Tests for synthetic statement generation."""

import random
import re
from datetime import datetime, timedelta

from bankrecon.engine.matcher import ReconciliationEngine
from bankrecon.engine.models import ReconciliationStatus, TransactionType
from bankrecon.ledger.payment_ledger import InMemoryPaymentLedger
from bankrecon.parsers.sample_data import generate_sample_data
from bankrecon.store.statement_store import StatementStore

NOW = datetime(2025, 3, 1, 12, 0)


def generate(seed: int = 7, count: int = 20):
    return generate_sample_data(random.Random(seed), transaction_count=count, now=NOW)


class TestGenerateSampleData:

    def test_seeded_runs_are_identical(self):
        first_statement, first_payments = generate()
        second_statement, second_payments = generate()

        assert [(t.id, t.amount, t.reference) for t in first_statement.transactions] == [
            (t.id, t.amount, t.reference) for t in second_statement.transactions
        ]
        assert [p.id for p in first_payments] == [p.id for p in second_payments]

    def test_statement_shape(self):
        statement, _ = generate()

        assert statement.id == f"stmt_{int(NOW.timestamp())}"
        assert len(statement.transactions) == 20
        assert statement.reconciliation_status == ReconciliationStatus.PENDING
        assert statement.unmatched_count == 20
        assert re.fullmatch(r"\*{4}\d{4}", statement.account_number)

    def test_transactions(self):
        statement, _ = generate()
        dates = [t.date for t in statement.transactions]

        assert dates == sorted(dates, reverse=True)
        assert all(NOW - timedelta(days=30) <= d <= NOW for d in dates)
        for txn in statement.transactions:
            assert txn.reference.startswith("REF")
            assert not txn.matched
            if txn.type == TransactionType.DEBIT:
                assert txn.amount < 0
                assert txn.description == "Bank charges and fees"
            else:
                assert txn.amount > 0

    def test_payments_mirror_credits(self):
        statement, payments = generate()
        credits = {t.amount for t in statement.transactions if t.type == TransactionType.CREDIT}

        for payment in payments:
            assert re.fullmatch(r"pay_[a-z0-9]{12}", payment.id)
            assert payment.amount in credits
            assert payment.currency == "ETB"

    def test_auto_reconciliation_on_sample(self):
        statement, payments = generate(seed=11, count=30)
        store = StatementStore()
        store.add_statement(statement)

        run = ReconciliationEngine(store, InMemoryPaymentLedger(payments)).reconcile(statement.id)

        assert run.matched_count + run.without_candidates + run.below_threshold == 30
        assert statement.reconciliation_status != ReconciliationStatus.PENDING
        assert store.check_consistency() == []

    def test_zero_transactions(self):
        statement, payments = generate(count=0)
        assert statement.transactions == []
        assert payments == []
