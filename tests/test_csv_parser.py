"""Tests for the CSV/Excel parsers."""

from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from bankrecon.engine.models import TransactionType
from bankrecon.errors import ParseError
from bankrecon.parsers.csv_parser import BankStatementCSVParser, PaymentCSVParser

SAMPLE_CSV = b"""date,amount,description,reference,type
2025-01-10,1000.00,Payment from Client A,REF001,credit
2025-01-15,-500.00,Office supplies,REF002,debit
2025-01-20,2500.00,Invoice #1234,REF003,credit
2025-01-25,-150.00,Subscription fee,,debit
"""

BRAZILIAN_CSV = """data,valor,descricao,referencia
10/01/2025,"1.000,50",Pagamento Cliente A,REF001
15/01/2025,"-500,00",Material escritorio,REF002
20/01/2025,"2.500,00",Fatura #1234,REF003
""".encode("utf-8")


@pytest.fixture
def payments_csv(tmp_path) -> Path:
    """Create a payment service export with one unusable row."""
    csv_file = tmp_path / "payments.csv"
    csv_file.write_text(
        "id,amount,created_at,currency,description,booking_id\n"
        "pay_aaaa11112222,5000.00,2025-01-15T09:30:00,ETB,Booking payment,bk_001\n"
        "pay_bbbb33334444,-750,2025-01-16 12:00:00,,Refund reversal,\n"
        "pay_cccc55556666,not-a-number,2025-01-17,ETB,Broken,bk_003\n"
    )
    return csv_file


class TestBankStatementCSVParser:
    """Test bank statement CSV parsing."""

    def test_parse_standard_csv(self):
        transactions = BankStatementCSVParser().parse_bytes(SAMPLE_CSV, "stmt_1")

        assert len(transactions) == 4
        assert transactions[0].id == "stmt_1_tx_0001"
        assert transactions[3].id == "stmt_1_tx_0004"
        assert transactions[0].amount == Decimal("1000.00")
        assert transactions[0].type == TransactionType.CREDIT
        assert transactions[0].date == datetime(2025, 1, 10)

    def test_parse_debit_transaction(self):
        debit = BankStatementCSVParser().parse_bytes(SAMPLE_CSV, "stmt_1")[1]

        assert debit.amount == Decimal("-500.00")
        assert debit.type == TransactionType.DEBIT
        assert debit.description == "Office supplies"

    def test_missing_reference_is_empty(self):
        transactions = BankStatementCSVParser().parse_bytes(SAMPLE_CSV, "stmt_1")
        assert transactions[3].reference == ""

    def test_running_balance(self):
        parser = BankStatementCSVParser(opening_balance=Decimal("100"))
        transactions = parser.parse_bytes(SAMPLE_CSV, "stmt_1")
        assert [t.balance for t in transactions] == [
            Decimal("1100.00"), Decimal("600.00"), Decimal("3100.00"), Decimal("2950.00"),
        ]

    def test_balance_column_wins(self):
        data = b"date,amount,balance\n2025-01-10,100,5100\n2025-01-11,50,\n"
        transactions = BankStatementCSVParser().parse_bytes(data, "s")
        assert [t.balance for t in transactions] == [Decimal("5100"), Decimal("5150")]

    def test_unsigned_debit_takes_sign_from_type(self):
        data = b"date,amount,description,type\n2025-01-10,120.00,Bank charges,DR\n"
        txn = BankStatementCSVParser().parse_bytes(data, "s")[0]
        assert txn.amount == Decimal("-120.00")
        assert txn.type == TransactionType.DEBIT

    def test_custom_column_mapping(self):
        parser = BankStatementCSVParser(column_mapping={
            "date": "data",
            "amount": "valor",
            "description": "descricao",
            "reference": "referencia",
        })
        transactions = parser.parse_bytes(BRAZILIAN_CSV, "stmt_br")

        assert len(transactions) == 3
        assert transactions[0].amount == Decimal("1000.50")
        assert transactions[0].date == datetime(2025, 1, 10)
        assert transactions[1].amount == Decimal("-500.00")
        assert transactions[2].reference == "REF003"

    def test_missing_columns_raises(self):
        with pytest.raises(ParseError, match="Missing required columns"):
            BankStatementCSVParser().parse_bytes(b"foo,bar\n1,2\n", "s")

    def test_bad_rows_raise(self):
        data = b"date,amount\n2025-01-10,100\nnot-a-date,50\n2025-01-12,abc\n"
        with pytest.raises(ParseError, match="row 3"):
            BankStatementCSVParser().parse_bytes(data, "s")

    def test_empty_content(self):
        with pytest.raises(ParseError):
            BankStatementCSVParser().parse_bytes(b"", "s")

    def test_header_only(self):
        with pytest.raises(ParseError, match="no transactions"):
            BankStatementCSVParser().parse_bytes(b"date,amount\n", "s")


class TestAmountParsing:

    @pytest.mark.parametrize("raw,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("99,5", Decimal("99.5")),
        ("ETB 1500", Decimal("1500")),
        ("$42.10", Decimal("42.10")),
    ])
    def test_formats(self, raw, expected):
        assert BankStatementCSVParser().parse_amount(raw) == expected

    def test_garbage(self):
        with pytest.raises(ValueError):
            BankStatementCSVParser().parse_amount("twelve")


class TestPaymentCSVParser:

    def test_parse_skips_bad_rows(self, payments_csv):
        payments = PaymentCSVParser().parse(payments_csv)

        assert [p.id for p in payments] == ["pay_aaaa11112222", "pay_bbbb33334444"]
        assert payments[0].amount == Decimal("5000.00")
        assert payments[0].created_at == datetime(2025, 1, 15, 9, 30)
        assert payments[0].booking_id == "bk_001"

    def test_defaults(self, payments_csv):
        refund = PaymentCSVParser().parse(payments_csv)[1]
        assert refund.amount == Decimal("750")
        assert refund.currency == "ETB"
        assert refund.booking_id is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PaymentCSVParser().parse(tmp_path / "nope.csv")

    def test_missing_required_column(self, tmp_path):
        csv_file = tmp_path / "payments.csv"
        csv_file.write_text("id,amount\npay_1,10\n")
        with pytest.raises(ParseError):
            PaymentCSVParser().parse(csv_file)
