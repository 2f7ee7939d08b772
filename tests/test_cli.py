"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from bankrecon.main import cli
from bankrecon.store.repository import PerStatementRepository
from bankrecon.store.statement_store import StatementStore

STATEMENT_CSV = """date,amount,description,reference
2025-01-15,5000.00,Booking payment received,REF12345678
2025-01-16,-120.00,Bank charges and fees,REF999
"""

PAYMENTS_CSV = """id,amount,created_at,currency
pay_abcdefgh12345678,5000.00,2025-01-15T09:00:00,ETB
pay_zzzzzzzz00000000,300.00,2025-01-10T09:00:00,ETB
"""


@pytest.fixture
def workspace(tmp_path):
    """State directory plus statement and payment files."""
    statement = tmp_path / "january.csv"
    statement.write_text(STATEMENT_CSV)
    payments = tmp_path / "payments.csv"
    payments.write_text(PAYMENTS_CSV)
    return tmp_path


def invoke(workspace: Path, *args: str):
    return CliRunner().invoke(cli, ["--state-dir", str(workspace / "state"), *args])


def imported_statement_id(workspace: Path) -> str:
    result = invoke(workspace, "import", str(workspace / "january.csv"), "--bank-name", "Awash", "--account", "0123456789")
    assert result.exit_code == 0, result.output
    return StatementStore(PerStatementRepository(workspace / "state")).statements[0].id


class TestImport:

    def test_import_csv(self, workspace):
        statement_id = imported_statement_id(workspace)

        result = invoke(workspace, "statements")
        assert result.exit_code == 0
        assert statement_id in result.output
        assert "****6789" in result.output
        assert "pending" in result.output

    def test_import_pdf_rejected(self, workspace):
        pdf = workspace / "statement.pdf"
        pdf.write_bytes(b"%PDF-1.4")

        result = invoke(workspace, "import", str(pdf), "--bank-name", "Awash")

        assert result.exit_code == 1
        assert "PDF statements are not supported" in result.output

    def test_bank_name_required(self, workspace):
        result = invoke(workspace, "import", str(workspace / "january.csv"))
        assert result.exit_code == 2


class TestReconcile:

    def test_reconcile_and_export(self, workspace):
        statement_id = imported_statement_id(workspace)

        result = invoke(workspace, "reconcile", statement_id, "--payments", str(workspace / "payments.csv"))
        assert result.exit_code == 0, result.output
        assert "RECONCILIATION SUMMARY" in result.output
        assert "50.00%" in result.output

        result = invoke(workspace, "export", statement_id, "--output-dir", str(workspace / "out"))
        assert result.exit_code == 0, result.output
        report = json.loads((workspace / "out" / f"reconciliation_report_{statement_id}.json").read_text())
        assert report["summary"]["reconciliationRate"] == "50.00"
        assert report["matches"][0]["matchType"] == "exact"

    def test_export_xlsx(self, workspace):
        statement_id = imported_statement_id(workspace)

        result = invoke(workspace, "export", statement_id, "--format", "xlsx", "--output-dir", str(workspace / "out"))

        assert result.exit_code == 0, result.output
        assert (workspace / "out" / f"reconciliation_report_{statement_id}.xlsx").exists()

    def test_unknown_statement(self, workspace):
        result = invoke(workspace, "reconcile", "stmt_missing")
        assert result.exit_code == 1
        assert "Statement not found" in result.output

    def test_threshold_out_of_range(self, workspace):
        statement_id = imported_statement_id(workspace)
        result = invoke(workspace, "reconcile", statement_id, "--threshold", "150")
        assert result.exit_code == 2


class TestManualOverride:

    def test_match_and_unmatch(self, workspace):
        statement_id = imported_statement_id(workspace)
        bank_id = f"{statement_id}_tx_0002"
        payments = str(workspace / "payments.csv")

        result = invoke(workspace, "match", bank_id, "pay_zzzzzzzz00000000", "--payments", payments)
        assert result.exit_code == 0, result.output
        assert "Manually matched" in result.output

        result = invoke(workspace, "show", statement_id, "--filter", "matched")
        assert bank_id in result.output
        assert "(100%)" in result.output

        result = invoke(workspace, "unmatch", bank_id)
        assert result.exit_code == 0
        assert "was pay_zzzzzzzz00000000" in result.output

        result = invoke(workspace, "verify")
        assert result.exit_code == 0
        assert "All statements consistent" in result.output

    def test_match_unknown_payment_is_noop(self, workspace):
        statement_id = imported_statement_id(workspace)
        result = invoke(workspace, "match", f"{statement_id}_tx_0001", "pay_missing")
        assert result.exit_code == 0
        assert "Nothing matched" in result.output

    def test_unmatch_unmatched(self, workspace):
        statement_id = imported_statement_id(workspace)
        result = invoke(workspace, "unmatch", f"{statement_id}_tx_0001")
        assert "was not matched" in result.output


class TestRulesAndExplain:

    def test_rules_listing(self, workspace):
        result = invoke(workspace, "rules")
        assert result.exit_code == 0
        assert "Exact Amount and Reference Match" in result.output
        assert result.output.index("[100]") < result.output.index("[ 90]") < result.output.index("[ 80]")

    def test_explain(self, workspace):
        statement_id = imported_statement_id(workspace)
        result = invoke(
            workspace, "explain", f"{statement_id}_tx_0001", "pay_abcdefgh12345678",
            "--payments", str(workspace / "payments.csv"),
        )
        assert result.exit_code == 0, result.output
        assert "Confidence:   100" in result.output
        assert "Amount with Tolerance Match" in result.output

    def test_explain_unknown_payment(self, workspace):
        statement_id = imported_statement_id(workspace)
        result = invoke(workspace, "explain", f"{statement_id}_tx_0001", "pay_missing")
        assert result.exit_code == 1


class TestGenerate:

    def test_generate_with_payments(self, workspace):
        payments = workspace / "generated.csv"
        result = invoke(workspace, "generate", "--count", "8", "--seed", "3", "--payments-out", str(payments))

        assert result.exit_code == 0, result.output
        assert "with 8 transactions" in result.output
        assert payments.exists()

        statement_id = StatementStore(PerStatementRepository(workspace / "state")).statements[0].id
        result = invoke(workspace, "reconcile", statement_id, "--payments", str(payments), "--selection", "best")
        assert result.exit_code == 0, result.output

    def test_blob_storage(self, workspace):
        result = invoke(workspace, "--storage", "blob", "generate", "--count", "3", "--seed", "1")
        assert result.exit_code == 0, result.output
        assert (workspace / "state" / "bank-statements.json").exists()
