"""JSON reconciliation report for one statement."""

import json
from pathlib import Path
from typing import Any, Dict

from bankrecon.engine.models import BankStatement
from bankrecon.store.serialization import match_to_dict, statement_to_dict
from bankrecon.store.statement_store import StatementStore


def report_filename(statement_id: str, extension: str = "json") -> str:
    return f"reconciliation_report_{statement_id}.{extension}"


def format_rate(statement: BankStatement) -> str:
    """Matched share as a percentage string with exactly two decimals."""
    total = len(statement.transactions)
    if total == 0:
        return "0.00"
    return f"{statement.matched_count / total * 100:.2f}"


def build_report(store: StatementStore, statement_id: str) -> Dict[str, Any]:
    """
    Assemble the statement, its matches and a summary. Read-only.

    Raises:
        NotFoundError: If the statement does not exist.
    """
    statement = store.get_statement(statement_id)
    return {
        "statement": statement_to_dict(statement),
        "matches": [match_to_dict(m) for m in store.matches(statement.id)],
        "summary": {
            "totalTransactions": len(statement.transactions),
            "matchedTransactions": statement.matched_count,
            "unmatchedTransactions": statement.unmatched_count,
            "reconciliationRate": format_rate(statement),
        },
    }


def export_json_report(store: StatementStore, statement_id: str, output_dir: str | Path) -> Path:
    """Write reconciliation_report_<statementId>.json into output_dir."""
    report = build_report(store, statement_id)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / report_filename(statement_id)
    output_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    return output_path
