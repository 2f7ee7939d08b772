"""
Demo script for the bank reconciliation console.

Generates a synthetic statement with matching booking payments, auto-reconciles
it, exercises manual override and writes JSON and Excel reports to demo_output/.

Usage:
    python demo.py
"""

import asyncio
import logging
import random
from pathlib import Path

from bankrecon.engine.matcher import ReconciliationEngine
from bankrecon.ledger.payment_ledger import InMemoryPaymentLedger
from bankrecon.parsers.sample_data import generate_sample_data
from bankrecon.reports.excel_report import ExcelReportGenerator
from bankrecon.reports.json_report import export_json_report, format_rate
from bankrecon.store.statement_store import StatementStore


def main():
    """Run the bank reconciliation demo."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    output_dir = Path(__file__).parent / "demo_output"

    print("=" * 60)
    print("  BANK RECONCILIATION CONSOLE - DEMO")
    print("=" * 60)

    # Step 1: Sample data
    print("\n  [1/4] Generating sample statement and payments")
    statement, payments = generate_sample_data(random.Random(42), transaction_count=20)
    store = StatementStore()
    store.add_statement(statement)
    ledger = InMemoryPaymentLedger(payments)
    print(f"        {len(statement.transactions)} bank lines, {len(payments)} payments")
    for txn in statement.transactions[:5]:
        print(f"        - {txn.date.strftime('%Y-%m-%d')} | {txn.amount:>10} | {txn.description[:40]}")

    # Step 2: Auto-reconcile
    print("\n  [2/4] Running auto-reconciliation...")
    engine = ReconciliationEngine(store, ledger)
    run = asyncio.run(engine.run_auto_reconciliation(statement.id))

    # Step 3: Manual override
    print("\n  [3/4] Manual override")
    available = engine.available_payments()
    leftover = statement.unmatched_transactions()
    if available and leftover:
        match = engine.manual_match(leftover[0].id, available[0].id)
        print(f"        Matched {match.bank_transaction_id} -> {match.payment_transaction_id}")
        engine.unmatch_transaction(match.bank_transaction_id)
        print(f"        Reverted manual match on {match.bank_transaction_id}")
    else:
        print("        Nothing left to match by hand")

    # Step 4: Reports
    print(f"\n  [4/4] Writing reports to {output_dir}")
    json_path = export_json_report(store, statement.id, output_dir)
    xlsx_path = ExcelReportGenerator(ledger).generate(store, statement.id, output_dir)

    print("\n" + "=" * 60)
    print("  RECONCILIATION SUMMARY")
    print("=" * 60)
    print(f"  Statement:            {statement.id}")
    print(f"  Status:               {statement.reconciliation_status.value}")
    print(f"  Newly Matched:        {run.matched_count}")
    print(f"  No Candidates:        {run.without_candidates}")
    print(f"  Below Threshold:      {run.below_threshold}")
    print(f"  Discrepancies:        {statement.discrepancies}")
    print(f"  Reconciliation Rate:  {format_rate(statement)}%")
    print("=" * 60)

    print("\n  DETAILED RESULTS:")
    print("-" * 60)
    for txn in statement.transactions:
        status = f"{txn.match_confidence}%" if txn.matched else "UNMATCHED"
        print(f"  [{status:>9}] {txn.description[:35]:<35} {txn.amount:>10,.2f}")

    print(f"\n  JSON report:  {json_path.absolute()}")
    print(f"  Excel report: {xlsx_path.absolute()}\n")


if __name__ == "__main__":
    main()
