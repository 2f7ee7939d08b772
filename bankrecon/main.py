"""CLI entry point for bank reconciliation."""

import asyncio
import logging
import random
import sys
from functools import wraps
from pathlib import Path
from typing import Optional

import click
import pandas as pd

from bankrecon.config import (
    CandidateSelection,
    ReconciliationSettings,
    StorageLayout,
)
from bankrecon.engine.matcher import ReconciliationEngine
from bankrecon.engine.models import TransactionFilter
from bankrecon.engine.rules import RuleSet, default_rules
from bankrecon.engine.scoring import score_breakdown
from bankrecon.errors import (
    NotFoundError,
    ProcessingError,
    ValidationError,
)
from bankrecon.ledger.payment_ledger import CsvPaymentLedger, InMemoryPaymentLedger, PaymentLedger
from bankrecon.parsers.csv_parser import BankStatementCSVParser
from bankrecon.parsers.importer import StatementImporter, guess_mime_type
from bankrecon.parsers.sample_data import generate_sample_data
from bankrecon.reports.excel_report import ExcelReportGenerator
from bankrecon.reports.json_report import export_json_report, format_rate
from bankrecon.store.repository import (
    BlobStatementRepository,
    PerStatementRepository,
    StatementRepository,
)
from bankrecon.store.statement_store import StatementStore

logger = logging.getLogger(__name__)


def validate_non_negative(ctx, param, value):
    """Validate numeric option is non-negative."""
    if value is not None and value < 0:
        raise click.BadParameter("Must be non-negative.")
    return value


def validate_percentage(ctx, param, value):
    """Validate threshold is between 0 and 100."""
    if value is not None and not 0 <= value <= 100:
        raise click.BadParameter("Threshold must be between 0 and 100.")
    return value


def build_repository(settings: ReconciliationSettings) -> StatementRepository:
    if settings.storage_layout == StorageLayout.BLOB:
        return BlobStatementRepository(settings.storage_dir)
    return PerStatementRepository(settings.storage_dir)


def load_ledger(payments: Optional[str]) -> PaymentLedger:
    if payments is None:
        return InMemoryPaymentLedger()
    return CsvPaymentLedger(payments)


def handle_errors(func):
    """Report core errors as user-facing messages with exit status 1 or 2."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (FileNotFoundError, NotFoundError, ValidationError) as e:
            click.echo(f"\n  ERROR: {e}", err=True)
            sys.exit(1)
        except ProcessingError as e:
            click.echo(f"\n  RECONCILIATION FAILED: {e}", err=True)
            sys.exit(2)
        except click.ClickException:
            raise
        except Exception as e:
            logger.exception("Unexpected error")
            click.echo(f"\n  UNEXPECTED ERROR: {e}", err=True)
            sys.exit(2)

    return wrapper


payments_option = click.option(
    "--payments", "-p",
    type=click.Path(exists=True, dir_okay=False),
    help="CSV/Excel export of payment transactions (id, amount, created_at, currency).",
)


@click.group()
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    help="Directory holding persisted statements (default: BANKRECON_STORAGE_DIR or .bankrecon).",
)
@click.option(
    "--storage",
    type=click.Choice([layout.value for layout in StorageLayout]),
    help="Persistence layout: one file per statement, or a single blob.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
@handle_errors
def cli(ctx, state_dir: Optional[str], storage: Optional[str], verbose: bool) -> None:
    """
    Bank Reconciliation Tool

    Matches uploaded bank statements against booking payment transactions.

    Example:
        bankrecon generate --payments-out payments.csv
        bankrecon reconcile stmt_1700000000 --payments payments.csv
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = ReconciliationSettings.from_env()
    if state_dir:
        settings.storage_dir = Path(state_dir)
    if storage:
        settings.storage_layout = StorageLayout(storage)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["store"] = StatementStore(build_repository(settings))


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--bank-name", "-n", required=True, help="Issuing bank.")
@click.option("--account", "-a", default="", help="Account number (stored masked).")
@click.option("--mime-type", "-m", help="Declared MIME type; guessed from the extension when omitted.")
@click.option("--date-col", default="date", help="Date column name.")
@click.option("--amount-col", default="amount", help="Amount column name.")
@click.option("--desc-col", default="description", help="Description column name.")
@click.option("--ref-col", default="reference", help="Reference column name.")
@click.pass_context
@handle_errors
def import_statement(ctx, file, bank_name, account, mime_type, date_col, amount_col, desc_col, ref_col) -> None:
    """Upload a CSV, Excel or OFX bank statement."""
    path = Path(file)
    parser = BankStatementCSVParser(column_mapping={
        "date": date_col,
        "amount": amount_col,
        "description": desc_col,
        "reference": ref_col,
    })
    importer = StatementImporter(csv_parser=parser)
    statement = importer.import_bytes(
        path.read_bytes(),
        mime_type or guess_mime_type(path.name),
        bank_name=bank_name,
        account_number=account,
        filename=path.name,
    )
    ctx.obj["store"].add_statement(statement)
    click.echo(f"  Statement {statement.id} uploaded with {len(statement.transactions)} transactions")


@cli.command()
@click.option("--count", "-c", default=20, type=int, callback=validate_non_negative, help="Number of bank lines.")
@click.option("--seed", type=int, help="Random seed for reproducible data.")
@click.option(
    "--payments-out",
    type=click.Path(dir_okay=False),
    help="Write the matching payment transactions to this CSV file.",
)
@click.pass_context
@handle_errors
def generate(ctx, count: int, seed: Optional[int], payments_out: Optional[str]) -> None:
    """Create a synthetic statement (and optionally its payments)."""
    statement, payments = generate_sample_data(random.Random(seed), transaction_count=count)
    ctx.obj["store"].add_statement(statement)
    click.echo(f"  Generated statement {statement.id} with {len(statement.transactions)} transactions")

    if payments_out:
        pd.DataFrame([
            {
                "id": p.id,
                "amount": str(p.amount),
                "created_at": p.created_at.isoformat(),
                "currency": p.currency,
                "description": p.description,
                "booking_id": p.booking_id,
            }
            for p in payments
        ]).to_csv(payments_out, index=False)
        click.echo(f"  Wrote {len(payments)} payment transactions to {payments_out}")


@cli.command()
@click.pass_context
@handle_errors
def statements(ctx) -> None:
    """List statements and overall reconciliation progress."""
    store: StatementStore = ctx.obj["store"]
    overview = store.overview()

    click.echo("=" * 60)
    click.echo("  BANK STATEMENTS")
    click.echo("=" * 60)
    for statement in store.statements:
        click.echo(
            f"  {statement.id:<24} {statement.bank_name[:20]:<20} {statement.account_number:<9} "
            f"{statement.reconciliation_status.value:<8} "
            f"{statement.matched_count} matched / {statement.unmatched_count} unmatched"
        )
    click.echo("-" * 60)
    click.echo(f"  Total Statements:     {overview.total_statements}")
    click.echo(f"  Total Transactions:   {overview.total_transactions}")
    click.echo(f"  Matched:              {overview.matched_transactions}")
    click.echo(f"  Reconciliation Rate:  {overview.reconciliation_rate:.1f}%")


@cli.command()
@click.argument("statement_id")
@click.option("--search", "-s", default="", help="Filter by description or reference substring.")
@click.option(
    "--filter", "status_filter",
    type=click.Choice([f.value for f in TransactionFilter]),
    default=TransactionFilter.ALL.value,
    help="Show all, matched or unmatched transactions.",
)
@click.pass_context
@handle_errors
def show(ctx, statement_id: str, search: str, status_filter: str) -> None:
    """Show a statement's transactions."""
    store: StatementStore = ctx.obj["store"]
    statement = store.get_statement(statement_id)
    transactions = store.search_transactions(statement_id, search, TransactionFilter(status_filter))

    click.echo(f"  {statement.bank_name} - {statement.account_number} ({statement.reconciliation_status.value})")
    click.echo(
        f"  Matched: {statement.matched_count}  Unmatched: {statement.unmatched_count}  "
        f"Match Rate: {statement.reconciliation_rate:.1f}%"
    )
    click.echo("-" * 60)
    for txn in transactions:
        state = f"-> {txn.matched_transaction_id} ({txn.match_confidence}%)" if txn.matched else "unmatched"
        click.echo(
            f"  {txn.id:<28} {txn.date.strftime('%Y-%m-%d')} {txn.amount:>12,.2f} "
            f"{txn.description[:30]:<30} {state}"
        )


@cli.command()
@click.argument("statement_id")
@payments_option
@click.option(
    "--selection",
    type=click.Choice([s.value for s in CandidateSelection]),
    help="Candidate choice: first in ledger order, or best score.",
)
@click.option("--threshold", type=int, callback=validate_percentage, help="Auto-match threshold (default: 70).")
@click.option("--delay", type=float, callback=validate_non_negative, help="Artificial processing delay in seconds.")
@click.pass_context
@handle_errors
def reconcile(ctx, statement_id, payments, selection, threshold, delay) -> None:
    """Run auto-reconciliation on a statement."""
    settings: ReconciliationSettings = ctx.obj["settings"]
    if selection:
        settings.candidate_selection = CandidateSelection(selection)
    if threshold is not None:
        settings.auto_match_threshold = threshold
    if delay is not None:
        settings.processing_delay = delay
    settings.validate()

    store: StatementStore = ctx.obj["store"]
    engine = ReconciliationEngine(store, load_ledger(payments), settings)

    click.echo(
        f"\n  Reconciling {statement_id} (window: {settings.date_window_days}d, "
        f"tolerance: {settings.amount_tolerance}, threshold: {settings.auto_match_threshold})..."
    )
    run = asyncio.run(engine.run_auto_reconciliation(statement_id))
    statement = store.get_statement(statement_id)

    click.echo("\n" + "=" * 60)
    click.echo("  RECONCILIATION SUMMARY")
    click.echo("=" * 60)
    click.echo(f"  Newly Matched:        {run.matched_count}")
    click.echo(f"  Already Matched:      {run.skipped_matched}")
    click.echo(f"  No Candidates:        {run.without_candidates}")
    click.echo(f"  Below Threshold:      {run.below_threshold}")
    click.echo(f"  Status:               {statement.reconciliation_status.value}")
    click.echo(f"  Reconciliation Rate:  {format_rate(statement)}%")
    click.echo("=" * 60)


@cli.command()
@click.argument("bank_transaction_id")
@click.argument("payment_transaction_id")
@payments_option
@click.pass_context
@handle_errors
def match(ctx, bank_transaction_id, payment_transaction_id, payments) -> None:
    """Manually match a bank transaction to a payment."""
    engine = ReconciliationEngine(ctx.obj["store"], load_ledger(payments), ctx.obj["settings"])
    created = engine.manual_match(bank_transaction_id, payment_transaction_id)
    if created is None:
        click.echo("  Nothing matched: transaction or payment not found, or already matched")
    else:
        click.echo(f"  Manually matched {bank_transaction_id} -> {payment_transaction_id}")


@cli.command()
@click.argument("bank_transaction_id")
@click.pass_context
@handle_errors
def unmatch(ctx, bank_transaction_id) -> None:
    """Remove a bank transaction's match."""
    engine = ReconciliationEngine(ctx.obj["store"], InMemoryPaymentLedger(), ctx.obj["settings"])
    removed = engine.unmatch_transaction(bank_transaction_id)
    if removed is None:
        click.echo(f"  {bank_transaction_id} was not matched")
    else:
        click.echo(f"  Unmatched {bank_transaction_id} (was {removed.payment_transaction_id})")


@cli.command()
@click.argument("statement_id")
@click.option("--output-dir", "-o", default=".", type=click.Path(file_okay=False), help="Report directory.")
@click.option(
    "--format", "report_format",
    type=click.Choice(["json", "xlsx"]),
    default="json",
    help="Report format.",
)
@payments_option
@click.pass_context
@handle_errors
def export(ctx, statement_id, output_dir, report_format, payments) -> None:
    """Export a statement's reconciliation report."""
    store: StatementStore = ctx.obj["store"]
    if report_format == "xlsx":
        output_path = ExcelReportGenerator(load_ledger(payments)).generate(store, statement_id, output_dir)
    else:
        output_path = export_json_report(store, statement_id, output_dir)
    click.echo(f"\n  Report saved to: {output_path.absolute()}")


def _load_rules(rules_file: Optional[str]) -> RuleSet:
    return RuleSet.load(rules_file) if rules_file else default_rules()


@cli.command()
@click.option("--rules", "rules_file", type=click.Path(exists=True, dir_okay=False), help="JSON rules file.")
@handle_errors
def rules(rules_file: Optional[str]) -> None:
    """List matching rules by priority."""
    for rule in _load_rules(rules_file).rules:
        status = "enabled" if rule.enabled else "disabled"
        click.echo(f"  [{rule.priority:>3}] {rule.name} ({status})")
        click.echo(f"        {rule.description}")
        click.echo(
            f"        {len(rule.conditions)} conditions; actions: "
            f"{', '.join(a.type.value for a in rule.actions)}"
        )


@cli.command()
@click.argument("bank_transaction_id")
@click.argument("payment_transaction_id")
@payments_option
@click.option("--rules", "rules_file", type=click.Path(exists=True, dir_okay=False), help="JSON rules file.")
@click.pass_context
@handle_errors
def explain(ctx, bank_transaction_id, payment_transaction_id, payments, rules_file) -> None:
    """Show the confidence breakdown and rule outcomes for a pair."""
    store: StatementStore = ctx.obj["store"]
    located = store.find_transaction(bank_transaction_id)
    if located is None:
        raise NotFoundError(f"Bank transaction not found: {bank_transaction_id!r}")
    statement, bank_txn = located
    payment = load_ledger(payments).require_transaction(payment_transaction_id)

    index = statement.transactions.index(bank_txn)
    previous = statement.transactions[index + 1] if index + 1 < len(statement.transactions) else None

    breakdown = score_breakdown(bank_txn, payment)
    click.echo(f"  Amount:       {breakdown.amount}")
    click.echo(f"  Date:         {breakdown.date}")
    click.echo(f"  Reference:    {breakdown.reference}")
    click.echo(f"  Description:  {breakdown.description}")
    click.echo(f"  Confidence:   {breakdown.total}")
    click.echo("-" * 60)
    for evaluation in _load_rules(rules_file).evaluate(bank_txn, payment, previous):
        outcome = "fires" if evaluation.matched else "no"
        actions = ", ".join(a.type.value for a in evaluation.actions)
        click.echo(f"  {evaluation.rule.name:<40} {outcome} {actions}")


@cli.command()
@click.pass_context
@handle_errors
def verify(ctx) -> None:
    """Check match records and counters for consistency."""
    problems = ctx.obj["store"].check_consistency()
    if not problems:
        click.echo("  All statements consistent")
        return
    for problem in problems:
        click.echo(f"  {problem}", err=True)
    sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
