"""Excel workbook export of a statement's reconciliation state."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    MatchType,
    ReconciliationMatch,
)
from bankrecon.ledger.payment_ledger import PaymentLedger
from bankrecon.reports.json_report import format_rate, report_filename
from bankrecon.store.statement_store import StatementStore

BRAND_COLOR = "1F4E79"
AMOUNT_FORMAT = "#,##0.00"
MAX_COLUMN_WIDTH = 50
HEALTHY_RATE = 95

MatchedPair = Tuple[BankTransaction, ReconciliationMatch]


def _solid(color: str) -> PatternFill:
    return PatternFill(start_color=color, end_color=color, fill_type="solid")


class ExcelReportGenerator:
    """Write Summary, Matched, Unmatched and Discrepancies tabs for one statement."""

    HEADER_FILL = _solid(BRAND_COLOR)
    HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
    TITLE_FONT = Font(name="Calibri", size=16, bold=True, color=BRAND_COLOR)
    VALUE_FONT = Font(name="Calibri", size=12, bold=True)
    GOOD_FILL = _solid("C6EFCE")
    BAD_FILL = _solid("FFC7CE")
    REVIEW_FILL = _solid("FFEB9C")
    GRID = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )

    def __init__(self, ledger: Optional[PaymentLedger] = None):
        """
        Args:
            ledger: Payment source used to show the system side of each match.
                Without it the payment date and amount columns stay empty.
        """
        self.ledger = ledger

    def generate(self, store: StatementStore, statement_id: str, output_dir: str | Path) -> Path:
        """
        Write reconciliation_report_<statementId>.xlsx into output_dir.

        Raises:
            NotFoundError: If the statement does not exist.
        """
        statement = store.get_statement(statement_id)
        matches = {m.bank_transaction_id: m for m in store.matches(statement.id)}

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / report_filename(statement.id, "xlsx")

        wb = Workbook()
        self._summary(wb.active, statement, list(matches.values()))
        self._matched(
            wb.create_sheet("Matched"),
            [(t, matches[t.id]) for t in statement.transactions if t.id in matches],
        )
        self._unmatched(wb.create_sheet("Unmatched"), statement.unmatched_transactions())
        self._discrepancies(wb.create_sheet("Discrepancies"), list(matches.values()))

        wb.save(str(output_path))
        return output_path

    def _summary(self, ws: Worksheet, statement: BankStatement, matches: List[ReconciliationMatch]) -> None:
        ws.title = "Summary"
        ws.sheet_properties.tabColor = BRAND_COLOR

        ws.append([f"Reconciliation - {statement.bank_name} {statement.account_number}"])
        ws["A1"].font = self.TITLE_FONT
        ws.append([f"Statement {statement.id}, generated {datetime.now():%Y-%m-%d %H:%M}"])
        ws.append([])
        ws.append(["Metric", "Value"])
        self._style_header(ws, ws.max_row, 2)

        per_type = {kind: 0 for kind in MatchType}
        for match in matches:
            per_type[match.match_type] += 1

        rate = format_rate(statement)
        metrics = [
            ("Statement", statement.id),
            ("Status", statement.reconciliation_status.value),
            ("Reconciliation Rate", f"{rate}%"),
            ("Total Transactions", str(len(statement.transactions))),
            ("Matched", str(statement.matched_count)),
            ("Exact Matches", str(per_type[MatchType.EXACT])),
            ("Fuzzy Matches", str(per_type[MatchType.FUZZY])),
            ("Manual Matches", str(per_type[MatchType.MANUAL])),
            ("Unmatched", str(statement.unmatched_count)),
            ("Discrepancies", str(statement.discrepancies)),
        ]
        value_cells = {}
        for label, value in metrics:
            ws.append([label, value])
            ws.cell(row=ws.max_row, column=1).font = Font(bold=True)
            value_cells[label] = ws.cell(row=ws.max_row, column=2)
            value_cells[label].font = self.VALUE_FONT

        value_cells["Reconciliation Rate"].fill = self.GOOD_FILL if float(rate) >= HEALTHY_RATE else self.BAD_FILL
        if statement.unmatched_count:
            value_cells["Unmatched"].fill = self.BAD_FILL

        ws.column_dimensions["A"].width = 24
        ws.column_dimensions["B"].width = 32

    def _matched(self, ws: Worksheet, pairs: List[MatchedPair]) -> None:
        ws.sheet_properties.tabColor = "00B050"
        headers = [
            "Bank Date", "Bank Amount", "Bank Description", "Bank Ref",
            "Payment ID", "Payment Date", "Payment Amount",
            "Match Type", "Confidence", "Criteria", "Discrepancies",
        ]
        self._start_table(ws, headers)

        for txn, match in pairs:
            payment = self.ledger.get_transaction(match.payment_transaction_id) if self.ledger is not None else None
            ws.append([
                f"{txn.date:%Y-%m-%d}",
                float(txn.amount),
                txn.description[:50],
                txn.reference,
                match.payment_transaction_id,
                f"{payment.created_at:%Y-%m-%d}" if payment is not None else None,
                float(payment.amount) if payment is not None else None,
                match.match_type.value,
                match.confidence,
                ", ".join(match.match_criteria),
                len(match.discrepancies),
            ])
            fill = self.REVIEW_FILL if match.match_type == MatchType.MANUAL else self.GOOD_FILL
            self._style_row(ws, len(headers), fill, amount_columns=(2, 7))

        self._fit_columns(ws, len(headers))

    def _unmatched(self, ws: Worksheet, transactions: List[BankTransaction]) -> None:
        ws.sheet_properties.tabColor = "FF0000"
        headers = ["Date", "Amount", "Description", "Reference", "Type", "Flags"]
        self._start_table(ws, headers)

        for txn in transactions:
            ws.append([
                f"{txn.date:%Y-%m-%d}",
                float(txn.amount),
                txn.description[:80],
                txn.reference,
                txn.type.value,
                ", ".join(txn.flags),
            ])
            self._style_row(ws, len(headers), self.BAD_FILL, amount_columns=(2,))

        self._fit_columns(ws, len(headers))

    def _discrepancies(self, ws: Worksheet, matches: List[ReconciliationMatch]) -> None:
        ws.sheet_properties.tabColor = "FFC000"
        headers = ["Bank Transaction", "Payment ID", "Field", "Bank Value", "System Value", "Severity"]
        self._start_table(ws, headers)

        for match in matches:
            for item in match.discrepancies:
                ws.append([
                    match.bank_transaction_id,
                    match.payment_transaction_id,
                    item.field,
                    str(item.bank_value),
                    str(item.system_value),
                    item.severity.value,
                ])
                self._style_row(ws, len(headers), self.REVIEW_FILL)

        self._fit_columns(ws, len(headers))

    # Styling

    def _start_table(self, ws: Worksheet, headers: List[str]) -> None:
        """Header row with a frozen pane and an auto-filter."""
        ws.append(headers)
        self._style_header(ws, 1, len(headers))
        ws.freeze_panes = "A2"
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"

    def _style_header(self, ws: Worksheet, row: int, width: int) -> None:
        for column in range(1, width + 1):
            cell = ws.cell(row=row, column=column)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = Alignment(horizontal="center")
            cell.border = self.GRID

    def _style_row(self, ws: Worksheet, width: int, fill: PatternFill, amount_columns: Sequence[int] = ()) -> None:
        """Fill the last appended row and format its amount cells."""
        row = ws.max_row
        for column in range(1, width + 1):
            ws.cell(row=row, column=column).fill = fill
        for column in amount_columns:
            ws.cell(row=row, column=column).number_format = AMOUNT_FORMAT

    def _fit_columns(self, ws: Worksheet, width: int) -> None:
        """Size each column to its longest value, capped."""
        for column in range(1, width + 1):
            values = [
                len(str(cell.value))
                for (cell,) in ws.iter_rows(min_col=column, max_col=column)
                if cell.value is not None
            ]
            ws.column_dimensions[get_column_letter(column)].width = min(max(values, default=0) + 4, MAX_COLUMN_WIDTH)
