"""CSV/Excel parsers for bank statement lines and payment ledger exports."""

import io
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from bankrecon.engine.models import BankTransaction, PaymentTransaction, TransactionType, to_naive_utc
from bankrecon.errors import ParseError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xls")


class TabularParser:
    """Shared column mapping, date and amount handling for tabular files."""

    DEFAULT_MAPPING: Dict[str, str] = {}
    REQUIRED_FIELDS: List[str] = []

    # Common date formats to try
    DATE_FORMATS = [
        "%Y-%m-%d",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%d/%m/%Y",
        "%m/%d/%Y",
        "%d-%m-%Y",
        "%Y/%m/%d",
        "%d.%m.%Y",
    ]

    def __init__(self, column_mapping: Optional[Dict[str, str]] = None):
        """
        Initialize parser with optional custom column mapping.

        Args:
            column_mapping: Dict mapping our field names to file column names.
                          Example: {"date": "Posting Date", "amount": "Value"}
        """
        self.column_mapping = {**self.DEFAULT_MAPPING, **(column_mapping or {})}

    def column(self, field: str) -> str:
        return self.column_mapping.get(field, field)

    def read_bytes(self, data: bytes, excel: bool = False) -> pd.DataFrame:
        """Read raw file content into a string-typed DataFrame."""
        if not data or not data.strip():
            raise ParseError("File is empty")
        try:
            if excel:
                df = pd.read_excel(io.BytesIO(data), dtype=str)
            else:
                df = pd.read_csv(io.BytesIO(data), dtype=str, skipinitialspace=True)
        except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ParseError(f"Could not read file: {e}") from e
        df.columns = [str(c).strip() for c in df.columns]
        return df

    def read_path(self, file_path: str | Path) -> pd.DataFrame:
        """
        Read a CSV or Excel file based on its extension.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ParseError: If the format is unsupported or unreadable.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix == ".csv":
            return self.read_bytes(file_path.read_bytes())
        elif suffix in EXCEL_SUFFIXES:
            return self.read_bytes(file_path.read_bytes(), excel=True)
        else:
            raise ParseError(f"Unsupported file format: {suffix}. Use .csv, .xlsx, or .xls")

    def validate_columns(self, df: pd.DataFrame) -> None:
        """
        Validate that required columns exist in the dataframe.

        Raises:
            ParseError: If required columns are missing.
        """
        missing = []

        for field in self.REQUIRED_FIELDS:
            col_name = self.column(field)
            if col_name not in df.columns:
                missing.append(f"{field} (expected column: '{col_name}')")

        if missing:
            available = ", ".join(df.columns.tolist())
            raise ParseError(
                f"Missing required columns: {', '.join(missing)}. "
                f"Available columns: {available}. "
                f"Use column_mapping parameter to map your columns."
            )

    def cell(self, row: pd.Series, field: str) -> str:
        """Return a stripped cell value, or "" for missing columns and blanks."""
        col_name = self.column(field)
        if col_name not in row.index or pd.isna(row[col_name]):
            return ""
        value = str(row[col_name]).strip()
        return "" if value.lower() == "nan" else value

    def parse_date(self, value) -> datetime:
        """Parse date from various formats. Offset-aware values come back as naive UTC."""
        if isinstance(value, pd.Timestamp):
            return to_naive_utc(value.to_pydatetime())
        if isinstance(value, datetime):
            return to_naive_utc(value)

        str_value = str(value).strip()

        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(str_value, fmt)
            except ValueError:
                continue

        try:
            return to_naive_utc(datetime.fromisoformat(str_value.replace("Z", "+00:00")))
        except ValueError:
            raise ValueError(f"Could not parse date: {value!r}")

    def parse_amount(self, value) -> Decimal:
        """Parse amount handling various number formats."""
        if isinstance(value, (int, float)):
            return Decimal(str(value))

        str_value = str(value).strip()
        if not str_value:
            raise ValueError("Missing amount")

        # Handle European format: 1.234,56
        if "," in str_value and "." in str_value:
            if str_value.rindex(",") > str_value.rindex("."):
                str_value = str_value.replace(".", "").replace(",", ".")
            else:
                str_value = str_value.replace(",", "")

        # Handle comma as decimal separator: 1234,56
        elif "," in str_value:
            str_value = str_value.replace(",", ".")

        # Remove currency symbols and whitespace
        for symbol in ("ETB", "Br", "$", "€", "£"):
            str_value = str_value.replace(symbol, "")

        try:
            return Decimal(str_value.strip())
        except InvalidOperation:
            raise ValueError(f"Could not parse amount: {value!r}")

    def parse_type(self, value: str) -> TransactionType:
        """Parse transaction type from string."""
        normalized = value.lower().strip()
        credit_words = {"credit", "cr", "c", "deposit", "receipt"}
        debit_words = {"debit", "dr", "d", "withdrawal", "charge", "fee"}

        if normalized in credit_words:
            return TransactionType.CREDIT
        elif normalized in debit_words:
            return TransactionType.DEBIT
        else:
            raise ValueError(f"Unknown transaction type: {value!r}")


class BankStatementCSVParser(TabularParser):
    """Turn an uploaded CSV/Excel bank statement into BankTransaction objects."""

    DEFAULT_MAPPING: Dict[str, str] = {
        "date": "date",
        "amount": "amount",
        "description": "description",
        "reference": "reference",
        "balance": "balance",
        "type": "type",
    }
    REQUIRED_FIELDS = ["date", "amount"]

    def __init__(
        self,
        column_mapping: Optional[Dict[str, str]] = None,
        opening_balance: Decimal = Decimal("0"),
    ):
        super().__init__(column_mapping)
        self.opening_balance = Decimal(str(opening_balance))

    def parse_bytes(self, data: bytes, id_prefix: str, excel: bool = False) -> List[BankTransaction]:
        """
        Parse file content into bank transactions.

        Args:
            data: Raw CSV or Excel bytes.
            id_prefix: Prefix for generated transaction ids, usually the statement id.
            excel: Whether data is an Excel workbook.

        Returns:
            Bank transactions in file order.

        Raises:
            ParseError: If the content is empty, lacks required columns or has bad rows.
        """
        df = self.read_bytes(data, excel=excel)
        self.validate_columns(df)

        transactions: List[BankTransaction] = []
        errors: List[str] = []
        balance = self.opening_balance

        for position, (idx, row) in enumerate(df.iterrows(), start=1):
            try:
                txn = self._convert_row(row, f"{id_prefix}_tx_{position:04d}")
            except (ValueError, InvalidOperation) as e:
                errors.append(f"row {idx + 2}: {e}")
                continue
            if self.cell(row, "balance"):
                balance = txn.balance
            else:
                balance += txn.amount
                txn.balance = balance
            transactions.append(txn)

        if errors:
            raise ParseError(f"Invalid statement rows: {'; '.join(errors[:5])}")
        if not transactions:
            raise ParseError("Statement contains no transactions")
        return transactions

    def _convert_row(self, row: pd.Series, txn_id: str) -> BankTransaction:
        """Convert a single row to a BankTransaction."""
        txn_date = self.parse_date(self.cell(row, "date"))
        amount = self.parse_amount(self.cell(row, "amount"))

        raw_type = self.cell(row, "type")
        if raw_type:
            txn_type = self.parse_type(raw_type)
            # Unsigned amounts take their sign from the type column
            if txn_type == TransactionType.DEBIT and amount > 0:
                amount = -amount
        else:
            txn_type = TransactionType.for_amount(amount)

        raw_balance = self.cell(row, "balance")
        return BankTransaction(
            id=txn_id,
            date=txn_date,
            description=self.cell(row, "description"),
            reference=self.cell(row, "reference"),
            amount=amount,
            balance=self.parse_amount(raw_balance) if raw_balance else Decimal("0"),
            type=txn_type,
        )


class PaymentCSVParser(TabularParser):
    """Parse a payment service export into PaymentTransaction objects."""

    DEFAULT_MAPPING: Dict[str, str] = {
        "id": "id",
        "amount": "amount",
        "created_at": "created_at",
        "currency": "currency",
        "description": "description",
        "booking_id": "booking_id",
    }
    REQUIRED_FIELDS = ["id", "amount", "created_at"]

    def parse(self, file_path: str | Path) -> List[PaymentTransaction]:
        """
        Parse a CSV or Excel payment export.

        Rows that cannot be parsed are skipped with a warning.
        """
        df = self.read_path(file_path)
        self.validate_columns(df)

        payments: List[PaymentTransaction] = []
        for idx, row in df.iterrows():
            try:
                payments.append(self._convert_row(row))
            except (ValueError, InvalidOperation) as e:
                # Log warning but continue processing
                logger.warning("Skipping payment row %s: %s", idx, e)
        return payments

    def _convert_row(self, row: pd.Series) -> PaymentTransaction:
        payment_id = self.cell(row, "id")
        if not payment_id:
            raise ValueError("Missing payment id")
        return PaymentTransaction(
            id=payment_id,
            amount=abs(self.parse_amount(self.cell(row, "amount"))),
            created_at=self.parse_date(self.cell(row, "created_at")),
            currency=self.cell(row, "currency") or "ETB",
            description=self.cell(row, "description"),
            booking_id=self.cell(row, "booking_id") or None,
        )
