"""Upload entry point: raw bytes + MIME type -> BankStatement."""

import logging
import mimetypes
import re
from datetime import datetime
from typing import Callable, Optional

from bankrecon.engine.models import BankStatement
from bankrecon.errors import ParseError
from bankrecon.parsers.csv_parser import BankStatementCSVParser
from bankrecon.parsers.ofx_parser import OFXParser

logger = logging.getLogger(__name__)

CSV_TYPES = {"text/csv", "application/csv", "text/plain"}
EXCEL_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
OFX_TYPES = {"application/x-ofx", "application/ofx", "application/vnd.intu.qfx", "application/x-qfx"}
PDF_TYPES = {"application/pdf"}

_EXTENSION_TYPES = {
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".ofx": "application/x-ofx",
    ".qfx": "application/vnd.intu.qfx",
    ".pdf": "application/pdf",
}


def mask_account_number(account_number: str) -> str:
    """Keep only the last four digits: '1000123457890' -> '****7890'."""
    digits = re.sub(r"\D", "", account_number or "")
    if not digits:
        return account_number or ""
    return f"****{digits[-4:]}"


def guess_mime_type(filename: str) -> Optional[str]:
    """MIME type from a file name, covering the statement formats we read."""
    lowered = filename.lower()
    for suffix, mime in _EXTENSION_TYPES.items():
        if lowered.endswith(suffix):
            return mime
    return mimetypes.guess_type(filename)[0]


class StatementImporter:
    """Build pending BankStatements from uploaded statement files."""

    def __init__(
        self,
        csv_parser: Optional[BankStatementCSVParser] = None,
        ofx_parser: Optional[OFXParser] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.csv_parser = csv_parser or BankStatementCSVParser()
        self.ofx_parser = ofx_parser or OFXParser()
        self.clock = clock

    def new_statement_id(self) -> str:
        return f"stmt_{int(self.clock().timestamp() * 1000)}"

    def import_bytes(
        self,
        data: bytes,
        mime_type: Optional[str],
        bank_name: str,
        account_number: str = "",
        filename: Optional[str] = None,
        statement_id: Optional[str] = None,
    ) -> BankStatement:
        """
        Parse an uploaded statement.

        Args:
            data: Raw file content.
            mime_type: Declared MIME type; guessed from filename when missing.
            bank_name: Name of the issuing bank.
            account_number: Account number; stored masked.
            filename: Original file name, used for MIME guessing and logging.
            statement_id: Id for the new statement; generated when omitted.

        Returns:
            A BankStatement in pending status with unmatched transactions.

        Raises:
            ParseError: If the type is unsupported or the content is unusable.
        """
        if not mime_type and filename:
            mime_type = guess_mime_type(filename)
        mime_type = (mime_type or "").split(";")[0].strip().lower()
        statement_id = statement_id or self.new_statement_id()
        now = self.clock()

        statement_date = now
        if mime_type in OFX_TYPES:
            parsed = self.ofx_parser.parse_bytes(data, statement_id)
            transactions = parsed.transactions
            account_number = account_number or parsed.account_id
            statement_date = parsed.closing_date or now
        elif mime_type in CSV_TYPES:
            transactions = self.csv_parser.parse_bytes(data, statement_id)
        elif mime_type in EXCEL_TYPES:
            transactions = self.csv_parser.parse_bytes(data, statement_id, excel=True)
        elif mime_type in PDF_TYPES:
            raise ParseError("PDF statements are not supported; upload CSV, Excel or OFX")
        else:
            raise ParseError(f"Unsupported statement type: {mime_type or 'unknown'}")

        statement = BankStatement(
            id=statement_id,
            bank_name=bank_name,
            account_number=mask_account_number(account_number),
            statement_date=statement_date,
            uploaded_at=now,
            transactions=transactions,
            unmatched_count=len(transactions),
        )
        logger.info(
            "Imported %s (%s) as %s with %d transactions",
            filename or "upload", mime_type, statement_id, len(transactions),
        )
        return statement
