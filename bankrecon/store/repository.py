"""Persistence backends for the statement store."""

import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from bankrecon.engine.models import BankStatement, ReconciliationMatch
from bankrecon.errors import ValidationError
from bankrecon.store.serialization import (
    match_from_dict,
    match_to_dict,
    statement_from_dict,
    statement_to_dict,
)

logger = logging.getLogger(__name__)

STATEMENTS_KEY = "bank-statements"
MATCHES_KEY = "reconciliation-matches"

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")

Snapshot = Tuple[List[BankStatement], List[ReconciliationMatch]]


class StatementRepository(ABC):
    """Loads and saves statements together with their reconciliation matches."""

    @abstractmethod
    def load(self) -> Snapshot:
        """Return all persisted statements and matches."""

    @abstractmethod
    def save(
        self,
        statements: Sequence[BankStatement],
        matches: Sequence[ReconciliationMatch],
    ) -> None:
        """Persist a full snapshot."""

    @abstractmethod
    def save_statement(
        self,
        statement: BankStatement,
        matches: Sequence[ReconciliationMatch],
        all_statements: Sequence[BankStatement],
        all_matches: Sequence[ReconciliationMatch],
    ) -> None:
        """
        Persist one changed statement.

        Args:
            statement: The statement that changed.
            matches: Matches referencing the statement's transactions.
            all_statements: Every statement, for backends that write a single blob.
            all_matches: Every match, for backends that write a single blob.
        """


def _atomic_write_json(path: Path, payload: Any) -> None:
    """Write JSON to a temp file in the same directory and rename it over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Corrupt state file {path}: {e}") from e


class InMemoryStatementRepository(StatementRepository):
    """Keeps serialized snapshots in memory so callers never share live objects."""

    def __init__(self):
        self._statements: Dict[str, Dict[str, Any]] = {}
        self._matches: Dict[str, List[Dict[str, Any]]] = {}
        self.save_count = 0

    def load(self) -> Snapshot:
        statements = [statement_from_dict(data) for data in self._statements.values()]
        matches = [
            match_from_dict(data)
            for records in self._matches.values()
            for data in records
        ]
        return statements, matches

    def save(self, statements, matches) -> None:
        self._statements.clear()
        self._matches.clear()
        by_statement = _group_matches(statements, matches)
        for statement in statements:
            self._store(statement, by_statement.get(statement.id, []))

    def save_statement(self, statement, matches, all_statements, all_matches) -> None:
        self._store(statement, matches)

    def _store(self, statement: BankStatement, matches: Sequence[ReconciliationMatch]) -> None:
        self._statements[statement.id] = statement_to_dict(statement)
        self._matches[statement.id] = [match_to_dict(m) for m in matches]
        self.save_count += 1


class BlobStatementRepository(StatementRepository):
    """
    Key-value layout: every statement in one "bank-statements" blob and every match
    in one "reconciliation-matches" blob. Any change rewrites the whole blob.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self) -> Snapshot:
        statements: List[BankStatement] = []
        matches: List[ReconciliationMatch] = []
        if self._path(STATEMENTS_KEY).exists():
            statements = [statement_from_dict(d) for d in _read_json(self._path(STATEMENTS_KEY))]
        if self._path(MATCHES_KEY).exists():
            matches = [match_from_dict(d) for d in _read_json(self._path(MATCHES_KEY))]
        return statements, matches

    def save(self, statements, matches) -> None:
        _atomic_write_json(self._path(STATEMENTS_KEY), [statement_to_dict(s) for s in statements])
        _atomic_write_json(self._path(MATCHES_KEY), [match_to_dict(m) for m in matches])

    def save_statement(self, statement, matches, all_statements, all_matches) -> None:
        self.save(all_statements, all_matches)


class PerStatementRepository(StatementRepository):
    """One JSON file per statement holding its transactions and matches."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory) / "statements"

    def _path(self, statement_id: str) -> Path:
        if not _SAFE_ID.match(statement_id):
            raise ValidationError(f"Statement id not usable as a file name: {statement_id!r}")
        return self.directory / f"{statement_id}.json"

    def load(self) -> Snapshot:
        statements: List[BankStatement] = []
        matches: List[ReconciliationMatch] = []
        if not self.directory.exists():
            return statements, matches

        for path in sorted(self.directory.glob("*.json")):
            record = _read_json(path)
            statements.append(statement_from_dict(record["statement"]))
            matches.extend(match_from_dict(m) for m in record.get("matches", []))

        statements.sort(key=lambda s: s.uploaded_at)
        logger.debug("Loaded %d statements from %s", len(statements), self.directory)
        return statements, matches

    def save(self, statements, matches) -> None:
        by_statement = _group_matches(statements, matches)
        for statement in statements:
            self._write(statement, by_statement.get(statement.id, []))

    def save_statement(self, statement, matches, all_statements, all_matches) -> None:
        self._write(statement, matches)

    def _write(self, statement: BankStatement, matches: Sequence[ReconciliationMatch]) -> None:
        _atomic_write_json(self._path(statement.id), {
            "statement": statement_to_dict(statement),
            "matches": [match_to_dict(m) for m in matches],
        })


def _group_matches(
    statements: Sequence[BankStatement],
    matches: Sequence[ReconciliationMatch],
) -> Dict[str, List[ReconciliationMatch]]:
    owner = {t.id: s.id for s in statements for t in s.transactions}
    grouped: Dict[str, List[ReconciliationMatch]] = {}
    for match in matches:
        statement_id = owner.get(match.bank_transaction_id)
        if statement_id is None:
            logger.warning("Dropping match for unknown bank transaction %s", match.bank_transaction_id)
            continue
        grouped.setdefault(statement_id, []).append(match)
    return grouped
