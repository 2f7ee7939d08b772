"""JSON-ready dict conversion for statements and matches.

Keys are camelCase, dates are ISO-8601 strings and amounts are decimal strings.
Discrepancy values carry an explicit type tag so they come back with their type.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    Discrepancy,
    MatchType,
    ReconciliationMatch,
    ReconciliationStatus,
    ScalarValue,
    Severity,
    TransactionType,
    to_naive_utc,
)
from bankrecon.errors import ValidationError


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    try:
        return to_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as e:
        raise ValidationError(f"Invalid ISO-8601 date: {value!r}") from e


def _parse_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e


def encode_value(value: ScalarValue) -> Dict[str, Any]:
    """Wrap a scalar in a {"type", "value"} tag."""
    if isinstance(value, bool):
        return {"type": "boolean", "value": value}
    if isinstance(value, int):
        return {"type": "integer", "value": value}
    if isinstance(value, Decimal):
        return {"type": "decimal", "value": str(value)}
    return {"type": "string", "value": str(value)}


def decode_value(data: Any) -> ScalarValue:
    if not isinstance(data, dict):
        return data
    kind = data.get("type")
    value = data.get("value")
    if kind == "boolean":
        return bool(value)
    if kind == "integer":
        return int(value)
    if kind == "decimal":
        return _parse_decimal(value)
    return str(value)


def transaction_to_dict(txn: BankTransaction) -> Dict[str, Any]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "description": txn.description,
        "reference": txn.reference,
        "amount": str(txn.amount),
        "type": txn.type.value,
        "balance": str(txn.balance),
        "matched": txn.matched,
        "matchedTransactionId": txn.matched_transaction_id,
        "matchConfidence": txn.match_confidence,
        "flags": list(txn.flags),
    }


def transaction_from_dict(data: Dict[str, Any]) -> BankTransaction:
    amount = _parse_decimal(data["amount"])
    matched = bool(data.get("matched", False))
    return BankTransaction(
        id=str(data["id"]),
        date=_parse_datetime(data["date"]),
        description=data.get("description") or "",
        reference=data.get("reference") or "",
        amount=amount,
        balance=_parse_decimal(data.get("balance", "0")),
        type=TransactionType(data["type"]) if data.get("type") else None,
        flags=list(data.get("flags") or []),
        matched=matched,
        matched_transaction_id=data.get("matchedTransactionId") if matched else None,
        match_confidence=data.get("matchConfidence") if matched else None,
    )


def statement_to_dict(statement: BankStatement) -> Dict[str, Any]:
    return {
        "id": statement.id,
        "bankName": statement.bank_name,
        "accountNumber": statement.account_number,
        "statementDate": statement.statement_date.isoformat(),
        "uploadedAt": statement.uploaded_at.isoformat(),
        "transactions": [transaction_to_dict(t) for t in statement.transactions],
        "reconciliationStatus": statement.reconciliation_status.value,
        "matchedCount": statement.matched_count,
        "unmatchedCount": statement.unmatched_count,
        "discrepancies": statement.discrepancies,
    }


def statement_from_dict(data: Dict[str, Any]) -> BankStatement:
    """Rebuild a statement; counters are recomputed by the store after loading."""
    try:
        return BankStatement(
            id=str(data["id"]),
            bank_name=data.get("bankName", ""),
            account_number=data.get("accountNumber", ""),
            statement_date=_parse_datetime(data["statementDate"]),
            uploaded_at=_parse_datetime(data["uploadedAt"]),
            transactions=[transaction_from_dict(t) for t in data.get("transactions", [])],
            reconciliation_status=ReconciliationStatus(data.get("reconciliationStatus", "pending")),
            matched_count=int(data.get("matchedCount", 0)),
            unmatched_count=int(data.get("unmatchedCount", 0)),
            discrepancies=int(data.get("discrepancies", 0)),
        )
    except ValidationError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Unreadable statement record: {e}") from e


def discrepancy_to_dict(discrepancy: Discrepancy) -> Dict[str, Any]:
    return {
        "field": discrepancy.field,
        "bankValue": encode_value(discrepancy.bank_value),
        "systemValue": encode_value(discrepancy.system_value),
        "severity": discrepancy.severity.value,
    }


def match_to_dict(match: ReconciliationMatch) -> Dict[str, Any]:
    return {
        "bankTransactionId": match.bank_transaction_id,
        "paymentTransactionId": match.payment_transaction_id,
        "confidence": match.confidence,
        "matchType": match.match_type.value,
        "matchCriteria": list(match.match_criteria),
        "discrepancies": [discrepancy_to_dict(d) for d in match.discrepancies],
        "createdAt": match.created_at.isoformat() if match.created_at else None,
    }


def match_from_dict(data: Dict[str, Any]) -> ReconciliationMatch:
    try:
        return ReconciliationMatch(
            bank_transaction_id=str(data["bankTransactionId"]),
            payment_transaction_id=str(data["paymentTransactionId"]),
            confidence=int(data["confidence"]),
            match_type=MatchType(data["matchType"]),
            match_criteria=tuple(data.get("matchCriteria") or ()),
            discrepancies=tuple(
                Discrepancy(
                    field=d["field"],
                    bank_value=decode_value(d.get("bankValue")),
                    system_value=decode_value(d.get("systemValue")),
                    severity=Severity(d.get("severity", "low")),
                )
                for d in data.get("discrepancies") or ()
            ),
            created_at=_parse_datetime(data["createdAt"]) if data.get("createdAt") else None,
        )
    except ValidationError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Unreadable match record: {e}") from e
