"""Matching rules: prioritized condition/action policy shown to operators.

Rules describe intended matching policy. The auto-reconciliation pass is a fixed
procedure and does not branch on them; RuleSet.evaluate reports which enabled rules
would fire for a given pair so operators can compare policy against outcomes.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from bankrecon.engine.models import BankTransaction, PaymentTransaction, ScalarValue
from bankrecon.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

FieldValue = Union[ScalarValue, datetime, None]


class ConditionOperator(Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    AMOUNT_RANGE = "amount_range"


class ActionType(Enum):
    AUTO_MATCH = "auto_match"
    FLAG = "flag"
    IGNORE = "ignore"
    MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class RuleCondition:
    """Compare a bank transaction field with a literal or a payment./previous. reference."""
    field: str
    operator: ConditionOperator
    value: ScalarValue
    tolerance: Optional[Decimal] = None


@dataclass(frozen=True)
class RuleAction:
    type: ActionType
    parameters: Dict[str, ScalarValue] = field(default_factory=dict)


@dataclass
class MatchingRule:
    id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)


@dataclass
class RuleEvaluation:
    """Whether a rule's conditions all hold for one pair."""
    rule: MatchingRule
    matched: bool
    failed_conditions: List[RuleCondition] = field(default_factory=list)

    @property
    def actions(self) -> List[RuleAction]:
        return list(self.rule.actions) if self.matched else []


def _bank_field(txn: BankTransaction, name: str) -> FieldValue:
    if name == "amount":
        return txn.abs_amount
    if name == "date":
        return txn.date
    if name in ("reference", "description"):
        return getattr(txn, name)
    if name == "type":
        return txn.type.value
    return None


def _payment_field(payment: PaymentTransaction, name: str) -> FieldValue:
    if name == "createdAt":
        name = "created_at"
    return getattr(payment, name, None)


def _resolve(
    value: ScalarValue,
    payment: Optional[PaymentTransaction],
    previous: Optional[BankTransaction],
) -> FieldValue:
    """Turn "payment.<field>" / "previous.<field>" references into values."""
    if not isinstance(value, str):
        return value
    source, _, name = value.partition(".")
    if source == "payment" and name:
        return _payment_field(payment, name) if payment is not None else None
    if source == "previous" and name:
        return _bank_field(previous, name) if previous is not None else None
    return value


def _as_decimal(value: FieldValue) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None or isinstance(value, datetime):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def condition_holds(
    condition: RuleCondition,
    bank_txn: BankTransaction,
    payment: Optional[PaymentTransaction] = None,
    previous: Optional[BankTransaction] = None,
) -> bool:
    """Evaluate one condition; unresolved references make it false."""
    actual = _bank_field(bank_txn, condition.field)
    expected = _resolve(condition.value, payment, previous)
    if actual is None or expected is None:
        return False

    op = condition.operator
    tolerance = condition.tolerance or Decimal("0")

    if op == ConditionOperator.AMOUNT_RANGE:
        if isinstance(actual, datetime) and isinstance(expected, datetime):
            return abs((actual.date() - expected.date()).days) <= tolerance
        a, b = _as_decimal(actual), _as_decimal(expected)
        if a is None or b is None:
            return False
        return abs(a - b) <= tolerance * abs(b)

    if op == ConditionOperator.EQUALS:
        a, b = _as_decimal(actual), _as_decimal(expected)
        if a is not None and b is not None:
            return abs(a - b) <= tolerance
        if isinstance(actual, datetime) and isinstance(expected, datetime):
            return actual.date() == expected.date()
        return str(actual) == str(expected)

    text, needle = str(actual).lower(), str(expected).lower()
    if op == ConditionOperator.CONTAINS:
        return bool(needle) and needle in text
    if op == ConditionOperator.STARTS_WITH:
        return text.startswith(needle)
    if op == ConditionOperator.ENDS_WITH:
        return text.endswith(needle)
    if op == ConditionOperator.REGEX:
        try:
            return re.search(str(expected), str(actual)) is not None
        except re.error as e:
            raise ValidationError(f"Invalid regex in rule condition: {expected!r}") from e
    return False


class RuleSet:
    """Ordered collection of matching rules, highest priority first."""

    def __init__(self, rules: Iterable[MatchingRule] = ()):
        self._rules: Dict[str, MatchingRule] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: MatchingRule) -> None:
        if rule.id in self._rules:
            raise ValidationError(f"Duplicate rule id: {rule.id!r}")
        self._rules[rule.id] = rule

    @property
    def rules(self) -> List[MatchingRule]:
        # sorted() is stable, so equal priorities keep insertion order
        return sorted(self._rules.values(), key=lambda r: r.priority, reverse=True)

    def enabled_rules(self) -> List[MatchingRule]:
        return [r for r in self.rules if r.enabled]

    def get(self, rule_id: str) -> MatchingRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise NotFoundError(f"Rule not found: {rule_id!r}") from None

    def set_enabled(self, rule_id: str, enabled: bool) -> MatchingRule:
        rule = self.get(rule_id)
        rule.enabled = enabled
        return rule

    def evaluate(
        self,
        bank_txn: BankTransaction,
        payment: Optional[PaymentTransaction] = None,
        previous: Optional[BankTransaction] = None,
    ) -> List[RuleEvaluation]:
        """Evaluate every enabled rule in priority order."""
        results = []
        for rule in self.enabled_rules():
            failed = [
                c for c in rule.conditions
                if not condition_holds(c, bank_txn, payment, previous)
            ]
            results.append(RuleEvaluation(rule=rule, matched=not failed, failed_conditions=failed))
        return results

    def __len__(self) -> int:
        return len(self._rules)

    # Serialization

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": rule.id,
                "name": rule.name,
                "description": rule.description,
                "enabled": rule.enabled,
                "priority": rule.priority,
                "conditions": [
                    {
                        "field": c.field,
                        "operator": c.operator.value,
                        "value": str(c.value) if isinstance(c.value, Decimal) else c.value,
                        **({"tolerance": str(c.tolerance)} if c.tolerance is not None else {}),
                    }
                    for c in rule.conditions
                ],
                "actions": [
                    {"type": a.type.value, "parameters": dict(a.parameters)}
                    for a in rule.actions
                ],
            }
            for rule in self.rules
        ]

    @classmethod
    def from_dicts(cls, data: Iterable[Dict[str, Any]]) -> "RuleSet":
        """
        Raises:
            ValidationError: If a rule has an unknown operator or action, or is malformed.
        """
        rules = []
        try:
            for item in data:
                rules.append(MatchingRule(
                    id=str(item["id"]),
                    name=item.get("name", item["id"]),
                    description=item.get("description", ""),
                    enabled=bool(item.get("enabled", True)),
                    priority=int(item.get("priority", 0)),
                    conditions=[
                        RuleCondition(
                            field=c["field"],
                            operator=ConditionOperator(c["operator"]),
                            value=c["value"],
                            tolerance=Decimal(str(c["tolerance"])) if c.get("tolerance") is not None else None,
                        )
                        for c in item.get("conditions", [])
                    ],
                    actions=[
                        RuleAction(type=ActionType(a["type"]), parameters=dict(a.get("parameters") or {}))
                        for a in item.get("actions", [])
                    ],
                ))
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise ValidationError(f"Invalid rule definition: {e}") from e
        return cls(rules)

    @classmethod
    def load(cls, path: str | Path) -> "RuleSet":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Rules file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError(f"Rules file is not valid JSON: {e}") from e
        ruleset = cls.from_dicts(data)
        logger.info("Loaded %d matching rules from %s", len(ruleset), path)
        return ruleset

    def dump(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dicts(), indent=2), encoding="utf-8")


def default_rules() -> RuleSet:
    """The stock policy shipped with the reconciliation console."""
    return RuleSet([
        MatchingRule(
            id="exact_amount_reference",
            name="Exact Amount and Reference Match",
            description="Match transactions with exact amount and reference number",
            priority=100,
            conditions=[
                RuleCondition("amount", ConditionOperator.EQUALS, "payment.amount", Decimal("0")),
                RuleCondition("reference", ConditionOperator.CONTAINS, "payment.id"),
            ],
            actions=[RuleAction(ActionType.AUTO_MATCH, {"confidence": 95})],
        ),
        MatchingRule(
            id="amount_tolerance_match",
            name="Amount with Tolerance Match",
            description="Match transactions with amount within 1% tolerance",
            priority=80,
            conditions=[
                RuleCondition("amount", ConditionOperator.AMOUNT_RANGE, "payment.amount", Decimal("0.01")),
                # Date tolerance is in days
                RuleCondition("date", ConditionOperator.AMOUNT_RANGE, "payment.createdAt", Decimal("3")),
            ],
            actions=[RuleAction(ActionType.AUTO_MATCH, {"confidence": 75})],
        ),
        MatchingRule(
            id="suspicious_duplicate",
            name="Suspicious Duplicate Detection",
            description="Flag potential duplicate transactions",
            priority=90,
            conditions=[
                RuleCondition("amount", ConditionOperator.EQUALS, "previous.amount"),
                RuleCondition("description", ConditionOperator.CONTAINS, "previous.description"),
            ],
            actions=[
                RuleAction(ActionType.FLAG, {"flag": "potential_duplicate"}),
                RuleAction(ActionType.MANUAL_REVIEW),
            ],
        ),
    ])
