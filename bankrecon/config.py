"""Settings for the reconciliation engine and its storage."""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from bankrecon.errors import ValidationError

ENV_PREFIX = "BANKRECON_"


class CandidateSelection(Enum):
    """How the engine picks one payment out of the candidate set."""
    FIRST = "first"  # first candidate in ledger order
    BEST = "best"    # highest confidence, ties keep ledger order


class StorageLayout(Enum):
    """On-disk layout of persisted statements."""
    STATEMENT = "statement"  # one JSON file per statement
    BLOB = "blob"            # single "bank-statements" blob


@dataclass
class ReconciliationSettings:
    """Tunable constants for candidate generation, scoring thresholds and storage."""
    amount_tolerance: Decimal = Decimal("1")
    date_window_days: int = 3
    auto_match_threshold: int = 70
    exact_match_threshold: int = 90
    manual_match_confidence: int = 100
    candidate_selection: CandidateSelection = CandidateSelection.FIRST
    allow_payment_reuse: bool = True
    processing_delay: float = 0.0
    storage_dir: Path = field(default_factory=lambda: Path(".bankrecon"))
    storage_layout: StorageLayout = StorageLayout.STATEMENT

    def __post_init__(self):
        self.amount_tolerance = Decimal(str(self.amount_tolerance))
        self.storage_dir = Path(self.storage_dir)
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValidationError: If any setting is out of range.
        """
        if self.amount_tolerance < 0:
            raise ValidationError("amount_tolerance must be non-negative")
        if self.date_window_days < 0:
            raise ValidationError("date_window_days must be non-negative")
        for name in ("auto_match_threshold", "exact_match_threshold", "manual_match_confidence"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValidationError(f"{name} must be between 0 and 100, got {value}")
        if self.exact_match_threshold < self.auto_match_threshold:
            raise ValidationError("exact_match_threshold must not be below auto_match_threshold")
        if self.processing_delay < 0:
            raise ValidationError("processing_delay must be non-negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReconciliationSettings":
        """
        Build settings from BANKRECON_* environment variables.

        Unset variables keep their defaults. Example:
            BANKRECON_AMOUNT_TOLERANCE=0.5 BANKRECON_CANDIDATE_SELECTION=best
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        def raw(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() else None

        try:
            if raw("AMOUNT_TOLERANCE") is not None:
                kwargs["amount_tolerance"] = Decimal(raw("AMOUNT_TOLERANCE"))
            for name in (
                "DATE_WINDOW_DAYS",
                "AUTO_MATCH_THRESHOLD",
                "EXACT_MATCH_THRESHOLD",
                "MANUAL_MATCH_CONFIDENCE",
            ):
                if raw(name) is not None:
                    kwargs[name.lower()] = int(raw(name))
            if raw("PROCESSING_DELAY") is not None:
                kwargs["processing_delay"] = float(raw("PROCESSING_DELAY"))
            if raw("CANDIDATE_SELECTION") is not None:
                kwargs["candidate_selection"] = CandidateSelection(raw("CANDIDATE_SELECTION").lower())
            if raw("STORAGE_LAYOUT") is not None:
                kwargs["storage_layout"] = StorageLayout(raw("STORAGE_LAYOUT").lower())
            if raw("STORAGE_DIR") is not None:
                kwargs["storage_dir"] = Path(raw("STORAGE_DIR"))
            if raw("ALLOW_PAYMENT_REUSE") is not None:
                kwargs["allow_payment_reuse"] = _parse_bool(raw("ALLOW_PAYMENT_REUSE"))
        except (ValueError, InvalidOperation) as e:
            raise ValidationError(f"Invalid {ENV_PREFIX}* setting: {e}") from e

        return cls(**kwargs)


def _parse_bool(value: str) -> bool:
    normalized = value.lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")
