"""Core reconciliation matching engine."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set, Tuple

from bankrecon.config import CandidateSelection, ReconciliationSettings
from bankrecon.engine.models import (
    BankStatement,
    BankTransaction,
    MatchType,
    PaymentTransaction,
    ReconciliationMatch,
    ReconciliationRun,
)
from bankrecon.engine.scoring import calculate_match_confidence, detect_discrepancies
from bankrecon.errors import (
    PaymentAlreadyAllocatedError,
    ProcessingError,
    ReconciliationError,
    ReconciliationInProgressError,
)
from bankrecon.ledger.payment_ledger import PaymentLedger
from bankrecon.store.statement_store import StatementStore

logger = logging.getLogger(__name__)

AUTO_MATCH_CRITERIA = ("amount", "date")
MANUAL_MATCH_CRITERIA = ("manual_selection",)

Proposal = Tuple[BankTransaction, PaymentTransaction, int]


class ReconciliationEngine:
    """
    Matches bank statement lines against payment transactions.

    Auto-reconciliation, per unmatched bank transaction:
    1. Candidates: payments within the amount tolerance and date window.
    2. Selection: the first candidate in ledger order (or the highest scoring one
       when configured with CandidateSelection.BEST).
    3. Scoring: confidence from amount, date, reference and description.
    4. Commit: matches above the auto-match threshold become exact (above the exact
       threshold) or fuzzy matches; everything else stays unmatched.

    Manual override bypasses scoring and records manual matches at full confidence.
    """

    def __init__(
        self,
        store: StatementStore,
        ledger: PaymentLedger,
        settings: Optional[ReconciliationSettings] = None,
        scorer: Callable[[BankTransaction, PaymentTransaction], int] = calculate_match_confidence,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the reconciliation engine.

        Args:
            store: Statement store the engine reads from and commits to.
            ledger: Read-only source of payment transactions.
            settings: Tolerances and thresholds; defaults when omitted.
            scorer: Confidence function for a candidate pair.
            clock: Timestamp source for new match records.
        """
        self.store = store
        self.ledger = ledger
        self.settings = settings if settings is not None else ReconciliationSettings()
        self.scorer = scorer
        self.clock = clock
        self._in_flight: Set[str] = set()

    # Auto-reconciliation

    def is_processing(self, statement_id: Optional[str] = None) -> bool:
        """Whether a run is in flight, for one statement or for any."""
        if statement_id is None:
            return bool(self._in_flight)
        return statement_id in self._in_flight

    async def run_auto_reconciliation(self, statement_id: str) -> ReconciliationRun:
        """
        Match every unmatched transaction of a statement.

        At most one run per statement executes at a time; a second call while the
        first is in flight is rejected.

        Raises:
            NotFoundError: If the statement does not exist.
            ReconciliationInProgressError: If a run for this statement is in flight.
            ProcessingError: If matching fails; nothing from the run is committed.
        """
        self.store.get_statement(statement_id)
        if statement_id in self._in_flight:
            raise ReconciliationInProgressError(statement_id)

        self._in_flight.add(statement_id)
        try:
            if self.settings.processing_delay:
                await asyncio.sleep(self.settings.processing_delay)
            return self.reconcile(statement_id)
        finally:
            self._in_flight.discard(statement_id)

    def reconcile(self, statement_id: str) -> ReconciliationRun:
        """
        Synchronous auto-reconciliation pass; see run_auto_reconciliation.

        Proposals for the whole statement are computed before anything is
        committed. If applying or saving them fails, the applied matches are
        reverted, so a failed run leaves the statement as it was.
        """
        statement = self.store.get_statement(statement_id)
        logger.info("Auto-reconciling statement %s (%d transactions)", statement.id, len(statement.transactions))

        run = ReconciliationRun(statement_id=statement.id)
        previous_status = statement.reconciliation_status
        applied: List[BankTransaction] = []
        try:
            payments = self.ledger.get_all_transactions()
            proposals = self._propose_matches(statement, payments, run)
            for bank_txn, payment, confidence in proposals:
                match = ReconciliationMatch(
                    bank_transaction_id=bank_txn.id,
                    payment_transaction_id=payment.id,
                    confidence=confidence,
                    match_type=self._match_type_for(confidence),
                    match_criteria=AUTO_MATCH_CRITERIA,
                    discrepancies=tuple(detect_discrepancies(bank_txn, payment)),
                    created_at=self.clock(),
                )
                self.store.commit_match(statement, bank_txn, match)
                applied.append(bank_txn)
                run.new_matches.append(match)
            self.store.refresh(statement)
        except ReconciliationError:
            self.store.revert(statement, applied, previous_status)
            raise
        except Exception as e:
            self.store.revert(statement, applied, previous_status)
            logger.exception("Auto-reconciliation of %s failed", statement.id)
            raise ProcessingError(f"Auto-reconciliation of {statement.id!r} failed: {e}") from e

        logger.info(
            "Statement %s: %d new matches, %d already matched, %d without candidates, %d below threshold",
            statement.id,
            run.matched_count,
            run.skipped_matched,
            run.without_candidates,
            run.below_threshold,
        )
        return run

    def _propose_matches(
        self,
        statement: BankStatement,
        payments: List[PaymentTransaction],
        run: ReconciliationRun,
    ) -> List[Proposal]:
        proposals: List[Proposal] = []
        allocated = self.store.allocated_payment_ids()

        for bank_txn in statement.transactions:
            if bank_txn.matched:
                run.skipped_matched += 1
                continue

            candidates = self.find_candidates(bank_txn, payments)
            if not self.settings.allow_payment_reuse:
                candidates = [p for p in candidates if p.id not in allocated]
            if not candidates:
                run.without_candidates += 1
                continue

            payment, confidence = self._select(bank_txn, candidates)
            if confidence <= self.settings.auto_match_threshold:
                run.below_threshold += 1
                continue

            proposals.append((bank_txn, payment, confidence))
            allocated.add(payment.id)

        return proposals

    def find_candidates(
        self,
        bank_txn: BankTransaction,
        payments: List[PaymentTransaction],
    ) -> List[PaymentTransaction]:
        """Payments within the amount tolerance and date window, in ledger order."""
        window = timedelta(days=self.settings.date_window_days)
        return [
            payment for payment in payments
            if abs(payment.amount - bank_txn.abs_amount) < self.settings.amount_tolerance
            and abs(payment.created_at - bank_txn.date) < window
        ]

    def _select(
        self,
        bank_txn: BankTransaction,
        candidates: List[PaymentTransaction],
    ) -> Tuple[PaymentTransaction, int]:
        if self.settings.candidate_selection == CandidateSelection.FIRST:
            best = candidates[0]
            return best, self.scorer(bank_txn, best)

        best, best_score = candidates[0], -1
        for payment in candidates:
            score = self.scorer(bank_txn, payment)
            # Strictly greater keeps the earliest candidate on ties
            if score > best_score:
                best, best_score = payment, score
        return best, best_score

    def _match_type_for(self, confidence: int) -> MatchType:
        if confidence > self.settings.exact_match_threshold:
            return MatchType.EXACT
        return MatchType.FUZZY

    # Manual override

    def available_payments(self) -> List[PaymentTransaction]:
        """Payments not referenced by any match, for operator selection lists."""
        allocated = self.store.allocated_payment_ids()
        return [p for p in self.ledger.get_all_transactions() if p.id not in allocated]

    def manual_match(self, bank_transaction_id: str, payment_transaction_id: str) -> Optional[ReconciliationMatch]:
        """
        Force a pairing at full confidence, bypassing scoring.

        Unknown ids and already-matched bank transactions are a logged no-op.

        Returns:
            The new match, or None when nothing changed.

        Raises:
            PaymentAlreadyAllocatedError: If payment reuse is disabled and the payment
                is already matched.
        """
        located = self.store.find_transaction(bank_transaction_id)
        if located is None:
            logger.warning("Manual match ignored: bank transaction %s not found", bank_transaction_id)
            return None
        statement, bank_txn = located

        payment = self.ledger.get_transaction(payment_transaction_id)
        if payment is None:
            logger.warning("Manual match ignored: payment %s not found", payment_transaction_id)
            return None

        if bank_txn.matched:
            logger.warning(
                "Manual match ignored: %s is already matched to %s",
                bank_txn.id, bank_txn.matched_transaction_id,
            )
            return None

        if not self.settings.allow_payment_reuse:
            existing = self.store.match_for_payment(payment.id)
            if existing is not None:
                raise PaymentAlreadyAllocatedError(payment.id, existing.bank_transaction_id)

        match = ReconciliationMatch(
            bank_transaction_id=bank_txn.id,
            payment_transaction_id=payment.id,
            confidence=self.settings.manual_match_confidence,
            match_type=MatchType.MANUAL,
            match_criteria=MANUAL_MATCH_CRITERIA,
            discrepancies=(),
            created_at=self.clock(),
        )
        self.store.commit_match(statement, bank_txn, match)
        self.store.refresh(statement)
        logger.info("Manual match %s -> %s", bank_txn.id, payment.id)
        return match

    def unmatch_transaction(self, bank_transaction_id: str) -> Optional[ReconciliationMatch]:
        """
        Clear a transaction's match and drop its record.

        Unknown ids and already-unmatched transactions are a no-op.

        Returns:
            The removed match, or None when nothing changed.
        """
        located = self.store.find_transaction(bank_transaction_id)
        if located is None:
            logger.warning("Unmatch ignored: bank transaction %s not found", bank_transaction_id)
            return None
        statement, bank_txn = located

        if not bank_txn.matched and self.store.match_for(bank_txn.id) is None:
            logger.debug("Unmatch of %s: already unmatched", bank_txn.id)
            return None

        removed = self.store.remove_match(bank_txn)
        self.store.refresh(statement)
        logger.info("Unmatched %s", bank_txn.id)
        return removed

