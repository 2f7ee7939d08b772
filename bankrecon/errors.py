"""Exception hierarchy for the reconciliation core."""


class ReconciliationError(Exception):
    """Base class for every error raised by the reconciliation core."""


class NotFoundError(ReconciliationError, LookupError):
    """A referenced statement, transaction or payment id does not exist."""


class ValidationError(ReconciliationError, ValueError):
    """Input data is malformed or violates a precondition."""


class ParseError(ValidationError):
    """An uploaded statement file could not be turned into a BankStatement."""


class PaymentAlreadyAllocatedError(ValidationError):
    """A payment transaction is already referenced by another match."""

    def __init__(self, payment_transaction_id: str, bank_transaction_id: str):
        self.payment_transaction_id = payment_transaction_id
        self.bank_transaction_id = bank_transaction_id
        super().__init__(
            f"Payment {payment_transaction_id!r} is already matched to "
            f"bank transaction {bank_transaction_id!r}"
        )


class ProcessingError(ReconciliationError):
    """Unexpected failure during an auto-reconciliation pass."""


class ReconciliationInProgressError(ProcessingError):
    """Another reconciliation run is already in flight for the statement."""

    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__(f"Reconciliation already running for statement {statement_id!r}")
