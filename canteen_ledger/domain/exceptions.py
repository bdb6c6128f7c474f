"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed or violates a payment policy"""

    pass


class OverpaymentError(DomainException):
    """Payment exceeds the outstanding balance"""

    def __init__(self, payment_cents: int, outstanding_cents: int):
        self.payment_cents = payment_cents
        self.outstanding_cents = outstanding_cents
        super().__init__(
            f"Payment of {payment_cents} cents exceeds outstanding balance of {outstanding_cents} cents"
        )


class NotFoundError(DomainException):
    """Unknown student or transaction"""

    pass


class ConcurrencyConflict(DomainException):
    """Record was modified concurrently; the conditional write was rejected"""

    pass


class JobExecutionError(DomainException):
    """Settlement failure, either for a single transaction or for the whole scan"""

    def __init__(self, message: str, transaction_id: str | None = None):
        self.transaction_id = transaction_id
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.transaction_id:
            return f"transaction {self.transaction_id}: {message}"
        return message
