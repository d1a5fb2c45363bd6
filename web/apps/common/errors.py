"""Domain error taxonomy shared by the inventory, orders and payments apps.

Every error is a ``ValueError`` whose string value is a short upper-case
code (``str(exc) == "INSUFFICIENT_STOCK"``). The HTTP layer maps the class to
a status code; clients only ever see the code and a human readable message,
never raw provider text.
"""


class DomainError(ValueError):
    """Base class for errors raised by the order-to-payment workflow.

    Attributes:
        code: Stable machine-readable error code.
        message: Optional human readable explanation.
        status_code: HTTP status used when the error reaches the API.
    """

    status_code = 400

    def __init__(self, code: str, message: str | None = None):
        super().__init__(code)
        self.code = code
        self.message = message or code.replace("_", " ").capitalize()


class ValidationFailed(DomainError):
    status_code = 400


class Forbidden(DomainError):
    status_code = 403


class NotFound(DomainError):
    status_code = 404


class Conflict(DomainError):
    """Illegal state transition or request against an incompatible state."""

    status_code = 409


class InsufficientStock(Conflict):
    def __init__(self, sku: str, available: int, requested: int):
        super().__init__(
            "INSUFFICIENT_STOCK",
            f"Insufficient stock for {sku}: {available} available, {requested} requested",
        )
        self.sku = sku
        self.available = available
        self.requested = requested


class SignatureInvalid(DomainError):
    status_code = 400


class ProviderUnavailable(DomainError):
    """Payment initiation failed at the provider; the attempt was recorded."""

    status_code = 503


class InvariantViolation(DomainError):
    """A write would have broken a stock or money invariant; the transaction aborts."""

    status_code = 500
