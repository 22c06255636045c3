"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Every exception carries a stable `code` surfaced to API callers.
"""

from datetime import datetime
from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "LEDGER_ERROR"


# ============================================================================
# Boundary errors - raised before any ledger transaction begins
# ============================================================================


class ValidationError(LedgerError):
    """Raised when input is malformed."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Raised when credit amounts are missing or negative."""

    code = "INVALID_AMOUNT"


class AuthenticationError(LedgerError):
    """Raised when no valid session is presented."""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(LedgerError):
    """Raised when caller lacks the required role."""

    code = "UNAUTHORIZED"

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"Authorization failed: role {required_role} required")


# ============================================================================
# Business rule violations - raised inside the transaction, which is rolled back
# ============================================================================


class BusinessRuleViolation(LedgerError):
    """Base for expected, user-facing refusals."""

    code = "BUSINESS_RULE_VIOLATION"


class InsufficientBalanceError(BusinessRuleViolation):
    """Raised when a delta would drive a balance counter negative."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: int, required: int, currency_kind: str = "total") -> None:
        self.available = available
        self.required = required
        self.currency_kind = currency_kind
        super().__init__(
            f"Insufficient {currency_kind} credits. Available: {available}, Required: {required}"
        )


class InsufficientCreditsError(InsufficientBalanceError):
    """Raised when free + paid credits cannot cover a purchase price."""

    code = "INSUFFICIENT_CREDITS"

    def __init__(self, available: int, required: int) -> None:
        super().__init__(available, required, "total")


class CodeNotFoundError(BusinessRuleViolation):
    """Raised when a promo code does not exist or is inactive."""

    code = "CODE_NOT_FOUND"

    def __init__(self, promo_code: str) -> None:
        self.promo_code = promo_code
        super().__init__(f"Promo code not found: {promo_code}")


class CodeExpiredError(BusinessRuleViolation):
    """Raised when a promo code is past its expiry."""

    code = "CODE_EXPIRED"

    def __init__(self, promo_code: str, expired_at: datetime) -> None:
        self.promo_code = promo_code
        self.expired_at = expired_at
        super().__init__(f"Promo code {promo_code} expired at {expired_at.isoformat()}")


class CodeExhaustedError(BusinessRuleViolation):
    """Raised when a promo code reached max_uses."""

    code = "CODE_EXHAUSTED"

    def __init__(self, promo_code: str, max_uses: int) -> None:
        self.promo_code = promo_code
        self.max_uses = max_uses
        super().__init__(f"Promo code {promo_code} exhausted ({max_uses} uses)")


class AlreadyRedeemedError(BusinessRuleViolation):
    """Raised when a single-use-per-user code is redeemed again."""

    code = "ALREADY_REDEEMED"

    def __init__(self, promo_code: str, user_id: UUID) -> None:
        self.promo_code = promo_code
        self.user_id = user_id
        super().__init__(f"Promo code {promo_code} already redeemed by {user_id}")


class AlreadyOwnedError(BusinessRuleViolation):
    """Raised when the user already unlocked the resource."""

    code = "ALREADY_OWNED"

    def __init__(self, user_id: UUID, resource_id: UUID) -> None:
        self.user_id = user_id
        self.resource_id = resource_id
        super().__init__(f"Resource {resource_id} already owned by {user_id}")


class DuplicateCodeError(BusinessRuleViolation):
    """Raised when creating a promo code that already exists."""

    code = "DUPLICATE_CODE"

    def __init__(self, promo_code: str) -> None:
        self.promo_code = promo_code
        super().__init__(f"Promo code already exists: {promo_code}")


# ============================================================================
# Lookups
# ============================================================================


class NotFoundError(LedgerError):
    """Raised when an addressed record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class ResourceNotFoundError(NotFoundError):
    """Raised when a catalog resource is missing or unpublished."""

    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_id: UUID) -> None:
        super().__init__("Resource", str(resource_id))


# ============================================================================
# Internal failures
# ============================================================================


class LedgerCorruptionError(LedgerError):
    """
    Raised when an internal invariant is violated (aggregate vs lot mismatch).

    Fatal: the transaction is aborted and the operation is never retried.
    """

    code = "LEDGER_CORRUPTION"

    def __init__(self, user_id: UUID, message: str) -> None:
        self.user_id = user_id
        self.message = message
        super().__init__(f"Ledger corruption for {user_id}: {message}")


class WriteVerificationError(LedgerError):
    """Raised when database write verification fails."""

    code = "WRITE_VERIFICATION_FAILED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class ConcurrencyError(LedgerError):
    """Raised when serialization retries are exhausted."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"Concurrent modification in {operation} after {attempts} attempts")


class PaymentProviderError(LedgerError):
    """Raised when payment provider operation fails."""

    code = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(LedgerError):
    """Raised when webhook verification fails."""

    code = "WEBHOOK_SIGNATURE_INVALID"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")
