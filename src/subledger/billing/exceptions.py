"""
Billing system exceptions.

Custom exceptions for billing subscription storage with clear error messages.
Every error carries a machine-readable code, a status code, context and a
recovery hint so higher layers can translate it for users.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
        retryable: Whether repeating the same call may succeed
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
            "retryable": self.retryable,
        }


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class InvalidSubscriptionInputError(SubscriptionError):
    """Malformed parameters, rejected before any statement is issued."""

    def __init__(
        self, message: str, validation_errors: list[dict[str, Any]] | None = None
    ) -> None:
        context: dict[str, Any] = {}
        if validation_errors:
            context["validation_errors"] = validation_errors

        super().__init__(
            message,
            context=context,
            recovery_hint="Provide non-empty Stripe identifiers and a known subscription status",
        )
        self.error_code = "INVALID_SUBSCRIPTION_INPUT"


class SubscriptionConstraintError(SubscriptionError):
    """The database rejected a write because of a uniqueness or foreign-key constraint."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            context=context,
            recovery_hint="Look up the existing subscription; it may already be recorded",
        )
        self.error_code = "SUBSCRIPTION_CONSTRAINT_VIOLATION"
        self.status_code = 409


class TransactionFailedError(BillingError):
    """The transaction scope could not commit (conflict, deadlock, connection loss)."""

    retryable = True

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            "TRANSACTION_FAILED",
            status_code=503,
            context=context,
            recovery_hint="Retry the operation; no changes were committed",
        )



class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            status_code=500,
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )
