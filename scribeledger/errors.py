"""
Error taxonomy for the billing core.

Every exception carries the HTTP status it maps to. The FastAPI exception
handler in ``scribeledger.main`` renders them as ``{"error": message}``.
"""

from fastapi import status


class BillingError(Exception):
    """Base exception for billing errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str | None = None

    @property
    def message(self) -> str:
        """Message safe to return to the caller."""
        return self.public_message or str(self)


class ValidationError(BillingError):
    """Bad input (e.g. a credit amount outside the catalog)."""

    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientCreditsError(ValidationError):
    """Deduction would push the credit balance below zero."""


class AuthenticationError(BillingError):
    """Identity could not be resolved for the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Unauthorized"


class MethodNotAllowedError(BillingError):
    """HTTP method not supported by the endpoint."""

    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    public_message = "Method not allowed"


class DependencyFailure(BillingError):
    """Backing store or payment provider failure."""

    public_message = "Internal server error"


class StorageError(DependencyFailure):
    """SQLite operation failed."""


class PaymentProviderError(DependencyFailure):
    """Stripe API call failed."""

    public_message = "Failed to create payment intent"


class CheckoutSessionError(PaymentProviderError):
    """Stripe Checkout session could not be created."""

    public_message = "Failed to create checkout session"


class SubscriptionNotFoundError(DependencyFailure):
    """Owning subscription could not be resolved. Retryable."""


class SignatureError(BillingError):
    """Webhook signature missing or invalid."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(BillingError):
    """Required configuration (e.g. webhook secret) is missing."""


class WebhookProcessingError(BillingError):
    """Applying a webhook event failed; the provider should retry."""

    public_message = "Webhook handler failed"


class MalformedEventError(WebhookProcessingError):
    """Credit purchase event without the attribution metadata it needs."""

    public_message = "Missing required payment metadata"


class SubscriptionConflictError(BillingError):
    """Provider subscription id is already stored for a different user."""

    status_code = status.HTTP_409_CONFLICT
