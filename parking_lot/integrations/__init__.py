"""External integrations: payment provider and mail."""
from .email_client import EmailClient
from .stripe_client import CircuitBreaker, StripeError, StripeErrorType, StripeGateway

__all__ = [
    "CircuitBreaker",
    "EmailClient",
    "StripeError",
    "StripeErrorType",
    "StripeGateway",
]
