"""
Payment core domain exceptions.

All exceptions raised by the pricing, payment, payment method and bundle
service layers.

Retry policy:
- retryable = True → transient gateway failure (timeout, transport); caller may retry
- retryable = False → terminal domain failure; retrying gives the same result
"""


class PaymentServiceError(Exception):
    """Base exception for payment core errors"""
    retryable = False


class ForbiddenError(PaymentServiceError):
    """Raised on self-purchase or when the actor does not own the record"""
    pass


class NotFoundError(PaymentServiceError):
    """Raised when an entity, bundle, gateway or payment method does not exist"""
    pass


class GatewayNotFoundError(NotFoundError):
    """Raised when no enabled driver is registered under the gateway id"""
    pass


class UnprocessableError(PaymentServiceError):
    """Raised when a gateway rejects a callback or card onboarding input"""
    pass


class UnconfiguredError(PaymentServiceError):
    """Raised when a required driver (e.g. the card driver) is not configured"""
    pass


class ConflictError(PaymentServiceError):
    """Raised when a write would break a record invariant"""
    pass


class InvalidInputError(PaymentServiceError):
    """Raised when an operation argument is missing or out of range"""
    pass


class GatewayError(PaymentServiceError):
    """Base exception for driver call failures"""
    pass


class GatewayTimeoutError(GatewayError):
    """Raised when a driver call exceeds the configured timeout"""
    retryable = True


class GatewayUnavailableError(GatewayError):
    """Raised on transport failure talking to the gateway"""
    retryable = True


class GatewayDispatchError(GatewayError):
    """Raised when a driver fails a call for a non-transient reason"""
    pass
