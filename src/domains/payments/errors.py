"""Payment flow errors.

Each error carries a fixed ``user_message``; the exception text itself is for
logs only and may contain internal detail.
"""


class PaymentError(Exception):
    status_code = 400
    error = "payment_error"
    user_message = "The payment could not be processed."


class TransactionNotFoundError(PaymentError, LookupError):
    status_code = 404
    error = "not_found"
    user_message = "No payment exists for this reference."


class TransitionConflictError(PaymentError):
    """A concurrent writer moved the attempt first; the CAS was rejected."""

    status_code = 409
    error = "conflict"
    user_message = "This payment is already being processed."


class InvalidTransitionError(PaymentError):
    status_code = 409
    error = "invalid_transition"
    user_message = "This payment can no longer be changed."


class VerificationInProgressError(PaymentError):
    status_code = 409
    error = "verification_in_progress"
    user_message = "A verification for this payment is already in progress."


class SecurityTokenError(PaymentError, PermissionError):
    status_code = 403
    error = "invalid_security_token"
    user_message = "Verification is required before this payment can be resubmitted."


class GatewayUnavailableError(PaymentError):
    """Transient gateway failure. Safe to retry with the same reference."""

    status_code = 503
    error = "gateway_unavailable"
    user_message = "The payment provider is temporarily unavailable. Please try again shortly."
