"""Error taxonomy shared by the gateway service and the protocol client."""


class CheckoutError(Exception):
    """Base class; every error carries a machine-readable code."""

    error_code = "CHECKOUT_ERROR"
    http_status = 500

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ValidationError(CheckoutError):
    """Malformed input. Never reaches the state machine."""

    error_code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(CheckoutError):
    """Unknown payment identity."""

    error_code = "PAYMENT_NOT_FOUND"
    http_status = 404


class ConflictError(CheckoutError):
    """A state-machine guard was violated (double settle, stale transition, in-flight call)."""

    error_code = "INVALID_STATE"
    http_status = 409


class DeclinedError(CheckoutError):
    """Expected business failure: card declined or challenge code rejected."""

    error_code = "DECLINED"
    http_status = 402


class ServiceError(CheckoutError):
    """Transport or server fault.

    ``state_unknown`` is set when a state-mutating call may or may not have been
    applied; the caller has to re-read the payment before deciding anything.
    """

    error_code = "SERVICE_ERROR"
    http_status = 502

    def __init__(self, message: str, error_code: str | None = None, state_unknown: bool = False) -> None:
        super().__init__(message, error_code)
        self.state_unknown = state_unknown


class InactiveSessionError(RuntimeError):
    """A checkout step was recorded without an active payment context."""
