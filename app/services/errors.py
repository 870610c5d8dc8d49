"""Domain errors. Each carries the HTTP status the API layer answers with."""


class StorefrontError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.details = details
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(StorefrontError):
    code = "validation_error"
    status_code = 400


class ItemUnavailable(ValidationError):
    code = "item_unavailable"


class InsufficientFunds(StorefrontError):
    code = "insufficient_funds"
    status_code = 400


class Unauthorized(StorefrontError):
    code = "unauthorized"
    status_code = 401


class Forbidden(StorefrontError):
    code = "forbidden"
    status_code = 403


class NotFound(StorefrontError):
    code = "not_found"
    status_code = 404


class StateConflict(StorefrontError):
    """Transition requested from an incompatible state, e.g. re-initiating a paid order."""

    code = "state_conflict"
    status_code = 409


class SignatureInvalid(StorefrontError):
    code = "signature_invalid"
    status_code = 400


class GatewayError(StorefrontError):
    pass


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx from the provider. Safe to retry."""

    code = "gateway_unavailable"
    status_code = 503


class GatewayRejected(GatewayError):
    """Provider refused the request. Terminal for this attempt."""

    code = "gateway_rejected"
    status_code = 402


class GatewayNotConfigured(GatewayError):
    code = "gateway_not_configured"
    status_code = 503
