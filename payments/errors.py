from django.core.exceptions import ImproperlyConfigured


class PaymentError(Exception):
    """Base for every failure the payment flows report to a caller."""

    code = "payment_error"
    status_code = 400

    def __init__(self, message="", details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidRequest(PaymentError):
    code = "invalid_request"


class NotFound(PaymentError):
    code = "not_found"
    status_code = 404


class Conflict(PaymentError):
    code = "conflict"
    status_code = 409


class Forbidden(PaymentError):
    code = "forbidden"
    status_code = 403


class InvalidState(PaymentError):
    code = "invalid_state"


class VerificationFailed(PaymentError):
    code = "verification_failed"


class InvalidSignature(PaymentError):
    code = "invalid_signature"


class GatewayError(PaymentError):
    code = "gateway_error"
    status_code = 502

    def __init__(self, reason, provider_message):
        super().__init__(
            provider_message or "Unable to initiate payment",
            details={"provider": "razorpay", "reason": reason},
        )
        self.reason = reason
        self.provider_message = provider_message


class ConfigurationError(PaymentError, ImproperlyConfigured):
    code = "configuration_error"
    status_code = 500
