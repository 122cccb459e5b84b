class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidAmount(PaymentError):
    status_code = 400


class MalformedNotification(PaymentError):
    status_code = 400


class InvalidSignature(PaymentError):
    status_code = 401


class PaymentAccessDenied(PaymentError):
    status_code = 403


class PaymentNotFound(PaymentError):
    status_code = 404


class InvoiceKeyConflict(PaymentError):
    status_code = 409


class GatewayNotConfigured(PaymentError):
    status_code = 500


class GatewayError(PaymentError):
    status_code = 500


class FawaterakError(Exception):
    """Raised by the gateway client for any unsuccessful Fawaterak call."""

    def __init__(self, message: str, status_code: int = None, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details
