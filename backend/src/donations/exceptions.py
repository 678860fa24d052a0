"""Domain exceptions raised by the donations services."""


class DonationsError(Exception):
    """Base class for donations service errors."""


class FormNotFoundError(DonationsError):
    """The submission targets a form that is not configured for payments."""

    def __init__(self, form_id: str):
        super().__init__(f"Form {form_id} is not configured for payments")
        self.form_id = form_id


class SubmissionValidationError(DonationsError):
    """A submission failed local validation before reaching the gateway."""

    def __init__(self, field: str | None, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class GatewayNotReadyError(DonationsError):
    """The gateway client is missing credentials or its certificate."""

    def __init__(self, message: str = "Payment client is not ready to deliver information to the processor."):
        super().__init__(message)
        self.message = message


class GatewayRequestError(DonationsError):
    """The gateway rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PaymentDeclinedError(DonationsError):
    """The gateway processed the request but did not authorize it."""

    def __init__(self, status: str, message: str, reason: str | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.reason = reason


class ReceiptNotSentError(DonationsError):
    """A queued receipt still could not be delivered."""

    def __init__(self, code: str):
        super().__init__(f"Email was not sent. Payment code {code}.")
        self.code = code
