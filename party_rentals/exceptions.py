class BookingError(Exception):
    """Base class for errors surfaced to API callers."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """The request is malformed or not allowed in the current state. Nothing was changed."""


class EmailMismatchError(ValidationError):
    pass


class InvalidTransitionError(ValidationError):
    pass


class NotFoundError(BookingError):
    pass


class ConflictError(BookingError):
    """The requested dates were taken by another booking."""


class RefundFailedError(BookingError):
    """
    The payment provider did not complete a refund.
    Any state committed before the call stays committed; the refund can be retried.
    """


class PaymentProviderError(BookingError):
    pass


class NotificationError(Exception):
    pass
