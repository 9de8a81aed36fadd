class KcmError(Exception):
    """
    Base class for all errors raised by kcm.
    """


class CancelledError(KcmError):
    """
    Raised when an operation was interrupted through its cancellation token.
    """

    def __str__(self) -> str:
        return "operation was cancelled"
