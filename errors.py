"""Errors raised by the weighment engine.

Every error is per-operation and recoverable by the operator re-submitting
the form. Capture and upload errors never reach the operator: the gross
weigh proceeds without a snapshot.
"""


class WeighmentError(Exception):
    """Base class; ``message`` is shown to the operator as-is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WeighmentError):
    """Missing or invalid input, rejected before anything is written."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class IdentityResolutionError(WeighmentError):
    """Storage failure while finding or creating a farmer or vehicle."""


class CaptureUnavailableError(WeighmentError):
    """No camera frame could be taken."""


class CameraAccessDenied(CaptureUnavailableError):
    """The camera could not be opened (denied, busy or absent)."""


class UploadError(WeighmentError):
    """The snapshot was composed but could not be stored."""


class TransactionWriteError(WeighmentError):
    """Insert or update on the transaction table failed."""


class InvalidTransitionError(WeighmentError):
    """Completing a transaction that is missing or no longer pending."""

    def __init__(self, message: str, transaction_id: int = None, not_found: bool = False):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.not_found = not_found
