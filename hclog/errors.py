"""
Exceptions raised by the HCLog workflow functions.

Every exception carries a user-facing message (Spanish, like the rest of the
UI). Raising one always means the application state was left untouched.
"""
# hclog/errors.py


class HCLogError(Exception):
    """Base class for all workflow errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HCLogError):
    """A required field is missing or empty."""


class ConflictError(HCLogError):
    """One or more clinical history numbers are unavailable.

    Attributes:
        hc_numbers (list): Every offending clinical history number.
        loaned_out (list): The subset already lent to a service.
        pending (list): The subset already part of an open request.
    """

    def __init__(self, message: str, hc_numbers=None, loaned_out=None, pending=None):
        super().__init__(message)
        self.loaned_out = list(loaned_out or [])
        self.pending = list(pending or [])
        if hc_numbers is None:
            hc_numbers = self.loaned_out + [hc for hc in self.pending if hc not in self.loaned_out]
        self.hc_numbers = list(hc_numbers)


class PermissionDeniedError(HCLogError):
    """The acting user's role or identity does not allow the operation."""


class NotFoundError(HCLogError):
    """The target record, request, transfer or user no longer exists."""
