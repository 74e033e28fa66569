"""Exception types raised by BudgetSmart services and validators."""

from __future__ import annotations


class BudgetSmartError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationError(BudgetSmartError):
    """Raised when an operation needs a signed-in user and there is none."""


class NotAuthorizedError(BudgetSmartError):
    """Raised when a non-admin user calls a moderation operation."""


class ValidationError(BudgetSmartError, ValueError):
    """Input rejected before anything is written.

    The message describes the specific constraint that was violated and is
    meant to be shown to the user as-is.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(BudgetSmartError, LookupError):
    """Raised when a document referenced by id does not exist."""


class PersistenceError(BudgetSmartError):
    """A write to the store failed.

    The original exception is kept as ``__cause__``; the message is the
    generic text presented to the user.
    """
