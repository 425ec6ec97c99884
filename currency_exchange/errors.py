"""
Domain errors raised by the exchange managers.

All of them derive from ValueError so callers that only care about
"bad input or bad state" can keep catching ValueError.
"""


class ExchangeError(ValueError):
    """Base class for currency exchange domain errors"""


class NotFoundError(ExchangeError):
    """Referenced record does not exist"""


class ValidationError(ExchangeError):
    """Input failed validation"""


class DuplicateError(ExchangeError):
    """Record would violate a uniqueness rule"""


class InsufficientFundsError(ExchangeError):
    """Balance too small for the requested debit"""


class PermissionDeniedError(ExchangeError):
    """Actor is not allowed to perform the operation"""


class InvalidStateError(ExchangeError):
    """Record is not in a state that allows the operation"""
