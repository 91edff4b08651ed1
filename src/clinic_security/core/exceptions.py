"""Domain exception taxonomy shared by services and the HTTP layer.

Validation problems subclass ``ValueError`` and lookups subclass
``LookupError`` so callers that only know the builtin hierarchy still
handle them sensibly. The API maps each family to a status code in
``clinic_security.api.errors``.
"""


class InvalidInputError(ValueError):
    """Bad input shape or value supplied by the caller."""


class InvalidBaselineTypeError(InvalidInputError):
    """Baseline type is not one of location, time, access_pattern."""


class InvalidStatusError(InvalidInputError):
    """Anomaly status is not one of the four lifecycle states."""


class InvalidArgumentError(InvalidInputError):
    """An identifier could not be coerced to an integer."""


class NotFoundError(LookupError):
    """A referenced record does not exist."""


class UserNotFoundError(NotFoundError):
    """No user matches the given id or email."""


class AnomalyNotFoundError(NotFoundError):
    """No anomaly matches the given id."""


class ConflictError(Exception):
    """The operation conflicts with the current state of the store."""
