from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "Sequence not found") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""


class ConfigurationError(ValidationError):
    """Raised when a sequence configuration is invalid (bad template, width, step or frequency)."""


class SequenceNotFoundError(NotFoundError):
    """Raised when an operation references a sequence key that has no configuration."""

    def __init__(self, domain: str, key: str) -> None:
        super().__init__(f"Sequence '{domain}/{key}' is not configured")
        self.domain = domain
        self.key = key


class SequenceDisabledError(UserError):
    """Raised when a number is requested from a disabled sequence."""

    def __init__(self, domain: str, key: str) -> None:
        super().__init__(f"Sequence '{domain}/{key}' is disabled")
        self.domain = domain
        self.key = key


class SequenceExhaustedError(UserError):
    """Raised when no unused code could be produced within the collision retry ceiling.

    Points at a configuration defect (e.g. a template without a number placeholder),
    not a transient condition.
    """

    def __init__(self, domain: str, key: str, attempts: int) -> None:
        super().__init__(f"Sequence '{domain}/{key}' produced only used codes after {attempts} attempts")
        self.domain = domain
        self.key = key
        self.attempts = attempts


class PersistenceError(Exception):
    """Raised when the sequence store cannot be read or written.

    Not a UserError: the message may carry backend details and is not shown to users.
    """
