"""Exception types raised by the live session engine."""

from __future__ import annotations


class QuizLiveError(Exception):
    """Base class for engine errors."""


class ValidationError(QuizLiveError):
    """A message or request is missing a required field or carries a bad value."""


class NotFoundError(QuizLiveError):
    """The referenced class does not exist."""


class SessionStateError(QuizLiveError):
    """A lifecycle transition is not allowed from the class's current state."""


class PersistenceError(QuizLiveError):
    """A storage operation failed."""


class EvaluatorError(QuizLiveError):
    """The free-text evaluator failed or returned unparsable output."""


class BroadcastError(QuizLiveError):
    """Sending a message to one connection failed."""


class AuthorizationError(QuizLiveError):
    """The caller's role does not allow the requested operation."""


class QuestionImportError(QuizLiveError):
    """Raised when a question block file cannot be parsed."""
