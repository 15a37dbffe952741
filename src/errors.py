"""Error taxonomy for the task engine.

The API layer maps these onto HTTP status codes; services raise them and never
build responses themselves.
"""


class TaskEngineError(Exception):
    """Base class for errors raised by the task engine."""


class ValidationError(TaskEngineError):
    """Client-caused: bad title, missing due date, outside business hours, past scheduling."""


class AuthorizationError(TaskEngineError):
    """The principal's resolved scope does not cover the target task or user."""


class NotFoundError(TaskEngineError):
    """A task, subtask or user id does not resolve."""


class IntegrationError(TaskEngineError):
    """Calendar sync failed. Logged and swallowed by the dispatcher."""


class StoreError(TaskEngineError):
    """The relational store failed. Every write is a full-value SET, so retrying is safe."""
