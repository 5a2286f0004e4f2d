from __future__ import annotations


class EntityError(Exception):
    """Base class for every error raised by sqla_entities."""


class ConfigurationError(EntityError):
    """Mandatory configuration is missing or the settings were never initialized."""


class DatabaseConnectionError(EntityError):
    """The database could not be reached."""


class ValidationError(EntityError, ValueError):
    """An operation was requested on a field, value or type that does not support it."""


class QueryExecutionError(EntityError):
    """Executing a statement failed.

    Attributes:
        code: Native error code reported by the driver, if any.
        query: The SQL text that failed.
    """

    def __init__(self, message: str, *, code: int | None = None, query: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.query = query


class ConstraintError(QueryExecutionError):
    """A duplicate key, foreign key or link constraint was violated."""


class AmbiguousResultError(EntityError):
    """A single-row query matched more than one row."""
