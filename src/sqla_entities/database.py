"""SQL execution over a single SQLAlchemy connection.

Statements are plain SQL with ``?`` placeholders. Parameters follow the
prepared-statement convention: a string of one-character type tags followed by
the values, e.g. ``["is", 3, "Leon"]``.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Final

import sqlalchemy as sa

from .config import Settings, get_settings
from .errors import (
    AmbiguousResultError,
    ConstraintError,
    DatabaseConnectionError,
    QueryExecutionError,
    ValidationError,
)
from .properties import BIND_DOUBLE, BIND_INTEGER, BIND_STRING


logger = logging.getLogger(__name__)

REPREPARE_ERROR_CODE: Final[int] = 1615
REPREPARE_DELAY: Final[float] = 0.05

_BIND_TYPES: Final[dict[str, tuple[type, sa.types.TypeEngine[Any]]]] = {
    BIND_INTEGER: (int, sa.Integer()),
    BIND_DOUBLE: (float, sa.Float()),
    BIND_STRING: (str, sa.String()),
}
_LITERAL_RE: Final = re.compile(r"""('(?:[^'\\]|\\.|'')*'|"(?:[^"\\]|\\.)*")""")

_database: Database | None = None


@dataclass(slots=True)
class StatementResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    last_insert_id: int | None = None
    rowcount: int = 0


class Transaction:
    """Handle of an explicitly begun transaction.

    Pass it to mutating operations so they run inside it instead of committing on
    their own. Used as a context manager it commits on success and rolls back on error.
    """

    __slots__ = ("_database", "_handle")

    def __init__(self, database: Database, handle: sa.RootTransaction) -> None:
        self._database = database
        self._handle = handle

    @property
    def is_active(self) -> bool:
        return self._handle.is_active and self._database.active_transaction is self

    def commit(self) -> None:
        self._handle.commit()
        self._database._finish(self)
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        self._handle.rollback()
        self._database._finish(self)
        logger.debug("Transaction rolled back")

    def __enter__(self) -> Transaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if self._database.active_transaction is not self:
            return
        if exc_type is None and self._handle.is_active:
            self.commit()
        else:
            self.rollback()


class Database:
    """One lazily opened connection plus the statement helpers built on it.

    Args:
        settings: Connection settings, the active ones by default.
        engine: Ready engine to use instead of creating one from ``settings``.
    """

    def __init__(self, settings: Settings | None = None, *, engine: sa.Engine | None = None) -> None:
        if engine is None:
            settings = settings or get_settings()
            engine = sa.create_engine(settings.database_url(), echo=settings.echo)

        self.engine = engine
        self._connection: sa.Connection | None = None
        self._active: Transaction | None = None

    @property
    def connection(self) -> sa.Connection:
        if self._connection is None:
            try:
                self._connection = self.engine.connect()
            except sa.exc.DBAPIError as exc:
                raise DatabaseConnectionError(
                    f"Failed to connect to {self.engine.url.render_as_string(hide_password=True)}: {exc.orig}"
                ) from exc
            logger.info("Connected to %s", self.engine.url.render_as_string(hide_password=True))

        return self._connection

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def active_transaction(self) -> Transaction | None:
        return self._active

    def close(self) -> None:
        if self._connection is None:
            return

        if self._active is not None:
            self._active.rollback()
        self._connection.close()
        self._connection = None
        logger.info("Connection to %s closed", self.engine.url.render_as_string(hide_password=True))

    def begin(self) -> Transaction:
        """Begin a transaction on the connection.

        Raises:
            QueryExecutionError: If a transaction is already active.
        """
        if self._active is not None:
            raise QueryExecutionError("A transaction is already active")

        self._active = Transaction(self, self.connection.begin())
        logger.debug("Transaction begun")
        return self._active

    @contextmanager
    def transaction(self, outer: Transaction | None = None) -> Iterator[Transaction]:
        """Scope for a unit of work.

        With ``outer`` (or an already active transaction) the work joins it and the
        owner decides when to commit. Otherwise a transaction is begun here,
        committed when the block succeeds and rolled back when it raises.

        Raises:
            ValidationError: If ``outer`` is no longer active.
        """
        if outer is not None:
            if not outer.is_active:
                raise ValidationError("The given transaction is no longer active")
            yield outer
            return

        if self._active is not None:
            yield self._active
            return

        with self.begin() as tx:
            yield tx

    def _finish(self, transaction: Transaction) -> None:
        if self._active is transaction:
            self._active = None

    def escape_string(self, value: str) -> str:
        """Escape ``value`` for embedding inside a single-quoted SQL literal.

        Quoting follows the engine's dialect, so the result is only valid for
        statements run on this database.
        """
        literal = sa.String().literal_processor(dialect=self.engine.dialect)(value)
        return literal[1:-1]

    def select(self, query: str) -> list[dict[str, Any]]:
        return self._run(query).rows

    def select_single(self, query: str) -> dict[str, Any] | None:
        return _single(self._run(query).rows, query)

    def insert(self, query: str) -> int | None:
        """Run an INSERT and return the auto-generated id."""
        return self._run(query).last_insert_id

    def insert_default(self, table: str) -> int | None:
        """Insert a row made of column defaults only."""
        if self.dialect_name == "sqlite":
            return self.insert(f"INSERT INTO {table} DEFAULT VALUES")

        return self.insert(f"INSERT INTO {table} () VALUES ()")

    def update(self, query: str) -> int:
        return self._run(query).rowcount

    def delete(self, query: str) -> int:
        return self._run(query).rowcount

    def execute(self, query: str) -> StatementResult:
        return self._run(query)

    def prepare_and_execute(self, query: str, parameters: Sequence[Any]) -> StatementResult:
        """Bind ``parameters`` to the ``?`` placeholders of ``query`` and run it.

        Args:
            query: SQL text with ``?`` placeholders.
            parameters: Type tags string followed by one value per placeholder.

        Returns:
            Rows, the generated id and the affected row count.

        Raises:
            ValidationError: If tags, values and placeholders don't line up.
            ConstraintError: If the statement violates a constraint.
            QueryExecutionError: If the statement fails otherwise.
        """
        return self._run(query, parameters)

    def prepare_and_execute_select(self, query: str, parameters: Sequence[Any]) -> list[dict[str, Any]]:
        return self._run(query, parameters).rows

    def prepare_and_execute_select_single(
        self, query: str, parameters: Sequence[Any]
    ) -> dict[str, Any] | None:
        return _single(self._run(query, parameters).rows, query)

    def _run(self, query: str, parameters: Sequence[Any] | None = None) -> StatementResult:
        statement = _compile(query, parameters)
        logger.debug("Executing %s %s", query, list(parameters[1:]) if parameters else "")

        for attempt in (1, 2):
            try:
                return self._execute(statement)
            except sa.exc.DBAPIError as exc:
                code = _error_code(exc)
                if code == REPREPARE_ERROR_CODE and attempt == 1:
                    logger.warning("Statement needs to be re-prepared, retrying: %s", query)
                    time.sleep(REPREPARE_DELAY)
                    continue

                if isinstance(exc, sa.exc.IntegrityError):
                    raise ConstraintError(
                        f"Constraint violated by {query!r}: {exc.orig}", code=code, query=query
                    ) from exc
                raise QueryExecutionError(
                    f"Error while executing {query!r}: [{code}] {exc.orig}", code=code, query=query
                ) from exc

        raise AssertionError("unreachable")

    def _execute(self, statement: sa.TextClause) -> StatementResult:
        connection = self.connection
        if self._active is not None:
            return _collect(connection.execute(statement))

        with connection.begin():
            return _collect(connection.execute(statement))


def _compile(query: str, parameters: Sequence[Any] | None) -> sa.TextClause:
    """Rewrite ``?`` placeholders outside quoted literals into typed named binds."""
    tags = ""
    values: list[Any] = []
    if parameters:
        tags, *values = parameters
        if len(tags) != len(values):
            raise ValidationError(f"{len(tags)} type tags given for {len(values)} values")

    counter = 0
    parts = _LITERAL_RE.split(query)
    for index, part in enumerate(parts):
        if index % 2:
            # literal; colons would otherwise be taken for bind names
            parts[index] = part.replace(":", "\\:")
            continue

        pieces = part.split("?")
        rebuilt = pieces[0]
        for piece in pieces[1:]:
            rebuilt += f":p{counter}{piece}"
            counter += 1
        parts[index] = rebuilt

    if counter != len(values):
        raise ValidationError(f"Statement has {counter} placeholders but {len(values)} values were given")

    statement = sa.text("".join(parts))
    if not values:
        return statement

    binds = []
    for index, (tag, value) in enumerate(zip(tags, values)):
        if tag not in _BIND_TYPES:
            raise ValidationError(f"Unknown parameter type tag {tag!r}")
        python_type, sql_type = _BIND_TYPES[tag]
        binds.append(
            sa.bindparam(f"p{index}", None if value is None else python_type(value), type_=sql_type)
        )

    return statement.bindparams(*binds)


def _collect(result: sa.CursorResult[Any]) -> StatementResult:
    if not result.returns_rows:
        return StatementResult(last_insert_id=result.lastrowid, rowcount=result.rowcount)

    rows = [dict(row) for row in result.mappings()]
    return StatementResult(rows=rows, rowcount=len(rows))


def _single(rows: list[dict[str, Any]], query: str) -> dict[str, Any] | None:
    if len(rows) > 1:
        raise AmbiguousResultError(f"The single statement {query!r} returned {len(rows)} rows")

    return rows[0] if rows else None


def _error_code(exc: sa.exc.DBAPIError) -> int | None:
    orig = exc.orig
    code = getattr(orig, "sqlite_errorcode", None)
    if code is not None:
        return code

    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]

    return None


def init_database(settings: Settings | None = None, *, engine: sa.Engine | None = None) -> Database:
    """Create the process-wide database, closing the previous one.

    Example:
        >>> init_settings(load_config("sqla_entities.yaml"))
        >>> init_database()
    """
    global _database

    if _database is not None:
        _database.close()

    _database = Database(settings, engine=engine)
    return _database


def get_database() -> Database:
    """Return the process-wide database, creating it from the active settings on first use."""
    global _database

    if _database is None:
        _database = Database()

    return _database


def close_database() -> None:
    global _database

    if _database is not None:
        _database.close()
        _database = None
