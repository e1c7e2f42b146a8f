from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, Generic, TypeAlias, TypeVar

import sqlalchemy as sa

from .collection import RecordCollection
from .core import EagerLoader, LoadPath, Loads, normalize_loads
from .datastructures import frozendict
from .exceptions import ConfigurationError, RecordNotFoundError
from .gate import forbidden
from .tools import Constraint, get_column, get_table


if TYPE_CHECKING:
    from sqlalchemy.engine import RowMapping

    from .record import Record


R = TypeVar("R", bound="Record")

logger = logging.getLogger(__name__)

SOFT_DELETE_SCOPE: Final[str] = "soft_delete"

Hydrator: TypeAlias = "Callable[[Mapping[str, Any], sa.Connection | None], R]"


class Query(Generic[R]):
    """Generative read-only query over one record type.

    Wraps a ``sqlalchemy.Select`` against the record's table plus the
    connection it runs on. Every builder method returns a new ``Query``;
    the record type's global scopes are applied when :attr:`statement` is
    compiled, and requested eager loads run after hydration.

    Example:
        >>> users = (
        ...     User.query(conn)
        ...     .where(users.c.active.is_(True))
        ...     .order_by("name")
        ...     .loads("posts.comments", {"roles": add_conditions(roles.c.level > 3)})
        ...     .get()
        ... )
    """

    __slots__ = (
        "_connection",
        "_excluded_scopes",
        "_hydrator",
        "_loads",
        "_model",
        "_scoped",
        "_select",
    )

    def __init__(
        self,
        model: type[R],
        connection: sa.Connection | None,
        *,
        select: sa.Select[Any] | None = None,
    ) -> None:
        self._model = model
        self._connection = connection
        self._select: sa.Select[Any] = select if select is not None else sa.select(get_table(model))
        self._loads: Loads = frozendict()
        self._excluded_scopes: frozenset[str] = frozenset()
        self._scoped = True
        self._hydrator: Hydrator[R] | None = None

    def _replace(self, **changes: Any) -> Query[R]:
        clone = object.__new__(type(self))
        for slot in Query.__slots__:
            setattr(clone, slot, getattr(self, slot))

        for name, value in changes.items():
            setattr(clone, f"_{name}", value)

        return clone

    @property
    def model(self) -> type[R]:
        return self._model

    @property
    def connection(self) -> sa.Connection | None:
        return self._connection

    @property
    def table(self) -> sa.Table:
        return get_table(self._model)

    def _column(self, column: str | sa.ColumnElement[Any]) -> sa.ColumnElement[Any]:
        if isinstance(column, str):
            return get_column(self.table, column)

        return column

    # filtering

    def where(self, *criteria: sa.ColumnExpressionArgument[bool]) -> Query[R]:
        return self._replace(select=self._select.where(*criteria))

    def filter_by(self, **values: Any) -> Query[R]:
        """Equality filters on the record's own columns, by column name."""
        return self.where(*(self._column(name) == value for name, value in values.items()))

    def where_in(self, column: str | sa.ColumnElement[Any], values: Iterable[Any]) -> Query[R]:
        return self.where(self._column(column).in_(list(values)))

    def where_null(self, column: str | sa.ColumnElement[Any]) -> Query[R]:
        return self.where(self._column(column).is_(None))

    def where_not_null(self, column: str | sa.ColumnElement[Any]) -> Query[R]:
        return self.where(self._column(column).is_not(None))

    # shaping

    def join(
        self,
        target: sa.FromClause,
        onclause: sa.ColumnExpressionArgument[bool],
        *,
        isouter: bool = False,
    ) -> Query[R]:
        """Join *target* to the record's table on an explicit ON clause."""
        return self._replace(
            select=self._select.join_from(self.table, target, onclause, isouter=isouter)
        )

    def select(self, *columns: sa.ColumnElement[Any] | str) -> Query[R]:
        """Replace the selected columns (hydrated records only carry these)."""
        return self._replace(
            select=self._select.with_only_columns(*(self._column(c) for c in columns))
        )

    def add_columns(self, *columns: sa.ColumnElement[Any] | str) -> Query[R]:
        return self._replace(select=self._select.add_columns(*(self._column(c) for c in columns)))

    def order_by(self, *columns: sa.ColumnElement[Any] | str) -> Query[R]:
        """Order by columns; a string prefixed with ``-`` sorts descending."""
        clauses: list[sa.ColumnElement[Any]] = []
        for column in columns:
            if isinstance(column, str) and column.startswith("-"):
                clauses.append(self._column(column[1:]).desc())
            else:
                clauses.append(self._column(column))

        return self._replace(select=self._select.order_by(*clauses))

    def limit(self, count: int | None) -> Query[R]:
        return self._replace(select=self._select.limit(count))

    def offset(self, count: int | None) -> Query[R]:
        return self._replace(select=self._select.offset(count))

    def distinct(self) -> Query[R]:
        return self._replace(select=self._select.distinct())

    def apply(self, constraint: Constraint) -> Query[R]:
        """Run a ``Callable[[Select], Select]`` against the underlying select."""
        return self._replace(select=constraint(self._select))

    def with_hydrator(self, hydrator: Hydrator[R]) -> Query[R]:
        """Use *hydrator* to turn raw rows into records instead of the record type."""
        return self._replace(hydrator=hydrator)

    # eager loading

    def loads(self, *paths: LoadPath) -> Query[R]:
        """Eager load relation paths on every record this query returns.

        Args:
            *paths: Relation names, dotted paths such as ``"posts.comments"``,
                or mappings of either to a constraint.

        Returns:
            New query with the paths merged into its load plan.
        """
        return self._replace(loads=normalize_loads((self._loads, *paths)))

    def without_loads(self) -> Query[R]:
        return self._replace(loads=frozendict())

    @property
    def eager_loads(self) -> Loads:
        return self._loads

    # scopes

    def without_global_scopes(self) -> Query[R]:
        return self._replace(scoped=False)

    def without_global_scope(self, *names: str) -> Query[R]:
        return self._replace(excluded_scopes=self._excluded_scopes | frozenset(names))

    def with_trashed(self) -> Query[R]:
        """Include soft-deleted rows."""
        return self.without_global_scope(SOFT_DELETE_SCOPE)

    @property
    def statement(self) -> sa.Select[Any]:
        """The select with global scopes applied, ready to execute."""
        stmt = self._select
        if self._scoped:
            for name, scope in self._model.global_scopes().items():
                if name not in self._excluded_scopes:
                    stmt = scope(stmt)

        return stmt

    # execution

    def _require_connection(self) -> sa.Connection:
        if self._connection is None:
            raise ConfigurationError.missing_connection(self._model)

        return self._connection

    def _execute(self, stmt: sa.Executable) -> sa.CursorResult[Any]:
        connection = self._require_connection()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Executing for %s: %s", self._model.__name__, stmt)

        return connection.execute(stmt)

    def fetch_rows(self) -> Sequence[RowMapping]:
        """Execute the statement and return raw row mappings, without hydration."""
        return self._execute(self.statement).mappings().all()

    def hydrate(self, rows: Iterable[Mapping[str, Any]]) -> RecordCollection[R]:
        if self._hydrator is not None:
            hydrator = self._hydrator
            return RecordCollection(hydrator(row, self._connection) for row in rows)

        return RecordCollection(self._model._hydrate(row, self._connection) for row in rows)

    def eager_load(self, records: Sequence[R]) -> None:
        """Resolve this query's eager loads on already hydrated *records*."""
        if self._loads and records:
            EagerLoader(self._loads).load(records)

    def get(self) -> RecordCollection[R]:
        """Execute and return every matching record, with eager loads resolved."""
        records = self.hydrate(self.fetch_rows())
        self.eager_load(records)
        return records

    def all(self) -> RecordCollection[R]:
        return self.get()

    def first(self) -> R | None:
        records = self.limit(1).get()
        return records[0] if records else None

    def first_or_fail(self) -> R:
        """Like :meth:`first`, raising ``RecordNotFoundError`` when nothing matches."""
        record = self.first()
        if record is None:
            raise RecordNotFoundError(self._model)

        return record

    def _key_column(self, operation: str) -> sa.ColumnElement[Any]:
        name = self._model.key_name()
        if name is None:
            raise ConfigurationError.missing_primary_key(self._model, operation)

        return get_column(self.table, name)

    def find(self, key: Any) -> R | None:
        return self.where(self._key_column("find") == key).first()

    def find_or_fail(self, key: Any) -> R:
        record = self.find(key)
        if record is None:
            raise RecordNotFoundError(self._model, [key])

        return record

    def find_many(self, keys: Iterable[Any]) -> RecordCollection[R]:
        return self.where(self._key_column("find_many").in_(list(keys))).get()

    def count(self) -> int:
        subquery = self.statement.order_by(None).subquery()
        return self._execute(sa.select(sa.func.count()).select_from(subquery)).scalar_one()

    def exists(self) -> bool:
        return bool(self._execute(sa.select(self.statement.exists())).scalar())

    insert = forbidden("insert")
    update = forbidden("update")
    delete = forbidden("delete")
    upsert = forbidden("upsert")
    truncate = forbidden("truncate")
    force_delete = forbidden("force_delete")

    def __repr__(self) -> str:
        return f"<Query {self._model.__name__}: {self.statement}>"
