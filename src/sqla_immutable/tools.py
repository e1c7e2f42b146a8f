from __future__ import annotations

import copy
import re
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import TYPE_CHECKING, Any, TypeAlias

import sqlalchemy as sa

from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from .record import Record


Constraint: TypeAlias = Callable[[sa.Select[Any]], sa.Select[Any]]

_SNAKE_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


@lru_cache
def _get_table(model: type[Record]) -> sa.Table:
    """Return ``model.__table__`` (cached)."""
    table = getattr(model, "__table__", None)
    if not isinstance(table, sa.Table):
        raise ConfigurationError.missing_table(model)

    return table


@lru_cache
def _get_table_name(model: type[Record]) -> str:
    """Return the table name for *model* (cached)."""
    return _get_table(model).name


@lru_cache(maxsize=1024)
def _snake_case(name: str) -> str:
    return _SNAKE_BOUNDARY.sub("_", name).lower()


def get_table(model: type[Record]) -> sa.Table:
    """Get the table a record type reads from.

    Args:
        model: Record subclass.

    Returns:
        The ``sqlalchemy.Table`` declared as ``__table__``.

    Raises:
        ConfigurationError: If the record type declares no table.
    """
    return _get_table(model)


def get_table_name(model: type[Record]) -> str:
    """Get the table name for a record type.

    Args:
        model: Record subclass.

    Returns:
        The table name as a string.

    Raises:
        ConfigurationError: If the record type declares no table.
    """
    return _get_table_name(model)


def get_column(table: sa.Table, name: str) -> sa.Column[Any]:
    """Look up *name* on *table*, raising ``ConfigurationError`` if absent."""
    try:
        return table.c[name]
    except KeyError:
        raise ConfigurationError.missing_column(table.name, name, table.c.keys()) from None


def get_primary_key(model: type[Record]) -> sa.Column[Any] | None:
    """Get the primary key column for a record type.

    Args:
        model: Record subclass.

    Returns:
        The column named by ``__primary_key__``, or None when the type has no key.
    """
    name = model.key_name()
    if name is None:
        return None

    return get_column(get_table(model), name)


def detached(value: Any) -> Any:
    """Return a deep copy of a mutable container, or *value* itself otherwise.

    Records hand attribute values out through this so JSON columns and other
    container values cannot be edited in place behind the record.
    """
    if isinstance(value, (dict, list, set, bytearray)):
        return copy.deepcopy(value)

    return value


def snake_case(name: str) -> str:
    """Convert a CamelCase type name to snake_case (``UserRole`` -> ``user_role``)."""
    return _snake_case(name)


def add_conditions(*conditions: sa.ColumnExpressionArgument[bool]) -> Constraint:
    """Create a constraint that adds WHERE conditions to a select.

    The result can be paired with a relation path when eager loading.

    Args:
        *conditions: SQLAlchemy column expressions that evaluate to boolean.

    Returns:
        A function that takes a select and returns it with added conditions.

    Example:
        >>> users = (
        ...     User.query(conn)
        ...     .loads({"roles": add_conditions(roles.c.level > 3)})
        ...     .get()
        ... )
    """

    def _add(query: sa.Select[Any]) -> sa.Select[Any]:
        return query.where(*conditions)

    return _add


def add_order_by(*clauses: sa.ColumnExpressionArgument[Any]) -> Constraint:
    """Create a constraint that appends ORDER BY clauses to a select."""

    def _order(query: sa.Select[Any]) -> sa.Select[Any]:
        return query.order_by(*clauses)

    return _order


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for dates, decimals and other non-JSON scalars."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()

    if isinstance(value, Decimal):
        return str(value)

    if hasattr(value, "to_dict"):
        return value.to_dict()

    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
