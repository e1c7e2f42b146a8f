from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from datetime import date, datetime
from typing import Any, Final, NoReturn

from .datastructures import frozendict
from .gate import violation
from .tools import detached


PIVOT_PREFIX: Final[str] = "pivot_"
DEFAULT_PIVOT_ACCESSOR: Final[str] = "pivot"


class Pivot(Mapping[str, Any]):
    """Read-only junction-table values attached to a many-to-many result.

    Holds the two join columns plus any declared extra and timestamp columns.
    Values are kept as they arrive from the row: never cast, handed out as
    copies when they are containers, and a pivot never carries relations of
    its own.
    """

    __slots__ = ("_attributes", "foreign_key", "related_key", "table")

    def __init__(
        self,
        attributes: Mapping[str, Any],
        table: str,
        foreign_key: str | None = None,
        related_key: str | None = None,
    ) -> None:
        object.__setattr__(self, "_attributes", frozendict(attributes))
        object.__setattr__(self, "table", table)
        object.__setattr__(self, "foreign_key", foreign_key)
        object.__setattr__(self, "related_key", related_key)

    def __getitem__(self, key: str) -> Any:
        return detached(self._attributes[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        try:
            return detached(self._attributes[name])
        except KeyError:
            raise AttributeError(f"Pivot on {self.table!r} has no column {name!r}") from None

    def __setattr__(self, name: str, value: Any) -> NoReturn:
        raise violation(name, "attribute")

    def __delattr__(self, name: str) -> NoReturn:
        raise violation(name, "attribute")

    def __setitem__(self, key: str, value: Any) -> NoReturn:
        raise violation(key, "attribute")

    def __delitem__(self, key: str) -> NoReturn:
        raise violation(key, "attribute")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the pivot, rendering dates as ISO-8601 strings."""
        return {
            key: value.isoformat() if isinstance(value, (date, datetime)) else detached(value)
            for key, value in self._attributes.items()
        }

    def __repr__(self) -> str:
        return f"<Pivot {self.table} {dict(self._attributes)!r}>"


def pivot_label(column: str) -> str:
    """Alias under which a junction column is selected alongside related columns."""
    return f"{PIVOT_PREFIX}{column}"


def split_row(
    row: Mapping[str, Any], columns: Iterable[str]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate selected pivot columns from a related record's own columns.

    Args:
        row: Raw row holding the related columns plus aliased pivot columns.
        columns: Junction column names that were selected with the pivot prefix.

    Returns:
        ``(own_attributes, pivot_attributes)``; pivot keys are unprefixed.
    """
    labels = {pivot_label(column): column for column in columns}
    own: dict[str, Any] = {}
    pivot: dict[str, Any] = {}
    for key, value in row.items():
        column = labels.get(key)
        if column is None:
            own[key] = value
        else:
            pivot[column] = value

    return own, pivot
