from __future__ import annotations

import re
from collections.abc import Callable, Hashable, Iterable
from typing import Any, Final, Literal, TypeVar, overload


R = TypeVar("R")

_INTEGER_KEY: Final = re.compile(r"-?(?:0|[1-9][0-9]*)")


def dictionary_key(value: Any) -> Any:
    """Fold a join key into the form used for dictionary lookups.

    Canonical decimal integer strings become ints, so a ``"1"`` read from a
    varchar morph id or string foreign key matches an integer key ``1``.
    Other values (``"01"``, ``"abc"``, UUIDs) are kept as they are.
    """
    if isinstance(value, str) and _INTEGER_KEY.fullmatch(value):
        return int(value)

    return value


def collect_keys(records: Iterable[R], key: Callable[[R], Any]) -> list[Any]:
    """Return the distinct, non-null join keys of *records* in first-seen order.

    Keys equal after :func:`dictionary_key` folding count once; the first raw
    value seen is the one returned.

    Args:
        records: Records to read keys from.
        key: Function extracting the join key of one record.

    Returns:
        List of unique keys, nulls dropped.
    """
    seen: set[Hashable] = set()
    keys: list[Any] = []
    for record in records:
        value = key(record)
        if value is None:
            continue

        folded = dictionary_key(value)
        if folded in seen:
            continue

        seen.add(folded)
        keys.append(value)

    return keys


def keyed(records: Iterable[R], key: Callable[[R], Any]) -> list[tuple[Any, R]]:
    """Pair every record with its correlation key."""
    return [(key(record), record) for record in records]


@overload
def build_dictionary(
    pairs: Iterable[tuple[Any, R]], *, many: Literal[True]
) -> dict[Any, list[R]]: ...


@overload
def build_dictionary(pairs: Iterable[tuple[Any, R]], *, many: Literal[False]) -> dict[Any, R]: ...


@overload
def build_dictionary(
    pairs: Iterable[tuple[Any, R]], *, many: bool
) -> dict[Any, R] | dict[Any, list[R]]: ...


def build_dictionary(
    pairs: Iterable[tuple[Any, R]], *, many: bool
) -> dict[Any, R] | dict[Any, list[R]]:
    """Group related records by their correlation key.

    One-to-one relations keep the first record seen for each key; one-to-many
    relations accumulate every record in result order. Pairs with a null key
    are dropped since no parent can match them. Keys are stored folded by
    :func:`dictionary_key`, so look them up the same way.

    Args:
        pairs: ``(key, record)`` pairs in query result order.
        many: Whether each key maps to a list of records.

    Returns:
        Mapping from key to a record, or to a list of records when *many*.

    Example:
        >>> build_dictionary([(1, "r1"), (1, "r2"), (2, "r3")], many=True)
        {1: ['r1', 'r2'], 2: ['r3']}
        >>> build_dictionary([(1, "r1"), ("1", "r2")], many=False)
        {1: 'r1'}
    """
    if many:
        grouped: dict[Any, list[R]] = {}
        for key, record in pairs:
            if key is not None:
                grouped.setdefault(dictionary_key(key), []).append(record)

        return grouped

    single: dict[Any, R] = {}
    for key, record in pairs:
        if key is None:
            continue

        folded = dictionary_key(key)
        if folded not in single:
            single[folded] = record

    return single
