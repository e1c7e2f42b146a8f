from __future__ import annotations

import json
from collections.abc import Callable, Hashable, Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, Any, TypeVar, overload

from .core import EagerLoader, LoadPath, normalize_loads
from .gate import forbidden, violation
from .tools import json_default


if TYPE_CHECKING:
    from .record import Record


R = TypeVar("R", bound="Record")
T = TypeVar("T")


def _accessor(key: str | Callable[[R], Any]) -> Callable[[R], Any]:
    if callable(key):
        return key

    return lambda record: record.get_attribute(key)


class RecordCollection(Sequence[R]):
    """Immutable ordered sequence of records.

    Transformations that keep the element type (``filter``, ``sort_by``,
    slicing, ``take``, ``unique``...) return a new ``RecordCollection``.
    Transformations that may change it return plain containers: ``map`` and
    ``pluck`` give a ``list``, ``group_by`` and ``key_by`` give a ``dict``.
    Every in-place mutator raises :class:`ViolationError`.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[R] = ()) -> None:
        object.__setattr__(self, "_items", tuple(items))

    @overload
    def __getitem__(self, index: int) -> R: ...

    @overload
    def __getitem__(self, index: slice) -> RecordCollection[R]: ...

    def __getitem__(self, index: int | slice) -> R | RecordCollection[R]:
        if isinstance(index, slice):
            return type(self)(self._items[index])

        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[R]:
        return iter(self._items)

    def __add__(self, other: Iterable[R]) -> RecordCollection[R]:
        return type(self)((*self._items, *other))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RecordCollection):
            return self._items == other._items

        if isinstance(other, (list, tuple)):
            return list(self._items) == list(other)

        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {list(self._items)!r}>"

    def __setattr__(self, name: str, value: Any) -> None:
        raise violation(name, "collection")

    __setitem__ = forbidden("__setitem__", "collection")
    __delitem__ = forbidden("__delitem__", "collection")
    append = forbidden("append", "collection")
    extend = forbidden("extend", "collection")
    insert = forbidden("insert", "collection")
    pop = forbidden("pop", "collection")
    remove = forbidden("remove", "collection")
    clear = forbidden("clear", "collection")
    sort = forbidden("sort", "collection")
    reverse = forbidden("reverse", "collection")
    push = forbidden("push", "collection")
    put = forbidden("put", "collection")
    prepend = forbidden("prepend", "collection")
    forget = forbidden("forget", "collection")
    transform = forbidden("transform", "collection")
    splice = forbidden("splice", "collection")

    # same-type transformations

    def filter(self, predicate: Callable[[R], Any]) -> RecordCollection[R]:
        """Keep records for which *predicate* is truthy."""
        return type(self)(record for record in self._items if predicate(record))

    def reject(self, predicate: Callable[[R], Any]) -> RecordCollection[R]:
        return type(self)(record for record in self._items if not predicate(record))

    def where(self, key: str, value: Any) -> RecordCollection[R]:
        """Keep records whose (cast) attribute *key* equals *value*."""
        return type(self)(record for record in self._items if record.get_attribute(key) == value)

    def sort_by(
        self, key: str | Callable[[R], Any], *, reverse: bool = False
    ) -> RecordCollection[R]:
        return type(self)(sorted(self._items, key=_accessor(key), reverse=reverse))

    def take(self, count: int) -> RecordCollection[R]:
        """First *count* records, or the last ``-count`` when negative."""
        if count < 0:
            return type(self)(self._items[count:])

        return type(self)(self._items[:count])

    def skip(self, count: int) -> RecordCollection[R]:
        return type(self)(self._items[count:])

    def unique(self, key: str | Callable[[R], Hashable] | None = None) -> RecordCollection[R]:
        """Drop later duplicates, comparing records or the value of *key*."""
        extract = _accessor(key) if key is not None else (lambda record: record)
        seen: set[Hashable] = set()
        kept: list[R] = []
        for record in self._items:
            marker = extract(record)
            if marker not in seen:
                seen.add(marker)
                kept.append(record)

        return type(self)(kept)

    # plain results

    def map(self, fn: Callable[[R], T]) -> list[T]:
        return [fn(record) for record in self._items]

    def pluck(self, key: str) -> list[Any]:
        return [record.get_attribute(key) for record in self._items]

    def group_by(self, key: str | Callable[[R], Hashable]) -> dict[Any, list[R]]:
        extract = _accessor(key)
        groups: dict[Any, list[R]] = {}
        for record in self._items:
            groups.setdefault(extract(record), []).append(record)

        return groups

    def key_by(self, key: str | Callable[[R], Hashable]) -> dict[Any, R]:
        """Index records by *key*; a later record wins on duplicate keys."""
        extract = _accessor(key)
        return {extract(record): record for record in self._items}

    def to_list(self) -> list[R]:
        return list(self._items)

    # accessors

    def first(self, predicate: Callable[[R], Any] | None = None, default: Any = None) -> Any:
        for record in self._items:
            if predicate is None or predicate(record):
                return record

        return default

    def last(self, predicate: Callable[[R], Any] | None = None, default: Any = None) -> Any:
        for record in reversed(self._items):
            if predicate is None or predicate(record):
                return record

        return default

    def is_empty(self) -> bool:
        return not self._items

    def model_keys(self) -> list[Any]:
        """Primary-key values of the records, in order."""
        return [record.get_key() for record in self._items]

    def load(self, *paths: LoadPath) -> RecordCollection[R]:
        """Eager load relation paths on every record in the collection.

        Runs one query per relation per depth regardless of collection size.
        Top-level names must be declared on at least one record type.

        Args:
            *paths: Relation names, dotted paths, or ``{path: constraint}``
                mappings.

        Returns:
            This collection, whose records now hold the loaded relations.

        Raises:
            UnknownRelationError: If a top-level name is not a declared relation.
        """
        EagerLoader(normalize_loads(paths), strict=True).load(self._items)
        return self

    # serialization

    def to_dicts(self) -> list[dict[str, Any]]:
        return [record.to_dict() for record in self._items]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dicts(), default=json_default, **kwargs)
