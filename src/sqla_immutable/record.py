from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Generic, NoReturn, TypeVar, overload

import sqlalchemy as sa

from .casts import CastSpec, cast
from .collection import RecordCollection
from .core import EagerLoader, LoadPath, normalize_loads
from .datastructures import frozendict
from .exceptions import ConfigurationError, UnknownRelationError, ViolationError
from .gate import forbidden, violation
from .pivot import Pivot
from .query import SOFT_DELETE_SCOPE, Query
from .relations import (
    BelongsTo,
    BelongsToMany,
    HasMany,
    HasManyThrough,
    HasOne,
    HasOneThrough,
    MorphMany,
    MorphOne,
    MorphTo,
    MorphToMany,
    Relation,
)
from .tools import detached, get_column, get_table, json_default, snake_case


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .tools import Constraint


R = TypeVar("R", bound="Record")
RelT = TypeVar("RelT", bound=Relation[Any])


class RelationProperty(Generic[RelT]):
    """Class-level declaration of a relation, created by :func:`relation`.

    Reading it on a record returns the resolved value (resolving it on first
    access); assigning to it raises :class:`ViolationError`. Every declared
    relation is collected into the owning type's ``__relations__`` registry
    when the class is created.
    """

    def __init__(self, fget: Callable[[Any], RelT]) -> None:
        self.fget = fget
        self.name: str = fget.__name__
        self.__doc__ = fget.__doc__

    def __set_name__(self, owner: type[Record], name: str) -> None:
        self.name = name

    @overload
    def __get__(self, instance: None, owner: type[Any]) -> Self: ...

    @overload
    def __get__(self, instance: Record, owner: type[Any]) -> Any: ...

    def __get__(self, instance: Record | None, owner: type[Any]) -> Any:
        if instance is None:
            return self

        return instance.get_relation_value(self.name)

    def __set__(self, instance: Record, value: Any) -> NoReturn:
        raise violation(self.name, "relation")

    def __delete__(self, instance: Record) -> NoReturn:
        raise violation(self.name, "relation")

    def declare(self, record: Record) -> RelT:
        """Build the relation descriptor for *record* (no I/O)."""
        declared = self.fget(record)
        if not isinstance(declared, Relation):
            raise ConfigurationError.invalid_relation(type(record), self.name, declared)

        return declared.named(self.name)


def relation(fget: Callable[[Any], RelT]) -> RelationProperty[RelT]:
    """Declare a relation on a record type.

    The decorated method returns a descriptor built with one of the
    declaring helpers (``self.has_many(...)``, ``self.belongs_to(...)``...).

    Example:
        >>> class User(Base):
        ...     __table__ = users
        ...
        ...     @relation
        ...     def posts(self) -> HasMany[Post]:
        ...         return self.has_many(Post)
    """
    return RelationProperty(fget)


class Record:
    """Read-only row of a table, with lazily or eagerly resolved relations.

    Records are only ever produced by hydration (:meth:`query`,
    :meth:`from_row`). Their attributes are fixed once hydrated; relations
    are filled exactly once, either by the first access or by an eager load,
    through an internal channel. Every public mutation raises
    :class:`ViolationError`.

    Configuration is declared with class attributes:

    * ``__table__``: the ``sqlalchemy.Table`` rows come from;
    * ``__primary_key__``: key column name, defaulting to the table's first
      primary-key column (None for keyless types);
    * ``__casts__``: attribute name to cast spec (see :func:`cast`);
    * ``__with__``: relation paths eager loaded by every query;
    * ``__hidden__`` / ``__visible__`` / ``__appends__``: serialization;
    * ``__soft_delete_column__``: enables the ``soft_delete`` global scope;
    * ``__scopes__``: named global scopes, each ``Callable[[Select], Select]``;
    * ``__morph_name__``: tag stored in polymorphic type columns, defaulting
      to the snake-cased class name.
    """

    __table__: ClassVar[sa.Table]
    __primary_key__: ClassVar[str | None] = "id"
    __casts__: ClassVar[Mapping[str, CastSpec]] = frozendict()
    __with__: ClassVar[tuple[LoadPath, ...]] = ()
    __hidden__: ClassVar[frozenset[str]] = frozenset()
    __visible__: ClassVar[frozenset[str]] = frozenset()
    __appends__: ClassVar[tuple[str, ...]] = ()
    __soft_delete_column__: ClassVar[str | None] = None
    __scopes__: ClassVar[Mapping[str, Constraint]] = frozendict()
    __morph_name__: ClassVar[str | None] = None
    __relations__: ClassVar[frozendict[str, RelationProperty[Any]]] = frozendict()

    c: ClassVar[Any]

    __slots__ = ("_attributes", "_connection", "_relations")

    _attributes: frozendict[str, Any]
    _relations: dict[str, Any]
    _connection: sa.Connection | None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        relations: dict[str, RelationProperty[Any]] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, RelationProperty):
                    relations[name] = value
                elif name in relations:
                    del relations[name]

        cls.__relations__ = frozendict(relations)

        table = cls.__dict__.get("__table__")
        if isinstance(table, sa.Table):
            cls.c = table.c
            primary = list(table.primary_key.columns)
            if "__primary_key__" not in cls.__dict__ and primary:
                cls.__primary_key__ = primary[0].name

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        raise ViolationError.direct_instantiation(type(self))

    # hydration

    @classmethod
    def _hydrate(cls, row: Mapping[str, Any], connection: sa.Connection | None = None) -> Self:
        """Build a record from a raw row (internal channel, bypasses the gate)."""
        instance = cls.__new__(cls)
        attributes = frozendict({key: detached(value) for key, value in row.items()})
        object.__setattr__(instance, "_attributes", attributes)
        object.__setattr__(instance, "_relations", {})
        object.__setattr__(instance, "_connection", connection)
        return instance

    @classmethod
    def from_row(cls, row: Mapping[str, Any], connection: sa.Connection | None = None) -> Self:
        """Hydrate one record from a mapping of column values.

        Args:
            row: Column name to raw value.
            connection: Connection relations are resolved on; lazy access and
                explicit loads fail with ``ConfigurationError`` without one.

        Returns:
            The hydrated record.
        """
        return cls._hydrate(row, connection)

    @classmethod
    def from_rows(
        cls, rows: Iterable[Mapping[str, Any]], connection: sa.Connection | None = None
    ) -> RecordCollection[Self]:
        return RecordCollection(cls._hydrate(row, connection) for row in rows)

    def _replica(self) -> Self:
        """Same attributes and connection, no loaded relations (internal)."""
        return type(self)._hydrate(self._attributes, self._connection)

    def _set_resolved_relation(self, name: str, value: Any) -> None:
        """Store a resolved relation (internal channel, bypasses the gate)."""
        self._relations[name] = value

    # querying

    @classmethod
    def query(cls, connection: sa.Connection) -> Query[Self]:
        """Start a query for this record type, with its default eager loads."""
        query = Query(cls, connection)
        if cls.__with__:
            return query.loads(*cls.__with__)

        return query

    @classmethod
    def all(cls, connection: sa.Connection) -> RecordCollection[Self]:
        return cls.query(connection).get()

    @classmethod
    def find(cls, connection: sa.Connection, key: Any) -> Self | None:
        return cls.query(connection).find(key)

    @classmethod
    def find_or_fail(cls, connection: sa.Connection, key: Any) -> Self:
        return cls.query(connection).find_or_fail(key)

    @classmethod
    def global_scopes(cls) -> dict[str, Constraint]:
        """Named scopes applied to every query, including ``soft_delete`` when enabled."""
        scopes = dict(cls.__scopes__)
        column = cls.__soft_delete_column__
        if column is not None and SOFT_DELETE_SCOPE not in scopes:
            deleted_at = get_column(get_table(cls), column)
            scopes[SOFT_DELETE_SCOPE] = lambda select: select.where(deleted_at.is_(None))

        return scopes

    @classmethod
    def morph_name(cls) -> str:
        return cls.__morph_name__ or snake_case(cls.__name__)

    @classmethod
    def key_name(cls) -> str | None:
        return cls.__primary_key__

    # attributes

    @property
    def attributes(self) -> frozendict[str, Any]:
        """Raw attribute map as hydrated; container values are copies."""
        return frozendict({key: detached(value) for key, value in self._attributes.items()})

    def get_connection(self) -> sa.Connection:
        if self._connection is None:
            raise ConfigurationError.missing_connection(type(self))

        return self._connection

    def get_key(self) -> Any:
        name = self.key_name()
        return None if name is None else self._attributes.get(name)

    def get_raw(self, key: str) -> Any:
        """Raw, uncast value of *key*, or None when absent."""
        return detached(self._attributes.get(key))

    def _cast_attribute(self, key: str) -> Any:
        value = self._attributes.get(key)
        spec = type(self).__casts__.get(key)
        if spec is None:
            return detached(value)

        return cast(key, value, spec)

    def get_attribute(self, key: str) -> Any:
        """Cast attribute value, or the relation of that name; None when neither exists."""
        if key in self._relations:
            return self._relations[key]

        if key in type(self).__relations__:
            return self.get_relation_value(key)

        return self._cast_attribute(key)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        if name in self._relations:
            return self._relations[name]

        if name in self._attributes:
            return self._cast_attribute(name)

        raise AttributeError(f"{type(self).__name__} record has no attribute or relation {name!r}")

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __contains__(self, key: object) -> bool:
        return key in self._attributes or key in self._relations

    # relations

    @property
    def relations(self) -> frozendict[str, Any]:
        """Snapshot of the relations resolved so far."""
        return frozendict(self._relations)

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def get_relation(self, name: str) -> Any:
        """Already resolved relation value, without triggering resolution."""
        return self._relations.get(name)

    def get_relation_value(self, name: str) -> Any:
        """Resolve *name* on first access, through the same batch path as eager loads."""
        if name in self._relations:
            return self._relations[name]

        if name not in type(self).__relations__:
            raise UnknownRelationError([type(self)], name)

        EagerLoader(frozendict({name: None})).load((self,))
        return self._relations[name]

    def related(self, name: str) -> Relation[Any]:
        """Bound relation descriptor for *name*, whose query can be refined before running.

        Example:
            >>> user.related("posts").where(posts.c.published.is_(True)).get()
        """
        descriptor = type(self).__relations__.get(name)
        if descriptor is None:
            raise UnknownRelationError([type(self)], name)

        return descriptor.declare(self)

    def load(self, *paths: LoadPath) -> Self:
        """Eager load relation paths on this record (see :meth:`RecordCollection.load`)."""
        EagerLoader(normalize_loads(paths), strict=True).load((self,))
        return self

    # declaring helpers

    def belongs_to(
        self,
        related: type[R] | str,
        foreign_key: str | None = None,
        owner_key: str | None = None,
    ) -> BelongsTo[R]:
        return BelongsTo(self, related, foreign_key, owner_key)

    def has_one(
        self,
        related: type[R] | str,
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> HasOne[R]:
        return HasOne(self, related, foreign_key, local_key)

    def has_many(
        self,
        related: type[R] | str,
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> HasMany[R]:
        return HasMany(self, related, foreign_key, local_key)

    def has_one_through(
        self,
        related: type[R] | str,
        through: type[Record] | str,
        first_key: str | None = None,
        second_key: str | None = None,
        local_key: str | None = None,
        second_local_key: str | None = None,
    ) -> HasOneThrough[R]:
        return HasOneThrough(
            self, related, through, first_key, second_key, local_key, second_local_key
        )

    def has_many_through(
        self,
        related: type[R] | str,
        through: type[Record] | str,
        first_key: str | None = None,
        second_key: str | None = None,
        local_key: str | None = None,
        second_local_key: str | None = None,
    ) -> HasManyThrough[R]:
        return HasManyThrough(
            self, related, through, first_key, second_key, local_key, second_local_key
        )

    def morph_to(
        self,
        name: str | None = None,
        type_column: str | None = None,
        id_column: str | None = None,
        owner_key: str | None = None,
    ) -> MorphTo:
        return MorphTo(self, name, type_column, id_column, owner_key)

    def morph_one(
        self,
        related: type[R] | str,
        name: str,
        type_column: str | None = None,
        id_column: str | None = None,
        local_key: str | None = None,
    ) -> MorphOne[R]:
        return MorphOne(self, related, name, type_column, id_column, local_key)

    def morph_many(
        self,
        related: type[R] | str,
        name: str,
        type_column: str | None = None,
        id_column: str | None = None,
        local_key: str | None = None,
    ) -> MorphMany[R]:
        return MorphMany(self, related, name, type_column, id_column, local_key)

    def belongs_to_many(
        self,
        related: type[R] | str,
        table: sa.Table | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> BelongsToMany[R]:
        return BelongsToMany(
            self, related, table, foreign_pivot_key, related_pivot_key, parent_key, related_key
        )

    def morph_to_many(
        self,
        related: type[R] | str,
        name: str,
        table: sa.Table | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> MorphToMany[R]:
        return MorphToMany(
            self,
            related,
            name,
            table,
            foreign_pivot_key,
            related_pivot_key,
            parent_key,
            related_key,
        )

    def morphed_by_many(
        self,
        related: type[R] | str,
        name: str,
        table: sa.Table | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> MorphToMany[R]:
        return MorphToMany(
            self,
            related,
            name,
            table,
            foreign_pivot_key,
            related_pivot_key,
            parent_key,
            related_key,
            inverse=True,
        )

    # serialization

    def _visible(self, key: str) -> bool:
        cls = type(self)
        if cls.__visible__ and key not in cls.__visible__:
            return False

        return key not in cls.__hidden__

    def to_dict(self) -> dict[str, Any]:
        """Serialize cast attributes, appended properties and loaded relations."""
        data = {key: self._cast_attribute(key) for key in self._attributes if self._visible(key)}
        for name in type(self).__appends__:
            data[name] = getattr(self, name)

        for name, value in self._relations.items():
            if not self._visible(name):
                continue

            if isinstance(value, RecordCollection):
                data[name] = value.to_dicts()
            elif isinstance(value, (Record, Pivot)):
                data[name] = value.to_dict()
            else:
                data[name] = value

        return data

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=json_default, **kwargs)

    # gate

    def __setattr__(self, name: str, value: Any) -> NoReturn:
        if name in type(self).__relations__ or name in self._relations:
            raise violation(name, "relation")

        raise violation(name, "attribute")

    def __delattr__(self, name: str) -> NoReturn:
        if name in type(self).__relations__ or name in self._relations:
            raise violation(name, "relation")

        raise violation(name, "attribute")

    def __setitem__(self, key: str, value: Any) -> NoReturn:
        raise violation(key, "attribute")

    def __delitem__(self, key: str) -> NoReturn:
        raise violation(key, "attribute")

    def set_relation(self, name: str, value: Any) -> NoReturn:
        raise violation(name, "relation")

    def unset_relation(self, name: str) -> NoReturn:
        raise violation(name, "relation")

    save = forbidden("save")
    update = forbidden("update")
    delete = forbidden("delete")
    fill = forbidden("fill")
    push = forbidden("push")
    touch = forbidden("touch")
    increment = forbidden("increment")
    decrement = forbidden("decrement")
    force_delete = forbidden("force_delete")
    restore = forbidden("restore")
    create = classmethod(forbidden("create"))

    # identity

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented

        return type(self) is type(other) and self._attributes == other._attributes

    def __hash__(self) -> int:
        return hash((type(self), self.get_key()))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._attributes.to_dict()!r}>"
