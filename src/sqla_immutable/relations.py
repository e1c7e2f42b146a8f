"""Relation descriptors and batched resolution.

Each variant is a small data-bearing subclass of :class:`Relation`. The
variants only say how to read join keys and how to shape the related query;
the batch path (:meth:`Relation.eager_load`) is shared, and single-record
resolution (:meth:`Relation.get_results`) runs through it with one parent.
"""

from __future__ import annotations

import enum
import logging
import sys
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Final, Generic, TypeVar

import sqlalchemy as sa

from .collection import RecordCollection
from .dictionary import build_dictionary, collect_keys, dictionary_key, keyed
from .exceptions import ConfigurationError
from .gate import RELATION_MUTATORS, violation
from .node import resolve_model
from .pivot import DEFAULT_PIVOT_ACCESSOR, Pivot, pivot_label, split_row
from .tools import Constraint, get_column, get_table, snake_case


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .query import Query
    from .record import Record


R = TypeVar("R", bound="Record")

logger = logging.getLogger(__name__)

THROUGH_KEY: Final[str] = "through_key__"
RESULTS_SLOT: Final[str] = "results"


class RelationKind(str, enum.Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    HAS_ONE_THROUGH = "has_one_through"
    HAS_MANY_THROUGH = "has_many_through"
    MORPH_TO = "morph_to"
    MORPH_ONE = "morph_one"
    MORPH_MANY = "morph_many"
    BELONGS_TO_MANY = "belongs_to_many"
    MORPH_TO_MANY = "morph_to_many"


def _model_name(model: type[Record] | str) -> str:
    return model if isinstance(model, str) else model.__name__


def _resolve(model: type[R] | str) -> type[R]:
    if isinstance(model, str):
        return resolve_model(model)  # type: ignore[return-value]

    return model


def _key_name(model: type[Record], operation: str) -> str:
    name = model.key_name()
    if name is None:
        raise ConfigurationError.missing_primary_key(model, operation)

    return name


class Relation(Generic[R]):
    """Association from one parent record to related records.

    Construction is pure data: related types given by name are resolved, and
    key names defaulted, only when the relation is first resolved.

    Subclasses describe a variant through:

    * :meth:`join_key` - the parent's correlation value;
    * :meth:`result_key` - a related record's correlation value;
    * :meth:`key_column` - the column filtered by those values;
    * :meth:`filters` - extra fixed criteria (morph type, soft deletes);
    * :meth:`select_query` - the base related query (joins, extra columns).

    Any query method not defined here is forwarded to :meth:`query`, so
    ``user.related("posts").where(...).get()`` works; mutation verbs such as
    ``attach`` or ``save`` raise :class:`ViolationError`.
    """

    kind: ClassVar[RelationKind]
    many: ClassVar[bool] = False

    def __init__(self, parent: Record, related: type[R] | str | None) -> None:
        self.parent = parent
        self.related = related
        self.relation_name = ""

    def named(self, name: str) -> Self:
        self.relation_name = name
        return self

    @property
    def related_model(self) -> type[R]:
        if self.related is None:
            raise ConfigurationError.unresolvable_model(f"{type(self).__name__} target")

        return _resolve(self.related)

    @property
    def related_table(self) -> sa.Table:
        return get_table(self.related_model)

    # variant hooks

    def join_key(self, parent: Record) -> Any:
        raise NotImplementedError

    def result_key(self, record: R) -> Any:
        raise NotImplementedError

    def key_column(self) -> sa.ColumnElement[Any]:
        raise NotImplementedError

    def filters(self) -> tuple[sa.ColumnElement[bool], ...]:
        return ()

    def select_query(self) -> Query[R]:
        return self.base_query()

    # shared

    def base_query(self) -> Query[R]:
        """Plain query against the related type, with its scopes and default loads."""
        return self.related_model.query(self.parent.get_connection())

    def query(self) -> Query[R]:
        """Related query constrained to this parent, for ad-hoc filtering."""
        return self.select_query().where(
            *self.filters(), self.key_column() == self.join_key(self.parent)
        )

    def batch_query(self, keys: Sequence[Any]) -> Query[R]:
        return self.select_query().where(*self.filters(), self.key_column().in_(keys))

    def empty(self) -> RecordCollection[R] | None:
        return RecordCollection() if self.many else None

    def fetch(self, query: Query[R]) -> list[tuple[Any, R]]:
        """Execute *query* and pair each record with its correlation key."""
        return keyed(query.get(), self.result_key)

    def get_results(self) -> R | RecordCollection[R] | None:
        """Resolve the relation for :attr:`parent` alone.

        Runs :meth:`eager_load` over a one-record batch holding a copy of the
        parent, so the parent's own loaded relations are left untouched. A
        null join key still short-circuits without a query.
        """
        replica = self.parent._replica()
        name = self.relation_name or RESULTS_SLOT
        self.eager_load((replica,), name)
        return replica.get_relation(name)

    def eager_load(
        self, parents: Sequence[Record], name: str, constraint: Constraint | None = None
    ) -> None:
        """Resolve the relation for every parent with a single query.

        Args:
            parents: Records of the declaring type.
            name: Relation name to assign on each parent.
            constraint: Optional ``Callable[[Select], Select]`` applied to the
                batched query after the key filter.
        """
        keys = collect_keys(parents, self.join_key)
        if not keys:
            logger.debug("%s.%s: no join keys, skipping query", type(self.parent).__name__, name)
            self._assign(parents, name, {})
            return

        logger.debug(
            "%s.%s (%s): %d parents, %d keys",
            type(self.parent).__name__,
            name,
            self.kind.value,
            len(parents),
            len(keys),
        )
        query = self.batch_query(keys)
        if constraint is not None:
            query = query.apply(constraint)

        self._assign(parents, name, build_dictionary(self.fetch(query), many=self.many))

    def _assign(self, parents: Sequence[Record], name: str, dictionary: Mapping[Any, Any]) -> None:
        empty = self.empty()
        for parent in parents:
            key = self.join_key(parent)
            found = dictionary.get(dictionary_key(key)) if key is not None else None
            if found is None:
                parent._set_resolved_relation(name, empty)
            elif self.many:
                parent._set_resolved_relation(name, RecordCollection(found))
            else:
                parent._set_resolved_relation(name, found)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        if name in RELATION_MUTATORS:
            raise violation(name, "persistence")

        return getattr(self.query(), name)

    def __repr__(self) -> str:
        related = "?" if self.related is None else _model_name(self.related)
        return f"<{type(self).__name__} {type(self.parent).__name__}.{self.relation_name} -> {related}>"


class BelongsTo(Relation[R]):
    """The parent holds a foreign key pointing at the related record's owner key."""

    kind = RelationKind.BELONGS_TO

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        foreign_key: str | None = None,
        owner_key: str | None = None,
    ) -> None:
        super().__init__(parent, related)
        self._foreign_key = foreign_key
        self._owner_key = owner_key

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f"{snake_case(self.relation_name)}_id"

    @property
    def owner_key(self) -> str:
        return self._owner_key or _key_name(self.related_model, f"resolve {self!r}")

    def join_key(self, parent: Record) -> Any:
        return parent.get_raw(self.foreign_key)

    def result_key(self, record: R) -> Any:
        return record.get_raw(self.owner_key)

    def key_column(self) -> sa.ColumnElement[Any]:
        return get_column(self.related_table, self.owner_key)


class HasOneOrMany(Relation[R]):
    """The related records hold a foreign key pointing at the parent's local key."""

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> None:
        super().__init__(parent, related)
        self._foreign_key = foreign_key
        self._local_key = local_key

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f"{snake_case(type(self.parent).__name__)}_id"

    @property
    def local_key(self) -> str:
        return self._local_key or _key_name(type(self.parent), f"resolve {self!r}")

    def join_key(self, parent: Record) -> Any:
        return parent.get_raw(self.local_key)

    def result_key(self, record: R) -> Any:
        return record.get_raw(self.foreign_key)

    def key_column(self) -> sa.ColumnElement[Any]:
        return get_column(self.related_table, self.foreign_key)


class HasOne(HasOneOrMany[R]):
    kind = RelationKind.HAS_ONE


class HasMany(HasOneOrMany[R]):
    kind = RelationKind.HAS_MANY
    many = True


class MorphOneOrMany(HasOneOrMany[R]):
    """Has-one/many where the related rows also tag the owner type."""

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        name: str,
        type_column: str | None = None,
        id_column: str | None = None,
        local_key: str | None = None,
    ) -> None:
        super().__init__(parent, related, id_column or f"{name}_id", local_key)
        self.morph_name = name
        self.type_column = type_column or f"{name}_type"

    @property
    def morph_class(self) -> str:
        return type(self.parent).morph_name()

    def filters(self) -> tuple[sa.ColumnElement[bool], ...]:
        return (get_column(self.related_table, self.type_column) == self.morph_class,)


class MorphOne(MorphOneOrMany[R]):
    kind = RelationKind.MORPH_ONE


class MorphMany(MorphOneOrMany[R]):
    kind = RelationKind.MORPH_MANY
    many = True


class HasOneOrManyThrough(Relation[R]):
    """Related records reached through one intermediate record type.

    ``parent.local_key = intermediate.first_key`` and
    ``intermediate.second_local_key = related.second_key``. The intermediate's
    first key is carried along in the select so results can be matched to
    parents, then removed before hydration.
    """

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        through: type[Record] | str,
        first_key: str | None = None,
        second_key: str | None = None,
        local_key: str | None = None,
        second_local_key: str | None = None,
    ) -> None:
        super().__init__(parent, related)
        self.through = through
        self._first_key = first_key
        self._second_key = second_key
        self._local_key = local_key
        self._second_local_key = second_local_key
        self.include_trashed = False

    def with_trashed_parents(self) -> Self:
        """Keep related rows whose intermediate row is soft-deleted."""
        self.include_trashed = True
        return self

    @property
    def through_model(self) -> type[Record]:
        return _resolve(self.through)

    @property
    def through_table(self) -> sa.Table:
        return get_table(self.through_model)

    @property
    def first_key(self) -> str:
        return self._first_key or f"{snake_case(type(self.parent).__name__)}_id"

    @property
    def second_key(self) -> str:
        return self._second_key or f"{snake_case(_model_name(self.through))}_id"

    @property
    def local_key(self) -> str:
        return self._local_key or _key_name(type(self.parent), f"resolve {self!r}")

    @property
    def second_local_key(self) -> str:
        return self._second_local_key or _key_name(self.through_model, f"resolve {self!r}")

    def join_key(self, parent: Record) -> Any:
        return parent.get_raw(self.local_key)

    def key_column(self) -> sa.ColumnElement[Any]:
        return get_column(self.through_table, self.first_key)

    def filters(self) -> tuple[sa.ColumnElement[bool], ...]:
        column = self.through_model.__soft_delete_column__
        if self.include_trashed or column is None:
            return ()

        return (get_column(self.through_table, column).is_(None),)

    def select_query(self) -> Query[R]:
        through = self.through_table
        return (
            self.base_query()
            .add_columns(self.key_column().label(THROUGH_KEY))
            .join(
                through,
                get_column(through, self.second_local_key)
                == get_column(self.related_table, self.second_key),
            )
            .with_hydrator(self._hydrate)
        )

    def _hydrate(self, row: Mapping[str, Any], connection: sa.Connection | None) -> R:
        attributes = {key: value for key, value in row.items() if key != THROUGH_KEY}
        return self.related_model._hydrate(attributes, connection)

    def fetch(self, query: Query[R]) -> list[tuple[Any, R]]:
        rows = query.fetch_rows()
        records = query.hydrate(rows)
        query.eager_load(records)
        return [(row[THROUGH_KEY], record) for row, record in zip(rows, records)]


class HasOneThrough(HasOneOrManyThrough[R]):
    kind = RelationKind.HAS_ONE_THROUGH


class HasManyThrough(HasOneOrManyThrough[R]):
    kind = RelationKind.HAS_MANY_THROUGH
    many = True


class MorphTo(Relation["Record"]):
    """The parent tags its owner's type and key; the owner type varies per row.

    Batch resolution groups parents by type tag and runs one query per
    distinct type. Each group is assigned as soon as its query returns.
    """

    kind = RelationKind.MORPH_TO

    def __init__(
        self,
        parent: Record,
        name: str | None = None,
        type_column: str | None = None,
        id_column: str | None = None,
        owner_key: str | None = None,
    ) -> None:
        super().__init__(parent, None)
        self._name = name
        self._type_column = type_column
        self._id_column = id_column
        self._owner_key = owner_key

    @property
    def morph_name(self) -> str:
        return self._name or snake_case(self.relation_name)

    @property
    def type_column(self) -> str:
        return self._type_column or f"{self.morph_name}_type"

    @property
    def id_column(self) -> str:
        return self._id_column or f"{self.morph_name}_id"

    def morph_type(self, parent: Record) -> str | None:
        return parent.get_raw(self.type_column) or None

    def join_key(self, parent: Record) -> Any:
        return parent.get_raw(self.id_column)

    def model_for(self, tag: str) -> type[Record]:
        try:
            return resolve_model(tag)
        except ConfigurationError:
            raise ConfigurationError.unknown_morph_type(tag) from None

    def owner_key_for(self, model: type[Record]) -> str:
        return self._owner_key or _key_name(model, f"resolve {self!r}")

    @property
    def related_model(self) -> type[Record]:
        tag = self.morph_type(self.parent)
        if tag is None:
            raise ConfigurationError.unresolvable_model(f"{self!r} with no type")

        return self.model_for(tag)

    def query(self) -> Query[Record]:
        tag, key = self.morph_type(self.parent), self.join_key(self.parent)
        connection = self.parent.get_connection()
        if tag is None or key is None:
            return type(self.parent).query(connection).where(sa.false())

        model = self.model_for(tag)
        column = get_column(get_table(model), self.owner_key_for(model))
        return model.query(connection).where(column == key)

    def eager_load(
        self, parents: Sequence[Record], name: str, constraint: Constraint | None = None
    ) -> None:
        groups: dict[str, list[Record]] = {}
        for parent in parents:
            tag = self.morph_type(parent)
            if tag is None or self.join_key(parent) is None:
                parent._set_resolved_relation(name, None)
                continue

            groups.setdefault(tag, []).append(parent)

        logger.debug(
            "%s.%s (morph_to): %d parents across types %s",
            type(self.parent).__name__,
            name,
            len(parents),
            list(groups),
        )
        if not groups:
            return

        connection = self.parent.get_connection()
        for tag, members in groups.items():
            model = self.model_for(tag)
            owner_key = self.owner_key_for(model)
            query = model.query(connection).where(
                get_column(get_table(model), owner_key).in_(collect_keys(members, self.join_key))
            )
            if constraint is not None:
                query = query.apply(constraint)

            dictionary = build_dictionary(
                keyed(query.get(), lambda record: record.get_raw(owner_key)), many=False
            )
            for parent in members:
                key = dictionary_key(self.join_key(parent))
                parent._set_resolved_relation(name, dictionary.get(key))


class BelongsToMany(Relation[R]):
    """Many-to-many association through a junction ("pivot") table.

    Junction columns are selected under a private prefix, split out of each
    row and attached to the related record as a :class:`Pivot` under
    :attr:`accessor`.
    """

    kind = RelationKind.BELONGS_TO_MANY
    many = True

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        table: sa.Table | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> None:
        super().__init__(parent, related)
        self._table = table
        self._foreign_pivot_key = foreign_pivot_key
        self._related_pivot_key = related_pivot_key
        self._parent_key = parent_key
        self._related_key = related_key
        self.pivot_columns: tuple[str, ...] = ()
        self.pivot_timestamps: tuple[str, str] | None = None
        self.accessor = DEFAULT_PIVOT_ACCESSOR

    def with_pivot(self, *columns: str) -> Self:
        """Also select these junction columns into the pivot."""
        self.pivot_columns = (*self.pivot_columns, *columns)
        return self

    def with_timestamps(
        self, created_at: str = "created_at", updated_at: str = "updated_at"
    ) -> Self:
        self.pivot_timestamps = (created_at, updated_at)
        return self

    def as_(self, accessor: str) -> Self:
        """Attach the pivot under *accessor* instead of ``pivot``."""
        self.accessor = accessor
        return self

    @property
    def pivot_table(self) -> sa.Table:
        table = self._table if self._table is not None else self._default_table()
        if isinstance(table, sa.Table):
            return table

        found = self.related_table.metadata.tables.get(table)
        if found is None:
            raise ConfigurationError.missing_pivot_table(table)

        return found

    def _default_table(self) -> str:
        names = sorted((snake_case(type(self.parent).__name__), snake_case(_model_name(self.related))))
        return "_".join(names)

    @property
    def foreign_pivot_key(self) -> str:
        return self._foreign_pivot_key or f"{snake_case(type(self.parent).__name__)}_id"

    @property
    def related_pivot_key(self) -> str:
        return self._related_pivot_key or f"{snake_case(_model_name(self.related))}_id"

    @property
    def parent_key(self) -> str:
        return self._parent_key or _key_name(type(self.parent), f"resolve {self!r}")

    @property
    def related_key(self) -> str:
        return self._related_key or _key_name(self.related_model, f"resolve {self!r}")

    @property
    def pivot_column_names(self) -> tuple[str, ...]:
        """Join columns, declared extras and timestamps, in that order, once each."""
        names = [self.foreign_pivot_key, self.related_pivot_key, *self.pivot_columns]
        if self.pivot_timestamps is not None:
            names.extend(self.pivot_timestamps)

        return tuple(dict.fromkeys(names))

    def join_key(self, parent: Record) -> Any:
        return parent.get_raw(self.parent_key)

    def result_key(self, record: R) -> Any:
        return record.get_relation(self.accessor)[self.foreign_pivot_key]

    def key_column(self) -> sa.ColumnElement[Any]:
        return get_column(self.pivot_table, self.foreign_pivot_key)

    def select_query(self) -> Query[R]:
        pivot = self.pivot_table
        labels = [
            get_column(pivot, column).label(pivot_label(column))
            for column in self.pivot_column_names
        ]
        return (
            self.base_query()
            .add_columns(*labels)
            .join(
                pivot,
                get_column(self.related_table, self.related_key)
                == get_column(pivot, self.related_pivot_key),
            )
            .with_hydrator(self._hydrate)
        )

    def _hydrate(self, row: Mapping[str, Any], connection: sa.Connection | None) -> R:
        columns = self.pivot_column_names
        attributes, pivot_attributes = split_row(row, columns)
        record = self.related_model._hydrate(attributes, connection)
        record._set_resolved_relation(
            self.accessor,
            Pivot(
                pivot_attributes,
                table=self.pivot_table.name,
                foreign_key=self.foreign_pivot_key,
                related_key=self.related_pivot_key,
            ),
        )
        return record


class MorphToMany(BelongsToMany[R]):
    """Polymorphic many-to-many; ``inverse=True`` declares the owning side.

    For ``Post.tags`` the junction rows carry ``taggable_type = "post"``
    and ``taggable_id``; the inverse ``Tag.posts`` filters the same junction
    on the related type's tag instead of the parent's.
    """

    kind = RelationKind.MORPH_TO_MANY

    def __init__(
        self,
        parent: Record,
        related: type[R] | str,
        name: str,
        table: sa.Table | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
        *,
        inverse: bool = False,
        type_column: str | None = None,
    ) -> None:
        super().__init__(
            parent,
            related,
            table if table is not None else f"{name}s",
            foreign_pivot_key,
            related_pivot_key,
            parent_key,
            related_key,
        )
        self.morph_name = name
        self.inverse = inverse
        self.type_column = type_column or f"{name}_type"

    @property
    def foreign_pivot_key(self) -> str:
        if self._foreign_pivot_key:
            return self._foreign_pivot_key

        if self.inverse:
            return f"{snake_case(type(self.parent).__name__)}_id"

        return f"{self.morph_name}_id"

    @property
    def related_pivot_key(self) -> str:
        if self._related_pivot_key:
            return self._related_pivot_key

        if self.inverse:
            return f"{self.morph_name}_id"

        return f"{snake_case(_model_name(self.related))}_id"

    @property
    def morph_class(self) -> str:
        if self.inverse:
            return self.related_model.morph_name()

        return type(self.parent).morph_name()

    def filters(self) -> tuple[sa.ColumnElement[bool], ...]:
        return (get_column(self.pivot_table, self.type_column) == self.morph_class,)
