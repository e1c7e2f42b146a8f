"""Read-only records with batched relation loading for SQLAlchemy Core.

sqla_immutable hydrates rows into immutable ``Record`` objects and resolves
their associations (belongs-to, has-one/many, through, polymorphic and
many-to-many) with one query per relation per depth.  Declare record types
on top of ``sqlalchemy.Table`` objects, initialize the morph registry with
``init_node(get_node(Base))`` at startup, then query with
``User.query(connection).loads("posts.comments").get()``.
"""

from ._version import __version__, __version_tuple__
from .casts import cast
from .collection import RecordCollection
from .core import EagerLoader, normalize_loads, sqla_cache_clear, sqla_cache_info
from .datastructures import frozendict
from .dictionary import build_dictionary, collect_keys, dictionary_key
from .exceptions import (
    ConfigurationError,
    ImmutableError,
    RecordNotFoundError,
    UnknownRelationError,
    ViolationError,
)
from .node import Node, get_node, init_node
from .pivot import Pivot
from .query import Query
from .record import Record, RelationProperty, relation
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
    RelationKind,
)
from .tools import add_conditions, add_order_by, get_primary_key, get_table_name


__all__ = (
    "BelongsTo",
    "BelongsToMany",
    "ConfigurationError",
    "EagerLoader",
    "HasMany",
    "HasManyThrough",
    "HasOne",
    "HasOneThrough",
    "ImmutableError",
    "MorphMany",
    "MorphOne",
    "MorphTo",
    "MorphToMany",
    "Node",
    "Pivot",
    "Query",
    "Record",
    "RecordCollection",
    "RecordNotFoundError",
    "Relation",
    "RelationKind",
    "RelationProperty",
    "UnknownRelationError",
    "ViolationError",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "add_order_by",
    "build_dictionary",
    "cast",
    "collect_keys",
    "dictionary_key",
    "frozendict",
    "get_node",
    "get_primary_key",
    "get_table_name",
    "init_node",
    "normalize_loads",
    "relation",
    "sqla_cache_clear",
    "sqla_cache_info",
)
