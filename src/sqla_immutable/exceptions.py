from __future__ import annotations

import sys
from collections.abc import Iterable, Sequence
from typing import Any


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


class ImmutableError(Exception):
    """Base class for every error raised by sqla_immutable."""


class ConfigurationError(ImmutableError, RuntimeError):
    """A record type or relation is declared in a way that cannot be resolved.

    Relation declarations are never validated eagerly, so this surfaces at
    the first resolution attempt rather than at class definition.
    """

    @classmethod
    def missing_table(cls, model: type[Any]) -> Self:
        return cls(f"{model.__name__} has no __table__; declare one to query it")

    @classmethod
    def missing_primary_key(cls, model: type[Any], operation: str) -> Self:
        return cls(f"Cannot {operation} on {model.__name__}: it has no primary key")

    @classmethod
    def missing_column(cls, table: str, column: str, available: Iterable[str]) -> Self:
        return cls(
            f"Column {column!r} not found on table {table!r}. Available: {sorted(available)}"
        )

    @classmethod
    def missing_pivot_table(cls, name: str) -> Self:
        return cls(f"Pivot table {name!r} is not registered in the related table's metadata")

    @classmethod
    def missing_connection(cls, model: type[Any]) -> Self:
        return cls(
            f"{model.__name__} record is not bound to a connection; "
            "hydrate it with a connection to resolve relations lazily"
        )

    @classmethod
    def unresolvable_model(cls, name: str) -> Self:
        return cls(f"Cannot resolve related record type {name!r}; is it registered in the Node?")

    @classmethod
    def unknown_morph_type(cls, tag: str) -> Self:
        return cls(f"No record type is registered for morph type {tag!r}")

    @classmethod
    def duplicate_morph_name(cls, tag: str, first: type[Any], second: type[Any]) -> Self:
        return cls(
            f"Morph name {tag!r} is used by both {first.__name__} and {second.__name__}"
        )

    @classmethod
    def invalid_cast(cls, key: str, spec: Any) -> Self:
        return cls(f"Unknown cast {spec!r} for attribute {key!r}")

    @classmethod
    def invalid_relation(cls, model: type[Any], name: str, value: Any) -> Self:
        return cls(
            f"{model.__name__}.{name} must return a Relation, got {type(value).__name__}"
        )


class ViolationError(ImmutableError, TypeError):
    """A mutation was attempted on a read-only record, relation, query or collection."""

    @classmethod
    def attribute_mutation(cls, key: str) -> Self:
        return cls(f"Cannot modify attribute [{key}] on an immutable record.")

    @classmethod
    def relation_mutation(cls, name: str) -> Self:
        return cls(f"Cannot modify relation [{name}]: relations are read-only.")

    @classmethod
    def persistence_attempt(cls, verb: str) -> Self:
        return cls(f"Cannot {verb}: immutable records are never written back.")

    @classmethod
    def collection_mutation(cls, verb: str) -> Self:
        return cls(f"Cannot call [{verb}] on an immutable collection.")

    @classmethod
    def direct_instantiation(cls, model: type[Any]) -> Self:
        return cls(
            f"{model.__name__} cannot be instantiated directly; "
            f"use {model.__name__}.query(connection) or {model.__name__}.from_row(row)"
        )


class RecordNotFoundError(ImmutableError, LookupError):
    """Raised by the ``*_or_fail`` accessors when nothing matches."""

    def __init__(self, model: type[Any], keys: Sequence[Any] = ()) -> None:
        self.model = model
        self.keys = tuple(keys)
        message = f"No query results for record [{model.__name__}]"
        if self.keys:
            message += f" {list(self.keys)}"

        super().__init__(message)


class UnknownRelationError(ImmutableError, ValueError):
    """An explicit load named a relation that no record type declares."""

    def __init__(self, models: Iterable[type[Any]], name: str) -> None:
        self.models = tuple(models)
        self.name = name
        names = ", ".join(model.__name__ for model in self.models)
        super().__init__(f"Relation {name!r} is not declared on {names}")
