"""Central mutation policy.

Every mutation-shaped entry point on records, collections, queries and
relations is routed through :func:`violation`, so each one fails the same way:
a :class:`ViolationError`, never a silent no-op.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final, Literal, NoReturn, TypeAlias

from .exceptions import ViolationError


Target: TypeAlias = Literal["attribute", "relation", "persistence", "collection"]

PERSISTENCE_VERBS: Final[frozenset[str]] = frozenset({
    "create",
    "decrement",
    "delete",
    "fill",
    "force_delete",
    "increment",
    "push",
    "restore",
    "save",
    "touch",
    "update",
})

QUERY_MUTATORS: Final[frozenset[str]] = frozenset({
    "delete",
    "force_delete",
    "insert",
    "truncate",
    "update",
    "upsert",
})

RELATION_MUTATORS: Final[frozenset[str]] = frozenset({
    "associate",
    "attach",
    "create",
    "create_many",
    "delete",
    "detach",
    "dissociate",
    "first_or_create",
    "force_create",
    "insert",
    "make",
    "save",
    "save_many",
    "sync",
    "sync_without_detaching",
    "toggle",
    "touch",
    "update",
    "update_existing_pivot",
    "update_or_create",
})

COLLECTION_MUTATORS: Final[frozenset[str]] = frozenset({
    "append",
    "clear",
    "extend",
    "insert",
    "pop",
    "remove",
    "reverse",
    "sort",
})


def violation(verb: str, target: Target = "persistence") -> ViolationError:
    """Build the error for a blocked *verb* on a *target*."""
    match target:
        case "attribute":
            return ViolationError.attribute_mutation(verb)
        case "relation":
            return ViolationError.relation_mutation(verb)
        case "collection":
            return ViolationError.collection_mutation(verb)
        case _:
            return ViolationError.persistence_attempt(verb)


def forbidden(verb: str, target: Target = "persistence") -> Callable[..., NoReturn]:
    """Return a method that always raises the violation for *verb*.

    Example:
        >>> class Account:
        ...     save = forbidden("save")
        >>> Account().save()
        Traceback (most recent call last):
        ...
        sqla_immutable.exceptions.ViolationError: Cannot save: immutable records are never written back.
    """

    def method(self: Any, *args: Any, **kwargs: Any) -> NoReturn:
        raise violation(verb, target)

    method.__name__ = method.__qualname__ = verb
    method.__doc__ = f"Always raises ViolationError: ``{verb}`` is not supported."
    return method
