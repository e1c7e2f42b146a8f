from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Final, TypeAlias

from .datastructures import frozendict
from .exceptions import UnknownRelationError
from .tools import Constraint


if TYPE_CHECKING:
    from .record import Record


logger = logging.getLogger(__name__)

PATH_SEPARATOR: Final[str] = "."

LoadPath: TypeAlias = "str | Mapping[str, Constraint | None]"
Loads: TypeAlias = "frozendict[str, Constraint | None]"


@dataclass(slots=True, frozen=True)
class LoadNode:
    """One relation name in a load plan, with its constraint and nested loads."""

    constraint: Constraint | None = None
    children: frozendict[str, LoadNode] = field(default_factory=frozendict)


@lru_cache(maxsize=1028)
def _split_path(path: str) -> tuple[str, ...]:
    """Split ``"a.b.c"`` into segments, rejecting empty ones (cached)."""
    segments = tuple(segment.strip() for segment in path.split(PATH_SEPARATOR))
    if not all(segments):
        raise ValueError(f"Invalid relation path {path!r}: empty segment")

    return segments


def normalize_loads(paths: Iterable[LoadPath]) -> Loads:
    """Flatten load specifications into an ordered ``path -> constraint`` mapping.

    Every prefix of a dotted path is added without a constraint, so
    ``"posts.comments"`` also loads ``"posts"``. A constraint always applies
    to the last segment of its path. A path given twice keeps the first
    constraint that is not None.

    Args:
        paths: Relation names, dotted paths, or mappings of either to a
            constraint (``Callable[[Select], Select]``) or None.

    Returns:
        Frozen mapping of canonical dotted paths to constraints.

    Raises:
        ValueError: If a path contains an empty segment.

    Example:
        >>> normalize_loads(["posts.comments", {"roles": None}])
        <frozendict {'posts': None, 'posts.comments': None, 'roles': None}>
    """
    loads: dict[str, Constraint | None] = {}
    for entry in paths:
        items = entry.items() if isinstance(entry, Mapping) else ((entry, None),)
        for raw, constraint in items:
            segments = _split_path(raw)
            for depth in range(1, len(segments)):
                loads.setdefault(PATH_SEPARATOR.join(segments[:depth]), None)

            path = PATH_SEPARATOR.join(segments)
            if loads.get(path) is None:
                loads[path] = constraint

    return frozendict(loads)


def build_plan(loads: Mapping[str, Constraint | None]) -> frozendict[str, LoadNode]:
    """Turn normalized paths into a tree of :class:`LoadNode`.

    Plans without constraints are cached by their paths. Constrained plans are
    built fresh each time, so the cache never holds on to user callables.
    """
    if all(constraint is None for constraint in loads.values()):
        return _build_plan(tuple(loads))

    return _plan_tree(loads)


@lru_cache(maxsize=1028)
def _build_plan(paths: tuple[str, ...]) -> frozendict[str, LoadNode]:
    """Plan for constraint-free *paths* (cached)."""
    return _plan_tree(dict.fromkeys(paths))


def _plan_tree(loads: Mapping[str, Constraint | None]) -> frozendict[str, LoadNode]:
    top: dict[str, Constraint | None] = {}
    nested: dict[str, dict[str, Constraint | None]] = {}
    for path, constraint in loads.items():
        head, _, rest = path.partition(PATH_SEPARATOR)
        if rest:
            top.setdefault(head, None)
            nested.setdefault(head, {})[rest] = constraint
        elif constraint is not None or head not in top:
            top[head] = constraint

    return frozendict({
        name: LoadNode(
            constraint=constraint,
            children=build_plan(nested[name]) if name in nested else frozendict(),
        )
        for name, constraint in top.items()
    })


def _group_by_type(records: Iterable[Record]) -> list[list[Record]]:
    groups: dict[type[Record], list[Record]] = {}
    for record in records:
        groups.setdefault(type(record), []).append(record)

    return list(groups.values())


def _flatten(parents: Iterable[Record], name: str) -> list[Record]:
    """Collect the records resolved under *name* across *parents*, once each."""
    seen: set[int] = set()
    out: list[Record] = []
    for parent in parents:
        value: Any = parent.get_relation(name)
        if value is None:
            continue

        children = value if isinstance(value, Sequence) else (value,)
        for child in children:
            if id(child) not in seen:
                seen.add(id(child))
                out.append(child)

    return out


class EagerLoader:
    """Drive the batch resolver over a load plan, one depth at a time.

    Every relation name at a depth is resolved for all parents of that depth
    before the next depth's parents are collected, so the number of queries
    depends on the plan and never on the number of records.

    Args:
        loads: Output of :func:`normalize_loads` (any ``path -> constraint``
            mapping is accepted).
        strict: Raise :class:`UnknownRelationError` when a top-level name is
            not declared on any of the parent types. Nested unknown names are
            always skipped.
    """

    __slots__ = ("plan", "strict")

    def __init__(self, loads: Mapping[str, Constraint | None], *, strict: bool = False) -> None:
        self.plan = build_plan(loads)
        self.strict = strict

    def load(self, records: Sequence[Record]) -> None:
        """Resolve every planned relation on *records* in place."""
        if not records or not self.plan:
            return

        if self.strict:
            self._check_names(records)

        level: list[tuple[Sequence[Record], Mapping[str, LoadNode]]] = [(records, self.plan)]
        depth = 0
        while level:
            logger.debug(
                "Eager loading depth %d: %s",
                depth,
                sorted({name for _, plan in level for name in plan}),
            )
            pending: list[tuple[Sequence[Record], str, Mapping[str, LoadNode]]] = []
            for parents, plan in level:
                for group in _group_by_type(parents):
                    pending.extend(self._resolve(group, plan))

            level = []
            for parents, name, children in pending:
                resolved = _flatten(parents, name)
                if resolved:
                    level.append((resolved, children))

            depth += 1

    def _resolve(
        self, parents: Sequence[Record], plan: Mapping[str, LoadNode]
    ) -> list[tuple[Sequence[Record], str, Mapping[str, LoadNode]]]:
        """Resolve each planned name on a single-type parent group."""
        model = type(parents[0])
        pending: list[tuple[Sequence[Record], str, Mapping[str, LoadNode]]] = []
        for name, node in plan.items():
            descriptor = model.__relations__.get(name)
            if descriptor is None:
                logger.debug("Skipping %r: not a relation on %s", name, model.__name__)
                continue

            descriptor.declare(parents[0]).eager_load(parents, name, node.constraint)
            if node.children:
                pending.append((parents, name, node.children))

        return pending

    def _check_names(self, records: Sequence[Record]) -> None:
        models = {type(record) for record in records}
        for name in self.plan:
            if not any(name in model.__relations__ for model in models):
                raise UnknownRelationError(sorted(models, key=lambda m: m.__name__), name)


def sqla_cache_info() -> dict[str, Any]:
    """Return ``lru_cache`` statistics for the package's internal caches.

    Useful for monitoring cache effectiveness in production.

    Returns:
        Mapping of cache name to ``CacheInfo`` named tuple.
    """
    from .tools import _get_table, _get_table_name, _snake_case

    return {
        "_split_path": _split_path.cache_info(),
        "_build_plan": _build_plan.cache_info(),
        "_get_table": _get_table.cache_info(),
        "_get_table_name": _get_table_name.cache_info(),
        "_snake_case": _snake_case.cache_info(),
    }


def sqla_cache_clear() -> None:
    """Clear all internal ``lru_cache`` caches.

    Call this after redefining record types, or between tests that declare
    throwaway types.
    """
    from .tools import _get_table, _get_table_name, _snake_case

    _split_path.cache_clear()
    _build_plan.cache_clear()
    _get_table.cache_clear()
    _get_table_name.cache_clear()
    _snake_case.cache_clear()
