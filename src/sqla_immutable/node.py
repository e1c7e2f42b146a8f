from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from typing import TYPE_CHECKING, ClassVar, final

from .datastructures import frozendict
from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from .record import Record


@final
class Node:
    """Singleton registry mapping morph tags to concrete record types.

    Polymorphic relations store the owner type as a data tag (``"post"``,
    ``"video"``). Batch resolution groups parents by that tag and asks the
    Node which record type to query, instead of looking classes up by name
    at runtime.
    """

    __instance: ClassVar[Node | None] = None
    _node: Mapping[str, type[Record]]

    def __new__(cls, node: Mapping[str, type[Record]] | None = None) -> Node:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if node is not None:
                instance.set_node(node)

            cls.__instance = instance

        if not getattr(cls.__instance, "_node", None):
            raise RuntimeError("Node is not initialized or empty")

        return cls.__instance

    def get(self, tag: str) -> type[Record] | None:
        """Get the record type registered for *tag*, or None if unknown.

        Args:
            tag: Morph tag as stored in a type column.

        Returns:
            The registered record type, or None.
        """
        return self.node.get(tag)

    def __getitem__(self, tag: str) -> type[Record]:
        """Look up the record type for *tag*, raising ``KeyError`` if not found."""
        return self.node[tag]

    def resolve(self, name: str) -> type[Record]:
        """Resolve a morph tag or a record class name to a record type.

        Raises:
            ConfigurationError: If nothing is registered under *name*.
        """
        model = self.node.get(name)
        if model is None:
            model = next((m for m in self.node.values() if m.__name__ == name), None)

        if model is None:
            raise ConfigurationError.unresolvable_model(name)

        return model

    @property
    def node(self) -> Mapping[str, type[Record]]:
        """The underlying tag-to-type mapping (read-only)."""
        return self._node

    def set_node(self, node: Mapping[str, type[Record]]) -> None:
        """Set the tag mapping for this node instance.

        Args:
            node: Mapping from morph tags to record types.
        """
        self._node = node

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._node = {}
        cls.__instance = None


def get_node(base: type[Record]) -> Mapping[str, type[Record]]:
    """Collect every table-backed record type below *base*, keyed by morph tag.

    Args:
        base: Record subclass shared by the application's record types.

    Returns:
        Frozen mapping from morph tag to record type.

    Raises:
        AssertionError: If base is not a subclass of Record.
        ConfigurationError: If two record types share a morph tag.
    """
    from .record import Record

    assert isinstance(base, type) and issubclass(base, Record), (
        "base must be a subclass of Record"
    )

    models: dict[str, type[Record]] = {}
    queue: deque[type[Record]] = deque(base.__subclasses__())
    seen: set[type[Record]] = set()
    while queue:
        model = queue.popleft()
        if model in seen:
            continue

        seen.add(model)
        queue.extend(model.__subclasses__())
        if getattr(model, "__table__", None) is None:
            continue

        tag = model.morph_name()
        existing = models.get(tag)
        if existing is not None and existing is not model:
            raise ConfigurationError.duplicate_morph_name(tag, existing, model)

        models[tag] = model

    return frozendict(models)


def init_node(node: Mapping[str, type[Record]]) -> None:
    """Initialize the global Node singleton with the morph registry.

    Call once during application startup, after every record type has been
    imported.

    Args:
        node: Mapping from morph tags to record types.

    Example:
        >>> from myapp.records import Base
        >>> init_node(get_node(Base))
    """
    Node(node)


def resolve_model(name: str) -> type[Record]:
    """Resolve *name* through the Node, turning an uninitialized Node into a configuration error."""
    try:
        node = Node()
    except RuntimeError:
        raise ConfigurationError.unresolvable_model(name) from None

    return node.resolve(name)
