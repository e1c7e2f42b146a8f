from __future__ import annotations

from typing import Any

import pytest

from sqla_immutable import ConfigurationError, ViolationError, add_conditions
from sqla_immutable.query import SOFT_DELETE_SCOPE, Query

from ..models import Post, Role, User, posts, roles


def _sql(query: Query[Any]) -> str:
    return str(query.statement.compile(compile_kwargs={"literal_binds": True}))


class TestStatement:
    def test_soft_delete_scope_applied(self) -> None:
        assert "users.deleted_at IS NULL" in _sql(User.query(None))  # type: ignore[arg-type]

    def test_with_trashed(self) -> None:
        assert "deleted_at IS NULL" not in _sql(User.query(None).with_trashed())  # type: ignore[arg-type]

    def test_without_global_scopes(self) -> None:
        query = User.query(None).without_global_scopes()  # type: ignore[arg-type]
        assert "deleted_at IS NULL" not in _sql(query)
        assert SOFT_DELETE_SCOPE in User.global_scopes()
        assert Post.global_scopes() == {}

    def test_builders_are_generative(self) -> None:
        base = Role.query(None)  # type: ignore[arg-type]
        narrowed = base.where(roles.c.level > 3)

        assert "WHERE" not in _sql(base)
        assert "roles.level > 3" in _sql(narrowed)

    def test_order_by_descending_string(self) -> None:
        assert "ORDER BY roles.level DESC, roles.name" in _sql(
            Role.query(None).order_by("-level", "name")  # type: ignore[arg-type]
        )

    def test_filter_by_unknown_column(self) -> None:
        with pytest.raises(ConfigurationError, match="'rank' not found"):
            Role.query(None).filter_by(rank=1)  # type: ignore[arg-type]

    def test_apply_constraint(self) -> None:
        query = Post.query(None).apply(add_conditions(posts.c.published == 1))  # type: ignore[arg-type]
        assert "posts.published = 1" in _sql(query)

    def test_loads_merge(self) -> None:
        query = User.query(None).loads("posts").loads("posts.comments")  # type: ignore[arg-type]
        assert list(query.eager_loads) == ["posts", "posts.comments"]
        assert list(query.without_loads().eager_loads) == []


class TestReadOnly:
    @pytest.mark.parametrize("verb", ["insert", "update", "delete", "upsert", "truncate", "force_delete"])
    def test_mutators_raise(self, verb: str) -> None:
        with pytest.raises(ViolationError, match=f"Cannot {verb}"):
            getattr(Role.query(None), verb)()  # type: ignore[arg-type]

    def test_execution_needs_connection(self) -> None:
        with pytest.raises(ConfigurationError, match="not bound to a connection"):
            Role.query(None).get()  # type: ignore[arg-type]
