from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_immutable import add_order_by
from sqla_immutable.relations import THROUGH_KEY

from ..models import Country, Post, posts


pytestmark = pytest.mark.usefixtures("seed_data")


class TestHasManyThrough:
    def test_eager(self, connection: sa.Connection, statements: list[str]) -> None:
        countries = (
            Country.query(connection)
            .order_by("id")
            .loads({"posts": add_order_by(posts.c.id)})
            .get()
        )

        assert {c.name: c.posts.model_keys() for c in countries} == {
            "Norway": [1, 2, 3],
            "Chile": [4],
            "Iceland": [],
        }
        assert len(statements) == 2

    def test_trashed_intermediate_included_on_request(self, connection: sa.Connection) -> None:
        chile = Country.query(connection).loads("all_posts").find_or_fail(2)
        assert sorted(chile.all_posts.model_keys()) == [4, 5]

    def test_through_key_is_not_an_attribute(self, connection: sa.Connection) -> None:
        norway = Country.find_or_fail(connection, 1)
        for post in norway.posts:
            assert THROUGH_KEY not in post.attributes
            assert set(post.attributes) == {"id", "user_id", "title", "published", "score"}

    def test_lazy_matches_eager(self, connection: sa.Connection) -> None:
        lazy = Country.find_or_fail(connection, 1)
        eager = Country.query(connection).loads("posts").find_or_fail(1)
        assert sorted(lazy.posts.model_keys()) == sorted(eager.posts.model_keys())


class TestHasOneThrough:
    def test_eager(self, connection: sa.Connection, statements: list[str]) -> None:
        result = Post.query(connection).order_by("id").loads("country").get()

        assert result.map(lambda p: p.country.name if p.country else None) == [
            "Norway",
            "Norway",
            "Norway",
            "Chile",
            None,
            None,
        ]
        assert len(statements) == 2

    def test_null_local_key(self, connection: sa.Connection, statements: list[str]) -> None:
        orphan = Post.find_or_fail(connection, 6)
        statements.clear()

        assert orphan.country is None
        assert statements == []
