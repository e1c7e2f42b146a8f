from __future__ import annotations

from typing import Any

import pytest
import sqlalchemy as sa

from sqla_immutable import Record, RecordCollection

from ..models import Comment, Country, Image, Post, User, posts


pytestmark = pytest.mark.usefixtures("seed_data")


def _snapshot(value: Any) -> Any:
    if isinstance(value, RecordCollection):
        return sorted(
            (repr(type(r)), r.get_key(), dict(r.get_relation("pivot") or {})) for r in value
        )

    if isinstance(value, Record):
        return (repr(type(value)), value.get_key())

    return value


CASES = [
    (User, "country"),
    (User, "profile"),
    (User, "posts"),
    (User, "roles"),
    (User, "avatar"),
    (Post, "author"),
    (Post, "country"),
    (Post, "images"),
    (Post, "tags"),
    (Country, "posts"),
    (Comment, "author"),
    (Image, "imageable"),
]


class TestLazyMatchesEager:
    @pytest.mark.parametrize(("model", "name"), CASES)
    def test_same_results(self, connection: sa.Connection, model: type[Record], name: str) -> None:
        eager = model.query(connection).order_by("id").loads(name).get()
        lazy = model.query(connection).order_by("id").get()

        assert [_snapshot(r.get_relation(name)) for r in eager] == [
            _snapshot(getattr(r, name)) for r in lazy
        ]

    @pytest.mark.parametrize(("model", "name"), CASES)
    def test_get_results_same_as_accessor(
        self, connection: sa.Connection, model: type[Record], name: str
    ) -> None:
        for record in model.query(connection).order_by("id").get():
            assert _snapshot(record.related(name).get_results()) == _snapshot(getattr(record, name))


class TestLazyAccess:
    def test_resolved_once(self, connection: sa.Connection, statements: list[str]) -> None:
        alice = User.find_or_fail(connection, 1)
        statements.clear()

        first = alice.posts
        second = alice.posts

        assert first is second
        assert len(statements) == 1

    def test_loaded_flag(self, connection: sa.Connection) -> None:
        alice = User.find_or_fail(connection, 1)
        assert not alice.relation_loaded("posts")
        assert alice.get_relation("posts") is None

        _ = alice.posts
        assert alice.relation_loaded("posts")
        assert "posts" in alice.relations

    def test_eager_result_not_requeried(
        self, connection: sa.Connection, statements: list[str]
    ) -> None:
        alice = User.query(connection).loads("posts").find_or_fail(1)
        statements.clear()

        _ = alice.posts
        assert statements == []

    def test_load_on_single_record(self, connection: sa.Connection) -> None:
        alice = User.find_or_fail(connection, 1)
        assert alice.load("posts.comments") is alice
        assert alice.relation_loaded("posts")

    def test_related_query_does_not_populate(self, connection: sa.Connection) -> None:
        alice = User.find_or_fail(connection, 1)
        published = alice.related("posts").where(posts.c.published == 1).get()

        assert published.model_keys() == [1]
        assert alice.related("posts").count() == 2
        assert not alice.relation_loaded("posts")

    def test_get_results(self, connection: sa.Connection) -> None:
        alice = User.find_or_fail(connection, 1)
        assert alice.related("profile").get_results().bio == "Alice bio"
        assert sorted(alice.related("roles").get_results().pluck("name")) == ["admin", "editor"]

    def test_to_dict_includes_loaded_relations_only(self, connection: sa.Connection) -> None:
        alice = User.find_or_fail(connection, 1)
        assert "posts" not in alice.to_dict()

        _ = alice.profile
        assert alice.to_dict()["profile"]["bio"] == "Alice bio"

    def test_get_results_leaves_parent_unloaded(
        self, connection: sa.Connection, statements: list[str]
    ) -> None:
        alice = User.find_or_fail(connection, 1)
        statements.clear()

        assert sorted(alice.related("posts").get_results().model_keys()) == [1, 2]
        assert len(statements) == 1
        assert not alice.relation_loaded("posts")

    def test_get_results_null_keys_skip_query(
        self, connection: sa.Connection, statements: list[str]
    ) -> None:
        dave = User.find_or_fail(connection, 4)
        unattached = Image.find_or_fail(connection, 6)
        statements.clear()

        assert dave.related("country").get_results() is None
        assert unattached.related("imageable").get_results() is None
        assert dave.related("posts").where(posts.c.published == 1).count() == 0
        assert len(statements) == 1
