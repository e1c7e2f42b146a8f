"""Lazy (N+1) access vs batched eager loading.

Counts executed statements and measures wall time for both strategies.
Run with: pytest tests/benchmarks/ -v -s
Skip with: pytest tests/ -m "not benchmark"
"""
from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from typing import Any, Final

import pytest
import sqlalchemy as sa

from sqla_immutable import RecordCollection

from ..models import User, comments, posts, users


pytestmark = pytest.mark.benchmark


N_USERS: Final[int] = 200
POSTS_PER_USER: Final[int] = 3
COMMENTS_PER_POST: Final[int] = 2


@pytest.fixture
def bulk_data(connection: sa.Connection) -> None:
    user_rows: list[dict[str, Any]] = []
    post_rows: list[dict[str, Any]] = []
    comment_rows: list[dict[str, Any]] = []
    for u in range(1, N_USERS + 1):
        user_rows.append({"id": u, "name": f"user{u}", "active": 1})
        for p in range(POSTS_PER_USER):
            post_id = (u - 1) * POSTS_PER_USER + p + 1
            post_rows.append({"id": post_id, "user_id": u, "title": f"post{post_id}", "published": 1})
            for c in range(COMMENTS_PER_POST):
                comment_rows.append({
                    "id": (post_id - 1) * COMMENTS_PER_POST + c + 1,
                    "post_id": post_id,
                    "user_id": u,
                    "body": "ok",
                })

    connection.execute(users.insert(), user_rows)
    connection.execute(posts.insert(), post_rows)
    connection.execute(comments.insert(), comment_rows)


@pytest.fixture
def counter(engine: sa.Engine, bulk_data: None) -> Iterator[list[str]]:
    executed: list[str] = []

    def _record(conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        executed.append(statement)

    sa.event.listen(engine, "before_cursor_execute", _record)
    yield executed
    sa.event.remove(engine, "before_cursor_execute", _record)


def _walk(result: RecordCollection[User]) -> int:
    return sum(len(post.comments) for user in result for post in user.posts)


def _measure(fn: Callable[[], RecordCollection[User]]) -> tuple[float, int]:
    start = time.perf_counter()
    total = _walk(fn())
    return time.perf_counter() - start, total


class TestLazyVsEager:
    def test_statement_counts(self, connection: sa.Connection, counter: list[str]) -> None:
        lazy_time, lazy_total = _measure(lambda: User.query(connection).get())
        lazy_statements = len(counter)

        counter.clear()
        eager_time, eager_total = _measure(
            lambda: User.query(connection).loads("posts.comments").get()
        )
        eager_statements = len(counter)

        print(
            f"\nlazy:  {lazy_statements} statements, {lazy_time * 1000:.1f} ms"
            f"\neager: {eager_statements} statements, {eager_time * 1000:.1f} ms"
        )
        assert lazy_total == eager_total == N_USERS * POSTS_PER_USER * COMMENTS_PER_POST
        assert lazy_statements == 1 + N_USERS + N_USERS * POSTS_PER_USER
        assert eager_statements == 3
