from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest
import sqlalchemy as sa

from sqla_immutable import sqla_cache_clear
from sqla_immutable.node import Node, get_node, init_node

from .models import (
    ASSIGNED_AT,
    DELETED_AT,
    Base,
    comments,
    countries,
    images,
    metadata,
    posts,
    profiles,
    role_user,
    roles,
    taggables,
    tags,
    users,
    videos,
)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session", autouse=True)
def _init_node() -> None:
    """Initialize the morph registry.

    Sync, no DB needed -- safe to run for all tests including unit tests.
    """
    try:
        Node()
    except RuntimeError:
        Node.reset()
        init_node(get_node(Base))


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:16-alpine", driver="psycopg2")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                yield pg.get_connection_url()

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_config, echo=False)
    metadata.create_all(engine)
    yield engine
    metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def connection(engine: sa.Engine) -> Iterator[sa.Connection]:
    with engine.connect() as conn:
        trans = conn.begin()
        yield conn
        trans.rollback()


@pytest.fixture
def seed_data(connection: sa.Connection) -> dict[str, list[dict[str, Any]]]:
    data: dict[str, list[dict[str, Any]]] = {
        "countries": [
            {"id": 1, "name": "Norway"},
            {"id": 2, "name": "Chile"},
            {"id": 3, "name": "Iceland"},
        ],
        "users": [
            {"id": 1, "name": "alice", "email": "alice@example.com", "country_id": 1,
             "settings": {"theme": "dark"}, "active": 1, "deleted_at": None},
            {"id": 2, "name": "bob", "email": "bob@example.com", "country_id": 1,
             "settings": None, "active": 1, "deleted_at": None},
            {"id": 3, "name": "charlie", "email": None, "country_id": 2,
             "settings": None, "active": 0, "deleted_at": None},
            {"id": 4, "name": "dave", "email": None, "country_id": None,
             "settings": None, "active": 1, "deleted_at": None},
            {"id": 5, "name": "erin", "email": None, "country_id": 2,
             "settings": None, "active": 1, "deleted_at": DELETED_AT},
        ],
        "profiles": [
            {"id": 1, "user_id": 1, "bio": "Alice bio"},
            {"id": 2, "user_id": 2, "bio": "Bob bio"},
        ],
        "posts": [
            {"id": 1, "user_id": 1, "title": "Alice Post 1", "published": 1, "score": "4.5"},
            {"id": 2, "user_id": 1, "title": "Alice Post 2", "published": 0, "score": None},
            {"id": 3, "user_id": 2, "title": "Bob Post 1", "published": 1, "score": "3.25"},
            {"id": 4, "user_id": 3, "title": "Charlie Post 1", "published": 1, "score": None},
            {"id": 5, "user_id": 5, "title": "Erin Post 1", "published": 1, "score": None},
            {"id": 6, "user_id": None, "title": "Orphan Post", "published": 0, "score": None},
        ],
        "comments": [
            {"id": 1, "post_id": 1, "user_id": 2, "body": "Great post!"},
            {"id": 2, "post_id": 1, "user_id": 3, "body": "Nice work"},
            {"id": 3, "post_id": 3, "user_id": 1, "body": "Thanks bob"},
        ],
        "roles": [
            {"id": 1, "name": "admin", "level": 10},
            {"id": 2, "name": "editor", "level": 5},
            {"id": 3, "name": "viewer", "level": 1},
        ],
        "role_user": [
            {"user_id": 1, "role_id": 1, "assigned_by": "system", "note": "founder",
             "created_at": ASSIGNED_AT, "updated_at": ASSIGNED_AT},
            {"user_id": 1, "role_id": 2, "assigned_by": "bob", "note": None,
             "created_at": ASSIGNED_AT, "updated_at": ASSIGNED_AT},
            {"user_id": 2, "role_id": 2, "assigned_by": "alice", "note": None,
             "created_at": ASSIGNED_AT, "updated_at": ASSIGNED_AT},
            {"user_id": 2, "role_id": 3, "assigned_by": "alice", "note": None,
             "created_at": ASSIGNED_AT, "updated_at": ASSIGNED_AT},
        ],
        "videos": [
            {"id": 1, "title": "Intro"},
            {"id": 2, "title": "Untagged"},
        ],
        "tags": [
            {"id": 1, "name": "python"},
            {"id": 2, "name": "sqlalchemy"},
            {"id": 3, "name": "video"},
        ],
        "taggables": [
            {"tag_id": 1, "taggable_id": 1, "taggable_type": "post", "weight": 10},
            {"tag_id": 2, "taggable_id": 1, "taggable_type": "post", "weight": 5},
            {"tag_id": 1, "taggable_id": 2, "taggable_type": "post", "weight": 1},
            {"tag_id": 3, "taggable_id": 1, "taggable_type": "video", "weight": 3},
            {"tag_id": 1, "taggable_id": 1, "taggable_type": "video", "weight": 2},
        ],
        "images": [
            {"id": 1, "url": "post1-a.png", "imageable_type": "post", "imageable_id": 1},
            {"id": 2, "url": "post1-b.png", "imageable_type": "post", "imageable_id": 1},
            {"id": 3, "url": "video1.png", "imageable_type": "video", "imageable_id": 1},
            {"id": 4, "url": "alice.png", "imageable_type": "user", "imageable_id": 1},
            {"id": 5, "url": "dangling.png", "imageable_type": "post", "imageable_id": 999},
            {"id": 6, "url": "unattached.png", "imageable_type": None, "imageable_id": None},
        ],
    }

    tables = {
        "countries": countries,
        "users": users,
        "profiles": profiles,
        "posts": posts,
        "comments": comments,
        "roles": roles,
        "role_user": role_user,
        "videos": videos,
        "tags": tags,
        "taggables": taggables,
        "images": images,
    }
    for name, table in tables.items():
        connection.execute(table.insert(), data[name])

    return data


@pytest.fixture
def statements(engine: sa.Engine, seed_data: dict[str, list[dict[str, Any]]]) -> Iterator[list[str]]:
    """SQL statements executed during the test, recorded after seeding."""
    executed: list[str] = []

    def _record(
        conn: sa.Connection,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        executed.append(statement)

    sa.event.listen(engine, "before_cursor_execute", _record)
    yield executed
    sa.event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()


@pytest.fixture
def reset_node_singleton() -> Iterator[None]:
    saved = Node._Node__instance  # type: ignore[attr-defined]
    yield
    Node._Node__instance = saved  # type: ignore[attr-defined]
