"""Basic sqla-immutable usage examples.

Demonstrates initialization, lazy and eager loads, dotted paths,
constraints, pivots and polymorphic owners.

NOTE: This file is illustrative; it won't run standalone
without seeded data.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from sqla_immutable import RecordCollection, add_conditions, add_order_by, get_node, init_node

from .models import Base, Image, Post, User, metadata, posts, roles


# ── 1. Initialize once at startup ────────────────────────────────────

engine = sa.create_engine("sqlite:///:memory:")


def setup() -> None:
    metadata.create_all(engine)

    # Call once: registers every record type under its morph tag
    init_node(get_node(Base))

    # Every executed statement and each load depth are logged at DEBUG
    logging.getLogger("sqla_immutable").setLevel(logging.DEBUG)


# ── 2. Lazy access ───────────────────────────────────────────────────


def first_user_posts(conn: sa.Connection) -> list[str]:
    user = User.query(conn).order_by("id").first_or_fail()
    # one query on first access, cached on the record afterwards
    return user.posts.pluck("title")


# ── 3. Eager loads: one query per relation per depth ────────────────


def users_with_posts_and_roles(conn: sa.Connection) -> RecordCollection[User]:
    return User.query(conn).loads("posts", "roles").get()


def users_deep(conn: sa.Connection) -> RecordCollection[User]:
    return User.query(conn).loads("posts.images").get()


# ── 4. Constraints ───────────────────────────────────────────────────


def users_with_senior_roles(conn: sa.Connection) -> RecordCollection[User]:
    return (
        User.query(conn)
        .loads(
            {"roles": add_conditions(roles.c.level > 3)},
            {"posts": add_order_by(posts.c.id.desc())},
        )
        .get()
    )


# ── 5. Pivot values ─────────────────────────────────────────────────


def role_assignments(conn: sa.Connection) -> dict[str, list[tuple[str, str]]]:
    result = User.query(conn).loads("roles").get()
    return {
        user.name: [(role.name, role.pivot.assigned_by) for role in user.roles]
        for user in result
    }


# ── 6. Polymorphic owners ───────────────────────────────────────────


def image_owners(conn: sa.Connection) -> list[str]:
    # one images query, then one query per distinct owner type
    result = Image.query(conn).loads("imageable").get()
    return [type(image.imageable).__name__ for image in result if image.imageable is not None]


# ── 7. Loading after the fact ───────────────────────────────────────


def load_later(conn: sa.Connection) -> list[dict[str, object]]:
    published = Post.query(conn).where(posts.c.published == 1).get()
    return published.load("author", "images").to_dicts()
