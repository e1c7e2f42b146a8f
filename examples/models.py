"""Record types shared by the examples."""

from __future__ import annotations

import sqlalchemy as sa

from sqla_immutable import BelongsTo, BelongsToMany, HasMany, MorphMany, MorphTo, Record, relation


metadata = sa.MetaData()

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(100), nullable=False),
    sa.Column("deleted_at", sa.DateTime, nullable=True),
)

posts = sa.Table(
    "posts",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id")),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("published", sa.Integer, nullable=False, default=0),
)

roles = sa.Table(
    "roles",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(50), nullable=False),
    sa.Column("level", sa.Integer, nullable=False, default=0),
)

role_user = sa.Table(
    "role_user",
    metadata,
    sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), primary_key=True),
    sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), primary_key=True),
    sa.Column("assigned_by", sa.String(50)),
)

images = sa.Table(
    "images",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("url", sa.String(200), nullable=False),
    sa.Column("imageable_type", sa.String(50)),
    sa.Column("imageable_id", sa.Integer),
)


class Base(Record):
    pass


class User(Base):
    __table__ = users
    __soft_delete_column__ = "deleted_at"

    @relation
    def posts(self) -> HasMany[Post]:
        return self.has_many(Post)

    @relation
    def roles(self) -> BelongsToMany[Role]:
        return self.belongs_to_many(Role).with_pivot("assigned_by")


class Post(Base):
    __table__ = posts
    __casts__ = {"published": "bool"}

    @relation
    def author(self) -> BelongsTo[User]:
        return self.belongs_to(User, "user_id")

    @relation
    def images(self) -> MorphMany[Image]:
        return self.morph_many(Image, "imageable")


class Role(Base):
    __table__ = roles


class Image(Base):
    __table__ = images

    @relation
    def imageable(self) -> MorphTo:
        return self.morph_to()
