from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_immutable import Pivot, ViolationError, add_conditions, add_order_by

from ..models import ASSIGNED_AT, Post, Role, Tag, User, Video, roles, tags


pytestmark = pytest.mark.usefixtures("seed_data")


def _roles_by_user(connection: sa.Connection, *paths: object) -> dict[str, dict[str, Role]]:
    result = User.query(connection).order_by("id").loads(*paths).get()  # type: ignore[arg-type]
    return {user.name: user.roles.key_by("name") for user in result}


class TestBelongsToMany:
    def test_eager(self, connection: sa.Connection, statements: list[str]) -> None:
        by_user = _roles_by_user(connection, "roles")

        assert {name: sorted(found) for name, found in by_user.items()} == {
            "alice": ["admin", "editor"],
            "bob": ["editor", "viewer"],
            "charlie": [],
            "dave": [],
        }
        assert len(statements) == 2

    def test_pivot_values(self, connection: sa.Connection) -> None:
        by_user = _roles_by_user(connection, "roles")
        pivot = by_user["alice"]["admin"].pivot

        assert isinstance(pivot, Pivot)
        assert pivot.assigned_by == "system"
        assert pivot["user_id"] == 1
        assert pivot["role_id"] == 1
        assert pivot.created_at == ASSIGNED_AT
        assert set(pivot) == {"user_id", "role_id", "assigned_by", "created_at", "updated_at"}

    def test_pivots_are_per_pair(self, connection: sa.Connection) -> None:
        by_user = _roles_by_user(connection, "roles")
        alice_editor = by_user["alice"]["editor"]
        bob_editor = by_user["bob"]["editor"]

        assert alice_editor.pivot.assigned_by == "bob"
        assert bob_editor.pivot.assigned_by == "alice"
        assert alice_editor is not bob_editor

    def test_pivot_columns_kept_out_of_attributes(self, connection: sa.Connection) -> None:
        admin = _roles_by_user(connection, "roles")["alice"]["admin"]
        assert set(admin.attributes) == {"id", "name", "level"}

    def test_custom_accessor(self, connection: sa.Connection) -> None:
        alice = User.query(connection).loads("memberships").find_or_fail(1)
        admin = alice.memberships.key_by("name")["admin"]

        assert admin.membership.note == "founder"
        assert not admin.relation_loaded("pivot")
        assert set(admin.membership) == {"user_id", "role_id", "note"}

    def test_constraint(self, connection: sa.Connection) -> None:
        by_user = _roles_by_user(connection, {"roles": add_conditions(roles.c.level > 3)})
        assert sorted(by_user["alice"]) == ["admin", "editor"]
        assert sorted(by_user["bob"]) == ["editor"]

    def test_inverse_side(self, connection: sa.Connection) -> None:
        editor = Role.query(connection).loads("users").filter_by(name="editor").first_or_fail()
        assert sorted(editor.users.pluck("name")) == ["alice", "bob"]
        assert {u.name: u.pivot.assigned_by for u in editor.users} == {"alice": "bob", "bob": "alice"}

    def test_pivot_serialized(self, connection: sa.Connection) -> None:
        alice = User.query(connection).loads("roles").find_or_fail(1)
        data = alice.to_dict()
        admin = next(role for role in data["roles"] if role["name"] == "admin")
        assert admin["pivot"]["created_at"] == ASSIGNED_AT.isoformat()

    def test_pivot_is_read_only(self, connection: sa.Connection) -> None:
        alice = User.query(connection).loads("roles").find_or_fail(1)
        with pytest.raises(ViolationError):
            alice.roles[0].pivot.assigned_by = "mallory"


class TestMorphToMany:
    def test_eager(self, connection: sa.Connection, statements: list[str]) -> None:
        result = (
            Post.query(connection)
            .where_in("id", [1, 2, 3])
            .order_by("id")
            .loads({"tags": add_order_by(tags.c.id)})
            .get()
        )

        assert result.map(lambda p: p.tags.pluck("name")) == [
            ["python", "sqlalchemy"],
            ["python"],
            [],
        ]
        assert result[0].tags.map(lambda t: t.pivot.weight) == [10, 5]
        assert len(statements) == 2

    def test_type_tag_separates_owners(self, connection: sa.Connection) -> None:
        intro = Video.query(connection).loads({"tags": add_order_by(tags.c.id)}).find_or_fail(1)
        assert intro.tags.pluck("name") == ["python", "video"]
        assert intro.tags.map(lambda t: t.pivot.weight) == [2, 3]

    def test_inverse(self, connection: sa.Connection, statements: list[str]) -> None:
        result = Tag.query(connection).order_by("id").loads("posts", "videos").get()
        by_name = result.key_by("name")

        assert sorted(by_name["python"].posts.model_keys()) == [1, 2]
        assert by_name["python"].videos.model_keys() == [1]
        assert by_name["sqlalchemy"].posts.model_keys() == [1]
        assert by_name["sqlalchemy"].videos.is_empty()
        assert by_name["video"].posts.is_empty()
        assert by_name["video"].videos.model_keys() == [1]
        assert len(statements) == 3
