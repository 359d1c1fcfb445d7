"""Tests for create, write, copy, read, unlink and search."""

import pytest

from typed_models import UnknownField, convert_limit_to_int


class TestCreate:
    """Tests for creating records."""

    def test_create_returns_single_record(self, env):
        """Test create returns a new single-record collection."""
        user = env["User"].create({"name": "Alice"})
        assert len(user) == 1
        assert user.get("name") == "Alice"

    def test_defaults_fill_missing_fields(self, env):
        """Test constant and callable defaults."""
        user = env["User"].create({"name": "Alice"})
        assert user.get("nums") == 3
        assert user.get("is_staff") is False
        assert user.get("is_active") is True

    def test_given_values_beat_defaults(self, env):
        """Test explicit values are not replaced by defaults."""
        user = env["User"].create({"name": "Alice", "nums": 0, "is_active": False})
        assert user.get("nums") == 0
        assert user.get("is_active") is False

    def test_context_default(self, env):
        """Test context defaults apply on create."""
        user = env.with_context(default_age=42)["User"].create({"name": "Alice"})
        assert user.get("age") == 42

    def test_required_field(self, env):
        """Test required fields must be given."""
        with pytest.raises(ValueError):
            env["User"].create({"email": "nobody@example.com"})
        with pytest.raises(ValueError):
            env["User"].create({"name": ""})

    def test_derived_fields_cannot_be_set(self, env):
        """Test computed and automatic fields are refused."""
        with pytest.raises(ValueError):
            env["User"].create({"name": "Alice", "decorated_name": "x"})
        with pytest.raises(ValueError):
            env["User"].create({"name": "Alice", "create_date": None})

    def test_unknown_field(self, env):
        """Test undeclared fields are refused."""
        with pytest.raises(UnknownField):
            env["User"].create({"name": "Alice", "nickname": "Al"})

    def test_create_with_one2many(self, env, users):
        """Test creating a record with to-many values."""
        john = users[0]
        posts = john.get("posts")
        alice = env["User"].create({"name": "Alice", "posts": posts})
        assert alice.get("posts").ids == posts.ids
        assert not john.get("posts")

    def test_ids_are_sequential(self, env):
        """Test ids start at 1 and are never reused."""
        first = env["Tag"].create({"name": "a"})
        second = env["Tag"].create({"name": "b"})
        assert (first.id, second.id) == (1, 2)
        second.unlink()
        assert env["Tag"].create({"name": "c"}).id == 3


class TestWrite:
    """Tests for updating records."""

    def test_write_several_records(self, env, users):
        """Test write updates every record of the collection."""
        everyone = env["User"].search()
        assert everyone.write({"nums": 9}) is True
        assert [u.get("nums") for u in everyone] == [9, 9, 9]

    def test_write_readonly_field(self, users):
        """Test readonly and derived fields refuse writes."""
        john = users[0]
        with pytest.raises(ValueError):
            john.write({"create_date": None})
        with pytest.raises(ValueError):
            john.write({"decorated_name": "x"})
        with pytest.raises(ValueError):
            john.write({"id": 5})

    def test_write_many2one(self, env, users):
        """Test writing and clearing a many2one."""
        john, jane, _ = users
        profile = john.get("profile")
        jane.write({"profile": profile})
        assert jane.get("profile") == profile
        jane.write({"profile": None})
        assert not jane.get("profile")

    def test_write_one2many_replaces(self, env, users):
        """Test a one2many write sets and clears the inverse many2one."""
        john, jane, _ = users
        first, second = john.get("posts").records()
        john.write({"posts": first})
        assert john.get("posts").ids == first.ids
        assert not second.get("user")

    def test_write_many2many_replaces(self, env, users):
        """Test a many2many write replaces the links."""
        post = env["Post"].search("title = '1st post'")
        a, b, c = (env["Tag"].create({"name": n}) for n in "abc")
        post.write({"tags": a | b})
        assert post.get("tags").ids == (a | b).ids
        post.write({"tags": b | c})
        assert post.get("tags").ids == (b | c).ids
        assert not a.get("posts")

    def test_write_on_empty_collection(self, env):
        """Test writing nothing succeeds."""
        assert env["User"].write({"name": "x"}) is True


class TestCopy:
    """Tests for duplicating records."""

    def test_copy_with_override(self, users):
        """Test the duplicate resets to-many, honors overrides and non-copyable fields."""
        john = users[0]
        assert len(john.get("posts")) == 2

        duplicate = john.copy({"name": "X"})
        assert duplicate.id != john.id
        assert len(duplicate.get("posts")) == 0
        assert duplicate.get("name") == "X"
        for name in ("email", "age", "size", "nums", "is_staff"):
            assert duplicate.get(name) == john.get(name)
        assert duplicate.get("profile") == john.get("profile")
        assert duplicate.get("password") is None
        assert john.get("password") == "secret"

    def test_copy_gets_new_dates(self, users):
        """Test automatic fields are not copied."""
        john = users[0]
        john.write({"age": 30})
        duplicate = john.copy()
        assert duplicate.get("write_date") is None
        assert duplicate.get("create_date") >= john.get("create_date")

    def test_copy_needs_single_record(self, env, users):
        """Test copy is a singleton operation."""
        with pytest.raises(ValueError):
            env["User"].search().copy()


class TestRead:
    """Tests for reading field maps."""

    def test_read_fields(self, users):
        """Test read returns one dict per record with ids for relations."""
        john = users[0]
        (row,) = john.read(["name", "profile", "posts"])
        assert row == {
            "id": john.id,
            "name": "John Smith",
            "profile": john.get("profile").id,
            "posts": list(john.get("posts").ids),
        }

    def test_read_all_fields(self, env, users):
        """Test read without a filter returns every field."""
        rows = env["User"].search().read()
        assert len(rows) == 3
        assert set(rows[0]) == set(env.registry.must_get("User").fields)

    def test_read_does_not_write(self, env, users):
        """Test read never mutates storage."""
        env.transaction.commit()
        env["User"].search().read(["name", "decorated_name"])
        assert env.transaction.pending == 0


class TestUnlink:
    """Tests for deleting records."""

    def test_unlink(self, env, users):
        """Test deleted records disappear from searches."""
        will = users[2]
        assert will.unlink() is True
        assert env["User"].search_count() == 2
        assert not will.exists()

    def test_unlink_nulls_references(self, env, users):
        """Test many2one references to deleted records are cleared."""
        john = users[0]
        profile = john.get("profile")
        posts = john.get("posts")
        john.unlink()
        assert not profile.get("user")
        assert all(not post.get("user") for post in posts)

    def test_unlink_removes_links(self, env, users):
        """Test links to deleted records are removed."""
        post = env["Post"].search("title = '1st post'")
        tag = env["Tag"].create({"name": "a"})
        post.write({"tags": tag})
        tag.unlink()
        assert not post.get("tags")

    def test_read_deleted_record(self, env, users):
        """Test reading a deleted record fails."""
        will = users[2]
        will.unlink()
        with pytest.raises(LookupError):
            will.get("name")


class TestSearch:
    """Tests for searching records."""

    def test_search_all(self, env, users):
        """Test search without a condition returns every record in id order."""
        assert env["User"].search().ids == tuple(u.id for u in users)

    def test_condition_objects(self, env, users):
        """Test conditions built from model fields."""
        user = env.registry.must_get("User")
        found = env["User"].search(user.field("name").like("J% Smith"))
        assert [u.get("name") for u in found] == ["John Smith", "Jane A. Smith"]
        found = env["User"].search(user.field("age").greater(30) | user.field("name").equals("Jane A. Smith"))
        assert found.ids == (users[1].id, users[2].id)
        found = env["User"].search(~user.field("age").equals(24))
        assert found.ids == (users[2].id,)

    def test_condition_text(self, env, users):
        """Test conditions written as text."""
        assert env["User"].search_count('name ilike "%smith"') == 3
        assert env["User"].search("age >= 30").ids == (users[2].id,)
        assert env["User"].search("age in (24, 36) and not name like 'W%'").ids == (
            users[0].id,
            users[1].id,
        )
        assert env["User"].search("id > 1").ids == (users[1].id, users[2].id)

    def test_null_conditions(self, env, users):
        """Test null comparisons."""
        assert env["User"].search("profile = null").ids == (users[1].id, users[2].id)
        assert env["User"].search("profile != null").ids == (users[0].id,)

    def test_many2one_condition_with_record(self, env, users):
        """Test a record can be compared to a many2one."""
        profile = users[0].get("profile")
        user = env.registry.must_get("User")
        assert env["User"].search(user.field("profile").equals(profile)).ids == (users[0].id,)

    def test_limit_and_offset(self, env, users):
        """Test limit and offset."""
        assert len(env["User"].search(limit=2)) == 2
        assert env["User"].search(offset=1).ids == (users[1].id, users[2].id)
        assert env["User"].search(limit=1, offset=2).ids == (users[2].id,)
        assert len(env["User"].search(limit=None)) == 3

    def test_convert_limit_to_int(self):
        """Test limit normalization."""
        assert convert_limit_to_int(5) == 5
        assert convert_limit_to_int(False) == -1
        assert convert_limit_to_int(None) == 80
        assert convert_limit_to_int(None, default=10) == 10

    def test_invalid_searches(self, env):
        """Test malformed or unsupported conditions."""
        with pytest.raises(SyntaxError):
            env["User"].search("age >=")
        with pytest.raises(UnknownField):
            env["User"].search("nickname = 'x'")
        with pytest.raises(ValueError):
            env["User"].search("decorated_name = 'x'")
