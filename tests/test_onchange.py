"""Tests for onchange simulation."""

import pytest

from typed_models import UnknownField

ALL_TRIGGERS = {"name": "1", "email": "1", "age": "1"}


class TestOnchange:
    """Tests for onchange routines and recomputation."""

    def test_chain_of_routines(self, env):
        """Test deltas trigger further routines and are traced."""
        result = env["User"].onchange(["name"], ALL_TRIGGERS, {"name": "Jane"})
        assert result.trace == [("name", "onchange_name"), ("email", "onchange_email")]
        assert result.value["email"] == "jane@example.com"
        assert result.value["nums"] == len("jane@example.com")

    def test_trigger_map_gates_routines(self, env):
        """Test fields without a truthy trigger entry run nothing."""
        result = env["User"].onchange(["name"], {"name": "1"}, {"name": "Jane"})
        assert result.trace == [("name", "onchange_name")]
        assert "nums" not in result.value

        result = env["User"].onchange(["name"], {}, {"name": "Jane"})
        assert result.trace == []

    def test_last_applied_wins(self, env):
        """Test conflicting deltas keep the last applied value."""
        result = env["User"].onchange(["name", "age"], ALL_TRIGGERS, {"name": "Jane", "age": 30})
        assert result.trace == [
            ("name", "onchange_name"),
            ("age", "onchange_age"),
            ("email", "onchange_email"),
        ]
        assert result.value["email"] == "adult@example.com"
        assert result.value["nums"] == len("adult@example.com")

    def test_computed_fields_recomputed(self, env):
        """Test derived fields of processed fields are recomputed."""
        result = env["User"].onchange(["name"], {}, {"name": "Jane"})
        assert result.value["decorated_name"] == "User: Jane"
        assert result.value["display_name"] == "Jane"
        assert "last_update" not in result.value

    def test_deterministic(self, env):
        """Test identical inputs give identical outputs."""
        args = (["name", "age"], ALL_TRIGGERS, {"name": "Jane", "age": 30})
        first = env["User"].onchange(*args)
        second = env["User"].onchange(*args)
        assert first == second

    def test_existing_record_falls_back_to_storage(self, env, users):
        """Test unsent values are read from the stored record."""
        john = users[0]
        result = john.onchange(["profile"], {}, {"profile": None})
        assert result.value["profile_age"] is None

        result = john.onchange(["age"], ALL_TRIGGERS, {"age": 12})
        assert result.trace == [("age", "onchange_age")]
        assert result.value == {}

    def test_does_not_persist(self, env, users):
        """Test onchange never writes."""
        john = users[0]
        env.transaction.commit()
        john.onchange(["name"], ALL_TRIGGERS, {"name": "Changed"})
        assert env.transaction.pending == 0
        assert john.get("name") == "John Smith"
        assert john.get("email") == "jsmith@example.com"

    def test_related_through_given_record(self, env, users):
        """Test related fields follow a many2one given as a record."""
        john = users[0]
        profile = john.get("profile")
        result = env["User"].onchange(["profile"], {}, {"profile": profile})
        assert result.value["profile_age"] == 23

    def test_unknown_field(self, env):
        """Test unknown changed fields fail."""
        with pytest.raises(UnknownField):
            env["User"].onchange(["nickname"], {}, {})

    def test_needs_at_most_one_record(self, env, users):
        """Test onchange runs on a new or a single record."""
        with pytest.raises(ValueError):
            env["User"].search().onchange(["name"], {}, {"name": "x"})
