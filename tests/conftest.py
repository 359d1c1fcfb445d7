"""Shared fixtures: a small blog registry (users, profiles, posts, tags)."""

from __future__ import annotations

import pytest
from loguru import logger

from typed_models import (
    Boolean,
    Char,
    Environment,
    Float,
    Integer,
    Many2Many,
    Many2One,
    One2Many,
    Registry,
    StorageManager,
    Text,
    Transaction,
)

# Fields each fixture model declares itself (BaseMixin adds 5 more)
USER_FIELDS = 12
POST_FIELDS = 4
TAG_FIELDS = 4
PROFILE_FIELDS = 4


def declare_base_module(registry: Registry) -> None:
    """Models as a first module declares them."""
    user = registry.declare_model("User", description="Application users")
    user.add_fields(
        name=Char(string="Name", help="The user name", required=True, onchange="onchange_name"),
        email=Char(help="The user's email address", onchange="onchange_email"),
        password=Char(),
        age=Integer(onchange="onchange_age"),
        nums=Integer(default=3),
        is_staff=Boolean(default=False),
        is_active=Boolean(default=lambda env: True),
        size=Float(),
        profile=Many2One("Profile"),
        posts=One2Many("Post", "user"),
        decorated_name=Char(compute="compute_decorated_name", depends=("name",)),
        profile_age=Integer(related="profile.age"),
    )
    user.set_non_copyable("password")

    @user.method
    def compute_decorated_name(rs):
        return {"decorated_name": f"User: {rs.get('name')}"}

    @user.method
    def onchange_name(rs):
        return {"email": f"{(rs.get('name') or '').lower()}@example.com"}

    @user.method
    def onchange_email(rs):
        return {"nums": len(rs.get("email") or "")}

    @user.method
    def onchange_age(rs):
        if (rs.get("age") or 0) >= 18:
            return {"email": "adult@example.com"}
        return {}

    @user.method
    def prefixed_name(rs):
        return rs.get("name")

    profile = registry.declare_model("Profile")
    profile.add_fields(
        age=Integer(),
        city=Char(),
        money=Float(),
        user=Many2One("User"),
    )

    post = registry.declare_model("Post")
    post.add_fields(
        user=Many2One("User"),
        title=Char(required=True),
        content=Text(),
        tags=Many2Many("Tag"),
    )

    tag = registry.declare_model("Tag", parent_field="parent")
    tag.add_fields(
        name=Char(),
        parent=Many2One("Tag"),
        description=Char(),
        posts=Many2Many("Post"),
    )


def declare_title_modules(registry: Registry) -> None:
    """Two later modules stacking overrides on User.prefixed_name."""
    user = registry.declare_model("User")
    user.extend_method("prefixed_name", lambda rs: "Dr. " + rs.super().prefixed_name(), module="doctors")
    user.extend_method("prefixed_name", lambda rs: rs.super().prefixed_name() + " PhD", module="academics")


def build_registry() -> Registry:
    registry = Registry()
    declare_base_module(registry)
    declare_title_modules(registry)
    return registry.bootstrap()


@pytest.fixture(autouse=True)
def silence_logger():
    logger.remove()
    logger.add(lambda msg: None)
    yield


@pytest.fixture
def registry() -> Registry:
    return build_registry()


@pytest.fixture
def storage(tmp_path, registry):
    with StorageManager(tmp_path / "data", registry) as storage:
        yield storage


@pytest.fixture
def env(registry, storage) -> Environment:
    return Environment(registry, Transaction(storage), uid=1)


@pytest.fixture
def users(env):
    """Three users: John (with a profile and two posts), Jane and Will."""
    profile = env["Profile"].create({"age": 23, "city": "London", "money": 12345.0})
    john = env["User"].create(
        {
            "name": "John Smith",
            "email": "jsmith@example.com",
            "password": "secret",
            "age": 24,
            "size": 1.78,
            "profile": profile,
        }
    )
    env["Post"].create({"user": john, "title": "1st post", "content": "Hello"})
    env["Post"].create({"user": john, "title": "2nd post", "content": "World"})
    jane = env["User"].create({"name": "Jane A. Smith", "email": "jane.smith@example.com", "age": 24})
    will = env["User"].create({"name": "Will Smith", "email": "will.smith@example.com", "age": 36})
    return john, jane, will
