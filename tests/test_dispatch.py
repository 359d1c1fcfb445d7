"""Tests for override-chain method dispatch."""

import pytest

from typed_models import Char, Environment, Registry, StorageManager, Transaction, UnknownMethod


class TestOverrideChains:
    """Tests for calling and forwarding through method chains."""

    def test_topmost_layer_runs_first(self, env, users):
        """Test layers run most recent first and forward with super()."""
        john = users[0]
        assert john.prefixed_name() == "Dr. John Smith PhD"
        assert john.call("prefixed_name") == "Dr. John Smith PhD"

    def test_environment_call(self, env, users):
        """Test dispatch through the environment convenience wrapper."""
        assert env.call("User", "search_count") == 3

    def test_layers_in_dispatch_order(self, registry):
        """Test layer order and contributing modules."""
        layers = registry.must_get("User").get_method("prefixed_name").layers
        assert [layer.module for layer in layers] == ["academics", "doctors", "conftest"]
        assert layers[0].next is layers[1]
        assert layers[-1].next is None

    def test_unknown_method(self, env):
        """Test missing methods raise UnknownMethod, an AttributeError."""
        with pytest.raises(UnknownMethod) as exc:
            env["User"].fly()
        assert exc.value.method_name == "fly"
        with pytest.raises(AttributeError):
            env["User"].call("fly")

    def test_private_names_do_not_dispatch(self, env):
        """Test underscore names are plain attribute errors."""
        with pytest.raises(AttributeError) as exc:
            env["User"]._nothing
        assert not isinstance(exc.value, UnknownMethod)

    def test_super_outside_method(self, env):
        """Test super() needs a running method."""
        with pytest.raises(RuntimeError):
            env["User"].super()


def _build_env(tmp_path, registry: Registry) -> Environment:
    storage = StorageManager(tmp_path / "data", registry)
    return Environment(registry, Transaction(storage), uid=1)


class TestOverridingBaseMethods:
    """Tests for modules overriding record methods."""

    def test_override_write(self, tmp_path):
        """Test a module can alter values before the base write."""
        registry = Registry()
        partner = registry.declare_model("Partner")
        partner.add_fields(name=Char())

        @partner.extends
        def write(rs, values):
            values = dict(values)
            if "name" in values:
                values["name"] = values["name"].upper()
            return rs.super().write(values)

        registry.bootstrap()
        env = _build_env(tmp_path, registry)
        record = env["Partner"].create({"name": "acme"})
        record.write({"name": "globex"})
        assert record.get("name") == "GLOBEX"

    def test_override_name_get(self, tmp_path):
        """Test display_name follows an overridden name_get."""
        registry = Registry()
        partner = registry.declare_model("Partner")
        partner.add_fields(name=Char(), code=Char())
        partner.extend_method("name_get", lambda rs: f"[{rs.get('code')}] {rs.super().name_get()}")
        partner.add_depends("display_name", "code")
        registry.bootstrap()
        assert registry.must_get("Partner").fields["display_name"].depends == ("name", "code")

        env = _build_env(tmp_path, registry)
        record = env["Partner"].create({"name": "Acme", "code": "AC"})
        assert record.get("display_name") == "[AC] Acme"
        record.write({"code": "AX"})
        assert record.get("display_name") == "[AX] Acme"

    def test_add_depends_needs_computed_field(self):
        """Test dependencies are only added to computed fields."""
        registry = Registry()
        registry.declare_model("Partner").add_fields(name=Char()).add_depends("name", "id")
        with pytest.raises(ValueError):
            registry.bootstrap()

        registry = Registry()
        registry.declare_model("Partner").add_depends("nickname", "id")
        with pytest.raises(KeyError):
            registry.bootstrap()

    def test_extension_without_base(self):
        """Test extending a method nobody declared fails at bootstrap."""
        registry = Registry()
        registry.declare_model("Partner").extend_method("ghost", lambda rs: rs.super().ghost())
        with pytest.raises(UnknownMethod):
            registry.bootstrap()

    def test_super_from_base_layer(self, tmp_path):
        """Test forwarding past the base implementation fails."""
        registry = Registry()
        registry.declare_model("Partner").add_method("ping", lambda rs: rs.super().ping())
        registry.bootstrap()
        env = _build_env(tmp_path, registry)
        with pytest.raises(UnknownMethod):
            env["Partner"].ping()

    def test_duplicate_base_declaration(self):
        """Test a model declares a base implementation only once."""
        registry = Registry()
        partner = registry.declare_model("Partner")
        partner.add_method("ping", lambda rs: "pong")
        with pytest.raises(ValueError):
            partner.add_method("ping", lambda rs: "pong")
