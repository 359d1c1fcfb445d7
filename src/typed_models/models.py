"""Model definitions held by the registry."""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Mapping

from typed_models.conditions import ConditionField
from typed_models.errors import RegistryFrozen, UnknownField
from typed_models.fields import Field
from typed_models.methods import Method
from typed_models.types import ColumnDefinition, CompositeTypeDefinition

if TYPE_CHECKING:
    from typed_models.registry import Registry


class Model:
    """A declared record type.

    Models are created through ``Registry.declare_model`` (or
    ``declare_mixin``) and filled by every module extending them until the
    registry bootstraps. After that, fields, methods and defaults are
    frozen.
    """

    def __init__(
        self,
        registry: Registry,
        name: str,
        *,
        is_mixin: bool = False,
        parent_field: str | None = None,
        description: str = "",
    ) -> None:
        self.registry = registry
        self.name = name
        self.is_mixin = is_mixin
        self.parent_field = parent_field
        self.description = description
        self._fields: dict[str, Field] = {}
        self._methods: dict[str, Method] = {}
        self._extensions: set[str] = set()
        self._mixins: list[str] = []
        self._default_overrides: dict[str, Any] = {}
        self.non_copyable: set[str] = set()
        self._extra_depends: dict[str, list[str]] = {}
        # Computed fields in evaluation order, set at bootstrap
        self.compute_order: tuple[str, ...] = ()

    def _check_open(self) -> None:
        if self.registry.bootstrapped:
            raise RegistryFrozen(f"Cannot modify model '{self.name}' after bootstrap")

    # -- registration -------------------------------------------------------

    def add_fields(self, **fields: Field) -> Model:
        """Declare fields; a field already declared under the same name is replaced."""
        for name, field in fields.items():
            self.add_field(name, field)
        return self

    def add_field(self, name: str, field: Field) -> Model:
        self._check_open()
        self._fields[name] = field
        return self

    def inherit(self, *mixins: str) -> Model:
        """Merge the fields and methods of mixins into this model at bootstrap."""
        self._check_open()
        for mixin in mixins:
            if mixin not in self._mixins:
                self._mixins.append(mixin)
        return self

    def add_method(self, name: str, func: Callable[..., Any], module: str | None = None) -> Model:
        """Declare the base implementation of a method."""
        self._check_open()
        if name in self._methods:
            raise ValueError(f"Method '{name}' already declared on '{self.name}', extend it instead")
        method = Method(name)
        method.add(func, module or func.__module__)
        self._methods[name] = method
        return self

    def extend_method(self, name: str, func: Callable[..., Any], module: str | None = None) -> Model:
        """Register an override of a method, on top of every previous implementation."""
        self._check_open()
        method = self._methods.get(name)
        if method is None:
            method = self._methods[name] = Method(name)
            self._extensions.add(name)
        method.add(func, module or func.__module__)
        return self

    def method(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator form of ``add_method``, named after the function."""
        self.add_method(func.__name__, func)
        return func

    def extends(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator form of ``extend_method``, named after the function."""
        self.extend_method(func.__name__, func)
        return func

    def set_default(self, field_name: str, default: Any) -> Model:
        """Override the default of a field for this model only."""
        self._check_open()
        self._default_overrides[field_name] = default
        return self

    def add_depends(self, field_name: str, *paths: str) -> Model:
        """Add dependency paths to a computed field declared here or inherited.

        Used by modules whose overrides make a computed field read more fields.
        """
        self._check_open()
        self._extra_depends.setdefault(field_name, []).extend(paths)
        return self

    def set_non_copyable(self, *field_names: str) -> Model:
        """Mark fields that ``copy`` must not duplicate."""
        self._check_open()
        self.non_copyable.update(field_names)
        return self

    # -- lookups ------------------------------------------------------------

    @property
    def fields(self) -> Mapping[str, Field]:
        return MappingProxyType(self._fields)

    @property
    def methods(self) -> Mapping[str, Method]:
        return MappingProxyType(self._methods)

    @property
    def mixins(self) -> tuple[str, ...]:
        return tuple(self._mixins)

    @property
    def extra_depends(self) -> Mapping[str, tuple[str, ...]]:
        return MappingProxyType({name: tuple(paths) for name, paths in self._extra_depends.items()})

    @property
    def default_overrides(self) -> Mapping[str, Any]:
        return MappingProxyType(self._default_overrides)

    def get_field(self, name: str) -> Field | None:
        return self._fields.get(name)

    def field_or_raise(self, name: str) -> Field:
        field = self._fields.get(name)
        if field is None:
            raise UnknownField(self.name, name)
        return field

    def field(self, name: str) -> ConditionField:
        """Start a search condition on a field."""
        self.field_or_raise(name)
        return ConditionField(name)

    def get_method(self, name: str) -> Method | None:
        return self._methods.get(name)

    def column_fields(self) -> list[Field]:
        """Fields stored in this model's own relation, in declaration order."""
        return [f for f in self._fields.values() if f.is_column]

    def row_type(self) -> CompositeTypeDefinition:
        """Build the row layout of this model's relation."""
        return CompositeTypeDefinition(
            name=self.name,
            columns=[ColumnDefinition(f.name, f.column_def) for f in self.column_fields()],
        )

    def __repr__(self) -> str:
        kind = "Mixin" if self.is_mixin else "Model"
        return f"{kind}({self.name!r}, {len(self._fields)} fields)"
