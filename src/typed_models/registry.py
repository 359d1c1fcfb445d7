"""Model registry: the write-once catalog of every declared model."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping

from loguru import logger

from typed_models.base import BASE_MIXIN, declare_base_mixin
from typed_models.dependencies import FieldGraph
from typed_models.errors import RegistryFrozen, UnknownField, UnknownMethod, UnknownModel
from typed_models.fields import Many2Many, Many2One, One2Many, _Relational
from typed_models.methods import Method
from typed_models.models import Model
from typed_models.types import COLUMN_TYPES, ColumnDefinition, CompositeTypeDefinition


class Registry:
    """Registry of models and mixins.

    Every model implicitly inherits ``BaseMixin``, which carries the
    automatic fields and the base implementation of every record method.
    Extension modules declare and extend models, then ``bootstrap`` merges
    mixins, binds fields, links method chains and builds the dependency
    graph. The registry is read-only afterwards.
    """

    def __init__(self) -> None:
        self._models: dict[str, Model] = {}
        self._layouts: dict[str, CompositeTypeDefinition] = {}
        self.graph: FieldGraph | None = None
        self.bootstrapped = False
        declare_base_mixin(self)

    def declare_model(self, name: str, *, parent_field: str | None = None, description: str = "") -> Model:
        """Declare a model, or return the existing one so modules can extend it."""
        return self._declare(name, False, parent_field, description)

    def declare_mixin(self, name: str, *, description: str = "") -> Model:
        return self._declare(name, True, None, description)

    def _declare(self, name: str, is_mixin: bool, parent_field: str | None, description: str) -> Model:
        if self.bootstrapped:
            raise RegistryFrozen(f"Cannot declare '{name}' after bootstrap")
        existing = self._models.get(name)
        if existing is not None:
            if existing.is_mixin != is_mixin:
                kind = "mixin" if existing.is_mixin else "model"
                raise ValueError(f"'{name}' is already declared as a {kind}")
            if parent_field:
                existing.parent_field = parent_field
            return existing
        model = Model(self, name, is_mixin=is_mixin, parent_field=parent_field, description=description)
        self._models[name] = model
        return model

    def get(self, name: str) -> Model | None:
        """Get a model or mixin by name."""
        return self._models.get(name)

    def must_get(self, name: str) -> Model:
        """Get a model or mixin by name, raising UnknownModel if absent."""
        model = self._models.get(name)
        if model is None:
            raise UnknownModel(name)
        return model

    def __iter__(self) -> Iterator[Model]:
        """Iterate over concrete models in declaration order."""
        return (m for m in self._models.values() if not m.is_mixin)

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return sum(1 for _ in self)

    @property
    def layouts(self) -> Mapping[str, CompositeTypeDefinition]:
        """Row layout of every storage relation (models and link relations)."""
        return MappingProxyType(self._layouts)

    # -- bootstrap ----------------------------------------------------------

    def bootstrap(self) -> Registry:
        """Finalize every model and freeze the registry."""
        if self.bootstrapped:
            raise RegistryFrozen("Registry is already bootstrapped")

        models = list(self)
        for model in models:
            self._merge(model)
        for model in models:
            self._validate(model)
            self._layouts[model.name] = model.row_type()
        for model in models:
            self._register_links(model)

        graph = FieldGraph(self)
        graph.check_cycles()
        for model in models:
            model.compute_order = graph.compute_order(model.name)
        self.graph = graph
        self.bootstrapped = True

        logger.info(
            "Registry bootstrapped: {} models, {} relations",
            len(models),
            len(self._layouts),
        )
        return self

    def _linearize(self, model: Model, seen: set[str] | None = None) -> list[Model]:
        """Mixins contributing to a model, lowest first."""
        seen = set() if seen is None else seen
        order: list[Model] = []
        for name in model.mixins:
            if name in seen:
                continue
            mixin = self.must_get(name)
            if not mixin.is_mixin:
                raise ValueError(f"'{model.name}' cannot inherit concrete model '{name}'")
            seen.add(name)
            order.extend(self._linearize(mixin, seen))
            order.append(mixin)
        return order

    def _merge(self, model: Model) -> None:
        """Merge mixin fields and method layers into a model."""
        contributors = [self._models[BASE_MIXIN]]
        contributors += [m for m in self._linearize(model) if m.name != BASE_MIXIN]
        contributors.append(model)

        fields = {}
        for contributor in contributors:
            for name, field in contributor.fields.items():
                fields[name] = field.bind(model.name, name)
        if "name" not in fields:
            # display_name falls back to "<Model>(<id>)" and reads nothing
            fields["display_name"].depends = ()
        for contributor in contributors:
            for name, paths in contributor.extra_depends.items():
                field = fields.get(name)
                if field is None:
                    raise UnknownField(model.name, name)
                if not field.compute:
                    raise ValueError(f"{field!r} is not computed and cannot take dependencies")
                field.depends = tuple(dict.fromkeys(field.depends + paths))
        for field in fields.values():
            if isinstance(field, Many2Many):
                field.resolve_link()
        model._fields = fields

        methods: dict[str, Method] = {}
        for contributor in contributors:
            for name, own in contributor.methods.items():
                merged = methods.get(name)
                if merged is None:
                    if name in contributor._extensions:
                        raise UnknownMethod(
                            model.name, name, f"extended by '{contributor.name}' but never declared"
                        )
                    merged = methods[name] = Method(name)
                merged.stack(own)
        for method in methods.values():
            method.finalize()
        model._methods = methods
        model._default_overrides = {
            name: value for c in contributors for name, value in c.default_overrides.items()
        }
        model.non_copyable = {name for c in contributors for name in c.non_copyable}

    def _validate(self, model: Model) -> None:
        for name in list(model.default_overrides) + list(model.non_copyable):
            model.field_or_raise(name)

        for field in model.fields.values():
            if isinstance(field, _Relational):
                comodel = self.must_get(field.comodel)
                if comodel.is_mixin:
                    raise ValueError(f"{field!r} cannot target mixin '{comodel.name}'")
                if isinstance(field, One2Many):
                    inverse = comodel.field_or_raise(field.inverse)
                    if not isinstance(inverse, Many2One) or inverse.comodel != model.name:
                        raise ValueError(
                            f"{field!r}: inverse '{field.inverse}' must be a many2one to '{model.name}'"
                        )
            for method_name in (field.compute, field.onchange):
                if method_name and model.get_method(method_name) is None:
                    raise UnknownMethod(model.name, method_name, f"required by {field!r}")

        if model.parent_field:
            parent = model.field_or_raise(model.parent_field)
            if not isinstance(parent, Many2One) or parent.comodel != model.name:
                raise ValueError(
                    f"Parent field '{model.parent_field}' of '{model.name}' must be a many2one to itself"
                )

    def _register_links(self, model: Model) -> None:
        for field in model.fields.values():
            if not isinstance(field, Many2Many):
                continue
            assert field.relation and field.column1 and field.column2
            existing = self._layouts.get(field.relation)
            if existing is None:
                id_type = COLUMN_TYPES["uint64"]
                self._layouts[field.relation] = CompositeTypeDefinition(
                    name=field.relation,
                    columns=[
                        ColumnDefinition(field.column1, id_type),
                        ColumnDefinition(field.column2, id_type),
                    ],
                )
            elif set(existing.column_names) != {field.column1, field.column2}:
                raise ValueError(
                    f"{field!r} uses link relation '{field.relation}' with different columns"
                )

    def link_columns(self, model_name: str) -> dict[str, set[str]]:
        """Link relation columns that reference records of a model."""
        columns: dict[str, set[str]] = {}
        for model in self:
            for field in model.fields.values():
                if not isinstance(field, Many2Many):
                    continue
                if model.name == model_name:
                    columns.setdefault(field.relation, set()).add(field.column1)  # type: ignore[arg-type]
                if field.comodel == model_name:
                    columns.setdefault(field.relation, set()).add(field.column2)  # type: ignore[arg-type]
        return columns

    def __repr__(self) -> str:
        return f"Registry({len(self)} models, bootstrapped={self.bootstrapped})"
