"""Field dependency graph built once at registry bootstrap."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Iterable

from typed_models.errors import CyclicFieldDependency
from typed_models.fields import Many2Many, Many2One, One2Many

if TYPE_CHECKING:
    from typed_models.models import Model
    from typed_models.registry import Registry

# (model name, field name)
FieldKey = tuple[str, str]


class FieldGraph:
    """Which fields must be invalidated or recomputed when a field changes.

    Edges go from a field to the computed or related fields derived from it.
    An edge is ``same_record`` when the dependent field reads the changed
    field on the same record (first hop of a dependency path); otherwise
    the dependent values of every record of the dependent model are stale.
    """

    def __init__(self, registry: Registry) -> None:
        self._dependents: dict[FieldKey, set[tuple[str, str, bool]]] = {}
        self._inverses: dict[FieldKey, set[FieldKey]] = {}
        self._order: list[FieldKey] = []
        self._build(registry)

    def _build(self, registry: Registry) -> None:
        models = list(registry)
        for model in models:
            for name, field in model.fields.items():
                if field.stored:
                    continue
                self._order.append((model.name, name))
                for path in field.dependency_paths:
                    for hop_model, hop_field, same_record in self._walk(registry, model, path):
                        self._dependents.setdefault((hop_model, hop_field), set()).add(
                            (model.name, name, same_record)
                        )
        for model in models:
            for name, field in model.fields.items():
                if isinstance(field, Many2One):
                    comodel = registry.must_get(field.comodel)
                    for other_name, other in comodel.fields.items():
                        if isinstance(other, One2Many) and other.inverse == name and other.comodel == model.name:
                            self._inverses.setdefault((model.name, name), set()).add(
                                (comodel.name, other_name)
                            )
                elif isinstance(field, Many2Many):
                    comodel = registry.must_get(field.comodel)
                    for other_name, other in comodel.fields.items():
                        if (
                            isinstance(other, Many2Many)
                            and other.relation == field.relation
                            and (comodel.name, other_name) != (model.name, name)
                        ):
                            self._inverses.setdefault((model.name, name), set()).add(
                                (comodel.name, other_name)
                            )

    @staticmethod
    def _walk(registry: Registry, model: Model, path: str) -> list[tuple[str, str, bool]]:
        """Resolve a dotted path into the (model, field, same_record) hops it reads."""
        hops = []
        current = model
        segments = path.split(".")
        for position, segment in enumerate(segments):
            field = current.field_or_raise(segment)
            hops.append((current.name, segment, position == 0))
            if position < len(segments) - 1:
                if not field.is_relational:
                    raise ValueError(
                        f"Dependency '{path}' of model '{model.name}' goes through "
                        f"non-relational field '{current.name}.{segment}'"
                    )
                current = registry.must_get(field.comodel)  # type: ignore[attr-defined]
        return hops

    # -- queries ------------------------------------------------------------

    def dependents(self, model_name: str, field_name: str) -> set[tuple[str, str, bool]]:
        """Direct dependents of a field."""
        return set(self._dependents.get((model_name, field_name), ()))

    def inverses(self, model_name: str, field_name: str) -> set[FieldKey]:
        """Relational fields holding the other side of a relation field."""
        return set(self._inverses.get((model_name, field_name), ()))

    def dependents_closure(self, model_name: str, field_names: Iterable[str]) -> dict[FieldKey, bool]:
        """Every field transitively derived from the given fields.

        Maps each dependent field to whether it only needs refreshing on the
        changed records (every hop on the way was ``same_record``).
        """
        result: dict[FieldKey, bool] = {}
        queue = deque(((model_name, name), True) for name in field_names)
        while queue:
            key, same_record = queue.popleft()
            edges = [(m, f, same_record and s) for m, f, s in self._dependents.get(key, ())]
            edges.extend((m, f, False) for m, f in self._inverses.get(key, ()))
            for dep_model, dep_field, dep_same in edges:
                dep_key = (dep_model, dep_field)
                seen = result.get(dep_key)
                if seen is None or (dep_same and not seen):
                    result[dep_key] = dep_same if seen is None else True
                    queue.append((dep_key, dep_same))
        return result

    # -- ordering -----------------------------------------------------------

    def check_cycles(self) -> None:
        """Raise CyclicFieldDependency if derived fields depend on themselves."""
        state: dict[FieldKey, int] = {}  # 1 visiting, 2 done
        stack: list[FieldKey] = []

        def visit(key: FieldKey) -> None:
            state[key] = 1
            stack.append(key)
            for dep_model, dep_field, _ in sorted(self._dependents.get(key, ())):
                dep_key = (dep_model, dep_field)
                if state.get(dep_key) == 1:
                    start = stack.index(dep_key)
                    cycle = stack[start:] + [dep_key]
                    raise CyclicFieldDependency([f"{m}.{f}" for m, f in cycle])
                if dep_key not in state:
                    visit(dep_key)
            stack.pop()
            state[key] = 2

        for key in self._order:
            if key not in state:
                visit(key)

    def compute_order(self, model_name: str) -> tuple[str, ...]:
        """Derived fields of a model, each after the derived fields it reads.

        Ties keep declaration order. Assumes ``check_cycles`` passed.
        """
        nodes = [key for key in self._order if key[0] == model_name]
        requires: dict[FieldKey, set[FieldKey]] = {key: set() for key in nodes}
        for source in nodes:
            for dep_model, dep_field, _ in self._dependents.get(source, ()):
                if (dep_model, dep_field) in requires:
                    requires[(dep_model, dep_field)].add(source)

        ordered: list[str] = []
        done: set[FieldKey] = set()
        while len(done) < len(nodes):
            for key in nodes:
                if key not in done and requires[key] <= done:
                    done.add(key)
                    ordered.append(key[1])
                    break
        return tuple(ordered)
