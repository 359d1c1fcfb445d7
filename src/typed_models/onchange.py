"""Simulated edits: onchange routines and derived field recomputation."""

from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from loguru import logger

from typed_models.fields import Id
from typed_models.methods import MethodCaller, MethodLayer

if TYPE_CHECKING:
    from typed_models.recordset import RecordCollection


@dataclass
class OnchangeResult:
    """Outcome of an onchange simulation.

    ``value`` holds the fields changed by onchange routines or recomputed,
    in cache form (ids for relations). ``trace`` lists the
    ``(trigger_field, routine)`` calls in execution order.
    """

    value: dict[str, Any] = field(default_factory=dict)
    trace: list[tuple[str, str]] = field(default_factory=list)


class Snapshot(MethodCaller):
    """Unsaved field values of a record being edited.

    Reads fall back to the stored record (when there is one) and then to
    empty values. Derived fields are computed on the snapshot itself, so
    model methods run against the edited values without touching storage.
    """

    def __init__(self, record: RecordCollection, values: Mapping[str, Any]) -> None:
        self.env = record.env
        self.model = record.model
        self.record = record
        self._values: dict[str, Any] = {}
        for name, value in values.items():
            self._values[name] = self.model.field_or_raise(name).convert_to_cache(value)

    def _with_layer(self, layer: MethodLayer) -> Snapshot:
        receiver = copy.copy(self)
        receiver._layer = layer
        return receiver

    @property
    def ids(self) -> tuple[int, ...]:
        return self.record.ids

    @property
    def id(self) -> int | None:
        return self.record.id

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Snapshot({self.record!r}, {self._values!r})"

    def get(self, field_name: str) -> Any:
        field = self.model.field_or_raise(field_name)
        if isinstance(field, Id):
            return self.record.id
        if field_name not in self._values:
            self._values[field_name] = self._evaluate(field_name)
        return field.convert_to_record(self.env, self._values[field_name])

    def _evaluate(self, field_name: str) -> Any:
        field = self.model.field_or_raise(field_name)
        if field.related:
            value: Any = self
            for segment in field.related.split("."):
                value = value.get(segment)
        elif field.compute:
            value = (self.call(field.compute) or {})[field_name]
        elif self.record:
            value = self.record.get(field_name)
        else:
            value = None
        return field.convert_to_cache(value)

    def set(self, field_name: str, value: Any) -> None:
        self._values[field_name] = self.model.field_or_raise(field_name).convert_to_cache(value)

    def discard(self, field_name: str) -> None:
        self._values.pop(field_name, None)

    def value_of(self, field_name: str) -> Any:
        """Cache-form value of a field, evaluating it if needed."""
        self.get(field_name)
        return self._values[field_name]


def run_onchange(
    record: RecordCollection,
    changed: Iterable[str],
    triggers: Mapping[str, Any],
    values: Mapping[str, Any],
) -> OnchangeResult:
    """Simulate editing ``changed`` fields of a record with ``values``.

    Each changed field whose ``triggers`` entry is truthy and which declares
    an onchange routine runs that routine on the snapshot. The routine
    returns a dict of new values; these are applied (the last applied value
    of a field wins) and processed in turn as changed fields. Every field
    is processed at most once. Then the derived fields depending on a
    processed field are recomputed in dependency order.
    """
    model = record.model
    snapshot = Snapshot(record, values)
    result = OnchangeResult()

    queue = deque(changed)
    processed: list[str] = []
    while queue:
        name = queue.popleft()
        if name in processed:
            continue
        processed.append(name)
        field = model.field_or_raise(name)
        if not field.onchange or not triggers.get(name):
            continue
        result.trace.append((name, field.onchange))
        deltas = snapshot.call(field.onchange) or {}
        for key, value in deltas.items():
            snapshot.set(key, value)
            result.value[key] = snapshot.value_of(key)
            queue.append(key)

    assert model.registry.graph is not None
    affected = model.registry.graph.dependents_closure(model.name, processed)
    stale = [name for name in model.compute_order if affected.get((model.name, name))]
    for name in stale:
        snapshot.discard(name)
    for name in stale:
        result.value[name] = snapshot.value_of(name)

    logger.debug(
        "Onchange on {} for {}: {} routines, {} values",
        model.name,
        processed,
        len(result.trace),
        len(result.value),
    )
    return result
