"""Record collections: ordered sets of record ids of one model."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from typed_models.errors import ModelMismatch, RecordNotFound
from typed_models.fields import Field, Id, Many2Many, One2Many
from typed_models.methods import MethodCaller, MethodLayer

if TYPE_CHECKING:
    from typed_models.environment import Environment
    from typed_models.models import Model


def convert_limit_to_int(limit: int | bool | None, default: int = 80) -> int:
    """Normalize a search limit: ``False`` means no limit (-1), ``None`` the default."""
    if limit is None:
        return default
    if limit is False:
        return -1
    return int(limit)


def _unique(ids: Iterable[int]) -> tuple[int, ...]:
    return tuple(dict.fromkeys(ids))


class RecordCollection(MethodCaller):
    """An ordered set of records of one model, bound to an environment.

    Collections are values: set algebra returns new collections and never
    changes its operands. Field values are read lazily through the
    environment cache; a cache miss loads the field for every record of the
    prefetch set at once. Unknown attributes dispatch to model methods, so
    ``users.write({...})`` runs the topmost implementation of ``write``.

    Args:
        env: Environment the records are read and written through.
        model: Model of the records.
        ids: Record ids; duplicates are dropped, first occurrence wins.
        prefetch: Ids loaded together on a cache miss, defaults to ``ids``.
    """

    def __init__(
        self,
        env: Environment,
        model: Model,
        ids: Iterable[int] = (),
        prefetch: Iterable[int] | None = None,
    ) -> None:
        self.env = env
        self.model = model
        self._ids = _unique(ids)
        self._prefetch = self._ids if prefetch is None else _unique(prefetch)

    def _with_layer(self, layer: MethodLayer) -> RecordCollection:
        receiver = RecordCollection(self.env, self.model, self._ids, self._prefetch)
        receiver._layer = layer
        return receiver

    def _new(self, ids: Iterable[int]) -> RecordCollection:
        return RecordCollection(self.env, self.model, ids, self._prefetch)

    # -- basics -------------------------------------------------------------

    @property
    def ids(self) -> tuple[int, ...]:
        return self._ids

    @property
    def id(self) -> int | None:
        """Id of a single record, None on an empty collection."""
        if not self._ids:
            return None
        return self.ensure_one()._ids[0]

    def __len__(self) -> int:
        return len(self._ids)

    def __bool__(self) -> bool:
        return bool(self._ids)

    def __iter__(self) -> Iterator[RecordCollection]:
        return iter(self.records())

    def __contains__(self, item: object) -> bool:
        if isinstance(item, RecordCollection):
            self._check_model(item)
            return set(item._ids) <= set(self._ids)
        return item in self._ids

    def records(self) -> list[RecordCollection]:
        """Split into single-record collections sharing this prefetch set."""
        prefetch = _unique(self._prefetch + self._ids)
        return [RecordCollection(self.env, self.model, (i,), prefetch) for i in self._ids]

    def ensure_one(self) -> RecordCollection:
        if len(self._ids) != 1:
            raise ValueError(f"Expected singleton: {self!r}")
        return self

    def with_env(self, env: Environment) -> RecordCollection:
        """The same records seen through another environment."""
        return RecordCollection(env, env.registry.must_get(self.model.name), self._ids, self._prefetch)

    def __repr__(self) -> str:
        return f"{self.model.name}({', '.join(str(i) for i in self._ids)})"

    # -- set algebra --------------------------------------------------------

    def _check_model(self, other: RecordCollection) -> None:
        if other.model.name != self.model.name:
            raise ModelMismatch(self.model.name, other.model.name)

    def union(self, *others: RecordCollection) -> RecordCollection:
        """Records of this collection, then the new ones of each other in order."""
        ids = list(self._ids)
        for other in others:
            self._check_model(other)
            ids.extend(other._ids)
        return self._new(ids)

    def subtract(self, other: RecordCollection) -> RecordCollection:
        """Records of this collection absent from ``other``."""
        self._check_model(other)
        excluded = set(other._ids)
        return self._new(i for i in self._ids if i not in excluded)

    def intersect(self, other: RecordCollection) -> RecordCollection:
        """Records of this collection also in ``other``, in this collection's order."""
        self._check_model(other)
        kept = set(other._ids)
        return self._new(i for i in self._ids if i in kept)

    def equals(self, other: RecordCollection) -> bool:
        """Same model and same set of ids, regardless of order."""
        self._check_model(other)
        return set(self._ids) == set(other._ids)

    def cartesian_product(self, *others: RecordCollection) -> list[RecordCollection]:
        """One collection per combination of one record from each factor.

        This collection is the outermost factor and the last argument the
        innermost. An empty factor yields no combination.
        """
        for other in others:
            self._check_model(other)
        factors = [self._ids] + [other._ids for other in others]
        return [self._new(combination) for combination in itertools.product(*factors)]

    __or__ = union
    __sub__ = subtract
    __and__ = intersect

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecordCollection):
            return NotImplemented
        if other.model.name != self.model.name:
            return False
        return self.equals(other)

    def __hash__(self) -> int:
        return hash((self.model.name, frozenset(self._ids)))

    # -- field access -------------------------------------------------------

    def get(self, field_name: str) -> Any:
        """Value of a field on a single record.

        Relational values are returned as collections. An empty collection
        gives the empty value of the field.
        """
        field = self.model.field_or_raise(field_name)
        if not self._ids:
            return field.convert_to_record(self.env, field.convert_to_cache(None))
        record_id = self.ensure_one()._ids[0]
        if isinstance(field, Id):
            return record_id

        cache = self.env.cache
        if not cache.contains(self.model.name, field_name, record_id):
            self._fetch(field)
        value = field.convert_to_record(self.env, cache.get(self.model.name, field_name, record_id))
        if field.is_relational:
            # targets of the whole prefetch set load together with this one
            return value.with_prefetch(self._cached_targets(field))
        return value

    def set(self, field_name: str, value: Any) -> bool:
        """Write a single field on every record."""
        return self.call("write", {field_name: value})

    def with_prefetch(self, prefetch: Iterable[int]) -> RecordCollection:
        """The same records, loaded together with ``prefetch`` on a cache miss."""
        return RecordCollection(self.env, self.model, self._ids, self._ids + tuple(prefetch))

    def _cached_targets(self, field: Field) -> list[int]:
        """Target ids of a relational field already cached over the prefetch set."""
        cache = self.env.cache
        targets: list[int] = []
        for record_id in _unique(self._ids + self._prefetch):
            if not cache.contains(self.model.name, field.name, record_id):
                continue
            value = cache.get(self.model.name, field.name, record_id)
            if isinstance(value, tuple):
                targets.extend(value)
            elif value is not None:
                targets.append(value)
        return targets

    def _fetch(self, field: Field) -> None:
        """Load a field missing from the cache over the prefetch set."""
        cache = self.env.cache
        ids = cache.missing(self.model.name, field.name, _unique(self._ids + self._prefetch))
        if field.is_column:
            fields = [f for f in self.model.column_fields() if cache.missing(self.model.name, f.name, ids)]
        else:
            fields = [field]
        self._load_fields(fields, ids)

    def _load_fields(self, fields: Iterable[Field], ids: Iterable[int] | None = None) -> None:
        """Load fields into the cache with one retrieval per storage source.

        Values are published once the whole batch has been read, so a failure
        leaves the cache untouched. Stored values are published before derived
        values are computed.
        """
        env = self.env
        model = self.model
        env.check_access(model.name, "read")
        fields = [f for f in fields if not isinstance(f, Id)]
        ids = self._ids if ids is None else _unique(ids)

        columns = [f for f in fields if f.is_column]
        rows = env.storage.fetch_rows(model.name, ids, [f.name for f in columns])
        missing = [i for i in self._ids if i in ids and i not in rows]
        if missing:
            raise RecordNotFound(model.name, missing)
        present = [i for i in ids if i in rows]

        loaded: dict[str, dict[int, Any]] = {}
        for field in columns:
            loaded[field.name] = {i: field.convert_from_column(rows[i][field.name]) for i in present}
        for field in fields:
            if field.stored and isinstance(field, Many2Many):
                links = env.storage.fetch_links(field.relation, field.column1, field.column2, present)  # type: ignore[arg-type]
                loaded[field.name] = {i: tuple(links[i]) for i in present}
            elif field.stored and isinstance(field, One2Many):
                inverse = env.storage.fetch_inverse(field.comodel, field.inverse, present)
                loaded[field.name] = {i: tuple(inverse[i]) for i in present}
        for name, values in loaded.items():
            env.cache.update(model.name, name, values)

        derived = [f for f in fields if not f.stored]
        if not derived:
            return
        computed: dict[str, dict[int, Any]] = {f.name: {} for f in derived}
        for record in self._new(present).records():
            for field in derived:
                if field.related:
                    value: Any = record
                    for segment in field.related.split("."):
                        value = value.get(segment)
                else:
                    value = (record.call(field.compute) or {})[field.name]
                computed[field.name][record._ids[0]] = field.convert_to_cache(value)
        for name, values in computed.items():
            env.cache.update(model.name, name, values)
