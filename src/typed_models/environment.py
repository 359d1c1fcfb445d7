"""Execution environment: principal, transaction handle and value cache."""

from __future__ import annotations

from contextlib import contextmanager
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Mapping

from loguru import logger

from typed_models.errors import SecurityDenied, UnknownModel
from typed_models.transaction import Transaction

if TYPE_CHECKING:
    from typed_models.recordset import RecordCollection
    from typed_models.registry import Registry
    from typed_models.storage import StorageManager

# (uid, model name, operation) -> allowed
AccessChecker = Callable[[int, str, str], bool]

_MISSING = object()


class Cache:
    """Field values of records, keyed by (model, field) then record id."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], dict[int, Any]] = {}

    def contains(self, model_name: str, field_name: str, record_id: int) -> bool:
        return record_id in self._data.get((model_name, field_name), ())

    def get(self, model_name: str, field_name: str, record_id: int) -> Any:
        """Return a cached value, raising KeyError if it is not cached."""
        return self._data[(model_name, field_name)][record_id]

    def set(self, model_name: str, field_name: str, record_id: int, value: Any) -> None:
        self._data.setdefault((model_name, field_name), {})[record_id] = value

    def update(self, model_name: str, field_name: str, values: Mapping[int, Any]) -> None:
        self._data.setdefault((model_name, field_name), {}).update(values)

    def missing(self, model_name: str, field_name: str, ids: Iterable[int]) -> list[int]:
        """Ids among ``ids`` without a cached value for the field."""
        cached = self._data.get((model_name, field_name), {})
        return [record_id for record_id in ids if record_id not in cached]

    def invalidate(self, model_name: str, field_name: str, ids: Iterable[int] | None = None) -> None:
        """Drop cached values of a field, for some records or all of them."""
        if ids is None:
            self._data.pop((model_name, field_name), None)
            return
        cached = self._data.get((model_name, field_name))
        if cached:
            for record_id in ids:
                cached.pop(record_id, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return sum(len(values) for values in self._data.values())


class Environment:
    """Context of one unit of work.

    Holds the principal (``uid``), the transaction every mutation goes
    through, the value cache shared by all record collections created from
    it, and a read-only context mapping. Used as a context manager, the
    environment commits on success and rolls back on error.
    """

    def __init__(
        self,
        registry: Registry,
        transaction: Transaction,
        uid: int,
        context: Mapping[str, Any] | None = None,
        *,
        superuser_id: int = 1,
        access_checker: AccessChecker | None = None,
        default_limit: int = 80,
        cache: Cache | None = None,
    ) -> None:
        if not registry.bootstrapped:
            raise RuntimeError("Registry must be bootstrapped before creating an environment")
        self.registry = registry
        self.transaction = transaction
        self.uid = uid
        self.context = MappingProxyType(dict(context or {}))
        self.superuser_id = superuser_id
        self.access_checker = access_checker
        self.default_limit = default_limit
        self.cache = cache if cache is not None else Cache()

    @property
    def storage(self) -> StorageManager:
        return self.transaction.storage

    @property
    def is_superuser(self) -> bool:
        return self.uid == self.superuser_id

    def pool(self, model_name: str) -> RecordCollection:
        """Return an empty collection of a model."""
        from typed_models.recordset import RecordCollection

        model = self.registry.must_get(model_name)
        if model.is_mixin:
            raise UnknownModel(model_name)
        return RecordCollection(self, model)

    def __getitem__(self, model_name: str) -> RecordCollection:
        return self.pool(model_name)

    def call(self, model_name: str, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """Dispatch a method on an empty collection of a model."""
        return self.pool(model_name).call(method_name, *args, **kwargs)

    def with_context(self, **overrides: Any) -> Environment:
        """Derive an environment with extra context keys, sharing cache and transaction."""
        return Environment(
            self.registry,
            self.transaction,
            self.uid,
            {**self.context, **overrides},
            superuser_id=self.superuser_id,
            access_checker=self.access_checker,
            default_limit=self.default_limit,
            cache=self.cache,
        )

    def check_access(self, model_name: str, operation: str) -> None:
        """Raise SecurityDenied if the principal may not perform an operation."""
        if self.is_superuser or self.access_checker is None:
            return
        if not self.access_checker(self.uid, model_name, operation):
            raise SecurityDenied(model_name, operation, self.uid)

    def invalidate(self, model_name: str, field_names: Iterable[str], ids: Iterable[int] | None = None) -> None:
        """Drop cached values of written fields and of every field derived from them."""
        field_names = list(field_names)
        ids = None if ids is None else list(ids)
        for name in field_names:
            self.cache.invalidate(model_name, name, ids)
        assert self.registry.graph is not None
        closure = self.registry.graph.dependents_closure(model_name, field_names)
        for (dep_model, dep_field), same_record in closure.items():
            if same_record and dep_model == model_name:
                self.cache.invalidate(dep_model, dep_field, ids)
            else:
                self.cache.invalidate(dep_model, dep_field)

    def commit(self) -> None:
        self.transaction.commit()

    def rollback(self) -> None:
        """Undo pending mutations and forget every cached value."""
        self.transaction.rollback()
        self.cache.clear()

    def __enter__(self) -> Environment:
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.commit()
        else:
            logger.debug("Environment of user {} rolled back after {}", self.uid, exc_type.__name__)
            self.rollback()

    def __repr__(self) -> str:
        return f"Environment(uid={self.uid}, context={dict(self.context)})"


@contextmanager
def new_environment(
    registry: Registry,
    storage: StorageManager,
    uid: int,
    context: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> Iterator[Environment]:
    """Run a unit of work in a fresh transaction.

    Commits when the block succeeds, rolls back and re-raises otherwise.
    """
    with Transaction(storage) as transaction:
        with Environment(registry, transaction, uid, context, **kwargs) as env:
            yield env


@contextmanager
def simulated_environment(
    registry: Registry,
    storage: StorageManager,
    uid: int,
    context: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> Iterator[Environment]:
    """Run a unit of work whose mutations are always rolled back."""
    transaction = Transaction(storage)
    env = Environment(registry, transaction, uid, context, **kwargs)
    try:
        yield env
    finally:
        env.rollback()
        transaction.close()
