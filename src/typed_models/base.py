"""BaseMixin: automatic fields and base record methods shared by every model.

Every function here is registered as the base layer of a method chain.
Extension modules override them with ``Model.extend_method`` and reach the
base behavior through ``rs.super()``.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from loguru import logger

from typed_models.conditions import AnyCondition, Condition, evaluate_condition, iter_conditions, map_values
from typed_models.fields import Char, DateTime, FieldInfo, Id, Many2Many, Many2One, One2Many
from typed_models.onchange import OnchangeResult, run_onchange
from typed_models.parsing import ConditionParser
from typed_models.recordset import RecordCollection, convert_limit_to_int

if TYPE_CHECKING:
    from typed_models.models import Model
    from typed_models.registry import Registry

BASE_MIXIN = "BaseMixin"

# Fields maintained by the runtime, never copied nor set by callers
AUTOMATIC_FIELDS = ("id", "create_date", "write_date", "last_update", "display_name")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_empty(value: Any) -> bool:
    return value is None or value is False or value == "" or value == ()


_parsers = threading.local()


def _condition_parser() -> ConditionParser:
    """Parser of the calling thread; ply keeps lexer and parser state per parse."""
    parser = getattr(_parsers, "parser", None)
    if parser is None:
        parser = ConditionParser()
        parser.build(debug=False, write_tables=False)
        _parsers.parser = parser
    return parser


def _prepare_condition(model: Model, condition: AnyCondition | str) -> AnyCondition:
    """Parse a condition if needed and convert its values to field values."""
    if isinstance(condition, str):
        condition = _condition_parser().parse(condition)
    for leaf in iter_conditions(condition):
        field = model.field_or_raise(leaf.field)
        if not (field.is_column or isinstance(field, Id)):
            raise ValueError(f"Cannot search on non-stored field '{model.name}.{leaf.field}'")

    def convert(leaf: Condition) -> Any:
        field = model.fields[leaf.field]
        if leaf.operator in ("like", "ilike"):
            return leaf.value
        if leaf.operator == "in":
            return [field.convert_to_cache(v) for v in leaf.value]
        return field.convert_to_cache(leaf.value)

    return map_values(condition, convert)


def _write_relations(rs: RecordCollection, values: Mapping[str, Any]) -> None:
    """Store to-many values: link rows for many2many, inverse many2one for one2many."""
    env, model = rs.env, rs.model
    for name, value in values.items():
        field = model.fields[name]
        target_ids = field.convert_to_cache(value)
        if isinstance(field, Many2Many):
            for record_id in rs.ids:
                env.transaction.set_links(
                    field.relation, field.column1, field.column2, record_id, target_ids  # type: ignore[arg-type]
                )
        elif isinstance(field, One2Many):
            env.check_access(field.comodel, "write")
            touched: list[int] = []
            for record_id in rs.ids:
                current = env.storage.fetch_inverse(field.comodel, field.inverse, [record_id])[record_id]
                for target in current:
                    if target not in target_ids:
                        env.transaction.update_row(field.comodel, target, {field.inverse: None})
                        touched.append(target)
                for target in target_ids:
                    if target not in current:
                        env.transaction.update_row(field.comodel, target, {field.inverse: record_id})
                        touched.append(target)
            env.invalidate(field.comodel, [field.inverse], touched)


# -- record retrieval ---------------------------------------------------------


def browse(rs: RecordCollection, ids: int | Iterable[int]) -> RecordCollection:
    """Collection of the given ids; existence is checked when values are read."""
    if isinstance(ids, int):
        ids = (ids,)
    return RecordCollection(rs.env, rs.model, ids)


def exists(rs: RecordCollection) -> RecordCollection:
    """Records of this collection that are still stored."""
    return rs.browse([i for i in rs.ids if rs.env.storage.exists(rs.model.name, i)])


def search(
    rs: RecordCollection,
    condition: AnyCondition | str | None = None,
    limit: int | bool | None = False,
    offset: int = 0,
) -> RecordCollection:
    """Records matching a condition, in id order.

    ``condition`` is built with ``model.field(...)`` or written as text,
    e.g. ``'name like "J%" and age >= 20'``.
    """
    env, model = rs.env, rs.model
    env.check_access(model.name, "read")
    limit = convert_limit_to_int(limit, env.default_limit)

    prepared = None if condition is None else _prepare_condition(model, condition)
    columns = [] if prepared is None else sorted({c.field for c in iter_conditions(prepared)} - {"id"})
    ids = []
    for record_id, row in env.storage.scan(model.name, columns).items():
        if prepared is not None:
            values = {name: model.fields[name].convert_from_column(raw) for name, raw in row.items()}
            values["id"] = record_id
            if not evaluate_condition(values, prepared):
                continue
        ids.append(record_id)

    ids = ids[offset:]
    if limit >= 0:
        ids = ids[:limit]
    return RecordCollection(env, model, ids)


def search_count(rs: RecordCollection, condition: AnyCondition | str | None = None) -> int:
    return len(rs.search(condition, limit=False))


# -- mutations ----------------------------------------------------------------


def create(rs: RecordCollection, values: Mapping[str, Any]) -> RecordCollection:
    """Insert a record; fields absent from ``values`` take their default."""
    env, model = rs.env, rs.model
    env.check_access(model.name, "create")
    values = dict(values)
    for name in values:
        field = model.field_or_raise(name)
        if name in AUTOMATIC_FIELDS or not field.stored:
            raise ValueError(f"Field '{model.name}.{name}' cannot be set")

    for name, value in rs.default_get().items():
        field = model.fields[name]
        if field.stored and name not in AUTOMATIC_FIELDS:
            values.setdefault(name, value)
    for name, field in model.fields.items():
        if field.required and _is_empty(values.get(name)):
            raise ValueError(f"Field '{model.name}.{name}' is required")

    columns = {
        name: model.fields[name].convert_to_column(value)
        for name, value in values.items()
        if model.fields[name].is_column
    }
    columns["create_date"] = model.fields["create_date"].convert_to_column(_now())
    record_id = env.transaction.insert_row(model.name, columns)
    record = RecordCollection(env, model, (record_id,))

    relations = {name: value for name, value in values.items() if not model.fields[name].is_column}
    try:
        _write_relations(record, relations)
    finally:
        env.invalidate(model.name, list(values) + ["create_date"], [record_id])
    logger.debug("Created {}", record)
    return record


def write(rs: RecordCollection, values: Mapping[str, Any]) -> bool:
    """Update every record of the collection and refresh ``write_date``."""
    env, model = rs.env, rs.model
    env.check_access(model.name, "write")
    for name in values:
        field = model.field_or_raise(name)
        if field.readonly or not field.stored:
            raise ValueError(f"Field '{model.name}.{name}' is read-only")
    if not rs:
        return True

    columns = {
        name: model.fields[name].convert_to_column(value)
        for name, value in values.items()
        if model.fields[name].is_column
    }
    columns["write_date"] = model.fields["write_date"].convert_to_column(_now())
    relations = {name: value for name, value in values.items() if not model.fields[name].is_column}
    try:
        for record_id in rs.ids:
            env.transaction.update_row(model.name, record_id, columns)
        _write_relations(rs, relations)
    finally:
        env.invalidate(model.name, list(values) + ["write_date"], rs.ids)
    return True


def unlink(rs: RecordCollection) -> bool:
    """Delete the records, their links, and the many2one references to them."""
    env, model = rs.env, rs.model
    env.check_access(model.name, "unlink")
    if not rs:
        return True
    ids = set(rs.ids)

    for other in env.registry:
        for name, field in other.fields.items():
            if not (isinstance(field, Many2One) and field.comodel == model.name):
                continue
            touched = []
            for referrers in env.storage.fetch_inverse(other.name, name, rs.ids).values():
                for referrer in referrers:
                    if other.name == model.name and referrer in ids:
                        continue
                    env.transaction.update_row(other.name, referrer, {name: None})
                    touched.append(referrer)
            if touched:
                env.invalidate(other.name, [name], touched)

    for relation, link_columns in env.registry.link_columns(model.name).items():
        env.transaction.remove_links(relation, link_columns, rs.ids)
    for record_id in rs.ids:
        env.transaction.delete_row(model.name, record_id)
    env.invalidate(model.name, list(model.fields), rs.ids)
    logger.debug("Deleted {}", rs)
    return True


def copy(rs: RecordCollection, overrides: Mapping[str, Any] | None = None) -> RecordCollection:
    """Duplicate one record.

    To-many relations and non-copyable fields are left empty; ``overrides``
    are applied last.
    """
    rs.ensure_one()
    model = rs.model
    values: dict[str, Any] = {}
    for name, field in model.fields.items():
        if not field.is_column or not field.copy or name in AUTOMATIC_FIELDS:
            continue
        if name in model.non_copyable:
            continue
        values[name] = rs.get(name)
    values.update(overrides or {})
    return rs.create(values)


# -- reading ------------------------------------------------------------------


def load(rs: RecordCollection, fields: Iterable[str] | None = None) -> RecordCollection:
    """Load fields (default: every stored field) for all records at once."""
    model = rs.model
    if fields is None:
        selected = [f for f in model.fields.values() if f.stored]
    else:
        selected = [model.field_or_raise(name) for name in fields]
    if rs:
        rs._load_fields(selected)
    return rs


def read(rs: RecordCollection, fields: Iterable[str] | None = None) -> list[dict[str, Any]]:
    """One dict per record with the requested fields and ``id``.

    Relations are given as ids: a single id (or None) for many2one, a list
    for to-many fields.
    """
    model = rs.model
    names = list(model.fields) if fields is None else list(fields)
    rs.load(names)
    result = []
    for record in rs.records():
        row: dict[str, Any] = {"id": record.id}
        for name in names:
            value = record.get(name)
            if isinstance(value, RecordCollection):
                value = value.id if isinstance(model.fields[name], Many2One) else list(value.ids)
            row[name] = value
        result.append(row)
    return result


def field_get(rs: RecordCollection, name: str) -> FieldInfo:
    return rs.model.field_or_raise(name).info()


def fields_get(rs: RecordCollection, fields: Iterable[str] | None = None) -> dict[str, FieldInfo]:
    """Metadata of the given fields (default: all), keyed by field name."""
    model = rs.model
    names = list(model.fields) if fields is None else list(fields)
    return {name: model.field_or_raise(name).info() for name in names}


# -- defaults & onchange ------------------------------------------------------


def default_get(rs: RecordCollection) -> dict[str, Any]:
    """Default values for a new record.

    A ``default_<field>`` context key beats a model override, which beats
    the field's own default.
    """
    env, model = rs.env, rs.model
    overrides = model.default_overrides
    result: dict[str, Any] = {}
    for name, field in model.fields.items():
        key = f"default_{name}"
        if key in env.context:
            result[name] = env.context[key]
        elif name in overrides:
            override = overrides[name]
            result[name] = override(env) if callable(override) else override
        elif field.has_default():
            result[name] = field.default_value(env)
    return result


def onchange(
    rs: RecordCollection,
    fields: Iterable[str],
    onchange: Mapping[str, Any],
    values: Mapping[str, Any],
) -> OnchangeResult:
    """Simulate an edit of ``fields`` without persisting anything.

    Runs on an empty collection (new record) or on a single record.
    """
    if rs:
        rs.ensure_one()
    return run_onchange(rs, fields, onchange, values)


# -- hierarchy ----------------------------------------------------------------


def check_recursion(rs: RecordCollection) -> bool:
    """False if following the parent field from any record leads back to it.

    Walks are bounded by the number of records of the model.
    """
    parent_field = rs.model.parent_field
    if not parent_field:
        return True
    bound = rs.env.storage.count(rs.model.name)
    for record in rs.records():
        current = record.get(parent_field)
        steps = 0
        while current:
            if current.id == record.id:
                return False
            steps += 1
            if steps > bound:
                return False
            current = current.get(parent_field)
    return True


# -- automatic fields ---------------------------------------------------------


def name_get(rs: RecordCollection) -> str:
    """Human readable name of a record."""
    if "name" in rs.model.fields:
        return rs.get("name") or ""
    return f"{rs.model.name}({', '.join(str(i) for i in rs.ids)})"


def compute_display_name(rs: RecordCollection) -> dict[str, Any]:
    return {"display_name": rs.name_get()}


def compute_last_update(rs: RecordCollection) -> dict[str, Any]:
    return {"last_update": rs.get("write_date") or rs.get("create_date")}


_METHODS = (
    browse,
    exists,
    search,
    search_count,
    create,
    write,
    unlink,
    copy,
    load,
    read,
    field_get,
    fields_get,
    default_get,
    onchange,
    check_recursion,
    name_get,
    compute_display_name,
    compute_last_update,
)


def declare_base_mixin(registry: Registry) -> Model:
    """Declare the mixin every model inherits."""
    mixin = registry.declare_mixin(BASE_MIXIN, description="Fields and methods common to all models")
    mixin.add_fields(
        id=Id(),
        create_date=DateTime(string="Created On", readonly=True, copy=False),
        write_date=DateTime(string="Last Updated On", readonly=True, copy=False),
        last_update=DateTime(
            string="Last Modified On",
            compute="compute_last_update",
            depends=("write_date", "create_date"),
        ),
        display_name=Char(string="Display Name", compute="compute_display_name", depends=("name",)),
    )
    for func in _METHODS:
        mixin.add_method(func.__name__, func)
    return mixin
