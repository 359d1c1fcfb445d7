"""Field descriptors declared on models."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from typed_models.types import COLUMN_TYPES, TypeDefinition

if TYPE_CHECKING:
    from typed_models.environment import Environment
    from typed_models.recordset import RecordCollection


class FieldType(Enum):
    """Value type of a field."""

    CHAR = "char"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    MANY2ONE = "many2one"
    ONE2MANY = "one2many"
    MANY2MANY = "many2many"


class FieldKind(Enum):
    """How the value of a field is obtained."""

    STORED = "stored"
    TO_ONE = "to_one"
    TO_MANY = "to_many"
    COMPUTED = "computed"
    RELATED = "related"


@dataclass
class FieldInfo:
    """Descriptive metadata of a field, as returned by field introspection."""

    name: str
    string: str
    help: str
    type: FieldType
    kind: FieldKind
    relation: str | None = None
    required: bool = False
    readonly: bool = False
    stored: bool = True
    depends: tuple[str, ...] = field(default_factory=tuple)


def _ids_of(value: Any) -> tuple[int, ...]:
    """Normalize a relational value to a tuple of ids."""
    if value is None or value is False:
        return ()
    if isinstance(value, int):
        return (value,) if value else ()
    ids = getattr(value, "ids", None)
    if ids is not None:
        return tuple(ids)
    result: list[int] = []
    for item in value:
        result.extend(_ids_of(item))
    return tuple(dict.fromkeys(result))


class Field:
    """Base class for all fields.

    A field is declared unbound and gets its ``name`` and ``model_name`` when
    the registry bootstraps (every model holds its own copy).

    Args:
        string: Human readable label, defaults to the field name in title case.
        help: Help text.
        required: Whether a value must be given.
        readonly: Whether the field refuses writes.
        default: Constant default value, or callable receiving the environment.
        copy: Whether ``copy`` duplicates the value.
        compute: Name of the model method computing the field.
        related: Dotted path of the field this one mirrors.
        depends: Dotted paths the computed value depends on.
        onchange: Name of the model method run when the field is edited.
    """

    type: FieldType
    column_type: str | None = None

    def __init__(
        self,
        *,
        string: str | None = None,
        help: str = "",
        required: bool = False,
        readonly: bool = False,
        default: Any = None,
        copy: bool = True,
        compute: str | None = None,
        related: str | None = None,
        depends: tuple[str, ...] | list[str] = (),
        onchange: str | None = None,
    ) -> None:
        self.name = ""
        self.model_name = ""
        self._string = string
        self.help = help
        self.required = required
        self.readonly = readonly or bool(compute) or bool(related)
        self.default = default
        self.copy = copy
        self.compute = compute
        self.related = related
        self.depends = tuple(depends)
        self.onchange = onchange

    def bind(self, model_name: str, name: str) -> Field:
        """Return a copy of this field attached to a model under a name."""
        bound = copy.copy(self)
        bound.model_name = model_name
        bound.name = name
        return bound

    @property
    def string(self) -> str:
        return self._string or self.name.replace("_", " ").title()

    @property
    def kind(self) -> FieldKind:
        if self.related:
            return FieldKind.RELATED
        if self.compute:
            return FieldKind.COMPUTED
        return FieldKind.STORED

    @property
    def stored(self) -> bool:
        return self.kind in (FieldKind.STORED, FieldKind.TO_ONE, FieldKind.TO_MANY)

    @property
    def is_column(self) -> bool:
        """Whether the value lives in a column of the model's own relation."""
        return self.column_type is not None and self.kind in (FieldKind.STORED, FieldKind.TO_ONE)

    @property
    def is_relational(self) -> bool:
        return False

    @property
    def column_def(self) -> TypeDefinition:
        assert self.column_type is not None
        return COLUMN_TYPES[self.column_type]

    @property
    def dependency_paths(self) -> tuple[str, ...]:
        """Paths the value is derived from (related path included)."""
        if self.related:
            return (self.related,) + tuple(p for p in self.depends if p != self.related)
        return self.depends

    def has_default(self) -> bool:
        return self.default is not None

    def default_value(self, env: Environment) -> Any:
        """Evaluate the default provider."""
        if callable(self.default):
            return self.default(env)
        return self.default

    # -- conversions --------------------------------------------------------
    #
    # cache: the Python value kept in the environment cache
    # column: the value handed to the storage manager
    # record: the value returned to callers (collections for relations)

    def convert_to_cache(self, value: Any) -> Any:
        return value

    def convert_to_column(self, value: Any) -> Any:
        return self.convert_to_cache(value)

    def convert_from_column(self, value: Any) -> Any:
        return value

    def convert_to_record(self, env: Environment, value: Any) -> Any:
        return value

    def info(self) -> FieldInfo:
        return FieldInfo(
            name=self.name,
            string=self.string,
            help=self.help,
            type=self.type,
            kind=self.kind,
            relation=getattr(self, "comodel", None),
            required=self.required,
            readonly=self.readonly,
            stored=self.stored,
            depends=self.dependency_paths,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model_name}.{self.name})"


class Id(Field):
    """Record identifier, exposed as a read-only field."""

    type = FieldType.INTEGER

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("string", "ID")
        kwargs.setdefault("readonly", True)
        kwargs.setdefault("copy", False)
        super().__init__(**kwargs)


class Char(Field):
    type = FieldType.CHAR
    column_type = "string"

    def convert_to_cache(self, value: Any) -> Any:
        if value is None or value is False:
            return None
        return str(value)


class Text(Char):
    type = FieldType.TEXT


class Integer(Field):
    type = FieldType.INTEGER
    column_type = "int64"

    def convert_to_cache(self, value: Any) -> Any:
        if value is None:
            return None
        return int(value)


class Float(Field):
    type = FieldType.FLOAT
    column_type = "float64"

    def convert_to_cache(self, value: Any) -> Any:
        if value is None:
            return None
        return float(value)


class Boolean(Field):
    type = FieldType.BOOLEAN
    column_type = "bit"

    def convert_to_cache(self, value: Any) -> Any:
        if value is None:
            return None
        return bool(value)


class DateTime(Field):
    """Timezone-aware datetime, stored as a POSIX timestamp."""

    type = FieldType.DATETIME
    column_type = "float64"

    def convert_to_cache(self, value: Any) -> Any:
        if value is None or value is False:
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def convert_to_column(self, value: Any) -> Any:
        value = self.convert_to_cache(value)
        return None if value is None else value.timestamp()

    def convert_from_column(self, value: Any) -> Any:
        return self.convert_to_cache(value)


class _Relational(Field):
    def __init__(self, comodel: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.comodel = comodel

    @property
    def is_relational(self) -> bool:
        return True

    def convert_to_record(self, env: Environment, value: Any) -> RecordCollection:
        ids = () if value is None else (value if isinstance(value, tuple) else (value,))
        return env.pool(self.comodel).browse(ids)


class Many2One(_Relational):
    """To-one relation, stored as the id of the target record."""

    type = FieldType.MANY2ONE
    column_type = "uint64"

    @property
    def kind(self) -> FieldKind:
        kind = super().kind
        return FieldKind.TO_ONE if kind == FieldKind.STORED else kind

    def convert_to_cache(self, value: Any) -> Any:
        ids = _ids_of(value)
        if len(ids) > 1:
            raise ValueError(f"{self!r} expects a single record, got {len(ids)}")
        return ids[0] if ids else None


class _ToMany(_Relational):
    @property
    def kind(self) -> FieldKind:
        kind = super().kind
        return FieldKind.TO_MANY if kind == FieldKind.STORED else kind

    def convert_to_cache(self, value: Any) -> Any:
        return _ids_of(value)


class One2Many(_ToMany):
    """To-many relation stored as the inverse many2one of the target model."""

    type = FieldType.ONE2MANY

    def __init__(self, comodel: str, inverse: str, **kwargs: Any) -> None:
        kwargs.setdefault("copy", False)
        super().__init__(comodel, **kwargs)
        self.inverse = inverse


class Many2Many(_ToMany):
    """To-many relation stored in a link relation.

    ``relation``, ``column1`` (this side) and ``column2`` (target side)
    default to names derived from both model names.
    """

    type = FieldType.MANY2MANY

    def __init__(
        self,
        comodel: str,
        relation: str | None = None,
        column1: str | None = None,
        column2: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("copy", False)
        super().__init__(comodel, **kwargs)
        self.relation = relation
        self.column1 = column1
        self.column2 = column2

    def resolve_link(self) -> None:
        """Fill in the link relation defaults once the model name is known."""
        left, right = self.model_name.lower(), self.comodel.lower()
        if self.relation is None:
            self.relation = "_".join(sorted([left, right])) + "_rel"
        if self.column1 is None:
            self.column1 = f"{left}_id" if left != right else f"{left}_id1"
        if self.column2 is None:
            self.column2 = f"{right}_id" if left != right else f"{right}_id2"
