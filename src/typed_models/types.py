"""Column type definitions for the relational store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PrimitiveType(Enum):
    """Primitive column types supported by the table layer."""

    BIT = "bit"
    CHARACTER = "character"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT64 = "float64"

    @property
    def size_bytes(self) -> int:
        """Return the size in bytes for this primitive type."""
        sizes = {
            PrimitiveType.BIT: 1,  # Stored as 1 byte for simplicity
            PrimitiveType.CHARACTER: 4,  # Unicode code point (UTF-32)
            PrimitiveType.INT64: 8,
            PrimitiveType.UINT64: 8,
            PrimitiveType.FLOAT64: 8,
        }
        return sizes[self]


@dataclass
class TypeDefinition:
    """Base class for all column type definitions."""

    name: str

    @property
    def size_bytes(self) -> int:
        """Return the size in bytes for storing a value of this type."""
        raise NotImplementedError

    @property
    def reference_size(self) -> int:
        """Return the size in bytes this type occupies inside a row."""
        return self.size_bytes


@dataclass
class PrimitiveTypeDefinition(TypeDefinition):
    """Type definition wrapping a primitive type."""

    primitive: PrimitiveType

    @property
    def size_bytes(self) -> int:
        return self.primitive.size_bytes


@dataclass
class StringTypeDefinition(TypeDefinition):
    """Character data kept in the string pool.

    Rows store a (start_index, length) pair pointing into the pool.
    """

    element_type: TypeDefinition

    # Header is fixed: uint32 start_index + uint32 length = 8 bytes
    HEADER_SIZE: int = 8

    @property
    def size_bytes(self) -> int:
        return self.HEADER_SIZE


@dataclass
class ColumnDefinition:
    """A named column within a row type."""

    name: str
    type_def: TypeDefinition


@dataclass
class CompositeTypeDefinition(TypeDefinition):
    """Row layout of a relation.

    A row is laid out as:
      [null_bitmap (ceil(N/8) bytes)] [column0_data] [column1_data] ...

    Primitive columns are stored inline, string columns store
    (start_index, length) = 8 bytes.
    """

    columns: list[ColumnDefinition] = field(default_factory=list)

    @property
    def null_bitmap_size(self) -> int:
        """Return the number of bytes needed for the null bitmap."""
        if not self.columns:
            return 0
        return (len(self.columns) + 7) // 8

    @property
    def size_bytes(self) -> int:
        """Return the total row size: bitmap + all column data."""
        return self.null_bitmap_size + sum(c.type_def.reference_size for c in self.columns)

    def get_column(self, name: str) -> ColumnDefinition | None:
        """Get a column by name."""
        for c in self.columns:
            if c.name == name:
                return c
        return None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


_CHARACTER = PrimitiveTypeDefinition(name="character", primitive=PrimitiveType.CHARACTER)

# Shared singletons for the column kinds fields map onto
COLUMN_TYPES: dict[str, TypeDefinition] = {
    "bit": PrimitiveTypeDefinition(name="bit", primitive=PrimitiveType.BIT),
    "int64": PrimitiveTypeDefinition(name="int64", primitive=PrimitiveType.INT64),
    "uint64": PrimitiveTypeDefinition(name="uint64", primitive=PrimitiveType.UINT64),
    "float64": PrimitiveTypeDefinition(name="float64", primitive=PrimitiveType.FLOAT64),
    "character": _CHARACTER,
    "string": StringTypeDefinition(name="string", element_type=_CHARACTER),
}
