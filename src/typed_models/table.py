"""Table storage for relation rows."""

from __future__ import annotations

import mmap
import struct
from pathlib import Path
from typing import Any, Iterator

from typed_models.types import (
    CompositeTypeDefinition,
    PrimitiveType,
    PrimitiveTypeDefinition,
    StringTypeDefinition,
    TypeDefinition,
)

_FORMATS = {
    PrimitiveType.BIT: "<?",
    PrimitiveType.CHARACTER: "<I",  # Unicode code point
    PrimitiveType.INT64: "<q",
    PrimitiveType.UINT64: "<Q",
    PrimitiveType.FLOAT64: "<d",
}


class Table:
    """Manages binary storage of fixed-size records for a single type."""

    # Initial file size and growth increment
    INITIAL_SIZE = 4096
    GROWTH_FACTOR = 2

    # Deletion marker: all 0xFF bytes
    DELETED_MARKER = b"\xff"

    def __init__(self, type_def: TypeDefinition, file_path: Path) -> None:
        self.type_def = type_def
        self.file_path = file_path
        self._record_size = type_def.size_bytes
        self._file: Any = None
        self._mmap: mmap.mmap | None = None
        self._count = 0
        self._capacity = 0  # Number of records that fit in current file

        self._open_or_create()

    def _open_or_create(self) -> None:
        """Open existing file or create new one."""
        if self.file_path.exists():
            self._open_existing()
        else:
            self._create_new()

    def _create_new(self) -> None:
        """Create a new table file."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.file_path, "wb") as f:
            # Header: 8 bytes for count
            f.write(struct.pack("<Q", 0))
            f.write(b"\x00" * (self.INITIAL_SIZE - 8))

        self._open_file()
        self._count = 0
        self._capacity = (self.INITIAL_SIZE - 8) // self._record_size

    def _open_existing(self) -> None:
        """Open an existing table file."""
        self._open_file()
        self._mmap.seek(0)  # type: ignore
        self._count = struct.unpack("<Q", self._mmap.read(8))[0]  # type: ignore
        file_size = self._mmap.size()  # type: ignore
        self._capacity = (file_size - 8) // self._record_size

    def _open_file(self) -> None:
        """Open file and create memory map."""
        self._file = open(self.file_path, "r+b")
        self._mmap = mmap.mmap(self._file.fileno(), 0)

    def _grow_file(self) -> None:
        """Grow the file to accommodate more records."""
        if self._mmap is not None:
            self._mmap.close()
        if self._file is not None:
            self._file.close()

        new_size = self.file_path.stat().st_size * self.GROWTH_FACTOR

        with open(self.file_path, "r+b") as f:
            f.seek(new_size - 1)
            f.write(b"\x00")

        self._open_file()
        self._capacity = (new_size - 8) // self._record_size

    def _update_count(self) -> None:
        """Update the count in the file header."""
        self._mmap.seek(0)  # type: ignore
        self._mmap.write(struct.pack("<Q", self._count))  # type: ignore

    def _record_offset(self, index: int) -> int:
        """Get byte offset for a record index."""
        return 8 + index * self._record_size  # 8 bytes for header

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self._count:
            raise IndexError(f"Index {index} out of range [0, {self._count})")

    @property
    def count(self) -> int:
        """Return the number of records in the table, deleted ones included."""
        return self._count

    def insert(self, value: Any) -> int:
        """Insert a value and return its index."""
        while self._count >= self._capacity:
            self._grow_file()

        index = self._count
        self._mmap.seek(self._record_offset(index))  # type: ignore
        self._mmap.write(self._serialize(value))  # type: ignore

        self._count += 1
        self._update_count()
        self._mmap.flush()  # type: ignore

        return index

    def get(self, index: int) -> Any:
        """Get a value by index."""
        return self._deserialize(self.get_raw(index))

    def update(self, index: int, value: Any) -> None:
        """Update a value at the given index."""
        self.put_raw(index, self._serialize(value))

    def get_raw(self, index: int) -> bytes:
        """Return the serialized bytes of a record."""
        self._check_index(index)
        self._mmap.seek(self._record_offset(index))  # type: ignore
        return self._mmap.read(self._record_size)  # type: ignore

    def put_raw(self, index: int, data: bytes) -> None:
        """Overwrite a record with previously serialized bytes."""
        self._check_index(index)
        self._mmap.seek(self._record_offset(index))  # type: ignore
        self._mmap.write(data)  # type: ignore
        self._mmap.flush()  # type: ignore

    def delete(self, index: int) -> None:
        """Delete a record by marking it with 0xFF bytes.

        Indices are preserved: the record count is not decremented.
        """
        self.put_raw(index, self.DELETED_MARKER * self._record_size)

    def is_deleted(self, index: int) -> bool:
        """Check if a record at the given index has been deleted."""
        return self.get_raw(index) == self.DELETED_MARKER * self._record_size

    def live_indices(self) -> Iterator[int]:
        """Yield the indices of records that are not deleted."""
        for index in range(self._count):
            if not self.is_deleted(index):
                yield index

    def _serialize(self, value: Any) -> bytes:
        """Serialize a value to bytes."""
        if isinstance(self.type_def, PrimitiveTypeDefinition):
            return self._serialize_primitive(value, self.type_def.primitive)
        elif isinstance(self.type_def, CompositeTypeDefinition):
            return self._serialize_composite(value, self.type_def)
        raise TypeError(f"Cannot serialize type: {self.type_def.name}")

    def _serialize_primitive(self, value: Any, primitive: PrimitiveType) -> bytes:
        """Serialize a primitive value."""
        if primitive == PrimitiveType.CHARACTER:
            if isinstance(value, str):
                value = ord(value[0]) if value else 0
        return struct.pack(_FORMATS[primitive], value)

    def _serialize_composite(self, value: dict[str, Any], type_def: CompositeTypeDefinition) -> bytes:
        """Serialize a row.

        Row layout: [null_bitmap] [column0_data] [column1_data] ...

        - Primitive columns: actual value bytes (inline)
        - String columns: (start_index, length) tuple (8 bytes)
        """
        if not isinstance(value, dict):
            raise TypeError(f"Expected dict for row of '{type_def.name}', got {type(value)}")

        bitmap = bytearray(type_def.null_bitmap_size)
        for i, column in enumerate(type_def.columns):
            if value.get(column.name) is None:
                bitmap[i // 8] |= 1 << (i % 8)

        parts = [bytes(bitmap)]
        for column in type_def.columns:
            column_value = value.get(column.name)
            if column_value is None:
                parts.append(b"\x00" * column.type_def.reference_size)
            elif isinstance(column.type_def, StringTypeDefinition):
                parts.append(struct.pack("<II", column_value[0], column_value[1]))
            elif isinstance(column.type_def, PrimitiveTypeDefinition):
                parts.append(self._serialize_primitive(column_value, column.type_def.primitive))
            else:
                raise TypeError(f"Cannot serialize column type: {column.type_def.name}")

        return b"".join(parts)

    def _deserialize(self, data: bytes) -> Any:
        """Deserialize bytes to a value."""
        if isinstance(self.type_def, PrimitiveTypeDefinition):
            return self._deserialize_primitive(data, self.type_def.primitive)
        elif isinstance(self.type_def, CompositeTypeDefinition):
            return self._deserialize_composite(data, self.type_def)
        raise TypeError(f"Cannot deserialize type: {self.type_def.name}")

    def _deserialize_primitive(self, data: bytes, primitive: PrimitiveType) -> Any:
        """Deserialize a primitive value."""
        value = struct.unpack(_FORMATS[primitive], data)[0]
        if primitive == PrimitiveType.CHARACTER:
            return chr(value) if value else "\x00"
        return value

    def _deserialize_composite(
        self, data: bytes, type_def: CompositeTypeDefinition
    ) -> dict[str, Any]:
        """Deserialize a row.

        Returns a dict of column values:
        - Primitive columns: actual deserialized value
        - String columns: (start_index, length) tuple
        - Null columns: None
        """
        result: dict[str, Any] = {}
        bitmap = data[: type_def.null_bitmap_size]
        offset = type_def.null_bitmap_size

        for i, column in enumerate(type_def.columns):
            size = column.type_def.reference_size
            column_data = data[offset : offset + size]
            offset += size

            if bitmap[i // 8] & (1 << (i % 8)):
                result[column.name] = None
            elif isinstance(column.type_def, StringTypeDefinition):
                result[column.name] = struct.unpack("<II", column_data)
            elif isinstance(column.type_def, PrimitiveTypeDefinition):
                result[column.name] = self._deserialize_primitive(
                    column_data, column.type_def.primitive
                )
            else:
                raise TypeError(f"Cannot deserialize column type: {column.type_def.name}")

        return result

    def close(self) -> None:
        """Close the table file."""
        if self._mmap is not None:
            self._mmap.flush()
            self._mmap.close()
            self._mmap = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> Table:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
