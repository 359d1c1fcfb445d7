"""String pool storage for character columns."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from typed_models.table import Table
from typed_models.types import StringTypeDefinition


class ArrayTable:
    """Stores the characters of every string column of a database.

    Elements live in an element table. The (start_index, length) pair is
    stored inline in the row that owns the string. Strings are immutable:
    updating a column appends a new run and repoints the row.
    """

    def __init__(self, array_type: StringTypeDefinition, element_table: Table) -> None:
        self.array_type = array_type
        self.element_table = element_table

    def insert(self, elements: list[Any]) -> tuple[int, int]:
        """Insert an array and return (start_index, length)."""
        if not elements:
            return (0, 0)

        start_index = self.element_table.count
        for element in elements:
            self.element_table.insert(element)
        return (start_index, len(elements))

    def get(self, start_index: int, length: int) -> list[Any]:
        """Get an array by its start_index and length."""
        if length == 0:
            return []
        return [self.element_table.get(start_index + i) for i in range(length)]

    def insert_string(self, value: str) -> tuple[int, int]:
        """Store a string and return its (start_index, length) reference."""
        return self.insert(list(value))

    def get_string(self, ref: tuple[int, int]) -> str:
        """Resolve a (start_index, length) reference to a string."""
        return "".join(self.get(ref[0], ref[1]))

    def close(self) -> None:
        """Close underlying tables."""
        self.element_table.close()


def create_array_table(
    array_type: StringTypeDefinition,
    data_dir: Path,
    table_name: str | None = None,
) -> ArrayTable:
    """Create an ArrayTable with its element table.

    Args:
        array_type: The string type definition.
        data_dir: Directory to store table files.
        table_name: Optional name for the element file, defaults to the
            type's name.

    Returns:
        An ArrayTable instance.
    """
    if table_name is None:
        table_name = array_type.name

    element_table = Table(array_type.element_type, data_dir / f"{table_name}.bin")
    return ArrayTable(array_type, element_table)
