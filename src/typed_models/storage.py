"""Storage manager for model relations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from typed_models.array_table import ArrayTable, create_array_table
from typed_models.errors import RecordNotFound, UnknownModel
from typed_models.table import Table
from typed_models.types import (
    COLUMN_TYPES,
    CompositeTypeDefinition,
    PrimitiveTypeDefinition,
    StringTypeDefinition,
    TypeDefinition,
)

if TYPE_CHECKING:
    from typed_models.config import OrmConfig
    from typed_models.registry import Registry


class StorageManager:
    """Manages the tables backing every relation of a registry.

    Each model maps to one table named after the model, each many2many
    relation maps to one link table. Record ids are table indices plus one.
    Every read entry point counts as one retrieval in ``retrievals``.
    """

    METADATA_FILE = "_metadata.json"
    STRING_POOL = "_strings"

    def __init__(self, data_dir: Path, registry: Registry) -> None:
        """Initialize the storage manager.

        Args:
            data_dir: Directory to store table files.
            registry: Bootstrapped registry describing every relation layout.
        """
        self.data_dir = data_dir
        self.registry = registry
        self.retrievals = 0
        self._tables: dict[str, Table] = {}

        self.data_dir.mkdir(parents=True, exist_ok=True)
        string_type = COLUMN_TYPES["string"]
        assert isinstance(string_type, StringTypeDefinition)
        self._strings: ArrayTable = create_array_table(string_type, self.data_dir, self.STRING_POOL)
        self._save_metadata()

    @classmethod
    def from_config(cls, config: OrmConfig, registry: Registry) -> StorageManager:
        """Open the storage directory named by a configuration."""
        return cls(Path(config.storage.data_dir), registry)

    def _save_metadata(self) -> None:
        """Save relation layouts to disk."""
        metadata = {
            "relations": {
                name: self._serialize_layout(layout)
                for name, layout in self.registry.layouts.items()
            },
        }
        with open(self.data_dir / self.METADATA_FILE, "w") as f:
            json.dump(metadata, f, indent=2)

    def _serialize_layout(self, layout: CompositeTypeDefinition) -> dict[str, Any]:
        return {
            "record_size": layout.size_bytes,
            "columns": [
                {"name": c.name, "type": self._serialize_type(c.type_def)} for c in layout.columns
            ],
        }

    def _serialize_type(self, type_def: TypeDefinition) -> str:
        if isinstance(type_def, PrimitiveTypeDefinition):
            return type_def.primitive.value
        return type_def.name

    def table(self, relation: str) -> Table:
        """Get or open the table of a relation."""
        if relation in self._tables:
            return self._tables[relation]

        layout = self.registry.layouts.get(relation)
        if layout is None:
            raise UnknownModel(relation)

        logger.debug("Opening table {} ({} bytes per row)", relation, layout.size_bytes)
        table = Table(layout, self.data_dir / f"{relation}.bin")
        self._tables[relation] = table
        return table

    # -- encoding -----------------------------------------------------------

    def _encode(self, layout: CompositeTypeDefinition, values: dict[str, Any]) -> dict[str, Any]:
        """Turn column values into a raw row, storing strings in the pool."""
        raw: dict[str, Any] = {}
        for name, value in values.items():
            column = layout.get_column(name)
            if column is None:
                raise KeyError(f"Column '{name}' not found in relation '{layout.name}'")
            if value is not None and isinstance(column.type_def, StringTypeDefinition):
                value = self._strings.insert_string(value)
            raw[name] = value
        return raw

    def _decode(
        self, layout: CompositeTypeDefinition, raw: dict[str, Any], columns: Iterable[str] | None
    ) -> dict[str, Any]:
        """Turn a raw row into column values, resolving string references."""
        names = layout.column_names if columns is None else columns
        row: dict[str, Any] = {}
        for name in names:
            value = raw[name]
            column = layout.get_column(name)
            if value is not None and isinstance(column.type_def, StringTypeDefinition):  # type: ignore[union-attr]
                value = self._strings.get_string(value)
            row[name] = value
        return row

    # -- row operations -----------------------------------------------------

    def insert_row(self, relation: str, values: dict[str, Any]) -> int:
        """Insert a row and return its id."""
        table = self.table(relation)
        return table.insert(self._encode(table.type_def, values)) + 1  # type: ignore[arg-type]

    def update_row(self, relation: str, record_id: int, values: dict[str, Any]) -> None:
        """Overwrite some columns of a row."""
        table = self.table(relation)
        index = self._index_of(relation, table, record_id)
        raw = table.get(index)
        raw.update(self._encode(table.type_def, values))  # type: ignore[arg-type]
        table.update(index, raw)

    def delete_row(self, relation: str, record_id: int) -> None:
        """Delete a row; its id is never reused."""
        table = self.table(relation)
        table.delete(self._index_of(relation, table, record_id))

    def get_raw(self, relation: str, record_id: int) -> bytes:
        """Return the serialized bytes of a row (for undo journals)."""
        return self.table(relation).get_raw(record_id - 1)

    def put_raw(self, relation: str, record_id: int, data: bytes) -> None:
        """Restore the serialized bytes of a row."""
        self.table(relation).put_raw(record_id - 1, data)

    def _index_of(self, relation: str, table: Table, record_id: int) -> int:
        index = record_id - 1
        if index < 0 or index >= table.count or table.is_deleted(index):
            raise RecordNotFound(relation, [record_id])
        return index

    def exists(self, relation: str, record_id: int) -> bool:
        table = self.table(relation)
        index = record_id - 1
        return 0 <= index < table.count and not table.is_deleted(index)

    def count(self, relation: str) -> int:
        """Return the number of live rows of a relation."""
        return sum(1 for _ in self.table(relation).live_indices())

    # -- retrievals ---------------------------------------------------------

    def fetch_rows(
        self, relation: str, ids: Iterable[int], columns: Iterable[str] | None = None
    ) -> dict[int, dict[str, Any]]:
        """Fetch some columns of the given rows in one retrieval.

        Ids that do not exist are left out of the result.
        """
        self.retrievals += 1
        table = self.table(relation)
        layout: CompositeTypeDefinition = table.type_def  # type: ignore[assignment]
        columns = None if columns is None else list(columns)
        rows: dict[int, dict[str, Any]] = {}
        for record_id in ids:
            index = record_id - 1
            if index < 0 or index >= table.count or table.is_deleted(index):
                continue
            rows[record_id] = self._decode(layout, table.get(index), columns)
        return rows

    def scan(self, relation: str, columns: Iterable[str] | None = None) -> dict[int, dict[str, Any]]:
        """Fetch some columns of every live row in one retrieval."""
        self.retrievals += 1
        table = self.table(relation)
        layout: CompositeTypeDefinition = table.type_def  # type: ignore[assignment]
        columns = None if columns is None else list(columns)
        return {
            index + 1: self._decode(layout, table.get(index), columns)
            for index in table.live_indices()
        }

    def fetch_inverse(self, relation: str, column: str, ids: Iterable[int]) -> dict[int, list[int]]:
        """Group the rows of a relation by the value of a reference column.

        Returns, for each of ``ids``, the ids of the rows pointing to it.
        """
        wanted: dict[int, list[int]] = {record_id: [] for record_id in ids}
        for record_id, row in self.scan(relation, [column]).items():
            target = row[column]
            if target in wanted:
                wanted[target].append(record_id)
        return wanted

    def fetch_links(
        self, relation: str, column: str, target_column: str, ids: Iterable[int]
    ) -> dict[int, list[int]]:
        """Return, for each of ``ids``, the linked ids of a link relation."""
        wanted: dict[int, list[int]] = {record_id: [] for record_id in ids}
        for row in self.scan(relation).values():
            source = row[column]
            if source in wanted and row[target_column] not in wanted[source]:
                wanted[source].append(row[target_column])
        return wanted

    def close(self) -> None:
        """Close all tables."""
        for table in self._tables.values():
            table.close()
        self._strings.close()
        self._tables.clear()

    def __enter__(self) -> StorageManager:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
