"""Transaction handle with an undo journal over the storage manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from loguru import logger

from typed_models.storage import StorageManager


@dataclass
class _UndoInsert:
    relation: str
    record_id: int

    def undo(self, storage: StorageManager) -> None:
        storage.delete_row(self.relation, self.record_id)


@dataclass
class _UndoOverwrite:
    relation: str
    record_id: int
    data: bytes

    def undo(self, storage: StorageManager) -> None:
        storage.put_raw(self.relation, self.record_id, self.data)


class Transaction:
    """Groups the mutations of one environment.

    Every row insert, update or delete is journaled so that ``rollback``
    can restore the previous table contents. The journal is dropped on
    ``commit``. Reads go straight to ``storage``.
    """

    def __init__(self, storage: StorageManager) -> None:
        self.storage = storage
        self._journal: list[_UndoInsert | _UndoOverwrite] = []
        self.closed = False

    @property
    def pending(self) -> int:
        """Number of journaled mutations not yet committed."""
        return len(self._journal)

    def insert_row(self, relation: str, values: dict[str, Any]) -> int:
        record_id = self.storage.insert_row(relation, values)
        self._journal.append(_UndoInsert(relation, record_id))
        return record_id

    def update_row(self, relation: str, record_id: int, values: dict[str, Any]) -> None:
        before = self.storage.get_raw(relation, record_id)
        self.storage.update_row(relation, record_id, values)
        self._journal.append(_UndoOverwrite(relation, record_id, before))

    def delete_row(self, relation: str, record_id: int) -> None:
        before = self.storage.get_raw(relation, record_id)
        self.storage.delete_row(relation, record_id)
        self._journal.append(_UndoOverwrite(relation, record_id, before))

    def set_links(
        self,
        relation: str,
        column: str,
        target_column: str,
        record_id: int,
        target_ids: Iterable[int],
    ) -> None:
        """Make the links of ``record_id`` in a link relation exactly ``target_ids``."""
        targets = list(dict.fromkeys(target_ids))
        existing: dict[int, int] = {}
        for link_id, row in self.storage.scan(relation).items():
            if row[column] != record_id:
                continue
            if row[target_column] in targets and row[target_column] not in existing:
                existing[row[target_column]] = link_id
            else:
                self.delete_row(relation, link_id)
        for target in targets:
            if target not in existing:
                self.insert_row(relation, {column: record_id, target_column: target})

    def remove_links(self, relation: str, columns: Iterable[str], record_ids: Iterable[int]) -> None:
        """Delete every link whose given columns reference one of ``record_ids``."""
        ids = set(record_ids)
        columns = list(columns)
        for link_id, row in self.storage.scan(relation).items():
            if any(row[c] in ids for c in columns):
                self.delete_row(relation, link_id)

    def commit(self) -> None:
        if self._journal:
            logger.debug("Committing {} mutations", len(self._journal))
        self._journal.clear()

    def rollback(self) -> None:
        """Undo every journaled mutation, most recent first."""
        if self._journal:
            logger.info("Rolling back {} mutations", len(self._journal))
        while self._journal:
            self._journal.pop().undo(self.storage)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        self.close()
