"""
Repository layer for quiz definitions and quiz results.

Records are plain dictionaries keyed by their 'id' field, so a real database
can be substituted without touching the catalog or the recorder.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import StorageError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class Repository(ABC):
    """Minimal get/list/create storage contract."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[Record]:
        """Return the record with the given id, or None."""

    @abstractmethod
    def list(self, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        """Return records in insertion order, optionally filtered."""

    @abstractmethod
    def create(self, record: Record) -> Record:
        """Append a new record. Existing records are never replaced."""


class MemoryRepository(Repository):
    """In-process repository backed by a dict."""

    def __init__(self):
        self._records: Dict[str, Record] = {}
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Optional[Record]:
        record = self._records.get(record_id)
        return dict(record) if record is not None else None

    def list(self, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        with self._lock:
            records = [dict(r) for r in self._records.values()]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def create(self, record: Record) -> Record:
        record_id = record.get('id')
        if not record_id:
            raise StorageError("Record must carry an 'id'")
        with self._lock:
            if record_id in self._records:
                raise StorageError(f"Record {record_id} already exists")
            self._records[record_id] = dict(record)
        return dict(record)


class JsonFileRepository(Repository):
    """
    Repository persisted as a JSON array in a single file.

    Writes go to a temporary sibling file which then replaces the original,
    so a crash mid-write leaves the previous contents intact.
    """

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def _read_all(self) -> List[Record]:
        if not self.file_path.exists():
            return []
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt repository file {self.file_path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {self.file_path}: {e}") from e

        if not isinstance(data, list):
            raise StorageError(f"Repository file {self.file_path} must contain a JSON array")
        return data

    def _write_all(self, records: List[Record]) -> None:
        temp_path = self.file_path.with_suffix(self.file_path.suffix + '.tmp')
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.file_path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.file_path}: {e}") from e

    def get(self, record_id: str) -> Optional[Record]:
        with self._lock:
            for record in self._read_all():
                if record.get('id') == record_id:
                    return record
        return None

    def list(self, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        with self._lock:
            records = self._read_all()
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def create(self, record: Record) -> Record:
        record_id = record.get('id')
        if not record_id:
            raise StorageError("Record must carry an 'id'")
        with self._lock:
            records = self._read_all()
            if any(r.get('id') == record_id for r in records):
                raise StorageError(f"Record {record_id} already exists")
            records.append(dict(record))
            self._write_all(records)
        logger.debug(f"Appended record {record_id} to {self.file_path}")
        return dict(record)


def create_repository(file_path: Optional[str] = None) -> Repository:
    """JSON-file repository for a path, in-memory repository for None."""
    if file_path:
        return JsonFileRepository(file_path)
    return MemoryRepository()
