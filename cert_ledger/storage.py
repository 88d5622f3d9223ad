import os
import json
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from cert_ledger.config import LEDGER_CAPACITY, LEDGER_KEY
from cert_ledger.models import IssuedRecord

logger = logging.getLogger(__name__)


class KeyValueStorage:
    """Durable string storage: the only thing LedgerStore needs to persist."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """Key-value map kept in a single JSON file, rewritten on every change."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        dir_path = os.path.dirname(self.path) or "."
        os.makedirs(dir_path, exist_ok=True)

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (ValueError, OSError) as e:
            # ValueError covers both bad JSON and bytes that are not UTF-8
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        tmp = self.path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning(f"Could not write storage file {self.path}: {e}")

    def get(self, key):
        return self._read().get(key)

    def set(self, key, value):
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key):
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


def load_storage(path: Optional[str]) -> Optional[KeyValueStorage]:
    """
    Pick the storage backend for the ledger.

    - no path          -> None (ledger runs without persistence)
    - ":memory:"       -> MemoryStorage
    - anything else    -> JsonFileStorage at that path
    """
    if not path:
        return None
    if path == ":memory:":
        return MemoryStorage()
    try:
        return JsonFileStorage(path)
    except OSError as e:
        logger.warning(f"Durable storage unavailable at {path}: {e}")
        return None


class LedgerStore:
    """
    Local mirror of issued certificates, newest first, keyed by cid.

    The whole ledger lives under one storage key as a JSON array. Without a
    storage backend every operation is a no-op and reads come back empty.
    """

    def __init__(self, storage: Optional[KeyValueStorage], key: str = LEDGER_KEY,
                 capacity: int = LEDGER_CAPACITY):
        self.storage = storage
        self.key = key
        self.capacity = capacity

    def _load(self) -> List[IssuedRecord]:
        if self.storage is None:
            return []
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [IssuedRecord.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning(f"Local ledger is corrupt, treating it as empty: {e}")
            return []

    def _save(self, records: List[IssuedRecord]) -> None:
        if self.storage is None:
            return
        blob = json.dumps([r.to_json() for r in records[: self.capacity]])
        self.storage.set(self.key, blob)

    def list(self) -> List[IssuedRecord]:
        return self._load()

    def __len__(self):
        return len(self._load())

    def get(self, cid: str) -> Optional[IssuedRecord]:
        return next((r for r in self._load() if r.cid == cid), None)

    def exists(self, cid: str) -> bool:
        return self.get(cid) is not None

    def search(self, term: str) -> List[IssuedRecord]:
        records = self._load()
        term = (term or "").strip()
        if not term:
            return records
        return [r for r in records if r.matches(term)]

    def upsert(self, record: IssuedRecord) -> None:
        if not record.tx_hash:
            raise ValueError(f"Refusing to record {record.cid} without a confirmed transaction")
        records = self._load()
        index = next((i for i, r in enumerate(records) if r.cid == record.cid), None)
        if index is None:
            records.insert(0, record.model_copy())
        else:
            records[index] = record.model_copy()
        self._save(records)

    def remove(self, cid: str) -> None:
        records = self._load()
        kept = [r for r in records if r.cid != cid]
        if len(kept) != len(records):
            self._save(kept)

    def clear(self) -> None:
        if self.storage is None:
            return
        self.storage.remove(self.key)

    def set_revoked(self, cid: str, value: bool) -> None:
        records = self._load()
        for r in records:
            if r.cid == cid:
                r.revoked = bool(value)
                self._save(records)
                return
