from cert_ledger.models import CertificateRow, IssuedRecord
from cert_ledger.storage import LedgerStore, MemoryStorage, JsonFileStorage, load_storage

__version__ = "0.1.0"

__all__ = [
    "CertificateRow",
    "IssuedRecord",
    "LedgerStore",
    "MemoryStorage",
    "JsonFileStorage",
    "load_storage",
]
