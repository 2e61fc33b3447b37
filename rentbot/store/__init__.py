"""Document store abstractions and implementations."""

from .base import DuplicateKeyError, RecordStore
from .memory import MemoryRecordStore

__all__ = ["DuplicateKeyError", "MemoryRecordStore", "RecordStore"]
