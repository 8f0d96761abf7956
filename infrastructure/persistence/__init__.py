"""Persistence layer for durability and recovery."""

from infrastructure.persistence.wal import OperationType, WALEntry, WriteAheadLog

__all__ = [
    "WriteAheadLog",
    "WALEntry",
    "OperationType",
]
