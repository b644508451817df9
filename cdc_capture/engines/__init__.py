"""Capture engines package."""

from .base import CaptureEngine, CompletionKind, is_connection_error
from .polling import PollingEngine
from .listening import ListeningEngineAdapter
from .binlog import BinlogEngine, FileOffsetStore, FileSchemaHistory

__all__ = [
    "CaptureEngine",
    "CompletionKind",
    "is_connection_error",
    "PollingEngine",
    "ListeningEngineAdapter",
    "BinlogEngine",
    "FileOffsetStore",
    "FileSchemaHistory",
]
