"""MySQL binlog tailing engine with file-backed offsets and schema history."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pymysqlreplication import BinLogStreamReader
from pymysqlreplication.event import QueryEvent
from pymysqlreplication.row_event import DeleteRowsEvent, UpdateRowsEvent, WriteRowsEvent

from cdc_capture.connector_config import (
    CDC_SOURCE_OBJECT,
    CONNECTOR_CLASS,
    CONNECTOR_CLASSES,
    DATABASE_HISTORY_FILE_NAME,
    DATABASE_HOSTNAME,
    DATABASE_PASSWORD,
    DATABASE_PORT,
    DATABASE_USER,
    OFFSET_STORAGE_FILE_NAME,
    SERVER_ID,
    TABLE_WHITELIST,
)
from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import ChangeEvent, Dialect, Operation
from cdc_capture.registry import EngineRegistry

logger = logging.getLogger(__name__)

# (success, message, error)
EngineCompletion = Callable[[bool, str, Optional[BaseException]], None]

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    with _path_locks_guard:
        return _path_locks.setdefault(os.path.abspath(path), threading.Lock())


class FileOffsetStore:
    """Offsets of every connector of an application, keyed by connector name."""

    def __init__(self, path: str):
        self.path = path
        self._lock = _lock_for(path)

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as handle:
            content = handle.read()
        return json.loads(content) if content.strip() else {}

    def load(self, name: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._read().get(name) or {})

    def save(self, name: str, offsets: Dict[str, Any]) -> None:
        with self._lock:
            data = self._read()
            data[name] = offsets
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp_path, self.path)


class FileSchemaHistory:
    """Append-only record of DDL statements seen on the log."""

    def __init__(self, path: str):
        self.path = path

    def record(self, schema: str, statement: str, position: Dict[str, Any]) -> None:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "schema": schema,
            "ddl": statement,
            "position": position,
        }
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class BinlogEngine:
    """Tails the MySQL binary log for one table.

    Offsets are committed to the file store after every event and pushed to
    the owning orchestrator through the registry handle carried in the
    connector configuration.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        on_change: Callable[[ChangeEvent], None],
        completion: EngineCompletion,
        registry: Optional[EngineRegistry] = None
    ):
        self.config = config
        self.on_change = on_change
        self.completion = completion
        self.registry = registry if registry is not None else EngineRegistry.default()
        self.name = config["name"]
        self.offset_store = FileOffsetStore(config[OFFSET_STORAGE_FILE_NAME])
        self.history = FileSchemaHistory(config[DATABASE_HISTORY_FILE_NAME])
        self._stream: Optional[BinLogStreamReader] = None
        self._stopped = threading.Event()

    def _create_stream(self) -> BinLogStreamReader:
        schema, _, table = str(self.config[TABLE_WHITELIST]).rpartition(".")
        offsets = self.offset_store.load(self.name)
        resume = bool(offsets.get("log_file"))
        if resume:
            logger.info(f"Resuming {self.name} from {offsets['log_file']}:{offsets.get('log_pos')}")

        return BinLogStreamReader(
            connection_settings={
                "host": self.config[DATABASE_HOSTNAME],
                "port": int(self.config[DATABASE_PORT]),
                "user": self.config[DATABASE_USER],
                "passwd": self.config[DATABASE_PASSWORD] or "",
            },
            server_id=int(self.config[SERVER_ID]),
            only_events=[WriteRowsEvent, UpdateRowsEvent, DeleteRowsEvent, QueryEvent],
            only_schemas=[schema] if schema else None,
            only_tables=[table],
            resume_stream=resume,
            log_file=offsets.get("log_file") if resume else None,
            log_pos=offsets.get("log_pos") if resume else None,
            blocking=True,
        )

    def run(self) -> None:
        try:
            self._stream = self._create_stream()
            for event in self._stream:
                if self._stopped.is_set():
                    break
                self._handle(event)
                self._commit_offsets()
        except Exception as e:
            if self._stopped.is_set():
                self.completion(True, "Binlog engine stopped.", None)
            else:
                logger.error(f"Binlog engine {self.name} failed: {e}", exc_info=True)
                self.completion(False, str(e), e)
            return
        finally:
            if self._stream is not None:
                self._stream.close()
        self.completion(True, "Binlog engine stopped.", None)

    def stop(self) -> None:
        self._stopped.set()
        if self._stream is not None:
            # unblocks a read waiting on the socket
            self._stream.close()

    def _handle(self, event: Any) -> None:
        if isinstance(event, QueryEvent):
            query = _decode(event.query)
            if query and query.strip().upper() != "BEGIN":
                self.history.record(_decode(event.schema), query, self._position())
            return

        table = f"{event.schema}.{event.table}"
        for row in event.rows:
            if isinstance(event, WriteRowsEvent):
                change = ChangeEvent(Operation.INSERT, after_image=row["values"], table=table)
            elif isinstance(event, UpdateRowsEvent):
                change = ChangeEvent(
                    Operation.UPDATE,
                    before_image=row["before_values"],
                    after_image=row["after_values"],
                    table=table,
                )
            elif isinstance(event, DeleteRowsEvent):
                change = ChangeEvent(Operation.DELETE, before_image=row["values"], table=table)
            else:
                continue
            change.source = {"mode": "listening", **self._position()}
            self.on_change(change)

    def _position(self) -> Dict[str, Any]:
        return {"log_file": self._stream.log_file, "log_pos": self._stream.log_pos}

    def _commit_offsets(self) -> None:
        offsets = self._position()
        self.offset_store.save(self.name, offsets)
        owner = self.registry.get(self.config.get(CDC_SOURCE_OBJECT))
        if owner is not None:
            owner.set_offset_data(offsets)


def default_engine_factory(
    config: Dict[str, Any],
    on_change: Callable[[ChangeEvent], None],
    completion: EngineCompletion,
    registry: Optional[EngineRegistry] = None
) -> BinlogEngine:
    """Build the log engine for a connector configuration."""
    return BinlogEngine(config, on_change, completion, registry=registry)


def check_default_engine_support(config: Dict[str, Any]) -> None:
    """Raise if the default engine cannot tail the configured connector."""
    if config.get(CONNECTOR_CLASS) != CONNECTOR_CLASSES[Dialect.MYSQL]:
        raise InvalidConfigurationError(
            f"No log engine available for connector class '{config.get(CONNECTOR_CLASS)}'. "
            "The built-in engine tails MySQL only; supply an engine factory for other databases.",
            field="url",
        )
