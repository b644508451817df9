"""Adapter driving an external log-tailing engine."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from cdc_capture.connector_config import DATABASE_HISTORY_FILE_NAME, OFFSET_STORAGE_FILE_NAME, build_sqlalchemy_url
from cdc_capture.engines.base import CaptureEngine, CompletionKind, Consumer, is_connection_error
from cdc_capture.engines.binlog import FileOffsetStore, check_default_engine_support, default_engine_factory
from cdc_capture.exceptions import ConnectionLost
from cdc_capture.models import ChangeEvent, ConnectionConfig, EngineState, Operation
from cdc_capture.registry import EngineRegistry

logger = logging.getLogger(__name__)

CACHE_OBJECT = "cache.object"

EngineFactory = Callable[..., Any]


class ListeningEngineAdapter(CaptureEngine):
    """Runs a log engine once on the worker and forwards matching events.

    The engine factory is called as ``factory(config, on_change, completion,
    registry=registry)`` and must return an object with blocking ``run()`` and
    ``stop()``; ``pause()``/``resume()`` are used when present. Without them,
    pausing withholds forwarding while the engine keeps advancing its log
    position.
    """

    def __init__(
        self,
        connector_config: Dict[str, Any],
        operation: Operation,
        consumer: Consumer,
        engine_factory: Optional[EngineFactory] = None,
        registry: Optional[EngineRegistry] = None,
        connection: Optional[ConnectionConfig] = None
    ):
        super().__init__(consumer)
        if engine_factory is None:
            check_default_engine_support(connector_config)
            engine_factory = default_engine_factory

        self.config = connector_config
        self.operation = Operation(operation)
        self.engine_factory = engine_factory
        self.registry = registry
        self.connection = connection
        self.offset_store = FileOffsetStore(connector_config[OFFSET_STORAGE_FILE_NAME])

        self._engine: Any = None
        self._lock = threading.Lock()
        self._paused = False
        self._stopping = False
        self._offsets: Dict[str, Any] = {}
        self.withheld_events = 0

    @property
    def supports_native_pause(self) -> bool:
        engine = self._engine
        return engine is not None and callable(getattr(engine, "pause", None)) \
            and callable(getattr(engine, "resume", None))

    def ensure_storage_directory(self) -> None:
        for key in (OFFSET_STORAGE_FILE_NAME, DATABASE_HISTORY_FILE_NAME):
            directory = os.path.dirname(str(self.config[key]))
            if directory and not os.path.isdir(directory):
                os.makedirs(directory, exist_ok=True)
                logger.debug(f"Directory created for {key}: {directory}")

    def run(self) -> None:
        with self._lock:
            if self._state != EngineState.IDLE:
                logger.warning(f"Listening engine {self.config['name']} is {self._state.value}, not starting")
                return
            self._state = EngineState.PAUSED if self._paused else EngineState.RUNNING

        try:
            self.ensure_storage_directory()
            engine = self.engine_factory(
                self.config, self._on_change, self._on_completion, registry=self.registry
            )
            with self._lock:
                self._engine = engine
                stopping = self._stopping
            if stopping:
                return
            if self._paused and self.supports_native_pause:
                engine.pause()
            logger.info(f"Starting log engine for {self.config['name']}")
            engine.run()
        except Exception as e:
            logger.error(f"Log engine for {self.config['name']} could not run: {e}", exc_info=True)
            self._on_completion(False, str(e), e)

    def pause(self) -> None:
        with self._lock:
            self._paused = True
            if self._state == EngineState.RUNNING:
                self._state = EngineState.PAUSED
        if self.supports_native_pause:
            self._engine.pause()

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            if self._state == EngineState.PAUSED:
                self._state = EngineState.RUNNING
        if self.supports_native_pause:
            self._engine.resume()

    def stop(self) -> None:
        with self._lock:
            self._stopping = True
            self._state = EngineState.STOPPED
            engine = self._engine
        if engine is not None:
            engine.stop()

    def test_connection(self) -> bool:
        """Open and close one connection to the captured database.

        Raises:
            ConnectionLost: If the database cannot be reached
        """
        if self.connection is None:
            return True
        engine = create_engine(build_sqlalchemy_url(self.connection), poolclass=NullPool)
        try:
            with engine.connect():
                return True
        except Exception as e:
            if is_connection_error(e):
                raise ConnectionLost(f"Cannot connect to the database for {self.config['name']}.", cause=e) from e
            raise
        finally:
            engine.dispose()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {CACHE_OBJECT: dict(self._offsets)}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Restore the offset cache and write it to the engine's offset store."""
        offsets = dict(snapshot.get(CACHE_OBJECT) or {})
        with self._lock:
            self._offsets = offsets
        if offsets:
            self.offset_store.save(self.config["name"], offsets)
            logger.info(f"Restored offsets for {self.config['name']}: {offsets}")

    def update_offsets(self, offsets: Dict[str, Any]) -> None:
        with self._lock:
            self._offsets = dict(offsets)

    def get_offsets(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._offsets)

    def _on_change(self, event: ChangeEvent) -> None:
        if event.operation != self.operation:
            return
        if self._paused and not self.supports_native_pause:
            self.withheld_events += 1
            return
        self.consumer(event)

    def _on_completion(self, success: bool, message: str, error: Optional[BaseException]) -> None:
        with self._lock:
            stopping = self._stopping
            if not stopping:
                self._state = EngineState.IDLE
                self._engine = None
        if success or stopping:
            logger.info(f"Log engine for {self.config['name']} finished: {message}")
            return
        self._report(
            CompletionKind.CONNECTION_LOST,
            error or ConnectionLost(message or "Connection to the database lost."),
        )
