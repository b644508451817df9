"""Capture orchestrator managing one source's engine and lifecycle."""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Mapping, Optional, Union

from cdc_capture import settings
from cdc_capture.connection_resolver import ConnectionConfigResolver
from cdc_capture.connector_config import (
    ListeningConfigGenerator,
    build_sqlalchemy_url,
    history_directory,
    resolve_driver_name,
)
from cdc_capture.datasources import create_local_engine, get_datasource
from cdc_capture.engines.base import CaptureEngine, CompletionKind, Consumer
from cdc_capture.engines.listening import EngineFactory, ListeningEngineAdapter
from cdc_capture.engines.polling import PollingEngine
from cdc_capture.exceptions import CaptureStateError, ConnectionLost, FatalCaptureError
from cdc_capture.models import CaptureMode, EngineState, LifecycleState, Watermark
from cdc_capture.options import DATASOURCE_NAME, JNDI_RESOURCE, CaptureOptions
from cdc_capture.registry import EngineRegistry
from cdc_capture.state import WatermarkStore, polling_state_path

logger = logging.getLogger(__name__)

SNAPSHOT_MODE = "mode"


class CaptureOrchestrator:
    """Owns the active capture engine of one source and its worker thread.

    The engine variant (polling or listening) is chosen once at construction;
    lifecycle calls are forwarded to it without further mode checks. Callers
    serialize lifecycle calls.
    """

    def __init__(
        self,
        options: Union[CaptureOptions, Mapping[str, Any]],
        consumer: Consumer,
        app_name: str = "cdc",
        stream_name: str = "stream",
        working_directory: Optional[str] = None,
        engine_factory: Optional[EngineFactory] = None,
        registry: Optional[EngineRegistry] = None,
        resolver: Optional[ConnectionConfigResolver] = None
    ):
        """Validate options and build the capture engine.

        Args:
            options: CaptureOptions or a raw option mapping
            consumer: Callback receiving every ChangeEvent
            app_name: Owning application name, segments persisted state
            stream_name: Stream name, segments persisted state
            working_directory: Root of persisted state (default: CDC_HOME or cwd)
            engine_factory: Log engine factory for listening mode
            registry: Handle registry (default: process-wide)
            resolver: Connection string resolver

        Raises:
            InvalidConfigurationError: If any option is missing or invalid
        """
        if not isinstance(options, CaptureOptions):
            options = CaptureOptions.from_mapping(options)

        self.options = options
        self.consumer = consumer
        self.app_name = app_name
        self.stream_name = stream_name
        self.working_directory = settings.get_working_directory(working_directory)
        self.handle = uuid.uuid4().hex
        self.registry = registry if registry is not None else EngineRegistry.default()
        self.resolver = resolver or ConnectionConfigResolver()
        self.failure: Optional[FatalCaptureError] = None

        self._state = LifecycleState.CREATED
        self._state_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None
        self._worker_ident: Optional[int] = None
        self._last_snapshot: Optional[Dict[str, Any]] = None
        self._on_connection_lost: Optional[Callable[[ConnectionLost], None]] = None
        self._on_fatal: Optional[Callable[[FatalCaptureError], None]] = None
        self._registered = False

        if options.mode == CaptureMode.LISTENING:
            self._build_engine = self._listening_builder(engine_factory)
        else:
            self._build_engine = self._polling_builder()
        self._engine: CaptureEngine = self._build_engine()

        if options.mode == CaptureMode.LISTENING:
            self.registry.register(self.handle, self)
            self._registered = True

        logger.info(
            f"Initialized {options.mode.value} capture for {app_name}/{stream_name} "
            f"on table {options.table_name}"
        )

    # -- engine construction -------------------------------------------------

    def _listening_builder(self, engine_factory: Optional[EngineFactory]) -> Callable[[], CaptureEngine]:
        options = self.options
        connection = self.resolver.resolve(
            options.url,
            options.table_name,
            options.connector_properties,
            username=options.username,
            password=options.password,
        )
        # generated once so a reconnect keeps the same server id
        connector_config = ListeningConfigGenerator.generate(
            connection,
            history_directory(self.working_directory, self.app_name),
            self.app_name,
            self.stream_name,
            server_id=options.server_id,
            server_name=options.server_name,
            connector_properties=options.connector_properties,
            handle=self.handle,
        )

        def build() -> CaptureEngine:
            return ListeningEngineAdapter(
                connector_config,
                options.operation,
                self.consumer,
                engine_factory=engine_factory,
                registry=self.registry,
                connection=connection,
            )

        return build

    def _polling_builder(self) -> Callable[[], CaptureEngine]:
        options = self.options
        store = WatermarkStore(polling_state_path(self.working_directory, self.app_name, self.stream_name))

        url = None
        if not (options.datasource_name or options.jndi_resource):
            connection = self.resolver.resolve(
                options.url, options.table_name, "", username=options.username, password=options.password
            )
            url = build_sqlalchemy_url(connection, resolve_driver_name(options.jdbc_driver_name, connection.dialect))

        recovered = store.load()
        if recovered is not None and recovered.column_name != options.polling_column:
            logger.warning(
                f"Ignoring persisted watermark on column {recovered.column_name}; "
                f"polling column is {options.polling_column}"
            )
            recovered = None

        def build() -> CaptureEngine:
            if options.datasource_name:
                engine, local = get_datasource(options.datasource_name, DATASOURCE_NAME), False
            elif options.jndi_resource:
                engine, local = get_datasource(options.jndi_resource, JNDI_RESOURCE), False
            else:
                engine, local = create_local_engine(url, options.pool_properties), True
            return PollingEngine(
                engine,
                options.table_name,
                options.polling_column,
                options.polling_interval,
                self.consumer,
                local_engine=local,
                operation_policy=options.polling_operation,
                watermark=recovered or Watermark(options.polling_column),
                on_advance=store.save,
            )

        return build

    # -- lifecycle -----------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def engine(self) -> CaptureEngine:
        return self._engine

    def connect(
        self,
        on_connection_lost: Callable[[ConnectionLost], None],
        on_fatal: Optional[Callable[[FatalCaptureError], None]] = None
    ) -> None:
        """Start capture on the worker and return immediately.

        Args:
            on_connection_lost: Called when the connection drops; the caller
                may reconnect
            on_fatal: Called after the orchestrator destroyed itself on an
                unrecoverable failure
        """
        self._ensure_alive("connect")
        if self._state in (LifecycleState.CONNECTED, LifecycleState.PAUSED):
            logger.warning(f"{self.app_name}/{self.stream_name} is already connected")
            return

        if self._engine.state == EngineState.STOPPED:
            self._engine = self._build_engine()
            if self._last_snapshot is not None:
                self._engine.restore(self._last_snapshot)

        self._on_connection_lost = on_connection_lost
        self._on_fatal = on_fatal
        self._engine.set_completion_callback(self._handle_completion)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"cdc-{self.app_name}-{self.stream_name}"
            )
        with self._state_lock:
            self._state = LifecycleState.CONNECTED
        self._future = self._executor.submit(self._run_engine, self._engine)
        logger.info(f"Connected {self.options.mode.value} capture {self.app_name}/{self.stream_name}")

    def pause(self) -> None:
        self._ensure_alive("pause")
        if self._state != LifecycleState.CONNECTED:
            return
        self._engine.pause()
        with self._state_lock:
            self._state = LifecycleState.PAUSED
        logger.info(f"Paused {self.app_name}/{self.stream_name}")

    def resume(self) -> None:
        self._ensure_alive("resume")
        if self._state != LifecycleState.PAUSED:
            return
        self._engine.resume()
        with self._state_lock:
            self._state = LifecycleState.CONNECTED
        logger.info(f"Resumed {self.app_name}/{self.stream_name}")

    def disconnect(self) -> None:
        """Stop the engine and release a locally owned pool. Idempotent."""
        if self._state == LifecycleState.DESTROYED:
            return
        if self._engine.state != EngineState.STOPPED:
            self._engine.stop()
            self._join_worker()
            self._last_snapshot = self._engine.snapshot()
            logger.info(f"Disconnected {self.app_name}/{self.stream_name}")
        with self._state_lock:
            self._state = LifecycleState.CREATED

    def destroy(self) -> None:
        """Disconnect, deregister and shut the worker down. Terminal."""
        if self._state == LifecycleState.DESTROYED:
            return
        self.disconnect()
        if self._registered:
            self.registry.deregister(self.handle)
            self._registered = False
        if self._executor is not None:
            # may run on the worker itself, never wait here
            self._executor.shutdown(wait=False)
        with self._state_lock:
            self._state = LifecycleState.DESTROYED
        logger.info(f"Destroyed {self.app_name}/{self.stream_name}")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the current engine run returns."""
        if self._future is not None:
            self._future.exception(timeout=timeout)

    def test_connection(self) -> bool:
        return self._engine.test_connection()

    # -- state ---------------------------------------------------------------

    def current_state(self) -> Dict[str, Any]:
        """Capture the watermark or offset cache for crash recovery."""
        snapshot = dict(self._engine.snapshot())
        snapshot[SNAPSHOT_MODE] = self.options.mode.value
        return snapshot

    def restore_state(self, snapshot: Dict[str, Any]) -> None:
        self._ensure_alive("restore_state")
        mode = snapshot.get(SNAPSHOT_MODE)
        if mode is not None and mode != self.options.mode.value:
            raise CaptureStateError(
                f"Cannot restore a {mode} snapshot into {self.options.mode.value} capture.",
                state=self._state.value,
            )
        self._engine.restore(snapshot)
        self._last_snapshot = self._engine.snapshot()

    def set_offset_data(self, offsets: Dict[str, Any]) -> None:
        """Receive offsets committed by the log engine (listening mode)."""
        self._engine.update_offsets(offsets)

    def get_offset_data(self) -> Dict[str, Any]:
        return self._engine.get_offsets()

    # -- internals -----------------------------------------------------------

    def _run_engine(self, engine: CaptureEngine) -> None:
        self._worker_ident = threading.get_ident()
        engine.run()

    def _join_worker(self) -> None:
        """Wait for the engine run to return, unless called from the worker."""
        future = self._future
        if future is None or future.done() or self._worker_ident == threading.get_ident():
            return
        try:
            future.exception(timeout=settings.CDC_WORKER_SHUTDOWN_TIMEOUT)
        except FutureTimeoutError:
            logger.warning(
                f"Capture worker for {self.app_name}/{self.stream_name} did not stop within "
                f"{settings.CDC_WORKER_SHUTDOWN_TIMEOUT}s"
            )

    def _ensure_alive(self, operation: str) -> None:
        if self._state == LifecycleState.DESTROYED:
            raise CaptureStateError(
                f"Cannot {operation} {self.app_name}/{self.stream_name}: capture is destroyed.",
                state=self._state.value,
            )

    def _handle_completion(self, kind: CompletionKind, error: Optional[BaseException]) -> None:
        if kind == CompletionKind.CONNECTION_LOST:
            with self._state_lock:
                if self._state != LifecycleState.DESTROYED:
                    self._state = LifecycleState.CREATED
            lost = error if isinstance(error, ConnectionLost) else ConnectionLost(
                "Connection to the database lost.", cause=error
            )
            logger.warning(f"Connection lost for {self.app_name}/{self.stream_name}: {error}")
            if self._on_connection_lost is not None:
                self._on_connection_lost(lost)
            return

        self.failure = FatalCaptureError(
            f"CDC {self.options.mode.value} mode run failed for {self.app_name}/{self.stream_name}.",
            cause=error,
        )
        self.destroy()
        if self._on_fatal is not None:
            self._on_fatal(self.failure)
        raise self.failure
