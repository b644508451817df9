"""Watermark-based polling capture engine."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import MetaData, Table, select
from sqlalchemy.engine import Engine
from sqlalchemy.types import Date, DateTime

from cdc_capture.engines.base import CaptureEngine, CompletionKind, Consumer, is_connection_error
from cdc_capture.exceptions import ConnectionLost, InvalidConfigurationError
from cdc_capture.models import ChangeEvent, EngineState, Operation, Watermark

logger = logging.getLogger(__name__)

LAST_OFFSET = "last.offset"

POLICY_AUTO = "auto"
POLLING_OPERATION_POLICIES = (POLICY_AUTO, Operation.INSERT.value, Operation.UPDATE.value)


class PollingEngine(CaptureEngine):
    """Polls a table for rows whose watermark column is past the last seen value.

    The watermark has a single writer, the poll loop. Pausing, stopping and
    snapshots synchronize with the loop through one condition, so a batch is
    either emitted completely with its watermark advance or not at all.
    """

    def __init__(
        self,
        engine: Engine,
        table_name: str,
        polling_column: str,
        polling_interval: int,
        consumer: Consumer,
        local_engine: bool = False,
        operation_policy: str = POLICY_AUTO,
        watermark: Optional[Watermark] = None,
        on_advance: Optional[Callable[[Watermark], None]] = None
    ):
        """Initialize polling engine.

        Args:
            engine: SQLAlchemy engine the scans run on
            table_name: Table to poll, optionally schema-qualified
            polling_column: Monotonically increasing column used as watermark
            polling_interval: Seconds to wait between scans, 0 polls continuously
            consumer: Callback receiving each ChangeEvent
            local_engine: True if this engine owns the pool and disposes it on stop
            operation_policy: 'insert', 'update' or 'auto' (by column type)
            watermark: Starting watermark, e.g. recovered from durable state
            on_advance: Called with a copy of the watermark after each advance
        """
        super().__init__(consumer)
        if polling_interval < 0:
            raise InvalidConfigurationError(
                "polling.interval should be a non negative integer.", field="polling.interval"
            )
        if operation_policy not in POLLING_OPERATION_POLICIES:
            raise InvalidConfigurationError(
                f"Unsupported polling operation '{operation_policy}'.",
                field="polling.operation",
                expected=" | ".join(POLLING_OPERATION_POLICIES),
            )

        self.engine = engine
        self.table_name = table_name
        self.polling_column = polling_column
        self.polling_interval = polling_interval
        self.local_engine = local_engine
        self.operation_policy = operation_policy
        self.on_advance = on_advance

        self._watermark = watermark.copy() if watermark else Watermark(polling_column)
        self._condition = threading.Condition(threading.RLock())
        self._stop_event = threading.Event()
        self._paused = False
        self._table: Optional[Table] = None
        self._operation: Optional[Operation] = None

    @property
    def is_local_engine(self) -> bool:
        return self.local_engine

    @property
    def watermark(self) -> Watermark:
        with self._condition:
            return self._watermark.copy()

    def run(self) -> None:
        with self._condition:
            if self._state != EngineState.IDLE:
                logger.warning(f"Polling engine for {self.table_name} is {self._state.value}, not starting")
                return
            self._state = EngineState.PAUSED if self._paused else EngineState.RUNNING

        logger.info(
            f"Polling {self.table_name} on column {self.polling_column} every {self.polling_interval}s "
            f"from {self._watermark.last_value!r}"
        )
        try:
            while not self._stop_event.is_set():
                self._wait_while_paused()
                if self._stop_event.is_set():
                    break

                self.poll_once()

                if self.polling_interval > 0:
                    self._stop_event.wait(self.polling_interval)
        except Exception as e:
            if self._stop_event.is_set():
                logger.debug(f"Polling engine for {self.table_name} stopped during scan: {e!r}")
                return
            if is_connection_error(e):
                logger.error(f"Connection lost while polling {self.table_name}: {e}", exc_info=True)
                with self._condition:
                    self._state = EngineState.IDLE
                self._report(CompletionKind.CONNECTION_LOST, e)
            else:
                logger.error(f"Polling {self.table_name} failed: {e}", exc_info=True)
                self.stop()
                self._report(CompletionKind.FATAL, e)
        else:
            logger.info(f"Polling engine for {self.table_name} stopped")

    def poll_once(self) -> int:
        """Run one scan and emit its rows.

        A batch scanned while a pause or stop arrived is dropped without
        moving the watermark, so it is read again after resume.

        Returns:
            Number of events emitted
        """
        rows = self._scan()
        with self._condition:
            if self._stop_event.is_set() or self._paused:
                return 0
            self._emit(rows)
        return len(rows)

    def pause(self) -> None:
        with self._condition:
            self._paused = True
            if self._state == EngineState.RUNNING:
                self._state = EngineState.PAUSED

    def resume(self) -> None:
        with self._condition:
            self._paused = False
            if self._state == EngineState.PAUSED:
                self._state = EngineState.RUNNING
            self._condition.notify_all()

    def stop(self) -> None:
        self._stop_event.set()
        with self._condition:
            already_stopped = self._state == EngineState.STOPPED
            self._state = EngineState.STOPPED
            self._condition.notify_all()
        if already_stopped:
            return
        if self.local_engine:
            self.engine.dispose()
            logger.debug(f"Closed the connection pool for polling {self.table_name}")

    def snapshot(self) -> Dict[str, Any]:
        with self._condition:
            return {LAST_OFFSET: self._watermark.to_dict()}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Set the watermark from a snapshot; the only way to move it backward."""
        data = snapshot.get(LAST_OFFSET)
        if isinstance(data, dict):
            watermark = Watermark.from_dict(data)
        else:
            watermark = Watermark(self.polling_column, self._coerce_offset(data))
        if watermark.column_name != self.polling_column:
            raise InvalidConfigurationError(
                f"Snapshot watermark column '{watermark.column_name}' does not match "
                f"polling column '{self.polling_column}'.",
                field="polling.column",
            )
        with self._condition:
            self._watermark = watermark
        logger.info(f"Restored watermark for {self.table_name}: {watermark.last_value!r}")
        if self.on_advance:
            self.on_advance(watermark.copy())

    def _coerce_offset(self, value: Any) -> Any:
        """Convert a raw offset given as text to the polling column's type.

        Raises:
            InvalidConfigurationError: If the text does not parse as that type
        """
        if not isinstance(value, str):
            return value
        column_type = self._reflect().c[self.polling_column].type
        try:
            python_type = column_type.python_type
        except NotImplementedError:
            return value
        try:
            if python_type in (datetime, date):
                return python_type.fromisoformat(value)
            if python_type in (int, float, Decimal):
                return python_type(value)
        except (ValueError, InvalidOperation) as e:
            raise InvalidConfigurationError(
                f"Offset {value!r} is not a valid {python_type.__name__} for polling column '{self.polling_column}'.",
                field=LAST_OFFSET,
            ) from e
        return value

    def test_connection(self) -> bool:
        try:
            with self.engine.connect():
                return True
        except Exception as e:
            if is_connection_error(e):
                raise ConnectionLost(f"Cannot connect to the database for {self.table_name}.", cause=e) from e
            raise

    def _wait_while_paused(self) -> None:
        with self._condition:
            while self._paused and not self._stop_event.is_set():
                self._condition.wait()

    def _reflect(self) -> Table:
        if self._table is None:
            schema, _, name = self.table_name.rpartition(".")
            table = Table(name, MetaData(), schema=schema or None, autoload_with=self.engine)
            if self.polling_column not in table.c:
                raise KeyError(f"Polling column '{self.polling_column}' not found in table {self.table_name}")
            self._table = table
            self._operation = self._classify(table)
            logger.info(
                f"Polling column {self.polling_column} ({table.c[self.polling_column].type}) "
                f"emits {self._operation.value.upper()} events"
            )
        return self._table

    def _classify(self, table: Table) -> Operation:
        if self.operation_policy != POLICY_AUTO:
            return Operation(self.operation_policy)
        column_type = table.c[self.polling_column].type
        # temporal columns move on every write, others only on append
        if isinstance(column_type, (DateTime, Date)):
            return Operation.UPDATE
        return Operation.INSERT

    def _scan(self) -> List[Dict[str, Any]]:
        table = self._reflect()
        column = table.c[self.polling_column]
        with self._condition:
            last_value = self._watermark.last_value

        query = select(table).order_by(column.asc())
        if last_value is not None:
            query = query.where(column > last_value)

        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def _emit(self, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        for row in rows:
            event = ChangeEvent(
                self._operation,
                after_image=row,
                table=self.table_name,
                source={"mode": "polling", "column": self.polling_column},
            )
            self.consumer(event)

        advanced = False
        for row in rows:
            advanced = self._watermark.advance(row.get(self.polling_column)) or advanced
        if advanced:
            logger.debug(f"Watermark for {self.table_name} advanced to {self._watermark.last_value!r}")
            if self.on_advance:
                self.on_advance(self._watermark.copy())
