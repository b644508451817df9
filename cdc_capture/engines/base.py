"""Base class for capture engines."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError

from cdc_capture.models import ChangeEvent, EngineState

logger = logging.getLogger(__name__)

Consumer = Callable[[ChangeEvent], None]


class CompletionKind(str, Enum):
    """How an engine run ended abnormally."""
    CONNECTION_LOST = "connection_lost"
    FATAL = "fatal"


CompletionCallback = Callable[[CompletionKind, Optional[BaseException]], None]


def is_connection_error(error: BaseException) -> bool:
    """Return True if ``error`` means the database connection went away."""
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, (OperationalError, InterfaceError, DisconnectionError))


class CaptureEngine(ABC):
    """Abstract base class for both capture strategies.

    An engine runs entirely on the orchestrator's worker thread through
    ``run``; every other method is called from the owner's thread.
    """

    def __init__(self, consumer: Consumer):
        self.consumer = consumer
        self._completion_callback: Optional[CompletionCallback] = None
        self._state = EngineState.IDLE

    @property
    def state(self) -> EngineState:
        return self._state

    def set_completion_callback(self, callback: CompletionCallback) -> None:
        self._completion_callback = callback

    @abstractmethod
    def run(self) -> None:
        """Capture until stopped or failed. Blocks the calling thread."""
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        """Request the engine to stop at its next safe point.

        STOPPED is terminal; a stopped engine is never started again.
        """
        pass

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """Return the state needed to resume capture without loss."""
        pass

    @abstractmethod
    def restore(self, snapshot: Dict[str, Any]) -> None:
        pass

    def test_connection(self) -> bool:
        """Check the engine can reach its database.

        Engines that manage their own connections override this.
        """
        return True

    def _report(self, kind: CompletionKind, error: Optional[BaseException]) -> None:
        if self._completion_callback is None:
            logger.error(f"Capture engine ended ({kind.value}) with no completion callback: {error!r}")
            return
        self._completion_callback(kind, error)
