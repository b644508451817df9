"""Handle to orchestrator lookup for the log engine callback boundary.

The log-tailing engine only carries the ``cdc.source.object`` handle from its
connector configuration, so offset updates are routed back to the owning
orchestrator through this table.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EngineRegistry:
    """Thread-safe mapping from capture handle to orchestrator."""

    _default: Optional["EngineRegistry"] = None
    _default_lock = threading.Lock()

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def default(cls) -> "EngineRegistry":
        """Return the process-wide registry."""
        with cls._default_lock:
            if cls._default is None:
                cls._default = cls()
            return cls._default

    def register(self, handle: str, orchestrator: Any) -> None:
        with self._lock:
            if handle in self._entries and self._entries[handle] is not orchestrator:
                raise KeyError(f"Capture handle already registered: {handle}")
            self._entries[handle] = orchestrator
        logger.debug(f"Registered capture handle {handle}")

    def deregister(self, handle: str) -> None:
        with self._lock:
            removed = self._entries.pop(handle, None)
        if removed is not None:
            logger.debug(f"Deregistered capture handle {handle}")

    def get(self, handle: str) -> Optional[Any]:
        with self._lock:
            return self._entries.get(handle)

    def __contains__(self, handle: str) -> bool:
        with self._lock:
            return handle in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
