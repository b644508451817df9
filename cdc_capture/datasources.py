"""Named data sources and connection pool construction for polling mode."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

from cdc_capture.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)

POOL_PROPERTIES = "pool.properties"

# pool.properties key -> (create_engine keyword, converter)
_POOL_KEYS = {
    "pool_size": ("pool_size", int),
    "maximumpoolsize": ("pool_size", int),
    "max_overflow": ("max_overflow", int),
    "pool_timeout": ("pool_timeout", float),
    "connectiontimeout": ("pool_timeout", lambda v: int(v) / 1000.0),  # milliseconds
    "pool_recycle": ("pool_recycle", int),
    "maxlifetime": ("pool_recycle", lambda v: int(v) // 1000),  # milliseconds
    "pool_pre_ping": ("pool_pre_ping", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "echo": ("echo", lambda v: v.strip().lower() in ("1", "true", "yes")),
}

_datasources: Dict[str, Engine] = {}
_lock = threading.Lock()


def register_datasource(name: str, engine: Engine) -> None:
    """Register an externally owned engine under ``name``.

    Capture never disposes registered engines; their owner does.
    """
    with _lock:
        _datasources[name] = engine
    logger.info(f"Registered datasource: {name}")


def unregister_datasource(name: str) -> Optional[Engine]:
    with _lock:
        return _datasources.pop(name, None)


def get_datasource(name: str, field: str = "datasource.name") -> Engine:
    """Look up a registered engine.

    Raises:
        InvalidConfigurationError: If no engine is registered under ``name``
    """
    with _lock:
        engine = _datasources.get(name)
    if engine is None:
        raise InvalidConfigurationError(f"Datasource '{name}' is not registered.", field=field)
    return engine


def parse_pool_properties(text: Optional[str]) -> Dict[str, Any]:
    """Convert ``pool.properties`` into ``create_engine`` keyword arguments.

    Args:
        text: Comma-separated ``key=value`` pairs, e.g. ``pool_size=5,maxLifetime=60000``

    Returns:
        Dictionary of engine keyword arguments

    Raises:
        InvalidConfigurationError: If a pair is malformed or a key unknown
    """
    kwargs: Dict[str, Any] = {}
    if not text or not text.strip():
        return kwargs

    for pair in text.split(","):
        tokens = pair.split("=")
        if len(tokens) != 2:
            raise InvalidConfigurationError(
                f"{POOL_PROPERTIES} input is invalid. Check near: '{pair}'.",
                field=POOL_PROPERTIES,
                expected="<key>=<value>,<key>=<value>",
            )
        key, value = tokens[0].strip(), tokens[1].strip()
        mapping = _POOL_KEYS.get(key.lower())
        if mapping is None:
            raise InvalidConfigurationError(
                f"Unsupported pool property '{key}'.",
                field=POOL_PROPERTIES,
                expected=", ".join(sorted({k for k, _ in _POOL_KEYS.values()})),
            )
        keyword, convert = mapping
        try:
            kwargs[keyword] = convert(value)
        except ValueError as e:
            raise InvalidConfigurationError(
                f"Invalid value '{value}' for pool property '{key}': {e}", field=POOL_PROPERTIES
            ) from e
    return kwargs


def create_local_engine(url: Union[str, URL], pool_properties: Optional[str] = None) -> Engine:
    """Create an engine owned by a single polling engine.

    The pool is disposed when the polling engine stops.
    """
    kwargs = {"pool_pre_ping": True}
    kwargs.update(parse_pool_properties(pool_properties))
    engine = create_engine(url, **kwargs)
    logger.info(f"Created connection pool for {engine.url.render_as_string(hide_password=True)}")
    return engine
