"""Retry utilities for reconnecting after transient failures."""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from cdc_capture.exceptions import ConnectionLost, InvalidConfigurationError

logger = logging.getLogger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between attempts in seconds
        backoff: Multiplier for delay after each attempt
        exceptions: Exceptions that trigger another attempt
        on_retry: Optional callback called on each retry (exception, attempt_number)
        sleep: Sleep function, replaceable in tests

    Configuration errors are never retried.

    Example:
        @retry(max_attempts=5, exceptions=(ConnectionLost,))
        def reconnect():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except InvalidConfigurationError:
                    raise
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {e}")
                        raise

                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {current_delay:.2f} seconds..."
                    )
                    if on_retry:
                        on_retry(e, attempt)
                    sleep(current_delay)
                    current_delay *= backoff

        return wrapper
    return decorator


def retry_on_connection_lost(max_attempts: int = 5, delay: float = 1.0, backoff: float = 2.0):
    """Retry decorator for reconnect attempts."""
    return retry(
        max_attempts=max_attempts,
        delay=delay,
        backoff=backoff,
        exceptions=(ConnectionLost,),
    )
