"""Environment-driven settings."""

import os

from dotenv import load_dotenv

load_dotenv()

# Root of the persisted capture state (offsets, schema history, watermarks)
CDC_HOME = os.getenv("CDC_HOME", "")
CDC_LOG_LEVEL = os.getenv("CDC_LOG_LEVEL", "INFO")
CDC_DEFAULT_POLLING_INTERVAL = int(os.getenv("CDC_DEFAULT_POLLING_INTERVAL", "1"))
CDC_WORKER_SHUTDOWN_TIMEOUT = float(os.getenv("CDC_WORKER_SHUTDOWN_TIMEOUT", "5"))


def get_working_directory(override: str = None) -> str:
    """Return the directory capture state is rooted at.

    Falls back to the current directory when neither an explicit path nor
    ``CDC_HOME`` is set.
    """
    path = override or CDC_HOME
    if not path:
        path = os.getcwd()
    return path
