"""Durable persistence of polling watermarks."""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from cdc_capture.models import Watermark

logger = logging.getLogger(__name__)


def polling_state_path(root: str, app_name: str, stream_name: str) -> str:
    """JSON file the polling watermark of a stream is persisted to."""
    return os.path.join(root, "cdc", "polling", app_name, f"{stream_name}.json")


class WatermarkStore:
    """Stores one stream's watermark as a small JSON document."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Watermark]:
        """Load the persisted watermark.

        Returns:
            Watermark or None if nothing has been persisted yet
        """
        if not os.path.exists(self.path):
            return None
        with open(self.path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        watermark = Watermark.from_dict(data)
        logger.info(f"Loaded watermark {watermark.column_name}={watermark.last_value!r} from {self.path}")
        return watermark

    def save(self, watermark: Watermark) -> None:
        """Persist the watermark, replacing the previous file atomically."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(watermark.to_dict(), handle)
        os.replace(tmp_path, self.path)
        logger.debug(f"Persisted watermark {watermark.column_name}={watermark.last_value!r}")

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
