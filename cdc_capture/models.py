"""Data models for change data capture."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

BEFORE_PREFIX = "before_"


class Dialect(str, Enum):
    """Supported database dialects."""
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"


class CaptureMode(str, Enum):
    """Capture strategy enumeration."""
    LISTENING = "listening"
    POLLING = "polling"


class Operation(str, Enum):
    """Row change operation enumeration."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str) -> "Operation":
        """Parse an operation name, ignoring case.

        Raises:
            ValueError: If the value is not insert, update or delete.
        """
        return cls((value or "").strip().lower())


class LifecycleState(str, Enum):
    """Orchestrator lifecycle enumeration."""
    CREATED = "CREATED"
    CONNECTED = "CONNECTED"
    PAUSED = "PAUSED"
    DESTROYED = "DESTROYED"


class EngineState(str, Enum):
    """Capture engine state enumeration."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class ConnectionConfig:
    """Resolved, dialect-neutral connection descriptor.

    Created once when an orchestrator is built and never mutated afterwards.
    """

    dialect: Dialect
    host: str
    port: int
    database: str
    table_identifier: str
    username: Optional[str] = None
    password: Optional[str] = None
    extra_properties: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    oracle_driver: Optional[str] = None
    pdb_name: Optional[str] = None

    def extra_properties_dict(self) -> Dict[str, str]:
        """Return the extra connector properties as an ordered dict."""
        return dict(self.extra_properties)

    def to_dict(self) -> Dict[str, Any]:
        """Convert connection config to dictionary."""
        result = {
            "dialect": self.dialect.value,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "table_identifier": self.table_identifier,
            "username": self.username,
            "password": "***" if self.password else None,  # Don't expose password
            "extra_properties": self.extra_properties_dict(),
        }
        if self.oracle_driver:
            result["oracle_driver"] = self.oracle_driver
        if self.pdb_name:
            result["pdb_name"] = self.pdb_name
        return result


class Watermark:
    """Position marker of the polling engine.

    The last value only ever moves forward through ``advance``; ``restore``
    is the single way to set it to an arbitrary value.
    """

    def __init__(self, column_name: str, last_value: Any = None):
        self.column_name = column_name
        self.last_value = last_value

    @property
    def value_type(self) -> str:
        return _value_type(self.last_value)

    def advance(self, candidate: Any) -> bool:
        """Move the watermark to ``candidate`` if it is ahead.

        Returns:
            True if the watermark moved
        """
        if candidate is None:
            return False
        if self.last_value is None or candidate > self.last_value:
            self.last_value = candidate
            return True
        return False

    def copy(self) -> "Watermark":
        return Watermark(self.column_name, self.last_value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert watermark to a JSON-compatible dictionary."""
        return {
            "column": self.column_name,
            "type": self.value_type,
            "value": _encode_value(self.last_value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Watermark":
        """Build a watermark from the output of ``to_dict``."""
        value_type = data.get("type", "none")
        return cls(data["column"], _decode_value(data.get("value"), value_type))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Watermark):
            return NotImplemented
        return self.column_name == other.column_name and self.last_value == other.last_value

    def __repr__(self) -> str:
        return f"Watermark(column_name={self.column_name!r}, last_value={self.last_value!r})"


def _value_type(value: Any) -> str:
    if value is None:
        return "none"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, Decimal):
        return "decimal"
    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    return "str"


def _encode_value(value: Any) -> Any:
    if value is None or isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _decode_value(value: Any, value_type: str) -> Any:
    if value is None or value_type == "none":
        return None
    if value_type == "bool":
        return value if isinstance(value, bool) else str(value).lower() == "true"
    if value_type == "int":
        return int(value)
    if value_type == "float":
        return float(value)
    if value_type == "decimal":
        return Decimal(value)
    if value_type == "datetime":
        return datetime.fromisoformat(value)
    if value_type == "date":
        return date.fromisoformat(value)
    return str(value)


class ChangeEvent:
    """A single captured row mutation.

    INSERT carries only the after image, DELETE only the before image.
    UPDATE carries the after image and, when the source can provide it,
    the before image (polling scans only ever see the new row).
    """

    def __init__(
        self,
        operation: Operation,
        before_image: Optional[Dict[str, Any]] = None,
        after_image: Optional[Dict[str, Any]] = None,
        table: Optional[str] = None,
        source: Optional[Dict[str, Any]] = None
    ):
        operation = Operation(operation)
        if operation == Operation.INSERT and (after_image is None or before_image is not None):
            raise ValueError("INSERT events carry only an after image")
        if operation == Operation.DELETE and (before_image is None or after_image is not None):
            raise ValueError("DELETE events carry only a before image")
        if operation == Operation.UPDATE and after_image is None:
            raise ValueError("UPDATE events require an after image")

        self.operation = operation
        self.before_image = before_image
        self.after_image = after_image
        self.table = table
        self.source = source or {}

    def to_map(self) -> Dict[str, Any]:
        """Convert the event into the key-value shape handed to consumers.

        After-image columns are keys as-is; before-image columns are prefixed
        with ``before_``.
        """
        result: Dict[str, Any] = {}
        if self.before_image:
            for column, value in self.before_image.items():
                result[f"{BEFORE_PREFIX}{column}"] = value
        if self.after_image:
            result.update(self.after_image)
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChangeEvent):
            return NotImplemented
        return (
            self.operation == other.operation
            and self.before_image == other.before_image
            and self.after_image == other.after_image
        )

    def __repr__(self) -> str:
        return (
            f"ChangeEvent(operation={self.operation.value}, "
            f"before_image={self.before_image!r}, after_image={self.after_image!r})"
        )
