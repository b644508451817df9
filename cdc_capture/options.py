"""Validated capture options."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from cdc_capture import settings
from cdc_capture.connector_config import DEFAULT_SERVER_ID
from cdc_capture.engines.polling import POLICY_AUTO, POLLING_OPERATION_POLICIES
from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import CaptureMode, Operation

logger = logging.getLogger(__name__)

# Option names
URL = "url"
MODE = "mode"
USERNAME = "username"
PASSWORD = "password"
TABLE_NAME = "table.name"
OPERATION = "operation"
POLLING_COLUMN = "polling.column"
POLLING_INTERVAL = "polling.interval"
POLLING_OPERATION = "polling.operation"
JDBC_DRIVER_NAME = "jdbc.driver.name"
DATASOURCE_NAME = "datasource.name"
JNDI_RESOURCE = "jndi.resource"
POOL_PROPERTIES = "pool.properties"
CONNECTOR_PROPERTIES = "connector.properties"
DATABASE_SERVER_ID = "database.server.id"
DATABASE_SERVER_NAME = "database.server.name"


def _get(options: Mapping[str, Any], key: str) -> Optional[str]:
    value = options.get(key)
    if value is None:
        return None
    return str(value)


def _require(options: Mapping[str, Any], key: str, mode: CaptureMode, hint: str = "") -> str:
    value = _get(options, key)
    if value is None:
        raise InvalidConfigurationError(
            f"Option '{key}' is required. Current mode: {mode.value}.{hint}", field=key
        )
    return value


def _non_empty(options: Mapping[str, Any], key: str) -> bool:
    value = _get(options, key)
    return value is not None and value.strip() != ""


class CaptureOptions:
    """Typed view over the raw option mapping of one capture source."""

    def __init__(
        self,
        mode: CaptureMode,
        table_name: str,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        operation: Optional[Operation] = None,
        polling_column: Optional[str] = None,
        polling_interval: int = 1,
        polling_operation: str = POLICY_AUTO,
        jdbc_driver_name: Optional[str] = None,
        datasource_name: Optional[str] = None,
        jndi_resource: Optional[str] = None,
        pool_properties: Optional[str] = None,
        connector_properties: str = "",
        server_id: int = DEFAULT_SERVER_ID,
        server_name: str = ""
    ):
        self.mode = mode
        self.table_name = table_name
        self.url = url
        self.username = username
        self.password = password
        self.operation = operation
        self.polling_column = polling_column
        self.polling_interval = polling_interval
        self.polling_operation = polling_operation
        self.jdbc_driver_name = jdbc_driver_name
        self.datasource_name = datasource_name
        self.jndi_resource = jndi_resource
        self.pool_properties = pool_properties
        self.connector_properties = connector_properties
        self.server_id = server_id
        self.server_name = server_name

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "CaptureOptions":
        """Validate a raw option mapping.

        Args:
            options: Option name to value, e.g. ``{"url": ..., "table.name": ...}``

        Returns:
            CaptureOptions for the declared mode

        Raises:
            InvalidConfigurationError: Naming the missing or invalid option
        """
        raw_mode = (_get(options, MODE) or CaptureMode.LISTENING.value).strip().lower()
        try:
            mode = CaptureMode(raw_mode)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unsupported {MODE}: {raw_mode}.",
                field=MODE,
                expected=" | ".join(m.value for m in CaptureMode),
            ) from None

        table_name = _require(options, TABLE_NAME, mode).strip()
        if not table_name:
            raise InvalidConfigurationError(f"Option '{TABLE_NAME}' must not be empty.", field=TABLE_NAME)

        if mode == CaptureMode.LISTENING:
            return cls._listening(options, table_name)
        return cls._polling(options, table_name)

    @classmethod
    def _listening(cls, options: Mapping[str, Any], table_name: str) -> "CaptureOptions":
        mode = CaptureMode.LISTENING
        if _get(options, DATASOURCE_NAME) is not None:
            raise InvalidConfigurationError(
                f"Parameter: {DATASOURCE_NAME} should not be defined for listening mode.",
                field=DATASOURCE_NAME,
            )

        url = _require(options, URL, mode)
        username = _require(options, USERNAME, mode)
        password = _require(options, PASSWORD, mode)

        raw_operation = _require(options, OPERATION, mode)
        try:
            operation = Operation.parse(raw_operation)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unsupported operation: '{raw_operation}'.",
                field=OPERATION,
                expected="one of 'insert', 'update' or 'delete'",
            ) from None

        raw_server_id = _get(options, DATABASE_SERVER_ID)
        server_id = DEFAULT_SERVER_ID
        if raw_server_id is not None and raw_server_id.strip():
            try:
                server_id = int(raw_server_id)
            except ValueError:
                raise InvalidConfigurationError(
                    f"Invalid server id '{raw_server_id}'.",
                    field=DATABASE_SERVER_ID,
                    expected="an integer between 1 and 2^32",
                ) from None

        return cls(
            mode=mode,
            table_name=table_name,
            url=url,
            username=username,
            password=password,
            operation=operation,
            connector_properties=_get(options, CONNECTOR_PROPERTIES) or "",
            server_id=server_id,
            server_name=_get(options, DATABASE_SERVER_NAME) or "",
        )

    @classmethod
    def _polling(cls, options: Mapping[str, Any], table_name: str) -> "CaptureOptions":
        mode = CaptureMode.POLLING
        polling_column = _require(options, POLLING_COLUMN, mode).strip()
        if not polling_column:
            raise InvalidConfigurationError(f"Option '{POLLING_COLUMN}' must not be empty.", field=POLLING_COLUMN)

        raw_interval = _get(options, POLLING_INTERVAL)
        if raw_interval is None:
            polling_interval = settings.CDC_DEFAULT_POLLING_INTERVAL
        else:
            try:
                polling_interval = int(raw_interval)
            except ValueError:
                polling_interval = -1
        if polling_interval < 0:
            raise InvalidConfigurationError(
                f"{POLLING_INTERVAL} should be a non negative integer. Current mode: {mode.value}.",
                field=POLLING_INTERVAL,
            )

        polling_operation = (_get(options, POLLING_OPERATION) or POLICY_AUTO).strip().lower()
        if polling_operation not in POLLING_OPERATION_POLICIES:
            raise InvalidConfigurationError(
                f"Unsupported polling operation '{polling_operation}'.",
                field=POLLING_OPERATION,
                expected=" | ".join(POLLING_OPERATION_POLICIES),
            )

        values: Dict[str, Any] = dict(
            mode=mode,
            table_name=table_name,
            polling_column=polling_column,
            polling_interval=polling_interval,
            polling_operation=polling_operation,
            pool_properties=_get(options, POOL_PROPERTIES),
        )

        if _non_empty(options, DATASOURCE_NAME):
            values["datasource_name"] = _get(options, DATASOURCE_NAME).strip()
        elif _non_empty(options, JNDI_RESOURCE):
            values["jndi_resource"] = _get(options, JNDI_RESOURCE).strip()
        else:
            hint = f" Alternatively, define {DATASOURCE_NAME} or {JNDI_RESOURCE}."
            values["jdbc_driver_name"] = _require(options, JDBC_DRIVER_NAME, mode, hint)
            values["url"] = _require(options, URL, mode, hint)
            values["username"] = _require(options, USERNAME, mode, hint)
            values["password"] = _require(options, PASSWORD, mode, hint)

        if (values.get("datasource_name") or values.get("jndi_resource")) and _get(options, URL):
            logger.warning(f"Both a datasource and {URL} are defined for {table_name}; using the datasource")

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary."""
        return {
            "mode": self.mode.value,
            "table_name": self.table_name,
            "url": self.url,
            "username": self.username,
            "password": "***" if self.password else None,  # Don't expose password
            "operation": self.operation.value if self.operation else None,
            "polling_column": self.polling_column,
            "polling_interval": self.polling_interval,
            "polling_operation": self.polling_operation,
            "jdbc_driver_name": self.jdbc_driver_name,
            "datasource_name": self.datasource_name,
            "jndi_resource": self.jndi_resource,
            "pool_properties": self.pool_properties,
            "connector_properties": self.connector_properties,
            "server_id": self.server_id,
            "server_name": self.server_name,
        }
