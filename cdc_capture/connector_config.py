"""Connector configuration generation for listening and polling modes."""

from __future__ import annotations

import logging
import os
import random
from typing import Any, Dict, Optional

from sqlalchemy.engine import URL

from cdc_capture.connection_resolver import parse_connector_properties
from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import ConnectionConfig, Dialect

logger = logging.getLogger(__name__)

# Connector map keys
CONNECTOR_CLASS = "connector.class"
DATABASE_HOSTNAME = "database.hostname"
DATABASE_PORT = "database.port"
DATABASE_USER = "database.user"
DATABASE_PASSWORD = "database.password"
DATABASE_DBNAME = "database.dbname"
TABLE_WHITELIST = "table.whitelist"
SERVER_ID = "database.server.id"
DATABASE_SERVER_NAME = "database.server.name"
OFFSET_STORAGE = "offset.storage"
OFFSET_STORAGE_FILE_NAME = "offset.storage.file.filename"
DATABASE_HISTORY = "database.history"
DATABASE_HISTORY_FILE_NAME = "database.history.file.filename"
CDC_SOURCE_OBJECT = "cdc.source.object"

FILE_OFFSET_STORE = "cdc_capture.engines.binlog.FileOffsetStore"
FILE_DATABASE_HISTORY = "cdc_capture.engines.binlog.FileSchemaHistory"

CONNECTOR_CLASSES = {
    Dialect.MYSQL: "io.debezium.connector.mysql.MySqlConnector",
    Dialect.POSTGRESQL: "io.debezium.connector.postgresql.PostgresConnector",
    Dialect.SQLSERVER: "io.debezium.connector.sqlserver.SqlServerConnector",
    Dialect.ORACLE: "io.debezium.connector.oracle.OracleConnector",
}

DEFAULT_SERVER_ID = -1
SERVER_ID_RANGE = (5400, 6400)

# SQLAlchemy dialect names and default DBAPI drivers
SQLALCHEMY_DIALECTS = {
    Dialect.MYSQL: "mysql",
    Dialect.POSTGRESQL: "postgresql",
    Dialect.SQLSERVER: "mssql",
    Dialect.ORACLE: "oracle",
}
DEFAULT_DRIVERS = {
    Dialect.MYSQL: "pymysql",
    Dialect.POSTGRESQL: "psycopg2",
    Dialect.SQLSERVER: "pyodbc",
    Dialect.ORACLE: "oracledb",
}
JDBC_DRIVER_CLASSES = {
    "com.mysql.jdbc.driver": "pymysql",
    "com.mysql.cj.jdbc.driver": "pymysql",
    "org.mariadb.jdbc.driver": "pymysql",
    "org.postgresql.driver": "psycopg2",
    "com.microsoft.sqlserver.jdbc.sqlserverdriver": "pyodbc",
    "oracle.jdbc.driver.oracledriver": "oracledb",
    "oracle.jdbc.oracledriver": "oracledb",
}


def random_server_id() -> int:
    """Draw a replication client id uniformly from [5400, 6400)."""
    low, high = SERVER_ID_RANGE
    return random.randrange(low, high)


def history_directory(root: str, app_name: str) -> str:
    """Directory holding the offsets and schema history files of an application."""
    return os.path.join(root, "cdc", "history", app_name) + os.sep


class ListeningConfigGenerator:
    """Generate connector configurations for the log-tailing engine."""

    @staticmethod
    def generate(
        connection: ConnectionConfig,
        history_dir: str,
        app_name: str,
        stream_name: str,
        server_id: int = DEFAULT_SERVER_ID,
        server_name: str = "",
        connector_properties: Optional[str] = "",
        handle: Optional[str] = None
    ) -> Dict[str, Any]:
        """Generate the connector configuration map.

        Args:
            connection: Resolved connection configuration
            history_dir: Directory for offsets and schema history files
            app_name: Name of the owning application
            stream_name: Name of the stream the events are published to
            server_id: Replication client id, -1 to pick a random one
            server_name: Logical server name, empty for ``<host>_<port>``
            connector_properties: Comma-separated overrides, highest precedence
            handle: Capture handle the engine reports offsets against

        Returns:
            Connector configuration dictionary
        """
        if not history_dir.endswith(os.sep):
            history_dir = history_dir + os.sep

        config: Dict[str, Any] = {
            CONNECTOR_CLASS: CONNECTOR_CLASSES[connection.dialect],
            DATABASE_HOSTNAME: connection.host,
            DATABASE_PORT: connection.port,
            TABLE_WHITELIST: connection.table_identifier,
            DATABASE_USER: connection.username,
            DATABASE_PASSWORD: connection.password,
        }
        if connection.dialect != Dialect.MYSQL:
            config[DATABASE_DBNAME] = connection.database

        if server_id is None or server_id == DEFAULT_SERVER_ID:
            config[SERVER_ID] = random_server_id()
        else:
            config[SERVER_ID] = server_id

        # <host>_<port> unless a server name is given
        config[DATABASE_SERVER_NAME] = server_name or f"{connection.host}_{connection.port}"

        config[OFFSET_STORAGE] = FILE_OFFSET_STORE
        config[OFFSET_STORAGE_FILE_NAME] = history_dir + "offsets.dat"
        config[DATABASE_HISTORY] = FILE_DATABASE_HISTORY
        config[DATABASE_HISTORY_FILE_NAME] = history_dir + f"{stream_name}.dat"
        config["name"] = f"{app_name}{stream_name}"
        if handle is not None:
            config[CDC_SOURCE_OBJECT] = handle

        for key, value in parse_connector_properties(connector_properties):
            config[key] = value

        logger.info(
            f"Generated {connection.dialect.value} connector config for {config['name']} "
            f"(server id {config[SERVER_ID]}, history {config[DATABASE_HISTORY_FILE_NAME]})"
        )
        return config


def resolve_driver_name(jdbc_driver_name: Optional[str], dialect: Dialect) -> str:
    """Map a JDBC driver class or DBAPI module name to a SQLAlchemy driver token.

    ``com.mysql.jdbc.Driver`` becomes ``pymysql``; plain DBAPI names such as
    ``psycopg2`` are passed through; empty names use the dialect default.
    """
    if not jdbc_driver_name:
        return DEFAULT_DRIVERS[dialect]
    name = jdbc_driver_name.strip()
    mapped = JDBC_DRIVER_CLASSES.get(name.lower())
    if mapped:
        return mapped
    if "." in name:
        raise InvalidConfigurationError(
            f"Unknown JDBC driver class '{name}'.",
            field="jdbc.driver.name",
            expected="a known JDBC driver class or a DBAPI driver name such as "
                     f"'{DEFAULT_DRIVERS[dialect]}'",
        )
    return name


def build_sqlalchemy_url(connection: ConnectionConfig, driver: Optional[str] = None) -> URL:
    """Build the SQLAlchemy URL the polling pool connects with."""
    drivername = f"{SQLALCHEMY_DIALECTS[connection.dialect]}+{driver or DEFAULT_DRIVERS[connection.dialect]}"
    query: Dict[str, str] = {}
    database: Optional[str] = connection.database or None

    if connection.dialect == Dialect.ORACLE:
        # service names travel as a query parameter
        if connection.database:
            query["service_name"] = connection.database
        database = None
    elif connection.dialect == Dialect.SQLSERVER and drivername.endswith("+pyodbc"):
        query["driver"] = "ODBC Driver 18 for SQL Server"

    return URL.create(
        drivername=drivername,
        username=connection.username,
        password=connection.password,
        host=connection.host,
        port=connection.port,
        database=database,
        query=query,
    )
