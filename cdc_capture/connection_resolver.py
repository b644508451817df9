"""Resolve JDBC-style connection strings into connection configurations."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import ConnectionConfig, Dialect

logger = logging.getLogger(__name__)

CONNECTOR_PROPERTIES = "connector.properties"
ORACLE_OUTSERVER_PROPERTY = "database.out.server.name"
ORACLE_PDB_PROPERTY = "database.pdb.name"

_HOST = r"(?P<host>[A-Za-z0-9_\-.]+)"
_PORT = r"(?P<port>\d+)"


class ParseResult:
    """Outcome of matching a connection string against one dialect."""

    def __init__(self, fields: Optional[Dict[str, str]] = None, error: Optional[str] = None):
        self.fields = fields or {}
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, **fields: str) -> "ParseResult":
        return cls(fields=fields)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(error=error)


class DialectUrlParser:
    """Structural parser for one dialect's connection string."""

    dialect: Dialect
    expected_format: str
    pattern: "re.Pattern[str]"

    def parse(self, url: str) -> ParseResult:
        match = self.pattern.match(url)
        if not match:
            return ParseResult.failure(f"Invalid JDBC url: {url}.")
        fields = {k: v for k, v in match.groupdict().items() if v is not None}
        return self._check_port(fields)

    def qualify_table(self, fields: Dict[str, str], table_name: str, properties: Dict[str, str]) -> str:
        return table_name

    def _check_port(self, fields: Dict[str, str]) -> ParseResult:
        port = int(fields["port"])
        if not 0 < port < 65536:
            return ParseResult.failure(f"Port {port} is out of range.")
        return ParseResult.success(**fields)


class MySQLUrlParser(DialectUrlParser):
    dialect = Dialect.MYSQL
    expected_format = "jdbc:mysql://<host>:<port>/<database_name>"
    pattern = re.compile(rf"^jdbc:mysql://{_HOST}:{_PORT}/(?P<database>\w+)(?:\?.*)?$")

    def qualify_table(self, fields, table_name, properties):
        return f"{fields['database']}.{table_name}"


class PostgreSQLUrlParser(DialectUrlParser):
    dialect = Dialect.POSTGRESQL
    expected_format = "jdbc:postgresql://<host>:<port>/<database_name>"
    pattern = re.compile(rf"^jdbc:postgresql://{_HOST}:{_PORT}/(?P<database>\w+)(?:\?.*)?$")


class SQLServerUrlParser(DialectUrlParser):
    """SQL Server names the database in a semicolon-delimited parameter."""

    dialect = Dialect.SQLSERVER
    expected_format = "jdbc:sqlserver://<host>:<port>;databaseName=<database_name>"
    pattern = re.compile(rf"^jdbc:sqlserver://{_HOST}:{_PORT}(?P<params>(?:;[^;]*)*)$")

    def parse(self, url: str) -> ParseResult:
        match = self.pattern.match(url)
        if not match:
            return ParseResult.failure(f"Invalid JDBC url: {url}.")

        database = None
        for param in match.group("params").split(";"):
            if not param:
                continue
            key, sep, value = param.partition("=")
            if not sep:
                return ParseResult.failure(f"Invalid JDBC url parameter '{param}' in {url}.")
            if key.strip().lower() == "databasename":
                database = value.strip()

        if not database or not re.fullmatch(r"\w+", database):
            return ParseResult.failure(f"Invalid JDBC url: {url}. databaseName is missing.")
        return self._check_port({
            "host": match.group("host"),
            "port": match.group("port"),
            "database": database,
        })


class OracleUrlParser(DialectUrlParser):
    """Oracle urls carry a driver token and an optional service name or SID."""

    dialect = Dialect.ORACLE
    expected_format = "jdbc:oracle:<driver>://<host>:<port>/<sid>"
    pattern = re.compile(
        rf"^jdbc:oracle:(?P<driver>\w+)://{_HOST}:{_PORT}(?:/(?P<database>[A-Za-z0-9_\-.]*))?$"
    )

    def qualify_table(self, fields, table_name, properties):
        prefix = properties.get(ORACLE_PDB_PROPERTY) or fields.get("database")
        if not prefix:
            raise InvalidConfigurationError(
                "Either a service name/SID in the url or the "
                f"{ORACLE_PDB_PROPERTY} connector property is required.",
                field="url",
                expected=self.expected_format,
            )
        return f"{prefix}.{table_name}"


PARSERS: Dict[str, DialectUrlParser] = {
    parser.dialect.value: parser
    for parser in (MySQLUrlParser(), PostgreSQLUrlParser(), SQLServerUrlParser(), OracleUrlParser())
}


def parse_connector_properties(text: Optional[str]) -> List[Tuple[str, str]]:
    """Parse ``key=value`` pairs separated by commas.

    Args:
        text: Free-text property string, may be empty

    Returns:
        Ordered list of (key, value) pairs; later duplicates win when turned
        into a dict

    Raises:
        InvalidConfigurationError: If a pair does not split into exactly
            two tokens on ``=``
    """
    pairs: List[Tuple[str, str]] = []
    if not text or not text.strip():
        return pairs

    for key_value_pair in text.split(","):
        tokens = key_value_pair.split("=")
        if len(tokens) != 2 or not tokens[0].strip():
            raise InvalidConfigurationError(
                f"{CONNECTOR_PROPERTIES} input is invalid. Check near: '{key_value_pair}'.",
                field=CONNECTOR_PROPERTIES,
                expected="<key>=<value>,<key>=<value>",
            )
        pairs.append((tokens[0].strip(), tokens[1].strip()))
    return pairs


class ConnectionConfigResolver:
    """Turn a connection string, table name and properties into a ConnectionConfig."""

    def __init__(self, parsers: Optional[Dict[str, DialectUrlParser]] = None):
        self.parsers = parsers or PARSERS

    def resolve(
        self,
        url: str,
        table_name: str,
        connector_properties: Optional[str] = "",
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> ConnectionConfig:
        """Resolve a JDBC url for the given table.

        Args:
            url: Connection string, e.g. ``jdbc:mysql://localhost:3306/shop``
            table_name: Bare name of the captured table
            connector_properties: Comma-separated ``key=value`` overrides
            username: Database user
            password: Database password

        Returns:
            Fully resolved ConnectionConfig

        Raises:
            InvalidConfigurationError: If the url, table or properties are invalid
        """
        if not table_name or not table_name.strip():
            raise InvalidConfigurationError("table.name is required.", field="table.name")
        if not url:
            raise InvalidConfigurationError(
                "url is required.", field="url", expected=MySQLUrlParser.expected_format
            )

        url = url.strip()
        scheme, _, remainder = url.partition(":")
        if scheme.lower() != "jdbc" or not remainder:
            raise InvalidConfigurationError(
                f"Invalid JDBC url: {url}.", field="url", expected=MySQLUrlParser.expected_format
            )

        product = remainder.split(":", 1)[0].lower()
        parser = self.parsers.get(product)
        if parser is None:
            raise InvalidConfigurationError(
                f"Unsupported scheme '{product}' in url {url}. "
                f"Supported schemes: {', '.join(sorted(self.parsers))}.",
                field="url",
            )

        # parse the url case-sensitively but accept an upper-case scheme
        result = parser.parse(f"jdbc:{product}{remainder[len(product):]}")
        if not result.ok:
            raise InvalidConfigurationError(result.error, field="url", expected=parser.expected_format)

        properties = parse_connector_properties(connector_properties)
        properties_map = dict(properties)

        if parser.dialect == Dialect.ORACLE and ORACLE_OUTSERVER_PROPERTY not in properties_map:
            raise InvalidConfigurationError(
                f"Required property {ORACLE_OUTSERVER_PROPERTY} is missing in the "
                f"{CONNECTOR_PROPERTIES} configuration.",
                field=CONNECTOR_PROPERTIES,
            )

        fields = result.fields
        table_identifier = parser.qualify_table(fields, table_name.strip(), properties_map)

        config = ConnectionConfig(
            dialect=parser.dialect,
            host=fields["host"],
            port=int(fields["port"]),
            database=fields.get("database", ""),
            table_identifier=table_identifier,
            username=username,
            password=password,
            extra_properties=tuple(properties),
            oracle_driver=fields.get("driver"),
            pdb_name=properties_map.get(ORACLE_PDB_PROPERTY),
        )
        logger.debug(f"Resolved {parser.dialect.value} url for table {table_identifier}")
        return config


def resolve(
    url: str,
    table_name: str,
    connector_properties: Optional[str] = "",
    username: Optional[str] = None,
    password: Optional[str] = None
) -> ConnectionConfig:
    """Resolve with the default set of dialect parsers."""
    return ConnectionConfigResolver().resolve(
        url, table_name, connector_properties, username=username, password=password
    )
