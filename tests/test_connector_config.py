"""Unit tests for listening connector maps and polling URLs."""

import os

import pytest
from hypothesis import given, settings, strategies as st

from cdc_capture.connection_resolver import resolve
from cdc_capture.connector_config import (
    CDC_SOURCE_OBJECT,
    CONNECTOR_CLASS,
    DATABASE_DBNAME,
    DATABASE_HISTORY_FILE_NAME,
    DATABASE_SERVER_NAME,
    OFFSET_STORAGE_FILE_NAME,
    SERVER_ID,
    TABLE_WHITELIST,
    ListeningConfigGenerator,
    build_sqlalchemy_url,
    history_directory,
    random_server_id,
    resolve_driver_name,
)
from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import Dialect


@pytest.fixture
def mysql_connection():
    return resolve("jdbc:mysql://localhost:3306/SimpleDB", "students", username="cdc", password="pw")


class TestListeningConfigGenerator:

    def test_history_and_offset_paths(self, tmp_path, mysql_connection):
        history_dir = history_directory(str(tmp_path), "StudentApp")
        config = ListeningConfigGenerator.generate(mysql_connection, history_dir, "StudentApp", "inputStream")

        expected_dir = os.path.join(str(tmp_path), "cdc", "history", "StudentApp") + os.sep
        assert config[OFFSET_STORAGE_FILE_NAME] == expected_dir + "offsets.dat"
        assert config[DATABASE_HISTORY_FILE_NAME] == expected_dir + "inputStream.dat"
        assert config["name"] == "StudentAppinputStream"

    def test_history_dir_without_trailing_separator(self, tmp_path, mysql_connection):
        config = ListeningConfigGenerator.generate(mysql_connection, str(tmp_path), "app", "s")

        assert config[OFFSET_STORAGE_FILE_NAME] == os.path.join(str(tmp_path), "offsets.dat")

    def test_mysql_defaults(self, tmp_path, mysql_connection):
        config = ListeningConfigGenerator.generate(
            mysql_connection, str(tmp_path), "app", "s", handle="abc123"
        )

        assert config[CONNECTOR_CLASS] == "io.debezium.connector.mysql.MySqlConnector"
        assert config[TABLE_WHITELIST] == "SimpleDB.students"
        assert config[DATABASE_SERVER_NAME] == "localhost_3306"
        assert config[CDC_SOURCE_OBJECT] == "abc123"
        assert DATABASE_DBNAME not in config

    def test_postgresql_sets_dbname(self, tmp_path):
        connection = resolve("jdbc:postgresql://pg:5432/inventory", "items")
        config = ListeningConfigGenerator.generate(connection, str(tmp_path), "app", "s")

        assert config[DATABASE_DBNAME] == "inventory"
        assert config[TABLE_WHITELIST] == "items"

    def test_explicit_server_id_and_name(self, tmp_path, mysql_connection):
        config = ListeningConfigGenerator.generate(
            mysql_connection, str(tmp_path), "app", "s", server_id=184054, server_name="inventory"
        )

        assert config[SERVER_ID] == 184054
        assert config[DATABASE_SERVER_NAME] == "inventory"

    def test_connector_properties_override_derived_values(self, tmp_path, mysql_connection):
        config = ListeningConfigGenerator.generate(
            mysql_connection,
            str(tmp_path),
            "app",
            "s",
            connector_properties="database.server.name=custom,table.whitelist=other.t,snapshot.mode=never",
        )

        assert config[DATABASE_SERVER_NAME] == "custom"
        assert config[TABLE_WHITELIST] == "other.t"
        assert config["snapshot.mode"] == "never"

    def test_invalid_connector_properties(self, tmp_path, mysql_connection):
        with pytest.raises(InvalidConfigurationError):
            ListeningConfigGenerator.generate(
                mysql_connection, str(tmp_path), "app", "s", connector_properties="a=1=2"
            )

    @settings(max_examples=50, deadline=None)
    @given(st.integers(min_value=0, max_value=1000))
    def test_random_server_id_in_range(self, _):
        connection = resolve("jdbc:mysql://localhost:3306/SimpleDB", "students")
        config = ListeningConfigGenerator.generate(connection, "/tmp/cdc-history/", "app", "s")

        assert 5400 <= config[SERVER_ID] < 6400

    def test_random_server_id_bounds(self):
        ids = {random_server_id() for _ in range(2000)}

        assert min(ids) >= 5400
        assert max(ids) < 6400


class TestSqlAlchemyUrl:

    def test_mysql_url(self, mysql_connection):
        url = build_sqlalchemy_url(mysql_connection, "pymysql")

        assert url.drivername == "mysql+pymysql"
        assert url.host == "localhost"
        assert url.port == 3306
        assert url.database == "SimpleDB"
        assert url.username == "cdc"
        assert url.password == "pw"

    def test_oracle_service_name(self):
        connection = resolve(
            "jdbc:oracle:thin://ora:1521/ORCLPDB1", "T", "database.out.server.name=out"
        )
        url = build_sqlalchemy_url(connection)

        assert url.drivername == "oracle+oracledb"
        assert url.database is None
        assert url.query["service_name"] == "ORCLPDB1"

    def test_sqlserver_odbc_driver(self):
        connection = resolve("jdbc:sqlserver://sql:1433;databaseName=Sales", "Customers")
        url = build_sqlalchemy_url(connection)

        assert url.drivername == "mssql+pyodbc"
        assert url.database == "Sales"
        assert "driver" in url.query

    @pytest.mark.parametrize("name,dialect,expected", [
        ("com.mysql.jdbc.Driver", Dialect.MYSQL, "pymysql"),
        ("com.mysql.cj.jdbc.Driver", Dialect.MYSQL, "pymysql"),
        ("org.postgresql.Driver", Dialect.POSTGRESQL, "psycopg2"),
        ("psycopg", Dialect.POSTGRESQL, "psycopg"),
        ("", Dialect.ORACLE, "oracledb"),
        (None, Dialect.SQLSERVER, "pyodbc"),
    ])
    def test_resolve_driver_name(self, name, dialect, expected):
        assert resolve_driver_name(name, dialect) == expected

    def test_unknown_jdbc_driver_class(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve_driver_name("com.example.UnknownDriver", Dialect.MYSQL)

        assert exc_info.value.field == "jdbc.driver.name"
