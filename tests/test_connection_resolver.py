"""Unit tests for connection string resolution."""

import pytest

from cdc_capture.connection_resolver import (
    ConnectionConfigResolver,
    MySQLUrlParser,
    OracleUrlParser,
    SQLServerUrlParser,
    parse_connector_properties,
    resolve,
)
from cdc_capture.exceptions import InvalidConfigurationError
from cdc_capture.models import Dialect


class TestDialectResolution:

    def test_mysql(self):
        config = resolve("jdbc:mysql://localhost:3306/SimpleDB", "students", username="cdc", password="pw")

        assert config.dialect == Dialect.MYSQL
        assert config.host == "localhost"
        assert config.port == 3306
        assert config.database == "SimpleDB"
        assert config.table_identifier == "SimpleDB.students"
        assert config.username == "cdc"
        assert config.password == "pw"

    def test_mysql_with_ip_and_query_string(self):
        config = resolve("jdbc:mysql://10.0.0.12:3307/shop?useSSL=false", "orders")

        assert config.host == "10.0.0.12"
        assert config.port == 3307
        assert config.table_identifier == "shop.orders"

    def test_postgresql_uses_bare_table(self):
        config = resolve("jdbc:postgresql://db.example.com:5432/inventory", "items")

        assert config.dialect == Dialect.POSTGRESQL
        assert config.host == "db.example.com"
        assert config.port == 5432
        assert config.database == "inventory"
        assert config.table_identifier == "items"

    def test_sqlserver_database_name_parameter(self):
        config = resolve("jdbc:sqlserver://sql-01:1433;databaseName=Sales", "dbo.Customers")

        assert config.dialect == Dialect.SQLSERVER
        assert config.host == "sql-01"
        assert config.port == 1433
        assert config.database == "Sales"
        assert config.table_identifier == "dbo.Customers"

    def test_sqlserver_extra_parameters(self):
        config = resolve(
            "jdbc:sqlserver://sql-01:1433;encrypt=true;DatabaseName=Sales;trustServerCertificate=true",
            "Customers",
        )

        assert config.database == "Sales"

    def test_oracle_with_sid(self):
        config = resolve(
            "jdbc:oracle:thin://ora.local:1521/ORCLCDB",
            "CUSTOMERS",
            "database.out.server.name=dbzxout",
        )

        assert config.dialect == Dialect.ORACLE
        assert config.oracle_driver == "thin"
        assert config.host == "ora.local"
        assert config.port == 1521
        assert config.database == "ORCLCDB"
        assert config.table_identifier == "ORCLCDB.CUSTOMERS"

    def test_oracle_pdb_name_qualifies_table(self):
        config = resolve(
            "jdbc:oracle:thin://ora.local:1521/ORCLCDB",
            "CUSTOMERS",
            "database.out.server.name=dbzxout,database.pdb.name=ORCLPDB1",
        )

        assert config.pdb_name == "ORCLPDB1"
        assert config.table_identifier == "ORCLPDB1.CUSTOMERS"

    def test_oracle_without_service_uses_pdb(self):
        config = resolve(
            "jdbc:oracle:thin://ora.local:1521",
            "CUSTOMERS",
            "database.out.server.name=dbzxout,database.pdb.name=ORCLPDB1",
        )

        assert config.database == ""
        assert config.table_identifier == "ORCLPDB1.CUSTOMERS"

    def test_scheme_is_case_insensitive(self):
        config = resolve("JDBC:MySQL://localhost:3306/SimpleDB", "students")

        assert config.dialect == Dialect.MYSQL
        assert config.table_identifier == "SimpleDB.students"


class TestResolutionFailures:

    @pytest.mark.parametrize("url,parser", [
        ("jdbc:mysql://localhost/SimpleDB", MySQLUrlParser),
        ("jdbc:mysql://localhost:3306", MySQLUrlParser),
        ("jdbc:mysql://localhost:port/SimpleDB", MySQLUrlParser),
        ("jdbc:sqlserver://sql-01:1433/Sales", SQLServerUrlParser),
        ("jdbc:sqlserver://sql-01:1433;encrypt=true", SQLServerUrlParser),
        ("jdbc:oracle://ora.local:1521/ORCLCDB", OracleUrlParser),
    ])
    def test_malformed_url_names_expected_format(self, url, parser):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve(url, "t", "database.out.server.name=out")

        assert exc_info.value.field == "url"
        assert parser.expected_format in str(exc_info.value)

    def test_port_out_of_range(self):
        with pytest.raises(InvalidConfigurationError):
            resolve("jdbc:postgresql://localhost:70000/db", "t")

    def test_unsupported_scheme_is_named(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve("jdbc:sqlite://tmp/test.db", "t")

        assert "sqlite" in str(exc_info.value)

    def test_non_jdbc_url(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve("mysql://localhost:3306/db", "t")

        assert "Invalid JDBC url" in str(exc_info.value)

    def test_missing_table_name(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve("jdbc:mysql://localhost:3306/db", "")

        assert exc_info.value.field == "table.name"

    def test_oracle_requires_out_server_property(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolve("jdbc:oracle:thin://ora.local:1521/ORCLCDB", "CUSTOMERS", "database.pdb.name=PDB1")

        assert "database.out.server.name" in str(exc_info.value)

    def test_oracle_without_service_or_pdb(self):
        with pytest.raises(InvalidConfigurationError):
            resolve("jdbc:oracle:thin://ora.local:1521", "CUSTOMERS", "database.out.server.name=out")

    def test_custom_parser_set_limits_dialects(self):
        resolver = ConnectionConfigResolver(parsers={"mysql": MySQLUrlParser()})

        with pytest.raises(InvalidConfigurationError) as exc_info:
            resolver.resolve("jdbc:postgresql://localhost:5432/db", "t")

        assert "postgresql" in str(exc_info.value)


class TestConnectorProperties:

    def test_pairs_parse_in_order(self):
        assert parse_connector_properties("a=1,b=2") == [("a", "1"), ("b", "2")]
        assert dict(parse_connector_properties("a=1,b=2")) == {"a": "1", "b": "2"}

    def test_empty_text(self):
        assert parse_connector_properties("") == []
        assert parse_connector_properties(None) == []

    def test_whitespace_is_stripped(self):
        assert parse_connector_properties(" snapshot.mode = never , a=1") == [
            ("snapshot.mode", "never"),
            ("a", "1"),
        ]

    @pytest.mark.parametrize("text", ["a=1=2", "a", "a=1,b", "=1"])
    def test_invalid_pairs(self, text):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            parse_connector_properties(text)

        assert exc_info.value.field == "connector.properties"

    def test_properties_are_carried_on_config(self):
        config = resolve("jdbc:mysql://localhost:3306/db", "t", "snapshot.mode=never,a=1")

        assert config.extra_properties_dict() == {"snapshot.mode": "never", "a": "1"}

    def test_invalid_properties_never_return_config(self):
        with pytest.raises(InvalidConfigurationError):
            resolve("jdbc:mysql://localhost:3306/db", "t", "a=1=2")
