"""CLI tool for running change data capture."""

from __future__ import annotations

import json
import logging
import sys
import threading
from typing import Any, Dict, Optional

import click

from cdc_capture import settings
from cdc_capture.connection_resolver import resolve as resolve_connection
from cdc_capture.connector_config import ListeningConfigGenerator, DATABASE_PASSWORD, history_directory
from cdc_capture.exceptions import CaptureStateError, ConnectionLost, FatalCaptureError, InvalidConfigurationError
from cdc_capture.models import ChangeEvent, LifecycleState
from cdc_capture.orchestrator import CaptureOrchestrator
from cdc_capture.retry import retry_on_connection_lost

logger = logging.getLogger(__name__)


def _print_event(event: ChangeEvent) -> None:
    click.echo(json.dumps(event.to_map(), default=str))


@click.group()
@click.option('--log-level', default=settings.CDC_LOG_LEVEL, show_default=True, help='Logging level')
def cdc(log_level):
    """Change data capture CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@cdc.command()
@click.option('--url', help='JDBC url, e.g. jdbc:mysql://localhost:3306/shop')
@click.option('--mode', type=click.Choice(['listening', 'polling']), default='listening', show_default=True)
@click.option('--username', help='Database username')
@click.option('--password', help='Database password')
@click.option('--table', 'table_name', required=True, help='Table to capture')
@click.option('--operation', help='insert, update or delete (listening mode)')
@click.option('--polling-column', help='Watermark column (polling mode)')
@click.option('--polling-interval', type=int, help='Seconds between scans (polling mode)')
@click.option('--polling-operation', help='insert, update or auto (polling mode)')
@click.option('--jdbc-driver', 'jdbc_driver_name', help='JDBC driver class or DBAPI driver (polling mode)')
@click.option('--pool-properties', help='Comma-separated pool settings (polling mode)')
@click.option('--connector-properties', help='Comma-separated connector overrides (listening mode)')
@click.option('--server-id', type=int, help='Replication client id (listening mode)')
@click.option('--server-name', help='Logical server name (listening mode)')
@click.option('--app-name', default='cdc', show_default=True, help='Application name')
@click.option('--stream-name', default='stream', show_default=True, help='Stream name')
@click.option('--working-dir', help='Root directory of persisted capture state')
@click.option('--max-reconnects', default=5, show_default=True, help='Consecutive reconnect attempts after connection loss')
@click.option('--reconnect-delay', default=1.0, show_default=True, help='Initial seconds between reconnect attempts')
def run(url, mode, username, password, table_name, operation, polling_column, polling_interval,
        polling_operation, jdbc_driver_name, pool_properties, connector_properties, server_id,
        server_name, app_name, stream_name, working_dir, max_reconnects, reconnect_delay):
    """Capture changes of a table and print them as JSON lines."""
    options: Dict[str, Any] = {
        "url": url,
        "mode": mode,
        "username": username,
        "password": password,
        "table.name": table_name,
        "operation": operation,
        "polling.column": polling_column,
        "polling.interval": polling_interval,
        "polling.operation": polling_operation,
        "jdbc.driver.name": jdbc_driver_name,
        "pool.properties": pool_properties,
        "connector.properties": connector_properties,
        "database.server.id": server_id,
        "database.server.name": server_name,
    }
    options = {key: value for key, value in options.items() if value is not None}

    finished = threading.Event()
    failure: Dict[str, Optional[BaseException]] = {"error": None}
    # connection losses since the last delivered event
    losses = {"count": 0}

    def on_event(event: ChangeEvent) -> None:
        losses["count"] = 0
        _print_event(event)

    try:
        orchestrator = CaptureOrchestrator(
            options,
            on_event,
            app_name=app_name,
            stream_name=stream_name,
            working_directory=working_dir,
        )
    except InvalidConfigurationError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        sys.exit(1)

    def on_fatal(error: FatalCaptureError) -> None:
        failure["error"] = error
        click.echo(f"✗ Capture failed: {error} ({error.cause!r})", err=True)
        finished.set()

    def give_up(error: ConnectionLost) -> None:
        failure["error"] = error
        click.echo(f"✗ Could not reconnect: {error}", err=True)
        orchestrator.destroy()
        finished.set()

    @retry_on_connection_lost(max_attempts=max(max_reconnects, 1), delay=reconnect_delay)
    def reconnect() -> None:
        orchestrator.disconnect()
        orchestrator.test_connection()
        orchestrator.connect(on_connection_lost, on_fatal)

    def on_connection_lost(error: ConnectionLost) -> None:
        losses["count"] += 1
        if losses["count"] > max_reconnects:
            give_up(error)
            return

        backoff = reconnect_delay * (2 ** (losses["count"] - 1))
        click.echo(
            f"Connection lost: {error}. Reconnecting in {backoff:.1f}s "
            f"(attempt {losses['count']}/{max_reconnects})...",
            err=True
        )
        if finished.wait(backoff):
            return
        try:
            reconnect()
        except ConnectionLost as e:
            give_up(e)
        except CaptureStateError:
            logger.debug("Capture was destroyed while reconnecting")

    orchestrator.connect(on_connection_lost, on_fatal)
    try:
        while not finished.wait(0.5):
            if orchestrator.state == LifecycleState.DESTROYED:
                break
    except KeyboardInterrupt:
        click.echo("Stopping capture...", err=True)
    finally:
        finished.set()
        orchestrator.destroy()

    if failure["error"] is not None:
        sys.exit(2)


@cdc.command()
@click.option('--url', required=True, help='JDBC url')
@click.option('--table', 'table_name', required=True, help='Table name')
@click.option('--connector-properties', default='', help='Comma-separated connector overrides')
@click.option('--username', help='Database username')
@click.option('--password', help='Database password')
@click.option('--connector-map/--no-connector-map', default=False, help='Also print the listening connector map')
@click.option('--app-name', default='cdc', show_default=True)
@click.option('--stream-name', default='stream', show_default=True)
@click.option('--working-dir', help='Root directory of persisted capture state')
def resolve(url, table_name, connector_properties, username, password, connector_map,
            app_name, stream_name, working_dir):
    """Print the configuration resolved from a connection string."""
    try:
        connection = resolve_connection(
            url, table_name, connector_properties, username=username, password=password
        )
        result: Dict[str, Any] = {"connection": connection.to_dict()}
        if connector_map:
            config = ListeningConfigGenerator.generate(
                connection,
                history_directory(settings.get_working_directory(working_dir), app_name),
                app_name,
                stream_name,
                connector_properties=connector_properties,
            )
            if config.get(DATABASE_PASSWORD):
                config[DATABASE_PASSWORD] = "***"
            result["connector"] = config
    except InvalidConfigurationError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result, indent=2, default=str))


if __name__ == '__main__':
    cdc()
