"""Change data capture package."""

from cdc_capture.connection_resolver import ConnectionConfigResolver, parse_connector_properties
from cdc_capture.connector_config import ListeningConfigGenerator
from cdc_capture.datasources import register_datasource, unregister_datasource
from cdc_capture.engines import ListeningEngineAdapter, PollingEngine
from cdc_capture.exceptions import (
    CDCException,
    CaptureStateError,
    ConnectionLost,
    FatalCaptureError,
    InvalidConfigurationError,
)
from cdc_capture.models import (
    CaptureMode,
    ChangeEvent,
    ConnectionConfig,
    Dialect,
    EngineState,
    LifecycleState,
    Operation,
    Watermark,
)
from cdc_capture.options import CaptureOptions
from cdc_capture.orchestrator import CaptureOrchestrator
from cdc_capture.registry import EngineRegistry

__all__ = [
    "ConnectionConfigResolver",
    "parse_connector_properties",
    "ListeningConfigGenerator",
    "register_datasource",
    "unregister_datasource",
    "ListeningEngineAdapter",
    "PollingEngine",
    "CDCException",
    "CaptureStateError",
    "ConnectionLost",
    "FatalCaptureError",
    "InvalidConfigurationError",
    "CaptureMode",
    "ChangeEvent",
    "ConnectionConfig",
    "Dialect",
    "EngineState",
    "LifecycleState",
    "Operation",
    "Watermark",
    "CaptureOptions",
    "CaptureOrchestrator",
    "EngineRegistry",
]
