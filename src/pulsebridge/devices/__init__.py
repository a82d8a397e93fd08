"""
Device plugin layer.

Device adapters (``DevicePlugin``) produce raw payloads, the shared
``DataTransformer`` normalizes and validates them, the ``PluginRegistry``
loads plugins, and the ``DeviceManagementService`` runs registration,
connection, sync and alerting on top.
"""

from .models import (
    ApiRoute,
    BulkSyncResult,
    ConfigValidationResult,
    ConnectionStatus,
    DeviceConnection,
    DeviceConnectionConfig,
    DeviceRegistration,
    DeviceState,
    HistoricalDataOptions,
    PluginCapability,
    PluginMetadata,
    ReadDataOptions,
    ReadingContext,
    ReadingQuality,
    ReadingType,
    Severity,
    SyncError,
    SyncReport,
    SyncResult,
    ValidationResult,
    VitalData,
)
from .plugin import BaseDevicePlugin, DevicePlugin
from .registry import PluginHealth, PluginRegistry, PluginStatus, get_plugin_registry, initialize_plugin_registry
from .service import AlertThresholds, DeviceManagementService, DeviceStatus, SyncOptions
from .stores import DeviceFilter, DeviceStore, InMemoryDeviceStore, InMemoryReadingStore, ReadingStore
from .transformer import DataTransformer, MedicalRange, TransformationRule

__all__ = [
    "AlertThresholds",
    "ApiRoute",
    "BaseDevicePlugin",
    "BulkSyncResult",
    "ConfigValidationResult",
    "ConnectionStatus",
    "DataTransformer",
    "DeviceConnection",
    "DeviceConnectionConfig",
    "DeviceFilter",
    "DeviceManagementService",
    "DevicePlugin",
    "DeviceRegistration",
    "DeviceState",
    "DeviceStatus",
    "DeviceStore",
    "HistoricalDataOptions",
    "InMemoryDeviceStore",
    "InMemoryReadingStore",
    "MedicalRange",
    "PluginCapability",
    "PluginHealth",
    "PluginMetadata",
    "PluginRegistry",
    "PluginStatus",
    "ReadDataOptions",
    "ReadingContext",
    "ReadingQuality",
    "ReadingStore",
    "ReadingType",
    "Severity",
    "SyncError",
    "SyncOptions",
    "SyncReport",
    "SyncResult",
    "TransformationRule",
    "ValidationResult",
    "VitalData",
    "get_plugin_registry",
    "initialize_plugin_registry",
]
