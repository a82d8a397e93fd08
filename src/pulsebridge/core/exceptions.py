"""
pulsebridge exception hierarchy.

All pulsebridge exceptions inherit from PulseBridgeError, making it easy for
consumers to catch library-level errors while still distinguishing specific
failure modes.  Device-plugin failures carry a stable ``error_code`` so
callers can branch on them (e.g. "replace consumable" vs "check connection").
"""

from __future__ import annotations

from typing import Any


class PulseBridgeError(Exception):
    """Base exception class for all pulsebridge errors."""


class ConfigurationError(PulseBridgeError):
    """Raised for configuration errors (missing keys, invalid values)."""


class DataProcessingError(PulseBridgeError):
    """Raised for data processing errors."""


class TransformationError(DataProcessingError):
    """Raised when a raw device payload cannot be mapped to a VitalData record."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class RegistrationError(PulseBridgeError):
    """Raised when a device cannot be registered (unknown plugin, unsupported type)."""


class DeviceNotFoundError(PulseBridgeError):
    """Raised when a device id is unknown to the store or to a plugin."""

    error_code = "DEVICE_NOT_FOUND"

    def __init__(self, message: str, device_id: str | None = None):
        super().__init__(message)
        self.device_id = device_id


class PluginError(PulseBridgeError):
    """Raised by device plugins.

    Subclasses pin ``error_code``, ``severity`` and ``retryable`` defaults;
    any of them can be overridden per instance.
    """

    error_code: str = "PLUGIN_ERROR"
    severity: str = "medium"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        plugin_id: str = "",
        device_id: str | None = None,
        error_code: str | None = None,
        severity: str | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.plugin_id = plugin_id
        self.device_id = device_id
        if error_code is not None:
            self.error_code = error_code
        if severity is not None:
            self.severity = severity
        if retryable is not None:
            self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "plugin_id": self.plugin_id,
            "device_id": self.device_id,
            "error_code": self.error_code,
            "severity": self.severity,
            "retryable": self.retryable,
            "context": self.context,
        }


class PluginNotInitializedError(PluginError):
    """Raised when a plugin is used before ``initialize()`` completed."""

    error_code = "PLUGIN_NOT_INITIALIZED"
    severity = "high"


class ConnectionFailedError(PluginError):
    """Raised when a device is unreachable or the handshake fails."""

    error_code = "CONNECTION_FAILED"
    severity = "high"
    retryable = True


class DeviceNotConnectedError(PluginError):
    """Raised when an operation needs a live session the device does not have."""

    error_code = "DEVICE_NOT_CONNECTED"
    retryable = True


class ResourceExhaustedError(PluginError):
    """Raised when a required consumable (e.g. test strips) has run out."""

    error_code = "RESOURCE_EXHAUSTED"
    severity = "low"


class UnsupportedOperationError(PluginError):
    """Raised when a plugin does not support the requested operation."""

    error_code = "UNSUPPORTED_OPERATION"
