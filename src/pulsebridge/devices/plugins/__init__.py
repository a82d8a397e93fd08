"""Bundled device plugins (simulators for development and testing)."""

from .mock_blood_pressure import MockBloodPressurePlugin
from .mock_glucose import MockGlucoseMeterPlugin

__all__ = ["MockBloodPressurePlugin", "MockGlucoseMeterPlugin"]
