"""
Device data transformer.

Converts raw device payloads into ``VitalData`` records using declarative
field-mapping rules, and validates readings against age-group-aware
physiological ranges.  Every plugin shares this one implementation; plugins
supply their own rules and may tighten (never loosen) the default bounds.

Each range has three bands:

- *measurable*: what a device can physically report.  Outside it the
  reading is a fatal validation error and is not persisted.
- *critical*: clinically dangerous.  Outside it the reading carries a
  warning and stays persistable (alerting picks it up).
- *normal*: outside it the reading carries an informational warning.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from pulsebridge.core.exceptions import TransformationError

from .models import (
    ReadingContext,
    ReadingQuality,
    ReadingType,
    ValidationResult,
    VitalData,
    ensure_aware,
    utcnow,
)


@dataclass(frozen=True)
class MedicalRange:
    min: float
    max: float
    critical_min: float
    critical_max: float
    measurable_min: float
    measurable_max: float
    unit: str
    age_group: str | None = None
    gender: str | None = None


@dataclass
class TransformationRule:
    """Maps ``raw[source_field]`` (dotted paths allowed) onto ``target_field``.

    ``transform`` also receives ``None`` for an absent optional field so it
    can supply a default (e.g. a unit).  ``validate`` rejects a present value,
    which lowers the reading's quality score instead of failing the transform.
    """

    source_field: str
    target_field: str
    required: bool = False
    transform: Callable[[Any], Any] | None = None
    validate: Callable[[Any], bool] | None = None


MEDICAL_RANGES: dict[str, list[MedicalRange]] = {
    "blood_pressure_systolic": [
        MedicalRange(90, 140, 70, 180, 40, 300, "mmHg", "adult"),
        MedicalRange(95, 130, 75, 170, 40, 300, "mmHg", "geriatric"),
        MedicalRange(80, 120, 60, 160, 40, 250, "mmHg", "pediatric"),
    ],
    "blood_pressure_diastolic": [
        MedicalRange(60, 90, 40, 110, 20, 200, "mmHg", "adult"),
        MedicalRange(55, 85, 45, 105, 20, 200, "mmHg", "geriatric"),
        MedicalRange(50, 80, 35, 100, 20, 160, "mmHg", "pediatric"),
    ],
    "heart_rate": [
        MedicalRange(60, 100, 40, 150, 20, 300, "bpm", "adult"),
        MedicalRange(65, 100, 45, 140, 20, 300, "bpm", "geriatric"),
        MedicalRange(70, 120, 50, 180, 20, 300, "bpm", "pediatric"),
    ],
    "oxygen_saturation": [
        MedicalRange(95, 100, 90, 100, 50, 100, "%", "adult"),
        MedicalRange(94, 100, 88, 100, 50, 100, "%", "geriatric"),
        MedicalRange(95, 100, 92, 100, 50, 100, "%", "pediatric"),
    ],
    "body_temperature": [
        MedicalRange(36.1, 37.2, 35.0, 40.0, 25.0, 45.0, "°C", "adult"),
        MedicalRange(36.0, 37.1, 35.0, 39.5, 25.0, 45.0, "°C", "geriatric"),
        MedicalRange(36.5, 37.5, 35.5, 40.5, 25.0, 45.0, "°C", "pediatric"),
    ],
    "blood_glucose": [
        MedicalRange(70, 140, 54, 250, 20, 600, "mg/dL", "adult"),
        MedicalRange(80, 160, 60, 250, 20, 600, "mg/dL", "geriatric"),
        MedicalRange(70, 130, 60, 200, 20, 600, "mg/dL", "pediatric"),
    ],
    "weight": [
        MedicalRange(40, 200, 30, 300, 0.5, 650, "kg", "adult"),
        MedicalRange(2, 100, 1.5, 150, 0.5, 650, "kg", "pediatric"),
    ],
}

DEVICE_TYPE_READINGS: dict[str, str] = {
    "BLOOD_PRESSURE": ReadingType.BLOOD_PRESSURE,
    "GLUCOSE_METER": ReadingType.BLOOD_GLUCOSE,
    "PULSE_OXIMETER": ReadingType.OXYGEN_SATURATION,
    "THERMOMETER": ReadingType.BODY_TEMPERATURE,
    "SCALE": ReadingType.WEIGHT,
    "ECG_MONITOR": ReadingType.HEART_RATE,
    "HEART_RATE_MONITOR": ReadingType.HEART_RATE,
}

DEFAULT_UNITS: dict[str, str] = {
    ReadingType.BLOOD_PRESSURE: "mmHg",
    ReadingType.BLOOD_GLUCOSE: "mg/dL",
    ReadingType.OXYGEN_SATURATION: "%",
    ReadingType.BODY_TEMPERATURE: "°C",
    ReadingType.WEIGHT: "kg",
    ReadingType.HEART_RATE: "bpm",
}

_TIMESTAMP_FIELDS = ("timestamp", "time", "date", "measured_at", "created_at")
_CONTEXT_FIELDS = ("patient_condition", "symptoms", "medication_taken", "location")
_CORE_TARGETS = {"primary_value", "value", "secondary_value", "unit", "timestamp", "reading_type", "context"}

_UNIT_ALIASES = {
    "°c": "c",
    "celsius": "c",
    "°f": "f",
    "fahrenheit": "f",
    "k": "k",
    "kelvin": "k",
    "kg": "kg",
    "lb": "lb",
    "lbs": "lb",
    "mg/dl": "mgdl",
    "mmol/l": "mmol",
}

_CONVERSIONS: dict[tuple[str, str], Callable[[float], float]] = {
    ("c", "f"): lambda c: c * 9 / 5 + 32,
    ("f", "c"): lambda f: (f - 32) * 5 / 9,
    ("k", "c"): lambda k: k - 273.15,
    ("c", "k"): lambda c: c + 273.15,
    ("kg", "lb"): lambda kg: kg * 2.20462,
    ("lb", "kg"): lambda lb: lb / 2.20462,
    ("mgdl", "mmol"): lambda mgdl: mgdl / 18.018,
    ("mmol", "mgdl"): lambda mmol: mmol * 18.018,
}


class DataTransformer:
    """Raw payload -> ``VitalData`` mapping and physiological validation."""

    ranges: dict[str, list[MedicalRange]] = MEDICAL_RANGES

    # ── Transformation ────────────────────────────────────────────

    @classmethod
    def transform_to_vital_data(
        cls,
        raw_data: Mapping[str, Any],
        device_type: str,
        rules: list[TransformationRule],
        device_id: str | None = None,
    ) -> VitalData:
        """Apply *rules* to *raw_data* and build a canonical reading.

        Raises:
            TransformationError: a required field is missing, a transform
                raised, or no primary value could be produced.
        """
        if not isinstance(raw_data, Mapping):
            raise TransformationError(f"Raw payload must be a mapping, got {type(raw_data).__name__}")

        mapped: dict[str, Any] = {}
        issues: list[str] = []

        for rule in rules:
            value = _get_nested(raw_data, rule.source_field)
            if value is None and rule.required:
                raise TransformationError(f"Required field {rule.source_field} is missing", field=rule.source_field)

            if rule.transform is not None:
                try:
                    value = rule.transform(value)
                except Exception as e:
                    raise TransformationError(
                        f"Error transforming {rule.source_field}: {e}", field=rule.source_field
                    ) from e

            if value is not None and rule.validate is not None and not rule.validate(value):
                issues.append(f"Validation failed for {rule.source_field}")
                continue

            if value is not None:
                mapped[rule.target_field] = value

        primary = mapped.get("primary_value", mapped.get("value"))
        if primary is None:
            raise TransformationError("Payload produced no primary value", field="primary_value")
        primary_value = _to_float(primary, "primary_value")

        secondary = mapped.get("secondary_value")
        secondary_value = _to_float(secondary, "secondary_value") if secondary is not None else None

        reading_type = str(mapped.get("reading_type") or cls.infer_reading_type(raw_data, device_type))
        timestamp = _parse_timestamp(mapped.get("timestamp")) or cls.extract_timestamp(raw_data)
        unit = mapped.get("unit") or DEFAULT_UNITS.get(reading_type, "")

        context = _build_context(mapped)
        extra = {k: v for k, v in mapped.items() if k not in _CORE_TARGETS and k not in _CONTEXT_FIELDS}

        return VitalData(
            reading_type=reading_type,
            primary_value=primary_value,
            secondary_value=secondary_value,
            unit=unit,
            timestamp=timestamp,
            device_id=device_id or str(raw_data.get("device_id", "")),
            context=context,
            quality=ReadingQuality(score=cls.quality_score(mapped, context, issues), issues=issues),
            raw_data=dict(raw_data),
            extra=extra,
        )

    @staticmethod
    def extract_timestamp(raw_data: Mapping[str, Any]) -> datetime:
        """First parseable timestamp among the common field names, else now."""
        for name in _TIMESTAMP_FIELDS:
            parsed = _parse_timestamp(_get_nested(raw_data, name))
            if parsed is not None:
                return parsed
        return utcnow()

    @staticmethod
    def infer_reading_type(raw_data: Mapping[str, Any], device_type: str) -> str:
        explicit = raw_data.get("reading_type") or raw_data.get("readingType") or raw_data.get("type")
        if explicit:
            return str(explicit)
        if device_type in DEVICE_TYPE_READINGS:
            return DEVICE_TYPE_READINGS[device_type]

        if "systolic" in raw_data or "diastolic" in raw_data:
            return ReadingType.BLOOD_PRESSURE
        if "glucose" in raw_data or "sugar" in raw_data:
            return ReadingType.BLOOD_GLUCOSE
        if "spo2" in raw_data or "oxygen" in raw_data:
            return ReadingType.OXYGEN_SATURATION
        if "temperature" in raw_data or "temp" in raw_data:
            return ReadingType.BODY_TEMPERATURE
        if "weight" in raw_data or "mass" in raw_data:
            return ReadingType.WEIGHT
        if "heart_rate" in raw_data or "pulse" in raw_data:
            return ReadingType.HEART_RATE
        return ReadingType.UNKNOWN

    @staticmethod
    def quality_score(mapped: dict[str, Any], context: ReadingContext, issues: list[str]) -> float:
        score = 1.0 - 0.1 * len(issues)
        if "unit" not in mapped:
            score -= 0.1
        if "context" not in mapped and context.patient_condition is None:
            score -= 0.05
        if context.patient_condition:
            score += 0.05
        if context.symptoms:
            score += 0.05
        return round(max(0.0, min(1.0, score)), 2)

    # ── Validation ────────────────────────────────────────────────

    @classmethod
    def find_range(cls, key: str, age_group: str = "adult", gender: str | None = None) -> MedicalRange | None:
        candidates = cls.ranges.get(key)
        if not candidates:
            return None
        for r in candidates:
            if (r.age_group is None or r.age_group == age_group) and (r.gender is None or r.gender == gender):
                return r
        return candidates[0]

    @classmethod
    def validate_vital_data(
        cls,
        data: VitalData,
        age_group: str = "adult",
        gender: str | None = None,
    ) -> ValidationResult:
        """Check *data* against the range table and consistency rules.

        Errors block persistence; warnings are informational and feed alerting.
        """
        result = ValidationResult()

        if not isinstance(data.primary_value, int | float) or not math.isfinite(data.primary_value):
            result.add_error(f"Primary value is not a finite number: {data.primary_value!r}")
            return result

        reading_type = str(data.reading_type)
        key = "blood_pressure_systolic" if reading_type == ReadingType.BLOOD_PRESSURE else reading_type
        primary_range = cls.find_range(key, age_group, gender)

        if primary_range is None:
            result.warnings.append(f"No medical ranges defined for {reading_type}")
        else:
            label = "systolic BP" if reading_type == ReadingType.BLOOD_PRESSURE else reading_type
            _check_band(result, label, data.primary_value, primary_range)

        if data.secondary_value is not None and reading_type == ReadingType.BLOOD_PRESSURE:
            diastolic_range = cls.find_range("blood_pressure_diastolic", age_group, gender)
            if diastolic_range is not None:
                _check_band(result, "diastolic BP", data.secondary_value, diastolic_range)

        _check_consistency(data, result)
        result.normalized_data = cls.normalize_data(data)
        return result

    @staticmethod
    def normalize_data(data: VitalData) -> VitalData:
        """Rounded, cleaned copy of *data*."""
        return replace(
            data,
            primary_value=round(data.primary_value, 2),
            secondary_value=round(data.secondary_value, 2) if data.secondary_value is not None else None,
            timestamp=ensure_aware(data.timestamp) if isinstance(data.timestamp, datetime) else utcnow(),
            context=replace(
                data.context,
                symptoms=[s for s in data.context.symptoms if isinstance(s, str) and s],
            ),
        )

    @staticmethod
    def convert_units(value: float, from_unit: str, to_unit: str) -> float:
        src = _UNIT_ALIASES.get(from_unit.strip().lower(), from_unit.strip().lower())
        dst = _UNIT_ALIASES.get(to_unit.strip().lower(), to_unit.strip().lower())
        if src == dst:
            return value
        convert = _CONVERSIONS.get((src, dst))
        if convert is None:
            raise TransformationError(f"No conversion available from {from_unit} to {to_unit}")
        return convert(value)


# ── Helpers ───────────────────────────────────────────────────────────


def _get_nested(obj: Any, path: str) -> Any:
    current = obj
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _to_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise TransformationError(f"{name} must be numeric, got bool", field=name)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise TransformationError(f"{name} must be numeric, got {value!r}", field=name) from e


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, int | float):
        seconds = value / 1000 if value > 1e12 else value  # epoch millis
        try:
            return datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return ensure_aware(datetime.fromisoformat(value))
        except ValueError:
            logger.debug(f"Unparseable timestamp {value!r}")
            return None
    return None


def _build_context(mapped: dict[str, Any]) -> ReadingContext:
    source: dict[str, Any] = {}
    raw_context = mapped.get("context")
    if isinstance(raw_context, Mapping):
        source.update(raw_context)
    for name in _CONTEXT_FIELDS:
        if name in mapped:
            source[name] = mapped[name]

    symptoms = source.get("symptoms") or []
    return ReadingContext(
        patient_condition=source.get("patient_condition"),
        symptoms=[s for s in symptoms if isinstance(s, str) and s],
        medication_taken=source.get("medication_taken"),
        location=source.get("location"),
    )


def _check_band(result: ValidationResult, label: str, value: float, r: MedicalRange) -> None:
    if value < r.measurable_min or value > r.measurable_max:
        result.add_error(
            f"{label} {value} outside measurable range ({r.measurable_min}-{r.measurable_max} {r.unit})"
        )
    elif value < r.critical_min:
        result.warnings.append(f"Critical low {label}: {value} < {r.critical_min} {r.unit}")
    elif value > r.critical_max:
        result.warnings.append(f"Critical high {label}: {value} > {r.critical_max} {r.unit}")
    elif value < r.min:
        result.warnings.append(f"Low {label}: {value} < {r.min} {r.unit}")
    elif value > r.max:
        result.warnings.append(f"High {label}: {value} > {r.max} {r.unit}")


def _check_consistency(data: VitalData, result: ValidationResult) -> None:
    reading_type = str(data.reading_type)

    if reading_type == ReadingType.BLOOD_PRESSURE and data.secondary_value is not None:
        if data.primary_value <= data.secondary_value:
            result.add_error("Systolic pressure must be higher than diastolic pressure")
        else:
            pulse_pressure = data.primary_value - data.secondary_value
            if pulse_pressure < 20:
                result.warnings.append("Low pulse pressure detected")
            elif pulse_pressure > 80:
                result.warnings.append("High pulse pressure detected")

    if reading_type == ReadingType.BODY_TEMPERATURE and data.unit == "°C":
        if data.primary_value > 50:
            result.warnings.append("Temperature seems too high for Celsius, check unit")
        elif data.primary_value < 30:
            result.warnings.append("Temperature seems too low for Celsius, check unit")

    if isinstance(data.timestamp, datetime):
        ts = ensure_aware(data.timestamp)
        now = utcnow()
        if ts > now + timedelta(minutes=5):
            result.warnings.append("Reading timestamp is in the future")
        elif ts < now - timedelta(days=365):
            result.warnings.append("Reading timestamp is more than one year old")


# Module-level shortcuts
transform_to_vital_data = DataTransformer.transform_to_vital_data
validate_vital_data = DataTransformer.validate_vital_data
normalize_data = DataTransformer.normalize_data
convert_units = DataTransformer.convert_units
