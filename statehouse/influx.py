"""Writes selected measurements and lifecycle summaries as time-series points."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol

from statehouse.model import CanonicalEvent, DerivedEvent, DerivedEventType, Device


@dataclass
class Point:
    """One time-series point: measurement name, tags, fields and time."""

    name: str
    tags: dict[str, str] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)
    time: datetime | None = None


class PointWriter(Protocol):
    """The minimal write interface the writer depends on."""

    def write_point(self, point: Point) -> None: ...

    def flush(self) -> None: ...


class FakeWriteAPI:
    """In-memory point writer that records every point; thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.points: list[Point] = []
        self.flushed = 0

    def write_point(self, point: Point) -> None:
        """Record the point."""
        with self._lock:
            self.points.append(point)

    def flush(self) -> None:
        """Count a flush call."""
        with self._lock:
            self.flushed += 1

    def points_for_measurement(self, name: str) -> list[Point]:
        """Return the recorded points with the given measurement name."""
        with self._lock:
            return [p for p in self.points if p.name == name]

    def reset(self) -> None:
        """Clear recorded points and the flush count."""
        with self._lock:
            self.points = []
            self.flushed = 0


_FLOAT, _BOOL, _INT = "float", "bool", "int"

# attribute -> (measurement, value kind)
_CANONICAL_ROUTES: dict[str, tuple[str, str]] = {
    "power_w": ("device_power", _FLOAT),
    "voltage_v": ("device_power", _FLOAT),
    "energy_kwh": ("device_power", _FLOAT),
    "temperature_c": ("device_environment", _FLOAT),
    "humidity_pct": ("device_environment", _FLOAT),
    "battery_pct": ("device_battery", _FLOAT),
    "pressure_hpa": ("device_environment", _FLOAT),
    "wind_speed_ms": ("device_environment", _FLOAT),
    "wind_dir_deg": ("device_environment", _FLOAT),
    "rainfall_mm": ("device_environment", _FLOAT),
    "illuminance_lux": ("device_environment", _FLOAT),
    "uv_index": ("device_environment", _FLOAT),
    "battery_runtime_mins": ("device_ups", _FLOAT),
    "on_battery": ("device_ups", _BOOL),
    "low_battery": ("device_ups", _BOOL),
    "rssi_dbm": ("device_radio", _INT),
}

_CYCLE_FINISHED = {
    DerivedEventType.CYCLE_FINISHED,
    DerivedEventType.CONTINUOUS_CYCLE_FINISHED,
}


def _coerce(value: Any, kind: str) -> Any:
    """Return the value in the wanted kind, or None when it has another type."""
    if kind == _BOOL:
        return value if isinstance(value, bool) else None
    if isinstance(value, bool):
        return None
    if kind == _INT:
        return value if isinstance(value, int) else None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def evidence_as_fields(evidence: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Keep the evidence entries whose values can be stored as point fields.

    Returns None for empty or missing evidence.
    """
    if not evidence:
        return None
    return {
        key: value
        for key, value in evidence.items()
        if isinstance(value, (bool, int, float, str))
    }


class Writer:
    """Turns canonical and derived events into points.

    Write failures never stop the engine: they are logged and counted.
    ``devices`` is any mapping from device id to Device, used for class and
    location tags. A writer without an ``api`` is a silent no-op.
    """

    def __init__(
        self,
        api: PointWriter | None = None,
        devices: Mapping[str, Device] | None = None,
        logger: logging.Logger | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self.api = api
        self.devices: Mapping[str, Device] = devices if devices is not None else {}
        self.logger = logger
        self.enabled = enabled and api is not None
        self._lock = threading.Lock()
        self._queued = 0
        self._failures = 0

    def _write(self, point: Point) -> None:
        assert self.api is not None
        self.api.write_point(point)
        with self._lock:
            self._queued += 1

    def on_canonical_event(self, event: CanonicalEvent) -> None:
        """Write the sample as a point when its attribute is one we store."""
        if not self.enabled:
            return
        device = self.devices.get(event.device_id)
        if device is None:
            return
        route = _CANONICAL_ROUTES.get(event.attribute)
        if route is None:
            return
        measurement, kind = route
        value = _coerce(event.value, kind)
        if value is None:
            return
        tags = {"device_id": event.device_id, "class": device.device_class}
        if device.location:
            tags["location"] = device.location
        self._write(Point(measurement, tags, {event.attribute: value}, event.timestamp))

    def on_derived_event(self, event: DerivedEvent) -> None:
        """Record cycle completions, activity changes and house state changes."""
        if not self.enabled:
            return
        evidence = event.evidence or {}
        if event.type in _CYCLE_FINISHED:
            fields = evidence_as_fields(evidence)
            if not fields:
                return
            tags = {"device_id": event.device_id, "class": event.device_class}
            device = self.devices.get(event.device_id)
            if device is not None and device.location:
                tags["location"] = device.location
            self._write(Point("appliance_cycle", tags, fields, event.timestamp))
        elif event.type == DerivedEventType.DEVICE_ACTIVITY_CHANGED:
            tags = {"device_id": event.device_id, "class": event.device_class}
            fields = {
                "from": _str_or_empty(evidence.get("from")),
                "to": _str_or_empty(evidence.get("to")),
            }
            self._write(Point("device_activity", tags, fields, event.timestamp))
        elif event.type == DerivedEventType.HOUSE_STATE_CHANGED:
            tags = {
                "occupancy": _str_or_empty(evidence.get("occupancy")),
                "activity": _str_or_empty(evidence.get("activity")),
                "mode": _str_or_empty(evidence.get("mode")),
            }
            fields = {
                name: _float_or_zero(evidence.get(name))
                for name in (
                    "occupancy_confidence",
                    "activity_confidence",
                    "mode_confidence",
                )
            }
            self._write(Point("house_state", tags, fields, event.timestamp))

    def record_failure(self, error: BaseException | str) -> None:
        """Count and log an asynchronous write failure."""
        with self._lock:
            self._failures += 1
        if self.logger is not None:
            self.logger.warning("influx async write error: %s", error)

    def stats(self) -> tuple[int, int]:
        """Return (points queued, failures); queued is not confirmed delivery."""
        with self._lock:
            return self._queued, self._failures

    def close(self) -> None:
        """Flush pending writes."""
        if not self.enabled or self.api is None:
            return
        self.api.flush()


def _str_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _float_or_zero(value: Any) -> float:
    return value if isinstance(value, float) else 0.0