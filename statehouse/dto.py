"""Response shapes served by the state API and the builders that fill them."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from statehouse.model import (
    Activity,
    ActivityRecord,
    ActivitySignal,
    Availability,
    Cycle,
    Device,
    DeviceActivityState,
    House,
    Latest,
    Snapshot,
)

SCHEMA_VERSION = "net.swee.statehouse.snapshot.v1"

CLASS_SHORT_BURST = "short_burst_power_device"
CLASS_CYCLE_POWER = "cycle_power_device"
CLASS_CONTINUOUS = "continuous_power_device"
CLASS_MEDIA = "media_power_device"
CLASS_BINARY_STATE = "binary_state_device"

# Activity states that count towards the summary's active_count.
ACTIVE_ACTIVITY_STATES = frozenset(
    {
        DeviceActivityState.ACTIVE,
        DeviceActivityState.STARTING,
        DeviceActivityState.RUNNING,
        DeviceActivityState.FINISHING,
        DeviceActivityState.FINISHED_RECENTLY,
        DeviceActivityState.ACTIVE_CYCLE,
    }
)

_OMIT_NONE = "none"
_OMIT_EMPTY = "empty"


def _f(key: str | None = None, *, omit: str | None = None, **kwargs: Any) -> Any:
    """Declare a response field with its JSON key and omission rule."""
    return field(metadata={"json": key, "omit": omit}, **kwargs)


@dataclass
class SummaryResponse:
    """Aggregate counts across all devices."""

    device_count: int = 0
    online_count: int = 0
    active_count: int = 0
    warning_count: int = 0


@dataclass
class HouseDimensionResponse:
    """One dimension of the house state: occupancy, activity or mode."""

    state: Any = "unknown"
    confidence: float = 0.0
    last_changed: datetime | None = None
    last_changed_ago: int | None = _f(omit=_OMIT_NONE, default=None)


@dataclass
class HouseResponse:
    """The whole-house state."""

    occupancy: HouseDimensionResponse = field(default_factory=HouseDimensionResponse)
    activity: HouseDimensionResponse = field(default_factory=HouseDimensionResponse)
    mode: HouseDimensionResponse = field(default_factory=HouseDimensionResponse)
    active_devices: list[str] = field(default_factory=list)


@dataclass
class IdentityResponse:
    """Protocol-agnostic identity of a device."""

    scheme: str = ""
    primary: str = _f(omit=_OMIT_EMPTY, default="")
    display: str = _f(omit=_OMIT_EMPTY, default="")


@dataclass
class ActivityResponse:
    """A device's activity sub-state."""

    state: DeviceActivityState = DeviceActivityState.UNKNOWN
    last_changed: datetime | None = None
    last_changed_ago: int | None = None
    confidence: float = 0.0


@dataclass
class LatestResponse:
    """The latest observed values of a device, with age and staleness."""

    power_w: float | None = _f(omit=_OMIT_NONE, default=None)
    voltage_v: float | None = _f(omit=_OMIT_NONE, default=None)
    energy_kwh: float | None = _f(omit=_OMIT_NONE, default=None)

    temperature_c: float | None = _f(omit=_OMIT_NONE, default=None)
    humidity_pct: float | None = _f(omit=_OMIT_NONE, default=None)
    pressure_hpa: float | None = _f(omit=_OMIT_NONE, default=None)
    wind_speed_ms: float | None = _f(omit=_OMIT_NONE, default=None)
    wind_dir_deg: float | None = _f(omit=_OMIT_NONE, default=None)
    rainfall_mm: float | None = _f(omit=_OMIT_NONE, default=None)
    illuminance_lux: float | None = _f(omit=_OMIT_NONE, default=None)
    uv_index: float | None = _f(omit=_OMIT_NONE, default=None)

    battery_runtime_mins: float | None = _f(omit=_OMIT_NONE, default=None)
    on_battery: bool | None = _f(omit=_OMIT_NONE, default=None)
    low_battery: bool | None = _f(omit=_OMIT_NONE, default=None)

    battery_pct: float | None = _f(omit=_OMIT_NONE, default=None)
    link_quality: int | None = _f("linkquality", omit=_OMIT_NONE, default=None)
    rssi: int | None = _f("rssi_dbm", omit=_OMIT_NONE, default=None)

    last_seen: datetime | None = None
    last_seen_ago: int | None = None
    stale: bool = False


@dataclass
class DivergenceResponse:
    """Energy divergence status of a cycle."""

    status: str = ""
    reason: str = _f(omit=_OMIT_EMPTY, default="")
    pct: float | None = _f(omit=_OMIT_NONE, default=None)
    warning: bool | None = _f(omit=_OMIT_NONE, default=None)


@dataclass
class CycleEnergyResponse:
    """Energy accounting of a cycle."""

    primary_source: str = ""
    reported_kwh_delta: float = 0.0
    integrated_kwh: float = 0.0
    selected_kwh: float = 0.0
    stale_counter: bool = _f(omit=_OMIT_EMPTY, default=False)
    divergence: DivergenceResponse = field(default_factory=DivergenceResponse)


@dataclass
class CycleResponse:
    """An in-flight or recently-finished cycle."""

    type: str = "unknown"
    active: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = _f(omit=_OMIT_NONE, default=None)
    duration_seconds: int = 0
    energy: CycleEnergyResponse = field(default_factory=CycleEnergyResponse)


@dataclass
class DeviceResponse:
    """A single device."""

    id: str = ""
    display_name: str = _f(omit=_OMIT_EMPTY, default="")
    device_class: str = _f("class", default="")
    location: str = _f(omit=_OMIT_EMPTY, default="")
    identity: IdentityResponse | None = _f(omit=_OMIT_NONE, default=None)
    availability: Availability = Availability.UNKNOWN
    activity: ActivityResponse = field(default_factory=ActivityResponse)
    latest: LatestResponse = field(default_factory=LatestResponse)
    cycle: CycleResponse | None = _f(omit=_OMIT_NONE, default=None)
    unclassified: bool = _f(omit=_OMIT_EMPTY, default=False)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SignalResponse:
    """One active activity signal."""

    id: str = ""
    source: str = ""
    location: str = _f(omit=_OMIT_EMPTY, default="")
    type: str = ""
    confidence: float = 0.0
    since: datetime | None = None
    expires_at: datetime | None = _f(omit=_OMIT_NONE, default=None)
    meta: dict[str, Any] = _f(omit=_OMIT_EMPTY, default_factory=dict)


@dataclass
class ActivityRecordResponse:
    """One entry of the recent-activity log."""

    id: str = ""
    source: str = ""
    location: str = _f(omit=_OMIT_EMPTY, default="")
    type: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = _f(omit=_OMIT_NONE, default=None)
    meta: dict[str, Any] = _f(omit=_OMIT_EMPTY, default_factory=dict)


@dataclass
class ActivityStateResponse:
    """Active signals and the recent-activity log."""

    generated_at: datetime | None = None
    signals: list[SignalResponse] = field(default_factory=list)
    recent: list[ActivityRecordResponse] = field(default_factory=list)


@dataclass
class SnapshotResponse:
    """The full state view."""

    schema_version: str = SCHEMA_VERSION
    generated_at: datetime | None = None
    started_at: datetime | None = _f(omit=_OMIT_NONE, default=None)
    started_ago: int | None = _f(omit=_OMIT_NONE, default=None)
    summary: SummaryResponse = field(default_factory=SummaryResponse)
    house: HouseResponse = field(default_factory=HouseResponse)
    devices: dict[str, DeviceResponse] = field(default_factory=dict)
    activity: ActivityStateResponse = field(default_factory=ActivityStateResponse)


@dataclass
class ThresholdsResponse:
    """Effective activity-detection thresholds; unset ones are omitted."""

    idle_below_w: float | None = _f(omit=_OMIT_NONE, default=None)
    active_above_w: float | None = _f(omit=_OMIT_NONE, default=None)
    active_sustained_sec: float | None = _f(
        "active_sustained_for_sec", omit=_OMIT_NONE, default=None
    )
    inactive_sustained_sec: float | None = _f(
        "inactive_sustained_for_sec", omit=_OMIT_NONE, default=None
    )
    compressor_above_w: float | None = _f(omit=_OMIT_NONE, default=None)


def staleness_seconds_for_class(device_class: str, staleness: int | None = None) -> float:
    """Return the staleness threshold in seconds; an explicit override wins."""
    if staleness is not None:
        return float(staleness)
    if device_class in (CLASS_SHORT_BURST, CLASS_CYCLE_POWER, CLASS_CONTINUOUS, CLASS_MEDIA):
        return 900.0
    return 3600.0


def cycle_type_for_class(device_class: str) -> str:
    """Return the cycle type label for a device class."""
    if device_class in (CLASS_SHORT_BURST, CLASS_CYCLE_POWER, CLASS_MEDIA):
        return "appliance_cycle"
    if device_class == CLASS_CONTINUOUS:
        return "compressor_cycle"
    if device_class == CLASS_BINARY_STATE:
        return "binary_cycle"
    return "unknown"


def _ago(moment: datetime | None, now: datetime) -> int | None:
    """Whole seconds elapsed since ``moment``, rounded half up; None if unset."""
    if moment is None:
        return None
    micros = (now - moment + timedelta(milliseconds=500)) // timedelta(microseconds=1)
    seconds = abs(micros) // 1_000_000
    return seconds if micros >= 0 else -seconds


def build_snapshot(
    snapshot: Snapshot,
    signals: Iterable[ActivitySignal] | None,
    records: Iterable[ActivityRecord] | None,
    now: datetime,
    lookup_staleness: Callable[[str], int | None] | None = None,
    started_at: datetime | None = None,
) -> SnapshotResponse:
    """Build the full state view; identity blocks are left out to keep it lean."""
    lookup = lookup_staleness or (lambda _cls: None)
    devices = {
        device_id: build_device_response(d, now, lookup(d.device_class), False)
        for device_id, d in snapshot.devices.items()
    }
    response = SnapshotResponse(
        generated_at=snapshot.generated_at,
        summary=build_summary(devices),
        house=build_house_response(snapshot.house, now),
        devices=devices,
        activity=build_activity_state_response(signals, records, now),
    )
    if started_at is not None:
        response.started_at = started_at
        response.started_ago = _ago(started_at, now)
    return response


def build_house_response(house: House, now: datetime) -> HouseResponse:
    """Build the whole-house view."""

    def dimension(state: Any, confidence: float, last_changed: datetime | None):
        return HouseDimensionResponse(
            state=state,
            confidence=confidence,
            last_changed=last_changed,
            last_changed_ago=_ago(last_changed, now),
        )

    return HouseResponse(
        occupancy=dimension(
            house.occupancy.state, house.occupancy.confidence, house.occupancy.last_changed
        ),
        activity=dimension(
            house.activity.state, house.activity.confidence, house.activity.last_changed
        ),
        mode=dimension(house.mode.state, house.mode.confidence, house.mode.last_changed),
        active_devices=list(house.active_devices or []),
    )


def build_device_response(
    device: Device,
    now: datetime,
    staleness_seconds: int | None = None,
    include_identity: bool = True,
) -> DeviceResponse:
    """Build the view of one device, with its warnings."""
    latest = build_latest_response(device.latest, device.device_class, now, staleness_seconds)
    warnings: list[str] = []
    if latest.stale:
        warnings.append("stale_device")
    if device.cycle is not None and device.cycle.energy.divergence_warning:
        warnings.append("cycle_divergence")
    if device.cycle is not None and device.cycle.energy.stale_counter:
        warnings.append("stale_counter")

    identity = None
    if include_identity:
        identity = IdentityResponse(
            scheme=device.identity.scheme,
            primary=device.identity.primary,
            display=device.identity.display,
        )
    return DeviceResponse(
        id=device.id,
        display_name=device.display_name,
        device_class=device.device_class,
        location=device.location,
        identity=identity,
        availability=device.availability,
        activity=build_activity_response(device.activity, now),
        latest=latest,
        cycle=build_cycle_response(device.cycle, device.device_class),
        unclassified=device.unclassified,
        warnings=warnings,
    )


def build_activity_response(activity: Activity, now: datetime) -> ActivityResponse:
    """Build the view of a device's activity sub-state."""
    return ActivityResponse(
        state=activity.state,
        last_changed=activity.last_changed,
        last_changed_ago=_ago(activity.last_changed, now),
        confidence=activity.confidence,
    )


def build_latest_response(
    latest: Latest,
    device_class: str,
    now: datetime,
    staleness_seconds: int | None = None,
) -> LatestResponse:
    """Build the latest-values view, computing age and staleness."""
    response = LatestResponse(
        power_w=latest.power_w,
        voltage_v=latest.voltage_v,
        energy_kwh=latest.energy_kwh,
        temperature_c=latest.temperature_c,
        humidity_pct=latest.humidity_pct,
        pressure_hpa=latest.pressure_hpa,
        wind_speed_ms=latest.wind_speed_ms,
        wind_dir_deg=latest.wind_dir_deg,
        rainfall_mm=latest.rainfall_mm,
        illuminance_lux=latest.illuminance_lux,
        uv_index=latest.uv_index,
        battery_runtime_mins=latest.battery_runtime_mins,
        on_battery=latest.on_battery,
        low_battery=latest.low_battery,
        battery_pct=latest.battery_pct,
        link_quality=latest.link_quality,
        rssi=latest.rssi,
        last_seen=latest.last_seen,
    )
    if latest.last_seen is not None:
        response.last_seen_ago = _ago(latest.last_seen, now)
        threshold = staleness_seconds_for_class(device_class, staleness_seconds)
        response.stale = (now - latest.last_seen).total_seconds() >= threshold
    return response


def build_cycle_response(cycle: Cycle | None, device_class: str) -> CycleResponse | None:
    """Build the cycle view, or None when there is no cycle."""
    if cycle is None:
        return None
    energy = cycle.energy
    if cycle.active:
        divergence = DivergenceResponse(status="pending", reason="cycle_active")
    else:
        divergence = DivergenceResponse(
            status="warning" if energy.divergence_warning else "ok",
            pct=energy.divergence_pct,
            warning=energy.divergence_warning,
        )
    return CycleResponse(
        type=cycle_type_for_class(device_class),
        active=cycle.active,
        started_at=cycle.started_at,
        finished_at=cycle.finished_at,
        duration_seconds=cycle.duration_seconds,
        energy=CycleEnergyResponse(
            primary_source=energy.primary_source,
            reported_kwh_delta=energy.reported_kwh_delta,
            integrated_kwh=energy.integrated_kwh,
            selected_kwh=energy.selected_kwh,
            stale_counter=energy.stale_counter,
            divergence=divergence,
        ),
    )


def build_activity_state_response(
    signals: Iterable[ActivitySignal] | None,
    records: Iterable[ActivityRecord] | None,
    now: datetime,
) -> ActivityStateResponse:
    """Build the view of active signals and recent activity records."""
    return ActivityStateResponse(
        generated_at=now,
        signals=[
            SignalResponse(
                id=s.id,
                source=s.source,
                location=s.location,
                type=s.type,
                confidence=s.confidence,
                since=s.since,
                expires_at=s.expires_at,
                meta=dict(s.meta or {}),
            )
            for s in signals or ()
        ],
        recent=[
            ActivityRecordResponse(
                id=r.id,
                source=r.source,
                location=r.location,
                type=r.type,
                started_at=r.started_at,
                ended_at=r.ended_at,
                meta=dict(r.meta or {}),
            )
            for r in records or ()
        ],
    )


def build_summary(devices: Mapping[str, DeviceResponse]) -> SummaryResponse:
    """Count devices, online devices, active devices and devices with warnings."""
    values = list(devices.values())
    return SummaryResponse(
        device_count=len(values),
        online_count=sum(d.availability == Availability.ONLINE for d in values),
        active_count=sum(
            d.device_class != CLASS_CONTINUOUS and d.activity.state in ACTIVE_ACTIVITY_STATES
            for d in values
        ),
        warning_count=sum(bool(d.warnings) for d in values),
    )


def build_thresholds_response(
    idle_below_w: float | None = None,
    active_above_w: float | None = None,
    active_sustained_for: timedelta | None = None,
    inactive_sustained_for: timedelta | None = None,
    compressor_above_w: float | None = None,
) -> ThresholdsResponse | None:
    """Build the thresholds view, or None when nothing is configured."""
    response = ThresholdsResponse(
        idle_below_w=idle_below_w,
        active_above_w=active_above_w,
        active_sustained_sec=(
            active_sustained_for.total_seconds() if active_sustained_for is not None else None
        ),
        inactive_sustained_sec=(
            inactive_sustained_for.total_seconds()
            if inactive_sustained_for is not None
            else None
        ),
        compressor_above_w=compressor_above_w,
    )
    if all(getattr(response, f.name) is None for f in fields(response)):
        return None
    return response


def _format_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    return text + moment.isoformat()[-6:]


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        out: dict[str, Any] = {}
        for f in fields(value):
            item = getattr(value, f.name)
            omit = f.metadata.get("omit")
            if omit == _OMIT_NONE and item is None:
                continue
            if omit == _OMIT_EMPTY and not item:
                continue
            out[f.metadata.get("json") or f.name] = _encode(item)
        return out
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, Mapping):
        return {str(k): _encode(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def to_json(response: Any) -> str:
    """Serialise a response as compact JSON."""
    return json.dumps(_encode(response), ensure_ascii=False, separators=(",", ":"))