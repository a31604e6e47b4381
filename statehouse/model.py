"""Core data model: devices, readings, events, signals and house state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Availability(str, Enum):
    """Whether the engine is currently in contact with a device."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE_PENDING = "offline_pending"
    OFFLINE = "offline"


class DeviceActivityState(str, Enum):
    """A device's current behavioural state; the values used depend on its class."""

    UNKNOWN = "unknown"
    IDLE = "idle"
    ACTIVE = "active"
    STARTING = "starting"
    RUNNING = "running"
    FINISHING = "finishing"
    FINISHED_RECENTLY = "finished_recently"
    STANDBY = "standby"
    NORMAL_IDLE = "normal_idle"
    ACTIVE_CYCLE = "active_cycle"
    # Measurement-only devices that just transmit readings periodically.
    REPORTING = "reporting"


class OccupancyState(str, Enum):
    """The house occupancy dimension."""

    UNKNOWN = "unknown"
    EMPTY = "empty"
    OCCUPIED = "occupied"


class HouseActivityState(str, Enum):
    """The house activity dimension."""

    UNKNOWN = "unknown"
    IDLE = "idle"
    QUIET = "quiet"
    ACTIVE = "active"
    BUSY = "busy"


class ModeState(str, Enum):
    """The house behavioural mode dimension."""

    UNKNOWN = "unknown"
    DAY = "day"
    NIGHT = "night"
    AWAY = "away"
    SLEEPING = "sleeping"


class DerivedEventType(str, Enum):
    """Stable identifiers of the events the engine derives."""

    DEVICE_DISCOVERED = "device_discovered"
    DEVICE_AVAILABILITY_CHANGED = "device_availability_changed"
    DEVICE_ACTIVITY_CHANGED = "device_activity_changed"
    DEVICE_ACTIVITY_STARTED = "device_activity_started"
    DEVICE_ACTIVITY_FINISHED = "device_activity_finished"
    SHORT_BURST_DETECTED = "short_burst_detected"
    CYCLE_STARTED = "cycle_started"
    CYCLE_FINISHED = "cycle_finished"
    CYCLE_ENERGY_RECORDED = "cycle_energy_recorded"
    CONTINUOUS_CYCLE_STARTED = "continuous_device_active_cycle_started"
    CONTINUOUS_CYCLE_FINISHED = "continuous_device_active_cycle_finished"
    MEDIA_ACTIVE = "media_active"
    MEDIA_INACTIVE = "media_inactive"
    ENERGY_DIVERGENCE_WARNING = "energy_divergence_warning"
    ENERGY_STALE_COUNTER_WARNING = "energy_stale_counter_warning"
    HOUSE_STATE_CHANGED = "house_state_changed"
    INTERCOM_RINGING = "intercom_ringing"
    INTERCOM_ANSWERED = "intercom_answered"
    INTERCOM_HUNGUP = "intercom_hungup"
    SIGNAL_ASSERTED = "signal_asserted"
    SIGNAL_CLEARED = "signal_cleared"


@dataclass(frozen=True)
class DeviceIdentity:
    """Protocol-agnostic identity of a physical device.

    ``(scheme, primary)`` is the stable key; ``display`` is the mutable
    human-readable name.
    """

    scheme: str = ""
    primary: str = ""
    display: str = ""

    def key(self) -> str:
        """Return the canonical stable key for this identity."""
        if self.primary:
            return f"{self.scheme}:{self.primary}"
        if self.display:
            return f"{self.scheme}:{self.display}"
        return f"{self.scheme}:unknown"

    def display_key(self) -> str:
        """Return the ``scheme:display`` secondary key, or "" without a display."""
        if not self.display:
            return ""
        return f"{self.scheme}:{self.display}"


@dataclass
class Reading:
    """Optional fields decoded from a device payload; None means absent."""

    timestamp: datetime | None = None
    source_topic: str = ""

    # Power / energy
    state: str | None = None
    power_w: float | None = None
    voltage_v: float | None = None
    current_a: float | None = None
    energy_kwh: float | None = None

    # Environment
    temperature_c: float | None = None
    humidity_pct: float | None = None
    pressure_hpa: float | None = None
    wind_speed_ms: float | None = None
    wind_dir_deg: float | None = None
    rainfall_mm: float | None = None
    illuminance_lux: float | None = None
    uv_index: float | None = None

    # UPS
    battery_runtime_mins: float | None = None
    on_battery: bool | None = None
    low_battery: bool | None = None

    # Device health: not counted as measurements
    link_quality: int | None = None
    battery: float | None = None
    rssi: int | None = None

    def has_any_measurement(self) -> bool:
        """Report whether at least one measurable field is present."""
        measurements = (
            self.power_w, self.voltage_v, self.current_a, self.energy_kwh,
            self.state, self.temperature_c, self.humidity_pct,
            self.pressure_hpa, self.wind_speed_ms, self.wind_dir_deg,
            self.rainfall_mm, self.illuminance_lux, self.uv_index,
            self.battery_runtime_mins, self.on_battery, self.low_battery,
        )
        return any(value is not None for value in measurements)


@dataclass
class ActivitySignal:
    """A presence/activity assertion from a non-device source."""

    id: str = ""
    source: str = ""
    type: str = ""
    confidence: float = 0.0
    since: datetime | None = None
    location: str = ""
    timestamp: datetime | None = None
    # None means the signal lives until explicitly cleared.
    expires_at: datetime | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        """Report whether the signal has passed its expiry time."""
        return self.expires_at is not None and now > self.expires_at


@dataclass
class ActivityRecord:
    """A completed or in-progress entry in the recent-activity log."""

    id: str = ""
    source: str = ""
    type: str = ""
    started_at: datetime | None = None
    location: str = ""
    ended_at: datetime | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalEvent:
    """The normalised representation of one piece of telemetry."""

    timestamp: datetime | None = None
    source: str = ""
    source_topic: str = ""
    device_id: str = ""
    identity: DeviceIdentity = field(default_factory=DeviceIdentity)
    capability: str = ""
    attribute: str = ""
    value: Any = None
    unit: str = ""
    quality: dict[str, Any] = field(default_factory=dict)


@dataclass
class DerivedEvent:
    """Something the engine concluded from one or more canonical events."""

    type: DerivedEventType
    id: str = ""
    timestamp: datetime | None = None
    device_id: str = ""
    device_class: str = ""
    summary: str = ""
    evidence: dict[str, Any] = field(default_factory=dict)
    severity: str = ""


@dataclass
class Activity:
    """The activity sub-state of a device."""

    state: DeviceActivityState = DeviceActivityState.UNKNOWN
    since: datetime | None = None
    last_changed: datetime | None = None
    confidence: float = 0.0


@dataclass
class Latest:
    """The last observed values of a device; None means never observed."""

    power_w: float | None = None
    voltage_v: float | None = None
    energy_kwh: float | None = None

    temperature_c: float | None = None
    humidity_pct: float | None = None
    pressure_hpa: float | None = None
    wind_speed_ms: float | None = None
    wind_dir_deg: float | None = None
    rainfall_mm: float | None = None
    illuminance_lux: float | None = None
    uv_index: float | None = None

    battery_runtime_mins: float | None = None
    on_battery: bool | None = None
    low_battery: bool | None = None

    battery_pct: float | None = None
    link_quality: int | None = None
    rssi: int | None = None

    last_seen: datetime | None = None


@dataclass
class CycleEnergy:
    """The two parallel energy estimates for a cycle and the selected one."""

    primary_source: str = ""
    reported_kwh_delta: float = 0.0
    integrated_kwh: float = 0.0
    selected_kwh: float = 0.0
    divergence_pct: float = 0.0
    divergence_warning: bool = False
    stale_counter: bool = False


@dataclass
class Cycle:
    """One in-flight or recently-finished session of an appliance."""

    active: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_seconds: int = 0
    energy: CycleEnergy = field(default_factory=CycleEnergy)


@dataclass
class Device:
    """The canonical, downstream-facing view of one device."""

    id: str = ""
    display_name: str = ""
    device_class: str = ""
    location: str = ""
    identity: DeviceIdentity = field(default_factory=DeviceIdentity)
    availability: Availability = Availability.UNKNOWN
    activity: Activity = field(default_factory=Activity)
    latest: Latest = field(default_factory=Latest)
    cycle: Cycle | None = None
    unclassified: bool = False


@dataclass
class OccupancyDimension:
    """The occupancy inference."""

    state: OccupancyState = OccupancyState.UNKNOWN
    confidence: float = 0.0
    last_changed: datetime | None = None


@dataclass
class HouseActivityDimension:
    """The house activity inference."""

    state: HouseActivityState = HouseActivityState.UNKNOWN
    confidence: float = 0.0
    last_changed: datetime | None = None


@dataclass
class ModeDimension:
    """The behavioural mode inference."""

    state: ModeState = ModeState.UNKNOWN
    confidence: float = 0.0
    last_changed: datetime | None = None


@dataclass
class House:
    """Whole-house state across occupancy, activity and mode."""

    occupancy: OccupancyDimension = field(default_factory=OccupancyDimension)
    activity: HouseActivityDimension = field(default_factory=HouseActivityDimension)
    mode: ModeDimension = field(default_factory=ModeDimension)
    active_devices: list[str] = field(default_factory=list)


@dataclass
class Snapshot:
    """The full state-engine view at one instant."""

    generated_at: datetime | None = None
    house: House = field(default_factory=House)
    devices: dict[str, Device] = field(default_factory=dict)