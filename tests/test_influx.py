import logging
from datetime import datetime, timezone

import pytest

from statehouse.influx import FakeWriteAPI, Point, Writer, evidence_as_fields
from statehouse.model import (
    CanonicalEvent,
    DerivedEvent,
    DerivedEventType,
    Device,
    DeviceIdentity,
)


def _seed(devices, device_id, device_class, location):
    devices[device_id] = Device(
        id=device_id,
        device_class=device_class,
        location=location,
        identity=DeviceIdentity(scheme="zigbee", primary="0x1", display=device_id),
    )


@pytest.fixture
def setup():
    devices = {}
    api = FakeWriteAPI()
    writer = Writer(api, devices)
    return writer, api, devices


def test_disabled_is_noop():
    api = FakeWriteAPI()
    devices = {}
    _seed(devices, "x", "media_power_device", "")
    writer = Writer(api, devices, enabled=False)
    writer.on_canonical_event(
        CanonicalEvent(device_id="x", attribute="power_w", value=1.0,
                       timestamp=datetime.now(timezone.utc))
    )
    writer.on_derived_event(
        DerivedEvent(type=DerivedEventType.CYCLE_FINISHED, device_id="x",
                     evidence={"a": 1})
    )
    assert api.points == []


def test_writer_without_api_is_disabled():
    writer = Writer()
    assert writer.enabled is False


def test_power_sample_goes_to_device_power(setup):
    writer, api, devices = setup
    _seed(devices, "kitchen_dishwasher", "cycle_power_device", "kitchen")
    ts = datetime(2026, 5, 13, 10, 0, tzinfo=timezone.utc)
    writer.on_canonical_event(CanonicalEvent(
        timestamp=ts, device_id="kitchen_dishwasher", attribute="power_w",
        value=1840.2, unit="W",
    ))
    got = api.points_for_measurement("device_power")
    assert len(got) == 1
    point = got[0]
    assert point.time == ts
    assert point.tags == {
        "device_id": "kitchen_dishwasher",
        "class": "cycle_power_device",
        "location": "kitchen",
    }
    assert point.fields == {"power_w": 1840.2}


def test_temp_and_humidity_go_to_device_environment(setup):
    writer, api, devices = setup
    _seed(devices, "hallway_sensor", "environment", "hall")
    ts = datetime(2026, 5, 13, 10, 0, tzinfo=timezone.utc)
    writer.on_canonical_event(CanonicalEvent(
        timestamp=ts, device_id="hallway_sensor", attribute="temperature_c", value=21.5))
    writer.on_canonical_event(CanonicalEvent(
        timestamp=ts, device_id="hallway_sensor", attribute="humidity_pct", value=55.0))
    assert len(api.points_for_measurement("device_environment")) == 2


def test_battery_sample_goes_to_device_battery(setup):
    writer, api, devices = setup
    _seed(devices, "bedroom_climate", "environmental_sensor", "bedroom")
    ts = datetime(2026, 5, 13, 8, 0, tzinfo=timezone.utc)
    writer.on_canonical_event(CanonicalEvent(
        timestamp=ts, device_id="bedroom_climate", attribute="battery_pct", value=87.0))
    got = api.points_for_measurement("device_battery")
    assert len(got) == 1
    assert got[0].tags == {
        "device_id": "bedroom_climate",
        "class": "environmental_sensor",
        "location": "bedroom",
    }
    assert got[0].fields == {"battery_pct": 87.0}


def test_location_tag_omitted_when_empty(setup):
    writer, api, devices = setup
    _seed(devices, "x", "media_power_device", "")
    writer.on_canonical_event(CanonicalEvent(device_id="x", attribute="power_w", value=50.0))
    assert "location" not in api.points[0].tags


def test_unsupported_attribute_is_dropped(setup):
    writer, api, devices = setup
    _seed(devices, "x", "media_power_device", "")
    writer.on_canonical_event(CanonicalEvent(device_id="x", attribute="state", value="ON"))
    assert api.points == []


def test_wrong_value_type_is_dropped(setup):
    writer, api, devices = setup
    _seed(devices, "x", "media_power_device", "")
    writer.on_canonical_event(CanonicalEvent(device_id="x", attribute="power_w", value="ON"))
    writer.on_canonical_event(CanonicalEvent(device_id="x", attribute="on_battery", value=1.0))
    assert api.points == []


def test_no_device_in_store_is_dropped(setup):
    writer, api, _ = setup
    writer.on_canonical_event(
        CanonicalEvent(device_id="ghost", attribute="power_w", value=100.0))
    assert api.points == []


def test_cycle_finished_writes_appliance_cycle(setup):
    writer, api, devices = setup
    _seed(devices, "kitchen_dishwasher", "cycle_power_device", "kitchen")
    ts = datetime(2026, 5, 13, 11, 0, tzinfo=timezone.utc)
    writer.on_derived_event(DerivedEvent(
        timestamp=ts,
        type=DerivedEventType.CYCLE_FINISHED,
        device_id="kitchen_dishwasher",
        device_class="cycle_power_device",
        evidence={
            "duration_seconds": 5400,
            "selected_energy_kwh": 1.0,
            "energy_source": "counter",
            "reported_kwh_delta": 1.0,
            "integrated_kwh": 0.28,
        },
    ))
    got = api.points_for_measurement("appliance_cycle")
    assert len(got) == 1
    point = got[0]
    assert point.tags["device_id"] == "kitchen_dishwasher"
    assert point.tags["location"] == "kitchen"
    assert point.fields["selected_energy_kwh"] == 1.0
    assert point.fields["energy_source"] == "counter"


def test_cycle_finished_without_evidence_is_dropped(setup):
    writer, api, devices = setup
    _seed(devices, "k", "cycle_power_device", "")
    writer.on_derived_event(DerivedEvent(type=DerivedEventType.CYCLE_FINISHED, device_id="k"))
    assert api.points_for_measurement("appliance_cycle") == []


def test_activity_changed_writes_device_activity(setup):
    writer, api, devices = setup
    _seed(devices, "kettle", "short_burst_power_device", "kitchen")
    writer.on_derived_event(DerivedEvent(
        type=DerivedEventType.DEVICE_ACTIVITY_CHANGED,
        device_id="kettle",
        device_class="short_burst_power_device",
        evidence={"from": "idle", "to": "active"},
    ))
    got = api.points_for_measurement("device_activity")
    assert len(got) == 1
    assert got[0].fields == {"from": "idle", "to": "active"}


def test_house_state_changed_writes_all_three_dimensions(setup):
    writer, api, _ = setup
    writer.on_derived_event(DerivedEvent(
        type=DerivedEventType.HOUSE_STATE_CHANGED,
        evidence={
            "occupancy": "occupied",
            "occupancy_confidence": 0.9,
            "activity": "active",
            "activity_confidence": 0.8,
            "mode": "day",
            "mode_confidence": 0.75,
        },
    ))
    got = api.points_for_measurement("house_state")
    assert len(got) == 1
    assert got[0].tags == {"occupancy": "occupied", "activity": "active", "mode": "day"}
    assert got[0].fields == {
        "occupancy_confidence": 0.9,
        "activity_confidence": 0.8,
        "mode_confidence": 0.75,
    }


def test_irrelevant_derived_event_is_ignored(setup):
    writer, api, _ = setup
    writer.on_derived_event(
        DerivedEvent(type=DerivedEventType.DEVICE_DISCOVERED, device_id="x"))
    assert api.points == []


def test_evidence_as_fields_filters_unsupported_types():
    got = evidence_as_fields({
        "int": 42,
        "float": 3.14,
        "string": "hello",
        "bool": True,
        "slice": [1, 2],
        "map": {"a": 1},
        "nil": None,
    })
    assert got == {"int": 42, "float": 3.14, "string": "hello", "bool": True}


def test_evidence_as_fields_empty_input_returns_none():
    assert evidence_as_fields(None) is None
    assert evidence_as_fields({}) is None


def test_stats_counts_queued_canonical_writes(setup):
    writer, _, devices = setup
    _seed(devices, "x", "media_power_device", "")
    for _ in range(3):
        writer.on_canonical_event(CanonicalEvent(device_id="x", attribute="power_w", value=50.0))
    assert writer.stats() == (3, 0)


def test_queued_increments_after_canonical_event(setup):
    writer, _, devices = setup
    _seed(devices, "sensor", "environmental_sensor", "living_room")
    before, _ = writer.stats()
    writer.on_canonical_event(
        CanonicalEvent(device_id="sensor", attribute="temperature_c", value=22.0))
    after, _ = writer.stats()
    assert after == before + 1


def test_record_failure_counts_and_logs(setup, caplog):
    _, api, devices = setup
    writer = Writer(api, devices, logging.getLogger("influx-test"))
    with caplog.at_level(logging.WARNING, logger="influx-test"):
        writer.record_failure(RuntimeError("boom"))
        writer.record_failure("again")
    assert writer.stats() == (0, 2)
    assert "boom" in caplog.text


def test_close_flushes_api(setup):
    writer, api, _ = setup
    writer.close()
    assert api.flushed == 1


def test_fake_reset_clears_state():
    api = FakeWriteAPI()
    api.write_point(Point("device_power"))
    api.flush()
    api.reset()
    assert (api.points, api.flushed) == ([], 0)


@pytest.mark.parametrize(
    "attribute, value, measurement, expected",
    [
        ("pressure_hpa", 1013.25, "device_environment", 1013.25),
        ("wind_speed_ms", 5.2, "device_environment", 5.2),
        ("wind_dir_deg", 270.0, "device_environment", 270.0),
        ("rainfall_mm", 3.4, "device_environment", 3.4),
        ("illuminance_lux", 800.0, "device_environment", 800.0),
        ("uv_index", 4.5, "device_environment", 4.5),
        ("battery_runtime_mins", 42.0, "device_ups", 42.0),
        ("on_battery", True, "device_ups", True),
        ("rssi_dbm", -72, "device_radio", -72),
    ],
)
def test_new_attributes_routed_correctly(setup, attribute, value, measurement, expected):
    writer, api, devices = setup
    _seed(devices, "weather_station", "environment", "roof")
    ts = datetime(2026, 5, 14, 12, 0, tzinfo=timezone.utc)
    writer.on_canonical_event(CanonicalEvent(
        timestamp=ts, device_id="weather_station", attribute=attribute, value=value))
    got = api.points_for_measurement(measurement)
    assert len(got) == 1
    assert got[0].time == ts
    assert got[0].tags["device_id"] == "weather_station"
    assert got[0].fields[attribute] == expected