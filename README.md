# statehouse

Building blocks for a home-telemetry state engine: the device and house
state model, a writer that turns events into time-series points, a cached
OAuth client-credentials token source, and builders for the JSON snapshot
served to API clients. It has no dependencies outside the standard library.

## Install

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `statehouse.model` holds the data types: `DeviceIdentity` (with `key()`
  and `display_key()`), `Reading` (with `has_any_measurement()`),
  `ActivitySignal` (with `is_expired(now)`), `ActivityRecord`,
  `CanonicalEvent`, `DerivedEvent`, `Activity`, `Latest`, `CycleEnergy`,
  `Cycle`, `Device`, the three house dimensions, `House` and `Snapshot`,
  plus the state enums `Availability`, `DeviceActivityState`,
  `OccupancyState`, `HouseActivityState`, `ModeState` and
  `DerivedEventType`.
- `statehouse.tokensource` holds `TokenSource`, which posts a
  client-credentials request to `<base_url>/oauth/token`, caches the access
  token and fetches a new one when it is within 30 seconds of expiry.
  `invalidate()` drops the cached token. Any failure (network error,
  non-200 status, bad body, empty `access_token`, non-positive
  `expires_in`) raises `TokenError`.
- `statehouse.influx` holds `Writer`, which maps canonical events (power,
  voltage, energy, environment, battery, UPS and radio attributes) and
  derived events (finished cycles, device activity changes, house state
  changes) to `Point`s and hands them to a point writer. It counts queued
  points and failures (`stats()`, `record_failure()`), and `close()`
  flushes. `FakeWriteAPI` records points in memory; `evidence_as_fields`
  keeps the evidence values that can be stored as fields.
- `statehouse.dto` holds the response dataclasses and their builders:
  `build_snapshot`, `build_house_response`, `build_device_response`,
  `build_activity_response`, `build_latest_response`,
  `build_cycle_response`, `build_activity_state_response`, `build_summary`
  and `build_thresholds_response`, plus `staleness_seconds_for_class`,
  `cycle_type_for_class` and `to_json`. Devices are stale after 900 s for
  short-burst, cycle, continuous and media power classes and 3600 s
  otherwise, unless an override is given. `to_json` writes compact JSON,
  leaves out empty optional fields and formats times as RFC 3339.

## Example

```python
from datetime import datetime, timedelta, timezone

from statehouse.model import (
    Activity, Availability, Device, DeviceActivityState, House, Latest, Snapshot,
)
from statehouse.dto import build_snapshot, to_json

now = datetime(2026, 5, 13, 10, 0, tzinfo=timezone.utc)
kettle = Device(
    id="kettle",
    device_class="short_burst_power_device",
    availability=Availability.ONLINE,
    activity=Activity(state=DeviceActivityState.IDLE),
    latest=Latest(last_seen=now - timedelta(minutes=20)),
)
snapshot = Snapshot(generated_at=now, house=House(), devices={"kettle": kettle})

response = build_snapshot(snapshot, [], [], now, None, None)
print(response.summary.warning_count)   # 1: the kettle is stale
print(to_json(response))
```

Points:

```python
from statehouse.influx import FakeWriteAPI, Writer
from statehouse.model import CanonicalEvent, Device

api = FakeWriteAPI()
devices = {"kettle": Device(id="kettle", device_class="short_burst_power_device",
                            location="kitchen")}
writer = Writer(api, devices)
writer.on_canonical_event(
    CanonicalEvent(timestamp=now, device_id="kettle", attribute="power_w", value=2000.0)
)
print(api.points_for_measurement("device_power")[0].fields)  # {'power_w': 2000.0}
print(writer.stats())                                         # (1, 0)
```

Tokens:

```python
from statehouse.tokensource import TokenSource, TokenError

source = TokenSource(
    base_url="https://id.example.com",
    client_id="statehouse",
    client_secret="secret",
)
try:
    bearer = source.token()
except TokenError as exc:
    print("could not get a token:", exc)
```

## What it does not do

- There is no HTTP server and no command: the `dto` builders produce the
  response objects and JSON, but nothing here serves them or checks
  bearer tokens on requests.
- There is no state engine or store: nothing here ingests readings,
  runs device state machines or infers house state. Snapshots and devices
  are built by the caller.
- There is no MQTT client and no network client for InfluxDB: `Writer`
  writes to any object with `write_point(point)` and `flush()`, and the
  only one included is the in-memory `FakeWriteAPI`.
- There is no configuration loading; staleness overrides and thresholds
  are passed in as plain values.