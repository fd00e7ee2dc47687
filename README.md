# agrimesh

A pure-Python model of a small agricultural sensor mesh. A gateway node keeps
the network clock, plans data-collection cycles and broadcasts time-sync
messages. Sensor nodes wait for that sync, send their readings inside a
collection window and then work out how long to sleep until the next cycle.

No third-party libraries are needed.

## Modules

- `agrimesh.protocol`: the packed little-endian wire formats `SensorData`,
  `MessageHeader`, `SensorMessage`, `TimeSyncMessage`, `SleepCoordMessage` and
  `HeartbeatMessage`. Each is a frozen dataclass with `pack()` and a
  `unpack()` class method, and each raises `ProtocolError` when the sizes or
  values are wrong. `SensorMessage` also has `expected_checksum()`,
  `with_checksum()` and `is_valid()`. The module has the enums `MessageType`,
  `NodeType` and `ErrorCode`, the 16-bit byte-sum `calculate_checksum`, the
  helpers `format_mac` and `mac_to_sensor_id` (the last two MAC bytes, as in
  `"1:0"`), and `sensor_msg_to_node_data`, which returns a `NodeData`.
- `agrimesh.rtc`: `Clock` gives the wall time in whole seconds, lets you set
  it, and reports uptime in microseconds. `RtcManager` records the wake-up
  cause (`WakeupCause`) and arms the sleep timer. Its `enter_deep_sleep()`
  raises `DeepSleepRequested`, which carries `seconds`. Using the manager
  before `init()`, or setting an invalid time, raises `RtcError`.
- `agrimesh.gateway_sync`: `GatewayTimeSync` sets the clock to a fixed start
  time (1749600000). It schedules wake-ups on 300-second boundaries and keeps
  a 60-second collection window. Each MAC is counted once per cycle, and the
  cycle expects two sensors. Sync messages go out to the broadcast address,
  with `should_broadcast_sync()` becoming true every 30 seconds. Once every
  expected sensor has reported, it schedules the next cycle and broadcasts
  again.
- `agrimesh.sensor_sync`: `SensorTimeSync` accepts only time-sync messages from
  a gateway and adopts their time. It opens a 30-second reporting window.
  `wait_for_time_sync()` raises `TimeoutError` if no sync arrives in time.
  `calculate_sleep_duration()` returns the seconds to the next wake-up, or the
  cycle length once that time has passed. Invalid messages raise
  `TimeSyncError`.
- `agrimesh.mesh`: an in-process `MeshNetwork`. Calling `attach(mac, is_root)`
  on it returns a `MeshEndpoint`, which has `send`, `recv`, `routing_table` and
  `is_root`. Sending to all-zero bytes reaches the root, and sending to
  all-`0xff` bytes reaches every other node. The module also has
  `build_mesh_config` and `MeshConfig`, and the gateway's event-driven
  `MeshState` with `MeshEvent` and `MeshRole`.
- `agrimesh.sensor_mesh`: `build_sensor_mesh_config` and `SensorMeshState`.
  The sensor state also tracks the parent address and layer changes.
- `agrimesh.gateway_handler`: `GatewayMessageHandler`. Its `handle_packet()`
  checks the checksum of each sensor message and records the report, and
  `status_tick()` broadcasts a time sync when one is due. The `start()` and
  `stop()` methods run both in background threads.
- `agrimesh.sensor_handler`: the simulated readings `collect_sensor_readings`
  (derived from uptime), and `SensorMessageHandler`. The handler applies
  incoming time syncs (`handle_packet`) and sends checksummed readings to the
  root while the window is open (`tx_step`, `build_message`).
- `agrimesh.gateway_app` and `agrimesh.sensor_app`: `GatewayApp` and
  `SensorApp` wire the pieces above into whole nodes. `SensorApp.boot()`
  runs `coordinated_cycle()` after a timer wake-up, and that cycle always ends
  by raising `DeepSleepRequested`. Its states are listed in `CoordState`.

## Example

```python
from agrimesh.gateway_sync import GatewayTimeSync
from agrimesh.mesh import MeshNetwork
from agrimesh.protocol import TimeSyncMessage
from agrimesh.rtc import Clock, RtcManager
from agrimesh.sensor_sync import SensorTimeSync

network = MeshNetwork()
gateway_ep = network.attach(bytes.fromhex("020000000001"), is_root=True)
sensor_ep = network.attach(bytes.fromhex("020000000002"))

gateway = GatewayTimeSync(Clock(), gateway_ep, gateway_ep.mac)
gateway.init()
gateway.broadcast_time_sync()

source, payload = sensor_ep.recv(timeout=1)

sensor_clock = Clock()
rtc = RtcManager(sensor_clock, sensor=True)
rtc.init()
sync = SensorTimeSync(rtc, sensor_clock)
sync.init()
sync.handle_time_sync_message(TimeSyncMessage.unpack(payload))

assert sync.should_send_sensor_data()
print(sync.calculate_sleep_duration())  # seconds until the next 300 s boundary
```

## Commands

Run a simulated gateway node:

    agrimesh-gateway [--mac 02:00:00:00:00:01] [--duration SECONDS] [-v]

Run a simulated sensor node:

    agrimesh-sensor [--mac 02:00:00:00:00:02] [--timer-wakeup] [--duration SECONDS] [-v]

Both commands run until interrupted unless you pass `--duration`. With
`--timer-wakeup`, the sensor boots as it would after a coordinated wake-up. It
runs one cycle, waiting up to 10 seconds for a sync, and then prints the deep
sleep it would enter.

## What the package does not do

- It does not use a radio or any real network. `MeshNetwork` lives inside one
  Python process, and each command creates its own. A gateway and a sensor
  started as separate commands therefore never see each other. To connect
  nodes, attach them to the same `MeshNetwork` in one program.
- Sensor readings are simulated from uptime, and no hardware is read.
- Deep sleep is only signalled by `DeepSleepRequested`. Nothing powers down.
- Received data is logged and returned but not stored or exported.

## Tests

    pip install .[test]
    pytest