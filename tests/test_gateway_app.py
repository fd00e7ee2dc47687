import time

import pytest

from agrimesh.gateway_app import GatewayApp, main
from agrimesh.gateway_sync import DATA_COLLECTION_INTERVAL_SEC, HARDCODED_START_TIME
from agrimesh.mesh import ROOT_ADDR, MeshNetwork, MeshRole
from agrimesh.protocol import (
    MessageHeader,
    MessageType,
    NodeType,
    SensorData,
    SensorMessage,
    TimeSyncMessage,
)
from agrimesh.rtc import Clock

GATEWAY_MAC = b"\x02\x00\x00\x00\x00\x01"
SENSOR_MAC = b"\x02\x00\x00\x00\x00\x02"


@pytest.fixture
def network():
    return MeshNetwork()


@pytest.fixture
def app(network):
    clock = Clock(wall=lambda: 1_000_000.0, monotonic=lambda: 0.0)
    gateway = GatewayApp(clock, network, GATEWAY_MAC)
    yield gateway
    gateway.stop()


def test_start_synchronises_time_and_schedules_cycle(app):
    app.start()
    assert app.clock.now() == HARDCODED_START_TIME
    assert app.time_sync.is_ready() is True
    assert app.time_sync.next_collection_time() == HARDCODED_START_TIME + DATA_COLLECTION_INTERVAL_SEC


def test_start_becomes_connected_root(app):
    app.start()
    assert app.config.role is MeshRole.ROOT
    assert app.config.select_parent is True
    assert app.mesh_state.is_root is True
    assert app.mesh_state.is_connected is True
    assert app.endpoint.is_root() is True
    assert app.running is True
    assert app.rtc.status.rtc_initialized is True


def test_second_start_keeps_same_endpoint(app):
    app.start()
    endpoint = app.endpoint
    app.start()
    assert app.endpoint is endpoint


def test_broadcasts_time_sync_to_sensors(app, network):
    sensor = network.attach(SENSOR_MAC)
    app.start()
    source, payload = sensor.recv(timeout=5)
    msg = TimeSyncMessage.unpack(payload)
    assert source == GATEWAY_MAC
    assert msg.header.message_type == MessageType.TIME_SYNC
    assert msg.header.node_type == NodeType.GATEWAY
    assert msg.next_wake_time == app.time_sync.next_collection_time()
    assert msg.sleep_duration_sec == DATA_COLLECTION_INTERVAL_SEC


def test_sensor_report_is_recorded(app, network):
    sensor = network.attach(SENSOR_MAC)
    app.start()
    msg = SensorMessage(
        header=MessageHeader(
            node_mac=SENSOR_MAC,
            node_type=NodeType.SENSOR,
            message_type=MessageType.SENSOR_DATA,
            mesh_layer=2,
        ),
        data=SensorData(lux=500),
    ).with_checksum()
    sensor.send(ROOT_ADDR, msg.pack())
    deadline = time.monotonic() + 5
    while SENSOR_MAC not in app.time_sync.reported_sensors and time.monotonic() < deadline:
        time.sleep(0.05)
    assert app.time_sync.reported_sensors == (SENSOR_MAC,)
    assert app.time_sync.status.sensors_reported_count == 1


def test_stop_leaves_mesh(app, network):
    sensor = network.attach(SENSOR_MAC)
    app.start()
    app.stop()
    assert app.running is False
    with pytest.raises(LookupError):
        sensor.send(GATEWAY_MAC, b"\x01")


def test_main_runs_for_duration():
    assert main(["--duration", "0"]) == 0


def test_main_rejects_bad_mac():
    with pytest.raises(SystemExit):
        main(["--mac", "zz", "--duration", "0"])