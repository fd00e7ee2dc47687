import itertools
import threading

import pytest

from agrimesh.mesh import BROADCAST_ADDR, MeshNetwork
from agrimesh.protocol import MessageHeader, MessageType, NodeType, TimeSyncMessage
from agrimesh.rtc import Clock, DeepSleepRequested, WakeupCause
from agrimesh.sensor_app import EMERGENCY_SLEEP_SEC, CoordState, SensorApp, main

GW_MAC = b"\x02\x00\x00\x00\x00\x01"
SENSOR_MAC = b"\x02\x00\x00\x00\x00\x02"
START = 1749600000


def fast_clock(step=2.0):
    counter = itertools.count(0.0, step)
    return Clock(monotonic=lambda: next(counter))


def sync_message():
    return TimeSyncMessage(
        header=MessageHeader(
            node_mac=GW_MAC,
            node_type=NodeType.GATEWAY,
            message_type=MessageType.TIME_SYNC,
            timestamp=START,
        ),
        current_unix_time=START,
        next_wake_time=START + 300,
        sleep_duration_sec=300,
    )


def test_normal_boot_runs_continuously():
    network = MeshNetwork()
    app = SensorApp(Clock(), network, SENSOR_MAC)
    try:
        app.boot()
        assert app.running
        assert app.config.vote_percentage == 1.0
        assert app.mesh_state.is_connected
        assert app.state is CoordState.WAKE_UP
        with pytest.raises(RuntimeError):
            app.boot()
    finally:
        app.stop()
    assert not app.running
    assert network.attach(SENSOR_MAC).mac == SENSOR_MAC


def test_timer_wakeup_without_sync_sleeps_emergency():
    network = MeshNetwork()
    app = SensorApp(fast_clock(), network, SENSOR_MAC, WakeupCause.TIMER)
    try:
        with pytest.raises(DeepSleepRequested) as info:
            app.boot()
        assert info.value.seconds == EMERGENCY_SLEEP_SEC
        assert app.state is CoordState.DEEP_SLEEP
        assert not app.time_synchronized
        assert not app.data_collection_done
        assert app.config.vote_percentage is None
        assert app.rtc.status.total_sleep_cycles == 1
    finally:
        app.stop()


def test_timer_wakeup_with_sync_sleeps_until_next_wake():
    network = MeshNetwork()
    gateway = network.attach(GW_MAC, is_root=True)
    app = SensorApp(Clock(), network, SENSOR_MAC, WakeupCause.TIMER)
    sender = threading.Timer(0.3, gateway.send, args=(BROADCAST_ADDR, sync_message().pack()))
    sender.start()
    try:
        with pytest.raises(DeepSleepRequested) as info:
            app.boot()
        assert 299 <= info.value.seconds <= 300
        assert app.time_synchronized
        assert app.data_collection_done
        assert app.time_sync.is_synchronized()
        assert abs(app.clock.now() - START) <= 2
    finally:
        sender.cancel()
        app.stop()


def test_check_wake_timeout():
    now = [0.0]
    app = SensorApp(Clock(monotonic=lambda: now[0]), MeshNetwork(), SENSOR_MAC)
    app.wake_start_time = 0
    now[0] = 30.0
    assert app.check_wake_timeout() == 30
    now[0] = 60.0
    assert app.check_wake_timeout() == 60
    now[0] = 61.0
    with pytest.raises(TimeoutError):
        app.check_wake_timeout()


def test_cycle_before_boot_rejected():
    app = SensorApp(Clock(), MeshNetwork(), SENSOR_MAC)
    with pytest.raises(RuntimeError):
        app.coordinated_cycle()


def test_main_runs_and_stops(capsys):
    assert main(["--duration", "0", "--mac", "02:00:00:00:00:09"]) == 0


def test_main_rejects_bad_mac():
    with pytest.raises(SystemExit) as info:
        main(["--mac", "zz"])
    assert info.value.code == 2