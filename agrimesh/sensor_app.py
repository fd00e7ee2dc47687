"""Sensor node: boots, joins the mesh and runs coordinated low-power cycles."""

from __future__ import annotations

import argparse
import logging
import time
from enum import Enum
from typing import Optional

from .mesh import MESH_ID, MeshEndpoint, MeshEvent, MeshNetwork
from .rtc import Clock, DeepSleepRequested, RtcManager, WakeupCause
from .sensor_handler import SensorMessageHandler
from .sensor_mesh import SensorMeshState, build_sensor_mesh_config
from .sensor_sync import SensorTimeSync, TimeSyncError

log = logging.getLogger(__name__)

DATA_COLLECTION_WINDOW_SEC = 60
MESH_CONNECTION_TIMEOUT_SEC = 10
SENSOR_READ_TIMEOUT_SEC = 5
DATA_SEND_TIMEOUT_SEC = 10
EMERGENCY_SLEEP_SEC = 300
TIME_SYNC_WAIT_SEC = 10

MESH_CHANNEL = 0
MESH_AP_PASSWORD = "password"
MESH_AP_CONNECTIONS = 6
MESH_NON_MESH_AP_CONNECTIONS = 0
DEFAULT_MAC = b"\x02\x00\x00\x00\x00\x02"


class CoordState(Enum):
    WAKE_UP = "wake_up"
    WAIT_TIME_SYNC = "wait_time_sync"
    CONNECT_MESH = "connect_mesh"
    COLLECT_DATA = "collect_data"
    SEND_DATA = "send_data"
    PREPARE_SLEEP = "prepare_sleep"
    DEEP_SLEEP = "deep_sleep"


class SensorApp:
    """A sensor node that reports to the gateway and sleeps between cycles."""

    connect_poll = 0.1

    def __init__(self, clock: Clock, network: MeshNetwork, mac=DEFAULT_MAC,
                 wakeup_cause=WakeupCause.UNDEFINED):
        self.clock = clock
        self.network = network
        self.mac = bytes(mac)
        self.rtc = RtcManager(clock, wakeup_cause, sensor=True)
        self.time_sync = SensorTimeSync(self.rtc, clock)
        self.state = CoordState.WAKE_UP
        self.time_synchronized = False
        self.data_collection_done = False
        self.wake_start_time = 0
        self.config = None
        self.endpoint: Optional[MeshEndpoint] = None
        self.mesh_state: Optional[SensorMeshState] = None
        self.handler: Optional[SensorMessageHandler] = None

    @property
    def running(self) -> bool:
        return self.handler is not None and self.handler.running

    def _uptime_sec(self) -> int:
        return self.clock.uptime() // 1_000_000

    def _start_p2p(self) -> None:
        if self.handler is not None:
            self.handler.start()

    def boot(self) -> None:
        """Bring the node up; after a timer wake-up run a cycle, which ends in deep sleep."""
        if self.endpoint is not None:
            raise RuntimeError("sensor already booted")
        self.rtc.init()
        self.time_sync.init()
        coordinated = self.rtc.is_timer_wakeup()
        if coordinated:
            log.info("Coordinated wake-up detected - entering ultra-low power mode")
        else:
            log.info("Normal boot - initializing standard mesh operation")

        self.config = build_sensor_mesh_config(
            MESH_CHANNEL,
            MESH_AP_PASSWORD,
            MESH_AP_CONNECTIONS,
            MESH_NON_MESH_AP_CONNECTIONS,
            fast_init=coordinated,
        )
        self.endpoint = self.network.attach(self.mac)
        self.mesh_state = SensorMeshState(on_p2p_start=self._start_p2p)
        self.handler = SensorMessageHandler(
            self.endpoint, self.time_sync, self.mesh_state, self.clock.uptime
        )
        self.handler.reset()
        self.mesh_state.handle_event(MeshEvent.STARTED, {"mesh_id": MESH_ID})
        self.mesh_state.handle_event(MeshEvent.PARENT_CONNECTED, {"self_layer": 2, "is_root": False})
        self.handler.start()

        if coordinated:
            self.coordinated_cycle()
            log.warning("Coordinated cycle returned unexpectedly")
            return
        log.info("Ready to receive time sync from gateway for coordinated operation")
        log.info("Running in standard continuous mode - monitoring for time sync")

    def check_wake_timeout(self) -> int:
        """Seconds awake so far; raise TimeoutError once the collection window is exceeded."""
        elapsed = self._uptime_sec() - self.wake_start_time
        if elapsed > DATA_COLLECTION_WINDOW_SEC:
            log.warning("Data collection timeout (%d sec) - entering emergency sleep", elapsed)
            raise TimeoutError(f"awake for {elapsed} seconds")
        return elapsed

    def _enter_sleep(self, seconds: int) -> None:
        self.state = CoordState.DEEP_SLEEP
        log.info("Entering coordinated deep sleep for %d seconds", seconds)
        self.rtc.enter_deep_sleep(seconds)

    def coordinated_cycle(self) -> None:
        """Sync, report and go to sleep; always ends by raising DeepSleepRequested."""
        if self.mesh_state is None:
            raise RuntimeError("sensor not booted")
        log.info("Starting coordinated ultra-low power cycle")
        self.wake_start_time = self._uptime_sec()

        self.state = CoordState.WAIT_TIME_SYNC
        try:
            self.time_sync.wait_for_time_sync(TIME_SYNC_WAIT_SEC)
            self.time_synchronized = True
            log.info("Time synchronized with gateway")
        except TimeoutError:
            log.warning("Time sync timeout - proceeding anyway")

        self.state = CoordState.CONNECT_MESH
        start_ms = self.clock.uptime() // 1000
        while (
            not self.mesh_state.is_connected
            and self.clock.uptime() // 1000 - start_ms < MESH_CONNECTION_TIMEOUT_SEC * 1000
        ):
            try:
                self.check_wake_timeout()
            except TimeoutError:
                self._enter_sleep(EMERGENCY_SLEEP_SEC)
            time.sleep(self.connect_poll)

        if self.mesh_state.is_connected:
            log.info("Mesh connected quickly")
            self.state = CoordState.COLLECT_DATA
            if self.time_sync.should_send_sensor_data():
                self.data_collection_done = True
                log.info("Sensor data collection complete")
            else:
                log.warning("Not in data collection window")
        else:
            log.warning("Mesh connection failed - emergency sleep")

        self.state = CoordState.PREPARE_SLEEP
        if not self.time_sync.is_synchronized():
            log.info("No time sync available - entering emergency sleep")
            self._enter_sleep(EMERGENCY_SLEEP_SEC)
            return
        try:
            seconds = self.time_sync.calculate_sleep_duration()
        except TimeSyncError:
            log.warning("Failed to calculate sleep duration - using emergency sleep")
            seconds = EMERGENCY_SLEEP_SEC
        self._enter_sleep(seconds)

    def stop(self) -> None:
        """Stop the loops and leave the mesh."""
        if self.handler is not None:
            self.handler.stop()
            self.handler = None
        if self.endpoint is not None:
            self.network.detach(self.mac)
            self.endpoint = None


def _parse_mac(text: str) -> bytes:
    try:
        raw = bytes.fromhex(text.replace(":", "").replace("-", ""))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid MAC address: {text!r}") from None
    if len(raw) != 6:
        raise argparse.ArgumentTypeError(f"MAC address must be 6 bytes: {text!r}")
    return raw


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="agrimesh-sensor", description="Run a mesh sensor node.")
    parser.add_argument("--mac", type=_parse_mac, default=DEFAULT_MAC, help="sensor MAC address")
    parser.add_argument("--timer-wakeup", action="store_true",
                        help="boot as after a coordinated timer wake-up")
    parser.add_argument("--duration", type=float, default=None, help="seconds to run before stopping")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    cause = WakeupCause.TIMER if args.timer_wakeup else WakeupCause.UNDEFINED
    app = SensorApp(Clock(), MeshNetwork(), args.mac, cause)
    try:
        app.boot()
        if args.duration is None:
            while True:
                time.sleep(1)
        else:
            time.sleep(max(args.duration, 0.0))
    except DeepSleepRequested as exc:
        print(f"deep sleep for {exc.seconds} seconds")
    except KeyboardInterrupt:
        pass
    finally:
        app.stop()
    return 0