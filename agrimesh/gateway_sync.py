"""Gateway side of time synchronisation and data-collection cycles."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .protocol import MessageHeader, MessageType, NodeType, TimeSyncMessage, format_mac
from .rtc import Clock, RtcError

log = logging.getLogger(__name__)

DATA_COLLECTION_INTERVAL_SEC = 300
DATA_COLLECTION_WINDOW_SEC = 60
MAX_EXPECTED_SENSORS = 100
SYNC_BROADCAST_INTERVAL_SEC = 30
HARDCODED_START_TIME = 1749600000  # 2025-06-10 00:00:00 UTC
EXPECTED_SENSOR_COUNT = 2

BROADCAST_ADDR = b"\xff" * 6


def _mac(value) -> bytes:
    raw = bytes(value)
    if len(raw) != 6:
        raise ValueError(f"MAC address must be 6 bytes, got {len(raw)}")
    return raw


@dataclass
class GatewaySyncStatus:
    current_sync_time: int = 0
    next_wake_time: int = 0
    cycle_start_time: int = 0
    sleep_duration_sec: int = 0
    time_is_synchronized: bool = False
    sync_source: int = 0
    sensors_reported_count: int = 0
    expected_sensor_count: int = 0
    data_collection_complete: bool = False
    collection_deadline: int = 0


class GatewayTimeSync:
    """Keeps the network clock, schedules cycles and tracks which sensors reported.

    ``transport`` needs a ``send(dest, payload)`` method that raises on failure.
    """

    def __init__(self, clock: Clock, transport, own_mac):
        self.clock = clock
        self.transport = transport
        self.own_mac = _mac(own_mac)
        self.status = GatewaySyncStatus()
        self.last_sync_broadcast = 0
        self._reported: list[bytes] = []

    @property
    def reported_sensors(self) -> tuple[bytes, ...]:
        """MAC addresses that reported during the current cycle."""
        return tuple(self._reported)

    def init(self) -> None:
        log.info("Initializing Time Sync Manager...")
        self.status = GatewaySyncStatus()
        self._reported.clear()
        try:
            self.sync_time_from_hardcoded()
        except RtcError:
            log.error("Failed to initialize time sync")
            raise
        self.schedule_next_wake_cycle()
        log.info("Time Sync Manager initialized successfully")
        log.info("Next data collection cycle: %d", self.status.next_wake_time)

    def sync_time_from_hardcoded(self) -> None:
        """Set the clock to the fixed start time and mark it synchronised."""
        log.info("Setting time from hardcoded value")
        try:
            self.clock.set(HARDCODED_START_TIME)
        except RtcError:
            log.error("Failed to set system time")
            raise
        self.status.current_sync_time = HARDCODED_START_TIME
        self.status.time_is_synchronized = True
        self.status.sync_source = 0
        log.info("Time synchronized: %s", time.asctime(time.localtime(self.clock.now())))

    def broadcast_time_sync(self) -> TimeSyncMessage:
        """Send the current schedule to every node and return the message sent."""
        if not self.status.time_is_synchronized:
            log.warning("Time not synchronized, skipping broadcast")
            raise RuntimeError("time not synchronized")
        now = self.clock.now()
        msg = TimeSyncMessage(
            header=MessageHeader(
                node_mac=self.own_mac,
                node_type=NodeType.GATEWAY,
                message_type=MessageType.TIME_SYNC,
                timestamp=now,
                sequence_number=0,
            ),
            current_unix_time=now,
            next_wake_time=self.status.next_wake_time,
            sleep_duration_sec=self.status.sleep_duration_sec,
            sync_source=self.status.sync_source,
        )
        try:
            self.transport.send(BROADCAST_ADDR, msg.pack())
        except Exception as exc:
            log.error("Failed to broadcast time sync: %s", exc)
            raise
        self.last_sync_broadcast = self.clock.now()
        log.info(
            "Time sync broadcast sent - Next wake: %d, Sleep: %d sec",
            msg.next_wake_time,
            msg.sleep_duration_sec,
        )
        return msg

    def handle_sensor_data_received(self, sensor_mac) -> bool:
        """Record a report from ``sensor_mac``; True if it counted for this cycle."""
        mac = _mac(sensor_mac)
        if not self.is_data_collection_window_active():
            log.debug("Sensor data received outside collection window")
            return False
        if mac in self._reported:
            log.debug("Sensor already reported this cycle")
            return False
        if self.status.sensors_reported_count >= MAX_EXPECTED_SENSORS:
            log.warning(
                "Sensor count exceeded MAX_EXPECTED_SENSORS (%d), ignoring additional sensors",
                MAX_EXPECTED_SENSORS,
            )
            return False

        self._reported.append(mac)
        self.status.sensors_reported_count += 1
        log.info(
            "Sensor reported data (%d/%d) - MAC: %s",
            self.status.sensors_reported_count,
            self.status.expected_sensor_count,
            format_mac(mac),
        )
        if self.status.sensors_reported_count >= self.status.expected_sensor_count:
            self.status.data_collection_complete = True
            log.info("All sensors reported! Data collection cycle complete")
            self.schedule_next_wake_cycle()
            try:
                self.broadcast_time_sync()
            except Exception:
                log.warning("Schedule broadcast after complete cycle failed")
        return True

    def schedule_next_wake_cycle(self) -> int:
        """Start a new cycle and return the next aligned wake-up time."""
        now = self.clock.now()
        next_interval = (now // DATA_COLLECTION_INTERVAL_SEC + 1) * DATA_COLLECTION_INTERVAL_SEC
        self.status.next_wake_time = next_interval
        self.status.sleep_duration_sec = DATA_COLLECTION_INTERVAL_SEC
        self.status.cycle_start_time = now
        self.status.collection_deadline = now + DATA_COLLECTION_WINDOW_SEC
        self.reset_data_collection_cycle()
        log.info(
            "Next cycle scheduled - Wake: %d (in %d sec), Duration: %d sec",
            next_interval,
            next_interval - now,
            self.status.sleep_duration_sec,
        )
        return next_interval

    def next_collection_time(self) -> int:
        return self.status.next_wake_time

    def is_data_collection_window_active(self) -> bool:
        now = self.clock.now()
        return self.status.cycle_start_time <= now <= self.status.collection_deadline

    def should_broadcast_sync(self) -> bool:
        return self.clock.now() - self.last_sync_broadcast >= SYNC_BROADCAST_INTERVAL_SEC

    def reset_data_collection_cycle(self) -> None:
        self.status.sensors_reported_count = 0
        self.status.data_collection_complete = False
        self.status.expected_sensor_count = EXPECTED_SENSOR_COUNT
        self._reported.clear()
        log.debug(
            "Data collection cycle reset - Expecting %d sensors",
            self.status.expected_sensor_count,
        )

    def is_ready(self) -> bool:
        return self.status.time_is_synchronized