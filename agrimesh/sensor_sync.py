"""Sensor side of time synchronisation and sleep coordination."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .protocol import MessageType, NodeType, TimeSyncMessage
from .rtc import Clock, RtcError, RtcManager

log = logging.getLogger(__name__)

TIME_SYNC_TIMEOUT_SEC = 10
SYNC_MESSAGE_VALIDITY_SEC = 120
MAX_CLOCK_DRIFT_SEC = 5
COLLECTION_WINDOW_SEC = 30

_POLL_INTERVAL = 0.1
_SOURCE_NAMES = {0: "Hardcoded", 1: "GPRS"}


class TimeSyncError(Exception):
    """Raised for invalid sync messages or when time is not synchronised."""


@dataclass
class SensorSyncStatus:
    current_sync_time: int = 0
    next_wake_time: int = 0
    collection_start_time: int = 0
    collection_end_time: int = 0
    sleep_duration_sec: int = 0
    time_is_synchronized: bool = False
    sync_source: int = 0
    last_sync_received: int = 0
    waiting_for_sync: bool = False
    in_collection_window: bool = False
    sync_messages_received: int = 0


class SensorTimeSync:
    """Applies gateway time broadcasts and works out when to sleep."""

    def __init__(self, rtc: RtcManager, clock: Clock):
        self.rtc = rtc
        self.clock = clock
        self.status = SensorSyncStatus()
        self._cond = threading.Condition()

    def init(self) -> None:
        log.info("Initializing Sensor Time Sync Manager...")
        with self._cond:
            self.status = SensorSyncStatus(waiting_for_sync=True)
        log.info("Sensor Time Sync Manager initialized - waiting for gateway sync")

    def handle_time_sync_message(self, msg: TimeSyncMessage) -> None:
        """Adopt the gateway's time and open a collection window."""
        if msg is None:
            log.error("Invalid sync message")
            raise TimeSyncError("missing sync message")
        if not self.is_sync_message_valid(msg):
            log.warning("Invalid or stale sync message - ignoring")
            raise TimeSyncError("invalid sync message")

        log.info(
            "Received time sync from gateway - Next wake: %d, Sleep: %d sec",
            msg.next_wake_time,
            msg.sleep_duration_sec,
        )
        gateway_time = msg.current_unix_time
        try:
            self.rtc.set_current_time(gateway_time)
            log.info("System time synchronized with gateway")
        except RtcError:
            pass

        with self._cond:
            s = self.status
            s.current_sync_time = gateway_time
            s.next_wake_time = msg.next_wake_time
            s.sleep_duration_sec = msg.sleep_duration_sec
            s.sync_source = msg.sync_source
            s.last_sync_received = self.clock.now()
            s.time_is_synchronized = True
            s.waiting_for_sync = False
            s.sync_messages_received += 1

            now = self.clock.now()
            s.in_collection_window = True
            s.collection_start_time = now
            s.collection_end_time = now + COLLECTION_WINDOW_SEC
            self._cond.notify_all()

        log.info("Immediate data collection window opened - %d seconds to respond", COLLECTION_WINDOW_SEC)
        log.info(
            "Time sync processed (msg #%d) - Source: %s",
            self.status.sync_messages_received,
            _SOURCE_NAMES.get(msg.sync_source, "Unknown"),
        )

    def wait_for_time_sync(self, timeout_sec: int) -> None:
        """Block until a sync message arrives; raise TimeoutError after ``timeout_sec``."""
        log.info("Waiting for time sync from gateway (timeout: %d sec)...", timeout_sec)
        with self._cond:
            self.status.waiting_for_sync = True
            start = self.clock.uptime() // 1_000_000
            while self.status.waiting_for_sync:
                if self.clock.uptime() // 1_000_000 - start >= timeout_sec:
                    log.warning("Time sync timeout after %d seconds", timeout_sec)
                    self.status.waiting_for_sync = False
                    raise TimeoutError(f"no time sync within {timeout_sec} seconds")
                self._cond.wait(_POLL_INTERVAL)
        log.info("Time sync received successfully")

    def time_until_next_wake(self) -> int:
        if not self.status.time_is_synchronized:
            return 0
        return max(self.status.next_wake_time - self.clock.now(), 0)

    def is_collection_window_active(self) -> bool:
        if not self.status.time_is_synchronized:
            return False
        if self.status.in_collection_window and self.clock.now() > self.status.collection_end_time:
            self.status.in_collection_window = False
            log.info("Data collection window closed")
        return self.status.in_collection_window

    def should_send_sensor_data(self) -> bool:
        return self.is_collection_window_active() and self.status.time_is_synchronized

    def is_sync_message_valid(self, msg) -> bool:
        if msg is None:
            return False
        if msg.header.message_type != MessageType.TIME_SYNC:
            log.warning("Wrong message type: %d", msg.header.message_type)
            return False
        if msg.header.node_type != NodeType.GATEWAY:
            log.warning("Time sync not from gateway - node type: %d", msg.header.node_type)
            return False
        log.info("Valid time sync from gateway - accepting time: %d", msg.current_unix_time)
        return True

    def calculate_sleep_duration(self) -> int:
        """Seconds until the next coordinated wake-up, or the cycle length if it has passed."""
        if not self.status.time_is_synchronized:
            raise TimeSyncError("time not synchronized")
        remaining = self.time_until_next_wake()
        seconds = self.status.sleep_duration_sec if remaining <= 0 else remaining
        log.info("Calculated sleep duration: %d seconds", seconds)
        return seconds

    def prepare_for_coordinated_sleep(self) -> int:
        """Arm the RTC timer for the coordinated sleep and return its length."""
        if not self.status.time_is_synchronized:
            log.warning("Cannot coordinate sleep - not time synchronized")
            raise TimeSyncError("time not synchronized")
        seconds = self.calculate_sleep_duration()
        log.info("Preparing coordinated sleep - wake at: %d", self.status.next_wake_time)
        try:
            self.rtc.set_sleep_timer(seconds)
        except RtcError:
            log.error("Failed to set sleep timer")
            raise
        log.info("Ready for coordinated sleep - %d seconds", seconds)
        return seconds

    def is_synchronized(self) -> bool:
        return self.status.time_is_synchronized