"""Wall clock, wake-up bookkeeping and deep-sleep requests."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional

log = logging.getLogger(__name__)

DEFAULT_SLEEP_DURATION = 300
SHORT_SLEEP_DURATION = 60
LONG_SLEEP_DURATION = 3600

_MAX_SECONDS = 0xFFFFFFFF


class WakeupCause(IntEnum):
    UNDEFINED = 0
    ALL = 1
    EXT0 = 2
    EXT1 = 3
    TIMER = 4
    TOUCHPAD = 5
    ULP = 6
    GPIO = 7
    UART = 8


class RtcError(Exception):
    """Raised when the RTC is used in an invalid state or the time cannot be set."""


class DeepSleepRequested(Exception):
    """Signals that the node is going into deep sleep for ``seconds``."""

    def __init__(self, seconds: int):
        super().__init__(f"deep sleep for {seconds} seconds")
        self.seconds = seconds


class Clock:
    """Settable system clock with a monotonic uptime counter."""

    def __init__(
        self,
        wall: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._wall = wall
        self._monotonic = monotonic
        self._offset = 0.0
        self._boot = monotonic()

    def now(self) -> int:
        """Current Unix time in whole seconds."""
        return int(self._wall() + self._offset)

    def set(self, unix_time: int) -> None:
        if not isinstance(unix_time, int) or unix_time < 0:
            raise RtcError(f"cannot set system time to {unix_time!r}")
        self._offset = unix_time - self._wall()

    def uptime(self) -> int:
        """Microseconds since the clock was created."""
        return int(round((self._monotonic() - self._boot) * 1_000_000))


@dataclass
class RtcStatus:
    last_wakeup_cause: WakeupCause = WakeupCause.UNDEFINED
    last_sleep_time: int = 0
    last_wake_time: int = 0
    total_sleep_cycles: int = 0
    rtc_initialized: bool = False
    timer_wakeup_us: Optional[int] = None


_DESCRIPTIONS = {
    WakeupCause.EXT0: "Wake-up from external signal (RTC_IO)",
    WakeupCause.EXT1: "Wake-up from external signal (RTC_CNTL)",
    WakeupCause.TOUCHPAD: "Wake-up from touchpad",
    WakeupCause.ULP: "Wake-up from ULP program",
}


class RtcManager:
    """Tracks wake-ups and arms the timer that ends a deep sleep."""

    def __init__(self, clock: Clock, wakeup_cause=WakeupCause.UNDEFINED, sensor: bool = False):
        self.clock = clock
        self.wakeup_cause = WakeupCause(wakeup_cause)
        self.sensor = sensor
        self.status = RtcStatus()

    def init(self) -> None:
        log.info("Initializing RTC Manager...")
        self.status.last_wakeup_cause = self.wakeup_cause
        self.status.last_wake_time = self.clock.now()
        self.status.rtc_initialized = True
        self.log_wakeup_info()
        log.info("RTC Manager initialized successfully")

    def _require_init(self) -> None:
        if not self.status.rtc_initialized:
            log.error("RTC not initialized")
            raise RtcError("RTC not initialized")

    def set_sleep_timer(self, seconds: int) -> None:
        self._require_init()
        if not 0 <= seconds <= _MAX_SECONDS:
            raise ValueError(f"sleep duration out of range: {seconds}")
        self.status.timer_wakeup_us = seconds * 1_000_000
        log.info("Sleep timer set for %d seconds", seconds)

    def enter_deep_sleep(self, seconds: int) -> None:
        """Arm the timer, record the cycle and raise DeepSleepRequested."""
        self._require_init()
        self.set_sleep_timer(seconds)
        self.status.last_sleep_time = self.clock.now()
        self.status.total_sleep_cycles += 1
        log.info(
            "Entering deep sleep for %d seconds (cycle #%d)",
            seconds,
            self.status.total_sleep_cycles,
        )
        raise DeepSleepRequested(seconds)

    def is_timer_wakeup(self) -> bool:
        return self.wakeup_cause == WakeupCause.TIMER

    def wakeup_description(self) -> str:
        if self.wakeup_cause == WakeupCause.TIMER:
            return "Wake-up from TIMER (coordinated cycle)" if self.sensor else "Wake-up from TIMER"
        if self.wakeup_cause in _DESCRIPTIONS:
            return _DESCRIPTIONS[self.wakeup_cause]
        text = "Wake-up from POWER-ON or RESET"
        return f"{text} (first boot)" if self.sensor else text

    def log_wakeup_info(self) -> None:
        log.info("%s", self.wakeup_description())
        if self.status.total_sleep_cycles > 0:
            log.info("Sleep cycles completed: %d", self.status.total_sleep_cycles)

    def current_time(self) -> int:
        return self.clock.now()

    def set_current_time(self, unix_time: int) -> None:
        try:
            self.clock.set(unix_time)
        except RtcError:
            log.error("Failed to set system time")
            raise
        log.info("System time updated to: %d", unix_time)