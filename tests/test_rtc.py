import logging

import pytest

from agrimesh.rtc import (
    Clock,
    DeepSleepRequested,
    RtcError,
    RtcManager,
    WakeupCause,
)


class FakeTime:
    def __init__(self):
        self.wall = 1749600000.0
        self.mono = 100.0


@pytest.fixture
def fake():
    return FakeTime()


@pytest.fixture
def clock(fake):
    return Clock(wall=lambda: fake.wall, monotonic=lambda: fake.mono)


def test_clock_follows_wall(clock, fake):
    assert clock.now() == int(fake.wall)
    fake.wall += 10
    assert clock.now() == int(fake.wall)


def test_clock_set_then_advance(clock, fake):
    clock.set(1000)
    assert clock.now() == 1000
    fake.wall += 5
    assert clock.now() == 1005


def test_clock_uptime(clock, fake):
    fake.mono += 3
    assert clock.uptime() == 3 * 1_000_000


def test_clock_rejects_negative(clock):
    with pytest.raises(RtcError):
        clock.set(-1)


def test_operations_before_init_fail(clock):
    rtc = RtcManager(clock)
    with pytest.raises(RtcError):
        rtc.set_sleep_timer(10)
    with pytest.raises(RtcError):
        rtc.enter_deep_sleep(10)


def test_init_records_wakeup(clock):
    rtc = RtcManager(clock, WakeupCause.TIMER)
    rtc.init()
    assert rtc.status.rtc_initialized
    assert rtc.status.last_wakeup_cause == WakeupCause.TIMER
    assert rtc.status.last_wake_time == clock.now()


def test_set_sleep_timer(clock):
    rtc = RtcManager(clock)
    rtc.init()
    rtc.set_sleep_timer(300)
    assert rtc.status.timer_wakeup_us == 300 * 1_000_000


def test_set_sleep_timer_rejects_negative(clock):
    rtc = RtcManager(clock)
    rtc.init()
    with pytest.raises(ValueError):
        rtc.set_sleep_timer(-5)


def test_enter_deep_sleep_counts_cycles(clock, fake):
    rtc = RtcManager(clock)
    rtc.init()
    with pytest.raises(DeepSleepRequested) as info:
        rtc.enter_deep_sleep(60)
    assert info.value.seconds == 60
    assert rtc.status.total_sleep_cycles == 1
    fake.wall += 100
    with pytest.raises(DeepSleepRequested):
        rtc.enter_deep_sleep(60)
    assert rtc.status.total_sleep_cycles == 2
    assert rtc.status.last_sleep_time == clock.now()


@pytest.mark.parametrize(
    "cause,expected",
    [(WakeupCause.TIMER, True), (WakeupCause.UNDEFINED, False), (WakeupCause.EXT0, False)],
)
def test_is_timer_wakeup(clock, cause, expected):
    assert RtcManager(clock, cause).is_timer_wakeup() is expected


def test_descriptions_differ_by_role(clock):
    sensor = RtcManager(clock, WakeupCause.TIMER, sensor=True)
    gateway = RtcManager(clock, WakeupCause.TIMER, sensor=False)
    assert "coordinated cycle" in sensor.wakeup_description()
    assert "coordinated cycle" not in gateway.wakeup_description()


def test_power_on_description(clock):
    sensor = RtcManager(clock, WakeupCause.UNDEFINED, sensor=True)
    gateway = RtcManager(clock, WakeupCause.UNDEFINED)
    assert "POWER-ON or RESET" in gateway.wakeup_description()
    assert "first boot" not in gateway.wakeup_description()
    assert "first boot" in sensor.wakeup_description()


def test_external_description(clock):
    rtc = RtcManager(clock, WakeupCause.EXT1)
    assert "RTC_CNTL" in rtc.wakeup_description()


def test_log_wakeup_info_reports_cycles(clock, caplog):
    rtc = RtcManager(clock, WakeupCause.ULP)
    rtc.init()
    with pytest.raises(DeepSleepRequested):
        rtc.enter_deep_sleep(1)
    caplog.clear()
    with caplog.at_level(logging.INFO, logger="agrimesh.rtc"):
        rtc.log_wakeup_info()
    assert "ULP" in caplog.text
    assert "Sleep cycles completed: 1" in caplog.text


def test_set_current_time(clock):
    rtc = RtcManager(clock)
    rtc.set_current_time(1749600000)
    assert rtc.current_time() == 1749600000


def test_set_current_time_failure(clock):
    rtc = RtcManager(clock)
    with pytest.raises(RtcError):
        rtc.set_current_time(-10)