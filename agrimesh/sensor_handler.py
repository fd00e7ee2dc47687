"""Sensor message handling: sends readings to the gateway and applies time syncs."""

from __future__ import annotations

import logging
import struct
import threading
from typing import Callable, Optional

from .mesh import ROOT_ADDR, MeshEndpoint, MeshState
from .protocol import (
    MessageHeader,
    MessageType,
    NodeType,
    ProtocolError,
    SensorData,
    SensorMessage,
    TimeSyncMessage,
    format_mac,
)
from .sensor_sync import SensorTimeSync, TimeSyncError

log = logging.getLogger(__name__)

SIGNAL_STRENGTH = 70
READING_QUALITY = 95


def _f32(value: float) -> float:
    """Round a value to single precision, as stored on the wire."""
    return struct.unpack("<f", struct.pack("<f", value))[0]


def collect_sensor_readings(uptime_us: int) -> SensorData:
    """Simulated agricultural readings derived from the uptime in microseconds."""
    t = int(uptime_us)
    if t < 0:
        raise ValueError(f"uptime must not be negative, got {uptime_us}")
    bat_lvl = _f32(_f32(3.7) - _f32((t % 1000) / 10000.0))
    data = SensorData(
        lux=450 + t % 200,
        temp_air=_f32(22.5 + (t % 100) / 50.0),
        hum_air=_f32(65.0 + (t % 200) / 10.0),
        temp_ground=_f32(18.0 + (t % 80) / 40.0),
        soil_temp=_f32(19.0 + (t % 60) / 30.0),
        soil_hum=_f32(45.0 + (t % 300) / 10.0),
        soil_ec=800 + t % 400,
        soil_ph=_f32(6.2 + (t % 120) / 100.0),
        soil_n=25 + t % 15,
        soil_p=12 + t % 8,
        soil_k=180 + t % 40,
        soil_salinity=300 + t % 200,
        soil_tds_npk=450 + t % 150,
        bat_lvl=bat_lvl,
        bat_vol=int(_f32(bat_lvl * 1000)),
        reading_timestamp=(t // 1_000_000) & 0xFFFFFFFF,
        sensor_status=0x00,
        reading_quality=READING_QUALITY,
    )
    log.debug(
        "Collected sensor data: %.1f°C, %.1f%% RH, %d lux, pH %.1f",
        data.temp_air, data.hum_air, data.lux, data.soil_ph,
    )
    return data


class SensorMessageHandler:
    """Runs the sensor's receive loop and its data transmit loop."""

    tx_interval = 2.0
    poll_interval = 0.5

    def __init__(
        self,
        endpoint: MeshEndpoint,
        time_sync: SensorTimeSync,
        mesh_state: MeshState,
        uptime: Callable[[], int],
    ):
        self.endpoint = endpoint
        self.time_sync = time_sync
        self.mesh_state = mesh_state
        self.uptime = uptime
        self.sequence_number = 0
        self.recv_count = 0
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def reset(self) -> None:
        """Restart the sequence numbering and allow the loops to run."""
        log.info("Initializing agricultural sensor message handler")
        self.sequence_number = 0
        self._stop.clear()

    def build_message(self) -> SensorMessage:
        """Build the next checksummed sensor message, consuming a sequence number."""
        header = MessageHeader(
            node_mac=self.endpoint.mac,
            node_type=NodeType.SENSOR,
            message_type=MessageType.SENSOR_DATA,
            timestamp=(self.uptime() // 1_000_000) & 0xFFFFFFFF,
            sequence_number=self.sequence_number,
            mesh_layer=self.mesh_state.layer & 0xFF,
            signal_strength=SIGNAL_STRENGTH,
        )
        self.sequence_number = (self.sequence_number + 1) & 0xFFFF
        return SensorMessage(header, collect_sensor_readings(self.uptime())).with_checksum()

    def tx_step(self) -> Optional[SensorMessage]:
        """One pass of the transmit loop; return the message if one was sent."""
        if not self.mesh_state.is_connected or self.endpoint.is_root():
            log.debug("Waiting for mesh connection before sending data...")
            return None
        if not self.time_sync.is_synchronized():
            log.debug("Waiting for time synchronization before sending data")
            return None
        if not self.time_sync.should_send_sensor_data():
            log.debug("Outside data collection window - waiting for next cycle")
            return None

        msg = self.build_message()
        try:
            self.endpoint.send(ROOT_ADDR, msg.pack())
        except Exception as exc:
            log.warning("Failed to send sensor data to gateway: %s", exc)
            return None
        d, h = msg.data, msg.header
        log.info(
            "Sent agricultural data: Air %.1f°C, Soil %.1f°C, %.1f%% RH, %d lux, pH %.1f "
            "(Layer %d, Seq %d)",
            d.temp_air, d.soil_temp, d.hum_air, d.lux, d.soil_ph,
            h.mesh_layer, h.sequence_number,
        )
        return msg

    def handle_packet(self, source, payload) -> Optional[TimeSyncMessage]:
        """Process one received packet; return the time sync message if it was applied."""
        payload = bytes(payload)
        if not payload:
            log.error("empty packet from %s", format_mac(source))
            return None
        self.recv_count += 1

        if len(payload) == TimeSyncMessage.SIZE:
            try:
                msg = TimeSyncMessage.unpack(payload)
            except ProtocolError as exc:
                log.warning("Malformed time sync message: %s", exc)
                return None
            if (
                msg.header.message_type == MessageType.TIME_SYNC
                and msg.header.node_type == NodeType.GATEWAY
            ):
                log.info("Received time sync message from gateway [%s]", format_mac(source))
                try:
                    self.time_sync.handle_time_sync_message(msg)
                except TimeSyncError as exc:
                    log.warning("Failed to process time sync: %s", exc)
                    return None
                log.info("Time sync processed successfully")
                return msg

        if self.recv_count % 10 == 0:
            log.debug(
                "[#RX:%d][L:%d] from %s, size:%d",
                self.recv_count, self.mesh_state.layer, format_mac(source), len(payload),
            )
        return None

    def _tx_loop(self) -> None:
        while not self._stop.is_set():
            self.tx_step()
            self._stop.wait(self.tx_interval)

    def _rx_loop(self) -> None:
        while not self._stop.is_set():
            try:
                source, payload = self.endpoint.recv(self.poll_interval)
            except TimeoutError:
                continue
            except ConnectionError:
                break
            self.handle_packet(source, payload)

    def start(self) -> None:
        """Start the receive and data transmit threads; a second call does nothing."""
        if self._threads:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._rx_loop, name="MPRX", daemon=True),
            threading.Thread(target=self._tx_loop, name="SENSOR_DATA_TX", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        log.info("SENSOR: P2P RX enabled + Agricultural data TX enabled")

    def stop(self) -> None:
        log.info("Stopping agricultural sensor message handler")
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads = []