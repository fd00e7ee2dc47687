"""Gateway message handling: receives sensor data and drives time-sync broadcasts."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .gateway_sync import GatewayTimeSync
from .mesh import MeshEndpoint, MeshState
from .protocol import MessageType, ProtocolError, SensorMessage, format_mac

log = logging.getLogger(__name__)


class GatewayMessageHandler:
    """Runs the gateway's receive loop and periodic status/broadcast loop."""

    status_interval = 30.0
    idle_interval = 10.0
    poll_interval = 0.5

    def __init__(self, endpoint: MeshEndpoint, time_sync: GatewayTimeSync, mesh_state: MeshState):
        self.endpoint = endpoint
        self.time_sync = time_sync
        self.mesh_state = mesh_state
        self.recv_count = 0
        self.send_count = 0
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def handle_packet(self, source, payload) -> Optional[SensorMessage]:
        """Process one received packet; return the sensor message if it was accepted."""
        payload = bytes(payload)
        if not payload:
            log.error("empty packet from %s", format_mac(source))
            return None
        self.recv_count += 1

        if len(payload) == SensorMessage.SIZE:
            try:
                msg = SensorMessage.unpack(payload)
            except ProtocolError as exc:
                log.warning("Malformed sensor message: %s", exc)
                return None
            if not msg.is_valid():
                log.warning(
                    "Invalid checksum from %s - expected 0x%04X, got 0x%04X",
                    format_mac(source),
                    msg.expected_checksum(),
                    msg.checksum,
                )
                return None
            h, d = msg.header, msg.data
            log.info(
                "RECEIVED agricultural data: Air %.1f°C, Soil %.1f°C, %.1f%% RH, %d lux, "
                "pH %.1f (Layer %d, Seq %d)",
                d.temp_air, d.soil_temp, d.hum_air, d.lux, d.soil_ph,
                h.mesh_layer, h.sequence_number,
            )
            if h.message_type == MessageType.SENSOR_DATA:
                self.time_sync.handle_sensor_data_received(h.node_mac)
                mac = format_mac(h.node_mac)
                log.info(
                    "AGRICULTURAL DATA [%s L%d]: %.1f°C, %.1f%% RH, %d lux, pH %.1f",
                    mac, h.mesh_layer, d.temp_air, d.hum_air, d.lux, d.soil_ph,
                )
                log.info(
                    "SOIL DATA [%s L%d]: Temp %.1f°C, Hum %.1f%%, EC %d µS/cm, NPK(%d,%d,%d)",
                    mac, h.mesh_layer, d.soil_temp, d.soil_hum, d.soil_ec,
                    d.soil_n, d.soil_p, d.soil_k,
                )
                log.info(
                    "STATUS [%s L%d]: Battery %.2fV (%dmV), Seq %d, Quality %d%%",
                    mac, h.mesh_layer, d.bat_lvl, d.bat_vol,
                    h.sequence_number, d.reading_quality,
                )
                return msg

        if self.recv_count % 10 == 0:
            log.warning(
                "[#RX:%d][L:%d] receive from %s, size:%d",
                self.recv_count, self.mesh_state.layer, format_mac(source), len(payload),
            )
        return None

    def status_tick(self) -> bool:
        """One pass of the status loop; True if a time sync was broadcast."""
        if not self.endpoint.is_root():
            log.info(
                "layer:%d, rtableSize:%d, %s",
                self.mesh_state.layer,
                len(self.endpoint.routing_table()),
                "NODE" if self.mesh_state.is_connected else "DISCONNECT",
            )
            return False

        table = self.endpoint.routing_table()
        self.send_count += 1
        if self.send_count % 10 == 0:
            log.info(
                "GATEWAY STATUS: Connected sensors:%d/%d, cycle:%d",
                len(table), len(table), self.send_count,
            )
        if self.time_sync.is_ready() and self.time_sync.should_broadcast_sync():
            log.info("Broadcasting time sync to sensors")
            try:
                self.time_sync.broadcast_time_sync()
            except Exception as exc:
                log.warning("Time sync broadcast failed: %s", exc)
                return False
            return True
        return False

    def _tx_loop(self) -> None:
        while not self._stop.is_set():
            delay = self.status_interval if self.endpoint.is_root() else self.idle_interval
            self.status_tick()
            self._stop.wait(delay)

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
        """Start the receive and status threads; a second call does nothing."""
        if self._threads:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._tx_loop, name="MPTX", daemon=True),
            threading.Thread(target=self._rx_loop, name="MPRX", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        log.info("GATEWAY: P2P TX and RX enabled with time sync coordination")

    def stop(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads = []