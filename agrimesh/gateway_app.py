"""Gateway node: brings up time sync, the mesh root and message handling."""

from __future__ import annotations

import argparse
import logging
import time
from typing import Optional

from .gateway_handler import GatewayMessageHandler
from .gateway_sync import GatewayTimeSync
from .mesh import MESH_ID, MeshEndpoint, MeshEvent, MeshNetwork, MeshRole, MeshState, build_mesh_config
from .rtc import Clock, RtcManager

log = logging.getLogger(__name__)

MESH_CHANNEL = 0
MESH_AP_PASSWORD = "password"
MESH_AP_CONNECTIONS = 6
MESH_NON_MESH_AP_CONNECTIONS = 0
DEFAULT_MAC = b"\x02\x00\x00\x00\x00\x01"


class GatewayApp:
    """The gateway: root of the mesh that schedules and collects sensor cycles."""

    def __init__(self, clock: Clock, network: MeshNetwork, mac=DEFAULT_MAC):
        self.clock = clock
        self.network = network
        self.mac = bytes(mac)
        self.config = build_mesh_config(
            MeshRole.ROOT,
            MESH_CHANNEL,
            MESH_AP_PASSWORD,
            MESH_AP_CONNECTIONS,
            MESH_NON_MESH_AP_CONNECTIONS,
        )
        self.rtc = RtcManager(clock, sensor=False)
        self.endpoint: Optional[MeshEndpoint] = None
        self.time_sync: Optional[GatewayTimeSync] = None
        self.mesh_state: Optional[MeshState] = None
        self.handler: Optional[GatewayMessageHandler] = None

    @property
    def running(self) -> bool:
        return self.handler is not None and self.handler.running

    def _start_p2p(self) -> None:
        if self.handler is not None:
            self.handler.start()

    def start(self) -> None:
        """Initialise every subsystem and start the receive and status loops."""
        if self.endpoint is not None:
            return
        self.rtc.init()
        endpoint = self.network.attach(self.mac, is_root=True)
        try:
            self.time_sync = GatewayTimeSync(self.clock, endpoint, self.mac)
            self.time_sync.init()
        except Exception:
            self.network.detach(self.mac)
            raise
        self.endpoint = endpoint
        self.mesh_state = MeshState(on_p2p_start=self._start_p2p)
        self.handler = GatewayMessageHandler(endpoint, self.time_sync, self.mesh_state)
        log.info("GATEWAY: Configured as self-organizing root")
        self.mesh_state.handle_event(MeshEvent.STARTED, {"layer": 1, "mesh_id": MESH_ID})
        self.handler.start()
        log.info("Gateway Ready with Time Sync Coordination")

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
    parser = argparse.ArgumentParser(prog="agrimesh-gateway", description="Run a mesh gateway node.")
    parser.add_argument("--mac", type=_parse_mac, default=DEFAULT_MAC, help="gateway MAC address")
    parser.add_argument("--duration", type=float, default=None, help="seconds to run before stopping")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    app = GatewayApp(Clock(), MeshNetwork(), args.mac)
    app.start()
    try:
        if args.duration is None:
            while True:
                time.sleep(1)
        else:
            time.sleep(max(args.duration, 0.0))
    except KeyboardInterrupt:
        pass
    finally:
        app.stop()
    return 0