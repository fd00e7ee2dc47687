"""Mesh network model: configuration, event handling and an in-memory transport."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable, Mapping, Optional

from .protocol import format_mac

log = logging.getLogger(__name__)

MESH_ID = b"\x77" * 6
RX_SIZE = 1500
TX_SIZE = 1460

ROOT_ADDR = bytes(6)
BROADCAST_ADDR = b"\xff" * 6
ROUTER_SSID = "dummy"
ROUTER_PASSWORD = "password"

_MAX_CHANNEL = 14
_MAX_AP_PASSWORD = 64


class MeshEvent(IntEnum):
    STARTED = 0
    STOPPED = 1
    CHANNEL_SWITCH = 2
    CHILD_CONNECTED = 3
    CHILD_DISCONNECTED = 4
    ROUTING_TABLE_ADD = 5
    ROUTING_TABLE_REMOVE = 6
    PARENT_CONNECTED = 7
    PARENT_DISCONNECTED = 8
    NO_PARENT_FOUND = 9
    LAYER_CHANGE = 10
    TODS_STATE = 11
    VOTE_STARTED = 12
    VOTE_STOPPED = 13
    ROOT_ADDRESS = 14
    ROOT_SWITCH_REQ = 15
    ROOT_SWITCH_ACK = 16
    ROOT_ASKED_YIELD = 17
    ROOT_FIXED = 18
    SCAN_DONE = 19
    NETWORK_STATE = 20
    STOP_RECONNECTION = 21
    FIND_NETWORK = 22
    ROUTER_SWITCH = 23
    PS_PARENT_DUTY = 24
    PS_CHILD_DUTY = 25
    PS_DEVICE_DUTY = 26


class MeshRole(Enum):
    ROOT = "root"
    NODE = "node"


@dataclass(frozen=True)
class MeshConfig:
    """Everything needed to bring a node onto the mesh."""

    role: MeshRole
    channel: int
    ap_password: str
    max_connections: int
    nonmesh_max_connections: int
    power_save: bool = False
    ap_assoc_expire: int = 30
    mesh_id: bytes = MESH_ID
    router_ssid: str = ROUTER_SSID
    router_password: str = ROUTER_PASSWORD
    router_bssid: bytes = bytes(6)
    vote_percentage: float = 1.0
    xon_qsize: int = 128
    fix_root: bool = False
    self_organized: bool = True
    select_parent: bool = False


def build_mesh_config(
    role,
    channel,
    ap_password,
    max_connections,
    nonmesh_max_connections,
    power_save=False,
) -> MeshConfig:
    """Validate the parameters and build a self-organising, router-less config."""
    role = MeshRole(role)
    if not 0 <= channel <= _MAX_CHANNEL:
        raise ValueError(f"mesh channel out of range: {channel}")
    if len(ap_password.encode()) > _MAX_AP_PASSWORD:
        raise ValueError("mesh AP password too long")
    if max_connections < 1:
        raise ValueError(f"max_connections must be at least 1, got {max_connections}")
    if nonmesh_max_connections < 0:
        raise ValueError("nonmesh_max_connections must not be negative")
    return MeshConfig(
        role=role,
        channel=channel,
        ap_password=ap_password,
        max_connections=max_connections,
        nonmesh_max_connections=nonmesh_max_connections,
        power_save=power_save,
        ap_assoc_expire=60 if power_save else 30,
        select_parent=role is MeshRole.ROOT,
    )


def _mac_text(data: Mapping, key: str) -> str:
    return format_mac(data.get(key, bytes(6)))


class MeshState:
    """Connection state of the gateway, driven by mesh events."""

    def __init__(self, on_p2p_start: Optional[Callable[[], object]] = None):
        self.on_p2p_start = on_p2p_start
        self.is_connected = False
        self.is_root = False
        self.layer = -1
        self.last_layer = 0

    def _start_p2p(self) -> None:
        if self.on_p2p_start is not None:
            self.on_p2p_start()

    def handle_event(self, event, data: Optional[Mapping] = None) -> str:
        """Apply one event to the state and return the line that was logged."""
        d = data or {}
        level = logging.INFO
        try:
            ev = MeshEvent(event)
        except ValueError:
            ev = None

        if ev is MeshEvent.STARTED:
            self.is_connected = False
            self.layer = d.get("layer", self.layer)
            msg = f"<MESH_EVENT_MESH_STARTED>ID:{format_mac(d.get('mesh_id', MESH_ID))}"
            self.is_root = True
            self.is_connected = True
            log.info("GATEWAY: Setting as root and creating network immediately")
            self._start_p2p()
        elif ev is MeshEvent.STOPPED:
            self.is_connected = False
            self.layer = d.get("layer", self.layer)
            msg = "<MESH_EVENT_STOPPED>"
        elif ev is MeshEvent.CHILD_CONNECTED:
            msg = f"<MESH_EVENT_CHILD_CONNECTED>aid:{d.get('aid', 0)}, {_mac_text(d, 'mac')}"
        elif ev is MeshEvent.CHILD_DISCONNECTED:
            msg = f"<MESH_EVENT_CHILD_DISCONNECTED>aid:{d.get('aid', 0)}, {_mac_text(d, 'mac')}"
        elif ev in (MeshEvent.ROUTING_TABLE_ADD, MeshEvent.ROUTING_TABLE_REMOVE):
            level = logging.WARNING
            verb = "add" if ev is MeshEvent.ROUTING_TABLE_ADD else "remove"
            msg = (
                f"<MESH_EVENT_{ev.name}>{verb} {d.get('rt_size_change', 0)}, "
                f"new:{d.get('rt_size_new', 0)}, layer:{self.layer}"
            )
        elif ev is MeshEvent.NO_PARENT_FOUND:
            msg = f"<MESH_EVENT_NO_PARENT_FOUND>scan times:{d.get('scan_times', 0)}"
        elif ev is MeshEvent.PARENT_CONNECTED:
            self.layer = d.get("self_layer", self.layer)
            self.is_root = d.get("is_root", self.is_root)
            msg = (
                f"<MESH_EVENT_PARENT_CONNECTED>layer:{self.last_layer}-->{self.layer}, "
                f"ID:{format_mac(d.get('mesh_id', MESH_ID))}, duty:{d.get('duty', 0)}"
            )
            self.last_layer = self.layer
            self.is_connected = True
            if self.is_root:
                log.info("Restarting DHCP client on station interface")
            self._start_p2p()
        elif ev is MeshEvent.PARENT_DISCONNECTED:
            msg = f"<MESH_EVENT_PARENT_DISCONNECTED>reason:{d.get('reason', 0)}"
            self.is_connected = False
            self.layer = d.get("layer", self.layer)
        elif ev is MeshEvent.ROOT_ADDRESS:
            msg = f"<MESH_EVENT_ROOT_ADDRESS>root address:{_mac_text(d, 'addr')}"
        elif ev is MeshEvent.VOTE_STARTED:
            msg = (
                f"<MESH_EVENT_VOTE_STARTED>attempts:{d.get('attempts', 0)}, "
                f"reason:{d.get('reason', 0)}, rc_addr:{_mac_text(d, 'rc_addr')}"
            )
        elif ev is MeshEvent.VOTE_STOPPED:
            msg = "<MESH_EVENT_VOTE_STOPPED>"
        elif ev is MeshEvent.ROOT_SWITCH_REQ:
            msg = (
                f"<MESH_EVENT_ROOT_SWITCH_REQ>reason:{d.get('reason', 0)}, "
                f"rc_addr:{_mac_text(d, 'rc_addr')}"
            )
        elif ev is MeshEvent.ROOT_SWITCH_ACK:
            self.layer = d.get("layer", self.layer)
            msg = f"<MESH_EVENT_ROOT_SWITCH_ACK>layer:{self.layer}"
        elif ev is MeshEvent.TODS_STATE:
            msg = f"<MESH_EVENT_TODS_REACHABLE>state:{d.get('state', 0)}"
        elif ev is MeshEvent.ROOT_FIXED:
            msg = "<MESH_EVENT_ROOT_FIXED>" + ("fixed" if d.get("is_fixed") else "not fixed")
        elif ev is MeshEvent.ROOT_ASKED_YIELD:
            msg = (
                f"<MESH_EVENT_ROOT_ASKED_YIELD>{_mac_text(d, 'addr')}, "
                f"rssi:{d.get('rssi', 0)}, capacity:{d.get('capacity', 0)}"
            )
        elif ev is MeshEvent.CHANNEL_SWITCH:
            msg = f"<MESH_EVENT_CHANNEL_SWITCH>new channel:{d.get('channel', 0)}"
        elif ev is MeshEvent.NETWORK_STATE:
            msg = f"<MESH_EVENT_NETWORK_STATE>is_rootless:{int(bool(d.get('is_rootless')))}"
        elif ev is MeshEvent.STOP_RECONNECTION:
            msg = "<MESH_EVENT_STOP_RECONNECTION>"
        elif ev is MeshEvent.FIND_NETWORK:
            msg = (
                f"<MESH_EVENT_FIND_NETWORK>new channel:{d.get('channel', 0)}, "
                f"router BSSID:{_mac_text(d, 'router_bssid')}"
            )
        elif ev is MeshEvent.ROUTER_SWITCH:
            msg = (
                f"<MESH_EVENT_ROUTER_SWITCH>new router:{d.get('ssid', '')}, "
                f"channel:{d.get('channel', 0)}, {_mac_text(d, 'bssid')}"
            )
        elif ev is MeshEvent.PS_PARENT_DUTY:
            msg = f"<MESH_EVENT_PS_PARENT_DUTY>duty:{d.get('duty', 0)}"
        elif ev is MeshEvent.PS_CHILD_DUTY:
            msg = (
                f"<MESH_EVENT_PS_CHILD_DUTY>cidx:{d.get('aid', 0) - 1}, "
                f"{_mac_text(d, 'mac')}, duty:{d.get('duty', 0)}"
            )
        else:
            msg = f"unknown id:{int(event)}"

        log.log(level, "%s", msg)
        return msg


class MeshEndpoint:
    """One node's view of the mesh: send, receive and routing information."""

    def __init__(self, network: "MeshNetwork", mac: bytes, root: bool):
        self.network = network
        self.mac = mac
        self._root = root
        self._inbox: "queue.Queue[tuple[bytes, bytes]]" = queue.Queue()

    def send(self, dest, payload) -> None:
        """Deliver ``payload`` to ``dest``: a MAC, the root (all zeros) or everyone (all ones)."""
        self.network._deliver(self, bytes(dest), bytes(payload))

    def recv(self, timeout: Optional[float] = None) -> tuple[bytes, bytes]:
        """Return the next ``(source_mac, payload)``; raise TimeoutError if none arrives."""
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no mesh data received") from None

    def routing_table(self) -> list[bytes]:
        return self.network._routing_table(self)

    def is_root(self) -> bool:
        return self._root


class MeshNetwork:
    """In-memory mesh connecting endpoints by MAC address."""

    def __init__(self):
        self._lock = threading.Lock()
        self._nodes: dict[bytes, MeshEndpoint] = {}

    def attach(self, mac, is_root=False) -> MeshEndpoint:
        raw = bytes(mac)
        if len(raw) != 6:
            raise ValueError(f"MAC address must be 6 bytes, got {len(raw)}")
        if raw in (ROOT_ADDR, BROADCAST_ADDR):
            raise ValueError("reserved MAC address")
        with self._lock:
            if raw in self._nodes:
                raise ValueError(f"{format_mac(raw)} already attached")
            if is_root and self._root() is not None:
                raise ValueError("mesh already has a root")
            endpoint = MeshEndpoint(self, raw, bool(is_root))
            self._nodes[raw] = endpoint
        return endpoint

    def detach(self, mac) -> None:
        with self._lock:
            if self._nodes.pop(bytes(mac), None) is None:
                raise KeyError(format_mac(mac))

    def _root(self) -> Optional[MeshEndpoint]:
        return next((n for n in self._nodes.values() if n.is_root()), None)

    def _deliver(self, sender: MeshEndpoint, dest: bytes, payload: bytes) -> None:
        if not payload:
            raise ValueError("empty payload")
        if len(payload) > TX_SIZE:
            raise ValueError(f"payload of {len(payload)} bytes exceeds {TX_SIZE}")
        with self._lock:
            if self._nodes.get(sender.mac) is not sender:
                raise ConnectionError("endpoint is not attached")
            if dest == ROOT_ADDR:
                root = self._root()
                if root is None:
                    raise LookupError("mesh has no root")
                targets = [root]
            elif dest == BROADCAST_ADDR:
                targets = [n for n in self._nodes.values() if n is not sender]
            elif dest in self._nodes:
                targets = [self._nodes[dest]]
            else:
                raise LookupError(f"unknown destination {format_mac(dest)}")
        for target in targets:
            target._inbox.put((sender.mac, payload))

    def _routing_table(self, endpoint: MeshEndpoint) -> list[bytes]:
        with self._lock:
            if not endpoint.is_root():
                return [endpoint.mac]
            return [endpoint.mac] + [m for m in self._nodes if m != endpoint.mac]