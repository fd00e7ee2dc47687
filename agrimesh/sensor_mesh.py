"""Sensor-node mesh configuration and event handling."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Mapping, Optional

from .mesh import MESH_ID, MeshConfig, MeshEvent, MeshRole, MeshState, build_mesh_config
from .protocol import format_mac

log = logging.getLogger(__name__)


def build_sensor_mesh_config(
    channel,
    ap_password,
    max_connections,
    nonmesh_max_connections,
    fast_init=False,
    power_save=False,
) -> MeshConfig:
    """Build the configuration of a self-organising node that never asks to be root.

    A fast init (coordinated timer wake-up) skips vote, queue and power-save
    tuning; those settings are left as ``None``, meaning the stack defaults.
    """
    config = build_mesh_config(
        MeshRole.NODE,
        channel,
        ap_password,
        max_connections,
        nonmesh_max_connections,
        power_save=power_save,
    )
    if fast_init:
        config = replace(
            config,
            power_save=False,
            ap_assoc_expire=None,
            vote_percentage=None,
            xon_qsize=None,
        )
    return config


class SensorMeshState(MeshState):
    """Connection state of a sensor node, including its parent address."""

    def __init__(self, on_p2p_start: Optional[Callable[[], object]] = None):
        super().__init__(on_p2p_start)
        self.parent_addr = bytes(6)

    def _role_suffix(self) -> str:
        if self.is_root:
            return "<ROOT>"
        return "<layer2>" if self.layer == 2 else ""

    def handle_event(self, event, data: Optional[Mapping] = None) -> str:
        """Apply one event to the state and return the line that was logged."""
        d = data or {}
        try:
            ev = MeshEvent(event)
        except ValueError:
            return super().handle_event(event, data)

        if ev is MeshEvent.STARTED:
            self.is_connected = False
            self.layer = d.get("layer", self.layer)
            msg = f"<MESH_EVENT_MESH_STARTED>ID:{format_mac(d.get('mesh_id', MESH_ID))}"
        elif ev in (MeshEvent.ROUTING_TABLE_ADD, MeshEvent.ROUTING_TABLE_REMOVE):
            msg = f"<MESH_EVENT_{ev.name}>"
            log.debug("%s", msg)
            return msg
        elif ev is MeshEvent.CHILD_DISCONNECTED:
            msg = f"unknown id:{int(ev)}"
        elif ev is MeshEvent.PARENT_CONNECTED:
            self.layer = d.get("self_layer", self.layer)
            self.is_root = d.get("is_root", self.is_root)
            parent = bytes(d.get("bssid", bytes(6)))
            parent_text = format_mac(parent)
            self.parent_addr = parent
            msg = (
                f"<MESH_EVENT_PARENT_CONNECTED>layer:{self.last_layer}-->{self.layer}, "
                f"parent:{parent_text}{self._role_suffix()}, "
                f"ID:{format_mac(d.get('mesh_id', MESH_ID))}, duty:{d.get('duty', 0)}"
            )
            self.last_layer = self.layer
            self.is_connected = True
            if self.is_root:
                log.info("Restarting DHCP client on station interface")
            log.info("%s", msg)
            self._start_p2p()
            return msg
        elif ev is MeshEvent.LAYER_CHANGE:
            self.layer = d.get("new_layer", self.layer)
            self.is_root = d.get("is_root", self.is_root)
            msg = (
                f"<MESH_EVENT_LAYER_CHANGE>layer:{self.last_layer}-->{self.layer}"
                f"{self._role_suffix()}"
            )
            self.last_layer = self.layer
        elif ev is MeshEvent.ROOT_SWITCH_ACK:
            self.layer = d.get("layer", self.layer)
            parent = bytes(d.get("parent", self.parent_addr))
            parent_text = format_mac(parent)
            self.parent_addr = parent
            msg = f"<MESH_EVENT_ROOT_SWITCH_ACK>layer:{self.layer}, parent:{parent_text}"
        elif ev is MeshEvent.SCAN_DONE:
            msg = f"<MESH_EVENT_SCAN_DONE>number:{d.get('number', 0)}"
        else:
            return super().handle_event(event, data)

        log.info("%s", msg)
        return msg