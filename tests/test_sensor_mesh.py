import pytest

from agrimesh.mesh import MeshEvent, MeshRole
from agrimesh.protocol import format_mac
from agrimesh.sensor_mesh import SensorMeshState, build_sensor_mesh_config

PARENT = b"\x02\x00\x00\x00\x00\x0a"
OTHER = b"\x02\x00\x00\x00\x00\x0b"


def test_full_config_is_self_organised_node():
    config = build_sensor_mesh_config(0, "password", 6, 0)
    assert config.role is MeshRole.NODE
    assert config.select_parent is False
    assert config.fix_root is False
    assert config.self_organized is True
    assert config.vote_percentage == 1.0
    assert config.xon_qsize == 128
    assert config.ap_assoc_expire == 30


def test_full_config_with_power_save():
    config = build_sensor_mesh_config(0, "password", 6, 0, power_save=True)
    assert config.power_save is True
    assert config.ap_assoc_expire == 60


def test_fast_config_leaves_tuning_to_defaults():
    config = build_sensor_mesh_config(0, "password", 6, 0, fast_init=True, power_save=True)
    assert config.vote_percentage is None
    assert config.xon_qsize is None
    assert config.ap_assoc_expire is None
    assert config.power_save is False
    assert config.role is MeshRole.NODE


def test_config_rejects_bad_channel():
    with pytest.raises(ValueError):
        build_sensor_mesh_config(99, "password", 6, 0)


def test_started_does_not_connect_or_start_p2p():
    calls = []
    state = SensorMeshState(on_p2p_start=lambda: calls.append(1))
    msg = state.handle_event(MeshEvent.STARTED, {"layer": 3})
    assert msg.startswith("<MESH_EVENT_MESH_STARTED>")
    assert state.is_connected is False
    assert state.layer == 3
    assert calls == []


def test_parent_connected_records_parent_and_starts_p2p():
    calls = []
    state = SensorMeshState(on_p2p_start=lambda: calls.append(1))
    msg = state.handle_event(
        MeshEvent.PARENT_CONNECTED, {"self_layer": 2, "bssid": PARENT, "duty": 0}
    )
    assert state.is_connected is True
    assert state.layer == 2
    assert state.last_layer == 2
    assert state.parent_addr == PARENT
    assert f"parent:{format_mac(PARENT)}<layer2>" in msg
    assert calls == [1]


def test_parent_connected_as_root_marks_root():
    state = SensorMeshState()
    msg = state.handle_event(
        MeshEvent.PARENT_CONNECTED, {"self_layer": 1, "bssid": PARENT, "is_root": True}
    )
    assert "<ROOT>" in msg
    assert state.is_root is True


def test_parent_disconnected_clears_connection():
    state = SensorMeshState()
    state.handle_event(MeshEvent.PARENT_CONNECTED, {"self_layer": 2, "bssid": PARENT})
    state.handle_event(MeshEvent.PARENT_DISCONNECTED, {"reason": 7, "layer": 2})
    assert state.is_connected is False


def test_layer_change_updates_layers():
    state = SensorMeshState()
    state.handle_event(MeshEvent.PARENT_CONNECTED, {"self_layer": 2, "bssid": PARENT})
    msg = state.handle_event(MeshEvent.LAYER_CHANGE, {"new_layer": 3})
    assert msg == "<MESH_EVENT_LAYER_CHANGE>layer:2-->3"
    assert state.layer == 3
    assert state.last_layer == 3


def test_root_switch_ack_updates_parent():
    state = SensorMeshState()
    msg = state.handle_event(MeshEvent.ROOT_SWITCH_ACK, {"layer": 4, "parent": OTHER})
    assert state.parent_addr == OTHER
    assert state.layer == 4
    assert msg == f"<MESH_EVENT_ROOT_SWITCH_ACK>layer:4, parent:{format_mac(OTHER)}"


def test_scan_done_reports_number():
    state = SensorMeshState()
    assert state.handle_event(MeshEvent.SCAN_DONE, {"number": 5}) == "<MESH_EVENT_SCAN_DONE>number:5"


def test_routing_table_events_are_bare():
    state = SensorMeshState()
    assert state.handle_event(MeshEvent.ROUTING_TABLE_ADD, {"rt_size_change": 1}) == (
        "<MESH_EVENT_ROUTING_TABLE_ADD>"
    )
    assert state.handle_event(MeshEvent.ROUTING_TABLE_REMOVE) == "<MESH_EVENT_ROUTING_TABLE_REMOVE>"


def test_child_disconnected_is_unknown_on_sensor():
    state = SensorMeshState()
    msg = state.handle_event(MeshEvent.CHILD_DISCONNECTED, {"aid": 1, "mac": OTHER})
    assert msg == f"unknown id:{int(MeshEvent.CHILD_DISCONNECTED)}"


def test_shared_events_fall_back_to_common_format():
    state = SensorMeshState()
    msg = state.handle_event(MeshEvent.ROOT_ADDRESS, {"addr": OTHER})
    assert msg == f"<MESH_EVENT_ROOT_ADDRESS>root address:{format_mac(OTHER)}"
    assert state.is_connected is False


def test_unknown_event_id():
    state = SensorMeshState()
    assert state.handle_event(999) == "unknown id:999"