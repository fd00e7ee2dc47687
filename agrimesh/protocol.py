"""Binary wire format shared by gateway and sensor nodes.

All structures are packed little-endian without padding, matching the
layout that travels over the mesh.
"""

from __future__ import annotations

import struct
from dataclasses import astuple, dataclass, field, fields, replace
from enum import IntEnum
from typing import ClassVar


class ProtocolError(ValueError):
    """Raised when a message cannot be packed or unpacked."""


class MessageType(IntEnum):
    SENSOR_DATA = 0x01
    HEARTBEAT = 0x02
    BATTERY_LOW = 0x03
    ERROR = 0x04
    TIME_SYNC = 0x05
    WAKE_SCHEDULE = 0x06
    SLEEP_COORD = 0x07


class NodeType(IntEnum):
    GATEWAY = 0x01
    SENSOR = 0x02


class ErrorCode(IntEnum):
    SENSOR_READ = 0x01
    MESH_DISCONNECT = 0x02
    BATTERY_LOW = 0x03
    TIME_SYNC = 0x04
    SOIL_SENSOR = 0x05
    AIR_SENSOR = 0x06


MAX_SENSOR_NODES = 50

_HEADER = struct.Struct("<6sBBIHBB")
_SENSOR_DATA = struct.Struct("<HfffffHfHHHHHfHIBB")
_CHECKSUM = struct.Struct("<H")
_TIME_SYNC_BODY = struct.Struct("<IIHBB")
_SLEEP_COORD_BODY = struct.Struct("<IIHB")
_HEARTBEAT_BODY = struct.Struct("<IHBB")


def _pack(layout: struct.Struct, *values) -> bytes:
    try:
        return layout.pack(*values)
    except struct.error as exc:
        raise ProtocolError(str(exc)) from exc


def _exact(data, size: int, name: str) -> bytes:
    raw = bytes(data)
    if len(raw) != size:
        raise ProtocolError(f"{name} needs {size} bytes, got {len(raw)}")
    return raw


def _check_mac(mac) -> bytes:
    raw = bytes(mac)
    if len(raw) != 6:
        raise ProtocolError(f"MAC address must be 6 bytes, got {len(raw)}")
    return raw


def calculate_checksum(data) -> int:
    """Sum of all bytes, truncated to 16 bits."""
    return sum(bytes(data)) & 0xFFFF


def format_mac(mac) -> str:
    """Render a MAC address as colon-separated lower-case hex."""
    return ":".join(f"{b:02x}" for b in _check_mac(mac))


def mac_to_sensor_id(mac) -> str:
    """Short sensor id built from the last two MAC bytes, e.g. "1:0"."""
    raw = _check_mac(mac)
    return f"{raw[4]}:{raw[5]}"


@dataclass(frozen=True)
class SensorData:
    """One complete set of agricultural readings."""

    lux: int = 0
    temp_air: float = 0.0
    hum_air: float = 0.0
    temp_ground: float = 0.0
    soil_temp: float = 0.0
    soil_hum: float = 0.0
    soil_ec: int = 0
    soil_ph: float = 0.0
    soil_n: int = 0
    soil_p: int = 0
    soil_k: int = 0
    soil_salinity: int = 0
    soil_tds_npk: int = 0
    bat_lvl: float = 0.0
    bat_vol: int = 0
    reading_timestamp: int = 0
    sensor_status: int = 0
    reading_quality: int = 0

    SIZE: ClassVar[int] = _SENSOR_DATA.size

    def pack(self) -> bytes:
        return _pack(_SENSOR_DATA, *astuple(self))

    @classmethod
    def unpack(cls, data) -> "SensorData":
        return cls(*_SENSOR_DATA.unpack(_exact(data, cls.SIZE, cls.__name__)))


@dataclass(frozen=True)
class MessageHeader:
    """Header that starts every mesh message."""

    node_mac: bytes = bytes(6)
    node_type: int = 0
    message_type: int = 0
    timestamp: int = 0
    sequence_number: int = 0
    mesh_layer: int = 0
    signal_strength: int = 0

    SIZE: ClassVar[int] = _HEADER.size

    def pack(self) -> bytes:
        return _pack(
            _HEADER,
            _check_mac(self.node_mac),
            int(self.node_type),
            int(self.message_type),
            self.timestamp,
            self.sequence_number,
            self.mesh_layer,
            self.signal_strength,
        )

    @classmethod
    def unpack(cls, data) -> "MessageHeader":
        return cls(*_HEADER.unpack(_exact(data, cls.SIZE, cls.__name__)))


@dataclass(frozen=True)
class SensorMessage:
    """Header, readings and a trailing 16-bit checksum."""

    header: MessageHeader = field(default_factory=MessageHeader)
    data: SensorData = field(default_factory=SensorData)
    checksum: int = 0

    SIZE: ClassVar[int] = MessageHeader.SIZE + SensorData.SIZE + _CHECKSUM.size

    def _body(self) -> bytes:
        return self.header.pack() + self.data.pack()

    def pack(self) -> bytes:
        return self._body() + _pack(_CHECKSUM, self.checksum)

    @classmethod
    def unpack(cls, data) -> "SensorMessage":
        raw = _exact(data, cls.SIZE, cls.__name__)
        split = MessageHeader.SIZE
        end = split + SensorData.SIZE
        (checksum,) = _CHECKSUM.unpack(raw[end:])
        return cls(
            MessageHeader.unpack(raw[:split]),
            SensorData.unpack(raw[split:end]),
            checksum,
        )

    def expected_checksum(self) -> int:
        return calculate_checksum(self._body())

    def with_checksum(self) -> "SensorMessage":
        return replace(self, checksum=self.expected_checksum())

    def is_valid(self) -> bool:
        return self.checksum == self.expected_checksum()


def _pack_framed(msg, body: struct.Struct) -> bytes:
    values = tuple(getattr(msg, f.name) for f in fields(msg)[1:])
    return msg.header.pack() + _pack(body, *values)


def _unpack_framed(cls, body: struct.Struct, data):
    raw = _exact(data, cls.SIZE, cls.__name__)
    header = MessageHeader.unpack(raw[: MessageHeader.SIZE])
    return cls(header, *body.unpack(raw[MessageHeader.SIZE:]))


@dataclass(frozen=True)
class TimeSyncMessage:
    """Gateway broadcast carrying the time and the next wake-up."""

    header: MessageHeader = field(default_factory=MessageHeader)
    current_unix_time: int = 0
    next_wake_time: int = 0
    sleep_duration_sec: int = 0
    sync_source: int = 0
    collection_window_sec: int = 0

    SIZE: ClassVar[int] = MessageHeader.SIZE + _TIME_SYNC_BODY.size

    def pack(self) -> bytes:
        return _pack_framed(self, _TIME_SYNC_BODY)

    @classmethod
    def unpack(cls, data) -> "TimeSyncMessage":
        return _unpack_framed(cls, _TIME_SYNC_BODY, data)


@dataclass(frozen=True)
class SleepCoordMessage:
    """Coordinated sleep schedule."""

    header: MessageHeader = field(default_factory=MessageHeader)
    sleep_start_time: int = 0
    wake_up_time: int = 0
    collection_window: int = 0
    mesh_layer_order: int = 0

    SIZE: ClassVar[int] = MessageHeader.SIZE + _SLEEP_COORD_BODY.size

    def pack(self) -> bytes:
        return _pack_framed(self, _SLEEP_COORD_BODY)

    @classmethod
    def unpack(cls, data) -> "SleepCoordMessage":
        return _unpack_framed(cls, _SLEEP_COORD_BODY, data)


@dataclass(frozen=True)
class HeartbeatMessage:
    """Node health report."""

    header: MessageHeader = field(default_factory=MessageHeader)
    uptime_seconds: int = 0
    free_heap: int = 0
    error_count: int = 0
    last_error_code: int = 0

    SIZE: ClassVar[int] = MessageHeader.SIZE + _HEARTBEAT_BODY.size

    def pack(self) -> bytes:
        return _pack_framed(self, _HEARTBEAT_BODY)

    @classmethod
    def unpack(cls, data) -> "HeartbeatMessage":
        return _unpack_framed(cls, _HEARTBEAT_BODY, data)


@dataclass
class NodeData:
    """Latest readings of one node, ready for JSON export."""

    sensor_id: str
    data: SensorData
    last_seen: int
    data_valid: bool = True


def sensor_msg_to_node_data(msg: SensorMessage) -> NodeData:
    """Convert a received sensor message into a collection entry."""
    return NodeData(
        sensor_id=mac_to_sensor_id(msg.header.node_mac),
        data=msg.data,
        last_seen=msg.header.timestamp,
        data_valid=True,
    )