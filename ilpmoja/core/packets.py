"""
ILPv4 packet codec.

Implements the OER wire encoding of the three Interledger packet types the
bridge exchanges with its connector:

- Prepare (type 12): amount, expiry, execution condition, destination, data
- Fulfill (type 13): fulfillment preimage, data
- Reject  (type 14): error code, triggering address, message, data
"""

"""
Copyright (c) 2025 Firefly Software Solutions Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at:

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Tuple, Union

from .errors import MalformedPacket

TYPE_PREPARE = 12
TYPE_FULFILL = 13
TYPE_REJECT = 14

CONDITION_LENGTH = 32
MAX_DATA_LENGTH = 32767
MAX_ADDRESS_LENGTH = 1023
MAX_UINT64 = 2**64 - 1

_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass
class IlpPrepare:
    """Conditional transfer request."""

    amount: str
    expires_at: datetime
    execution_condition: bytes
    destination: str
    data: bytes = b""

    def __post_init__(self):
        # the wire format carries UTC milliseconds only
        self.expires_at = truncate_to_millis(self.expires_at)


@dataclass
class IlpFulfill:
    """Successful reply carrying the condition preimage."""

    fulfillment: bytes
    data: bytes = b""


@dataclass
class IlpReject:
    """Failed reply."""

    code: str
    triggered_by: str = ""
    message: str = ""
    data: bytes = b""


IlpReply = Union[IlpFulfill, IlpReject]
IlpPacket = Union[IlpPrepare, IlpFulfill, IlpReject]


def truncate_to_millis(value: datetime) -> datetime:
    """Return ``value`` in UTC with sub-millisecond precision dropped."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def fulfillment_to_condition(fulfillment: bytes) -> bytes:
    """Return the SHA-256 condition matching a fulfillment preimage."""
    return hashlib.sha256(fulfillment).digest()


def is_fulfill(packet) -> bool:
    return isinstance(packet, IlpFulfill)


def is_reject(packet) -> bool:
    return isinstance(packet, IlpReject)


# ---- length-prefixed primitives ----


def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    size = (length.bit_length() + 7) // 8
    return bytes([0x80 | size]) + length.to_bytes(size, "big")


def _var_octets(value: bytes) -> bytes:
    return _encode_length(len(value)) + value


class _Reader:
    """Cursor over an OER byte buffer."""

    def __init__(self, buffer: bytes):
        self.buffer = bytes(buffer)
        self.offset = 0

    def read(self, count: int) -> bytes:
        end = self.offset + count
        if count < 0 or end > len(self.buffer):
            raise MalformedPacket(
                f"unexpected end of packet: wanted {count} bytes at offset {self.offset}"
            )
        chunk = self.buffer[self.offset : end]
        self.offset = end
        return chunk

    def read_uint8(self) -> int:
        return self.read(1)[0]

    def read_length(self) -> int:
        first = self.read_uint8()
        if first < 0x80:
            return first
        size = first & 0x7F
        if size == 0 or size > 8:
            raise MalformedPacket(f"invalid length prefix 0x{first:02x}")
        return int.from_bytes(self.read(size), "big")

    def read_var_octets(self) -> bytes:
        return self.read(self.read_length())

    def ensure_consumed(self) -> None:
        if self.offset != len(self.buffer):
            raise MalformedPacket(f"{len(self.buffer) - self.offset} trailing bytes in packet")


def _wrap(packet_type: int, content: bytes) -> bytes:
    return bytes([packet_type]) + _var_octets(content)


def _unwrap(buffer: bytes) -> Tuple[int, bytes]:
    reader = _Reader(buffer)
    packet_type = reader.read_uint8()
    content = reader.read_var_octets()
    reader.ensure_consumed()
    return packet_type, content


def _encode_timestamp(value: datetime) -> bytes:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    text = value.strftime(_TIMESTAMP_FORMAT) + f"{value.microsecond // 1000:03d}"
    return text.encode("ascii")


def _decode_timestamp(raw: bytes) -> datetime:
    try:
        text = raw.decode("ascii")
        base = datetime.strptime(text[:14], _TIMESTAMP_FORMAT)
        millis = int(text[14:17])
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPacket(f"invalid expiry timestamp {raw!r}") from e
    return base.replace(microsecond=millis * 1000, tzinfo=timezone.utc)


def _encode_ascii(value: str, what: str) -> bytes:
    try:
        return value.encode("ascii")
    except UnicodeEncodeError as e:
        raise MalformedPacket(f"{what} must be ASCII: {value!r}") from e


def _check_data(data: bytes) -> bytes:
    data = bytes(data)
    if len(data) > MAX_DATA_LENGTH:
        raise MalformedPacket(f"packet data exceeds {MAX_DATA_LENGTH} bytes")
    return data


# ---- serialization ----


def serialize_prepare(packet: IlpPrepare) -> bytes:
    """Encode a prepare packet."""
    try:
        amount = int(packet.amount)
    except (TypeError, ValueError) as e:
        raise MalformedPacket(f"amount must be an unsigned integer string: {packet.amount!r}") from e
    if amount < 0 or amount > MAX_UINT64:
        raise MalformedPacket(f"amount out of range: {packet.amount}")
    if len(packet.execution_condition) != CONDITION_LENGTH:
        raise MalformedPacket(
            f"execution condition must be {CONDITION_LENGTH} bytes, "
            f"got {len(packet.execution_condition)}"
        )
    destination = _encode_ascii(packet.destination, "destination")
    if not destination or len(destination) > MAX_ADDRESS_LENGTH:
        raise MalformedPacket(f"invalid destination {packet.destination!r}")

    content = (
        amount.to_bytes(8, "big")
        + _encode_timestamp(packet.expires_at)
        + bytes(packet.execution_condition)
        + _var_octets(destination)
        + _var_octets(_check_data(packet.data))
    )
    return _wrap(TYPE_PREPARE, content)


def serialize_fulfill(packet: IlpFulfill) -> bytes:
    """Encode a fulfill packet."""
    if len(packet.fulfillment) != CONDITION_LENGTH:
        raise MalformedPacket(
            f"fulfillment must be {CONDITION_LENGTH} bytes, got {len(packet.fulfillment)}"
        )
    content = bytes(packet.fulfillment) + _var_octets(_check_data(packet.data))
    return _wrap(TYPE_FULFILL, content)


def serialize_reject(packet: IlpReject) -> bytes:
    """Encode a reject packet."""
    code = _encode_ascii(packet.code, "error code")
    if len(code) != 3:
        raise MalformedPacket(f"error code must be 3 characters: {packet.code!r}")
    content = (
        code
        + _var_octets(_encode_ascii(packet.triggered_by, "triggered_by"))
        + _var_octets(packet.message.encode("utf-8"))
        + _var_octets(_check_data(packet.data))
    )
    return _wrap(TYPE_REJECT, content)


def serialize_reply(packet: IlpReply) -> bytes:
    if isinstance(packet, IlpFulfill):
        return serialize_fulfill(packet)
    if isinstance(packet, IlpReject):
        return serialize_reject(packet)
    raise MalformedPacket(f"not a reply packet: {type(packet).__name__}")


# ---- deserialization ----


def _parse_prepare(content: bytes) -> IlpPrepare:
    reader = _Reader(content)
    amount = int.from_bytes(reader.read(8), "big")
    expires_at = _decode_timestamp(reader.read(17))
    condition = reader.read(CONDITION_LENGTH)
    try:
        destination = reader.read_var_octets().decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedPacket("destination must be ASCII") from e
    data = reader.read_var_octets()
    reader.ensure_consumed()
    return IlpPrepare(
        amount=str(amount),
        expires_at=expires_at,
        execution_condition=condition,
        destination=destination,
        data=data,
    )


def _parse_fulfill(content: bytes) -> IlpFulfill:
    reader = _Reader(content)
    fulfillment = reader.read(CONDITION_LENGTH)
    data = reader.read_var_octets()
    reader.ensure_consumed()
    return IlpFulfill(fulfillment=fulfillment, data=data)


def _parse_reject(content: bytes) -> IlpReject:
    reader = _Reader(content)
    try:
        code = reader.read(3).decode("ascii")
        triggered_by = reader.read_var_octets().decode("ascii")
        message = reader.read_var_octets().decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPacket("invalid text field in reject packet") from e
    data = reader.read_var_octets()
    reader.ensure_consumed()
    return IlpReject(code=code, triggered_by=triggered_by, message=message, data=data)


_PARSERS = {
    TYPE_PREPARE: _parse_prepare,
    TYPE_FULFILL: _parse_fulfill,
    TYPE_REJECT: _parse_reject,
}


def deserialize_packet(buffer: bytes) -> IlpPacket:
    """Decode any of the three packet types."""
    if not buffer:
        raise MalformedPacket("empty packet")
    packet_type, content = _unwrap(buffer)
    parser = _PARSERS.get(packet_type)
    if parser is None:
        raise MalformedPacket(f"unknown packet type {packet_type}")
    return parser(content)


def deserialize_prepare(buffer: bytes) -> IlpPrepare:
    packet = deserialize_packet(buffer)
    if not isinstance(packet, IlpPrepare):
        raise MalformedPacket(f"expected prepare packet, got {type(packet).__name__}")
    return packet


def deserialize_reply(buffer: bytes) -> IlpReply:
    packet = deserialize_packet(buffer)
    if isinstance(packet, IlpPrepare):
        raise MalformedPacket("expected fulfill or reject packet, got IlpPrepare")
    return packet
