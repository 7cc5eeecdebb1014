"""
Core types for the ILP/FSPIOP bridge: envelopes, packets, protocol constants
and the error taxonomy.
"""

from .envelope import MessageKind, TransferEnvelope, decode_envelope, encode_envelope
from .errors import (
    AlreadyRegistered,
    BridgeError,
    DownstreamCallFailure,
    DuplicateRegistration,
    InvalidHandler,
    MalformedEnvelope,
    MalformedPacket,
    MalformedRequest,
    NoHandlerRegistered,
    ReplyRejected,
    UnknownMessageKind,
)
from .packets import (
    IlpFulfill,
    IlpPrepare,
    IlpReject,
    deserialize_packet,
    deserialize_prepare,
    deserialize_reply,
    fulfillment_to_condition,
    serialize_fulfill,
    serialize_prepare,
    serialize_reject,
    serialize_reply,
    truncate_to_millis,
)

__all__ = [
    # Envelope
    "MessageKind",
    "TransferEnvelope",
    "encode_envelope",
    "decode_envelope",
    # Packets
    "IlpPrepare",
    "IlpFulfill",
    "IlpReject",
    "serialize_prepare",
    "serialize_fulfill",
    "serialize_reject",
    "serialize_reply",
    "deserialize_packet",
    "deserialize_prepare",
    "deserialize_reply",
    "fulfillment_to_condition",
    "truncate_to_millis",
    # Errors
    "BridgeError",
    "MalformedEnvelope",
    "MalformedPacket",
    "MalformedRequest",
    "NoHandlerRegistered",
    "DuplicateRegistration",
    "AlreadyRegistered",
    "InvalidHandler",
    "UnknownMessageKind",
    "DownstreamCallFailure",
    "ReplyRejected",
]
