"""
ilpmoja - Interledger to Mojaloop FSPIOP bridge

Connects an Interledger (ILPv4) connector to a Mojaloop switch. Prepare
packets submitted by the connector become FSPIOP transfer and quote requests;
FSPIOP requests received from the switch become prepare packets for the
connector's data handler.

Key Features:
- ILP plugin contract: submit, data/money handler slots, connect/disconnect
- FSPIOP transfers and quotes in both directions
- Exactly-once correlation of asynchronous PUT callbacks
- Expiry-bounded waits with timeout rejects
- Type-safe configuration with Pydantic models
- Structured JSON logging

Usage:
    from ilpmoja import BridgeConfig, MojaHttpPlugin

    async def handle_prepare(prepare: bytes) -> bytes:
        ...

    async with MojaHttpPlugin(BridgeConfig(ilp_address="moja.dfsp1")) as plugin:
        plugin.register_data_handler(handle_prepare)
        reply = await plugin.submit(prepare_bytes)

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

__version__ = "1.0.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache 2.0"

# Plugin
from .engine import MojaHttpPlugin, ReadyState

# Configuration
from .config import (
    BridgeConfig,
    ConfigurationManager,
    EndpointsConfig,
    ListenerConfig,
    LoggingConfig,
)

# Core types
from .core import (
    AlreadyRegistered,
    BridgeError,
    DownstreamCallFailure,
    DuplicateRegistration,
    IlpFulfill,
    IlpPrepare,
    IlpReject,
    InvalidHandler,
    MalformedEnvelope,
    MalformedPacket,
    MalformedRequest,
    MessageKind,
    NoHandlerRegistered,
    ReplyRejected,
    TransferEnvelope,
    UnknownMessageKind,
    decode_envelope,
    encode_envelope,
)

# Events
from .events import BridgeEvent, EventEmitter

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Plugin
    "MojaHttpPlugin",
    "ReadyState",
    # Configuration
    "BridgeConfig",
    "ListenerConfig",
    "EndpointsConfig",
    "LoggingConfig",
    "ConfigurationManager",
    # Core types
    "MessageKind",
    "TransferEnvelope",
    "encode_envelope",
    "decode_envelope",
    "IlpPrepare",
    "IlpFulfill",
    "IlpReject",
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
    # Events
    "BridgeEvent",
    "EventEmitter",
]
