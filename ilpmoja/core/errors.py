"""Error taxonomy for the ILP/FSPIOP bridge."""

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

from typing import Any, Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class MalformedEnvelope(BridgeError):
    """Packet data could not be decoded into a transfer envelope."""


class MalformedPacket(BridgeError):
    """Bytes could not be decoded into an ILP packet."""


class MalformedRequest(BridgeError):
    """An inbound REST request is missing fields or carries invalid values."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class NoHandlerRegistered(BridgeError):
    """No data handler is registered to receive prepare packets."""


class DuplicateRegistration(BridgeError):
    """A waiter or handler is already registered under the same key."""


class AlreadyRegistered(DuplicateRegistration):
    """A data or money handler slot is already occupied."""


class InvalidHandler(BridgeError, TypeError):
    """The object passed as a handler is not callable."""


class UnknownMessageKind(BridgeError):
    """The envelope's message kind cannot be forwarded on this path."""


class DownstreamCallFailure(BridgeError):
    """An outbound HTTP call failed after the request was acknowledged."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReplyRejected(BridgeError):
    """A pending round trip was answered with an ILP reject packet."""

    def __init__(self, reply: Any):
        super().__init__(f"round trip rejected with code {getattr(reply, 'code', '?')}")
        self.reply = reply
