"""
Transfer envelope carried inside the data field of ILP packets.

The envelope smuggles the FSPIOP context (transaction id, message kind, the
original REST body and routing headers) through the packet protocol so the
other side of the bridge can rebuild the REST call.
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

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from dataclasses_json import LetterCase, dataclass_json

from .errors import MalformedEnvelope


class MessageKind(Enum):
    """FSPIOP message kinds that can travel inside an envelope."""

    TRANSFER_INITIATE = "TransferInitiate"
    TRANSFER_RESOLVE = "TransferResolve"
    TRANSFER_ERROR = "TransferError"
    QUOTE_INITIATE = "QuoteInitiate"
    QUOTE_RESOLVE = "QuoteResolve"
    QUOTE_ERROR = "QuoteError"

    @property
    def resource(self) -> str:
        """REST collection the kind belongs to ("transfers" or "quotes")."""
        return "transfers" if self.value.startswith("Transfer") else "quotes"

    @property
    def is_initiate(self) -> bool:
        return self in (MessageKind.TRANSFER_INITIATE, MessageKind.QUOTE_INITIATE)

    @property
    def is_error(self) -> bool:
        return self in (MessageKind.TRANSFER_ERROR, MessageKind.QUOTE_ERROR)


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class TransferEnvelope:
    """Correlation metadata plus the verbatim REST payload."""

    transaction_id: str
    message_kind: MessageKind
    body: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


_REQUIRED_KEYS = ("transactionId", "messageKind")


def encode_envelope(envelope: TransferEnvelope) -> bytes:
    """Serialize an envelope to compact UTF-8 JSON."""
    return envelope.to_json(separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_envelope(data: bytes) -> TransferEnvelope:
    """
    Deserialize envelope bytes.

    Args:
        data: Bytes previously produced by :func:`encode_envelope`

    Returns:
        The decoded envelope

    Raises:
        MalformedEnvelope: If the bytes are not a JSON object or lack
            ``transactionId``/``messageKind``
    """
    try:
        raw = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEnvelope(f"envelope is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedEnvelope("envelope must be a JSON object")

    for key in _REQUIRED_KEYS:
        if key not in raw:
            raise MalformedEnvelope(f"envelope is missing {key}")

    if not isinstance(raw["transactionId"], str) or not raw["transactionId"]:
        raise MalformedEnvelope("transactionId must be a non-empty string")
    if not isinstance(raw.get("body", {}), dict):
        raise MalformedEnvelope("envelope body must be an object")
    headers = raw.get("headers", {})
    if not isinstance(headers, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
    ):
        raise MalformedEnvelope("envelope headers must map strings to strings")

    try:
        return TransferEnvelope.from_dict(raw)
    except (KeyError, ValueError, TypeError) as e:
        raise MalformedEnvelope(f"invalid envelope: {e}") from e
