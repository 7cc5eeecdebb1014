"""
Outbound gateway: the "submit a prepare, get a reply" side of the bridge.
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

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from ..core.envelope import decode_envelope
from ..core.errors import BridgeError, ReplyRejected, UnknownMessageKind
from ..core.packets import (
    IlpPrepare,
    IlpReject,
    deserialize_prepare,
    serialize_fulfill,
    serialize_reject,
)
from .gateway import PacketGateway
from .http_client import FspiopHttpClient
from .registry import CorrelationRegistry

TIMEOUT_ERROR_CODE = "R00"
DISCONNECTED_ERROR_CODE = "T00"


class OutboundGateway:
    """
    Turns a serialized prepare packet into an FSPIOP initiate call and waits
    for the matching callback.

    The POST itself is fire-and-forget. The round trip completes when the
    dispatcher resolves the waiter registered here, or when the deadline
    derived from the packet expiry passes.
    """

    def __init__(
        self,
        gateway: PacketGateway,
        registry: CorrelationRegistry,
        http_client: FspiopHttpClient,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.registry = registry
        self.http_client = http_client
        self._logger = logger or logging.getLogger(__name__)

    @property
    def response_timeout(self) -> float:
        return self.gateway.config.response_timeout

    def deadline_for(self, prepare: IlpPrepare, now: Optional[datetime] = None) -> float:
        """
        Seconds to wait for the callback of ``prepare``.

        The configured response timeout, shortened to the time left before
        the packet expires. Already expired packets get the full timeout.
        """
        now = now or datetime.now(timezone.utc)
        remaining = (prepare.expires_at - now).total_seconds()
        if remaining <= 0:
            self._logger.warning(
                f"prepare expired at {prepare.expires_at.isoformat()}, "
                f"waiting the default {self.response_timeout}s"
            )
            return self.response_timeout
        return min(self.response_timeout, remaining)

    def _reject(self, code: str, message: str) -> bytes:
        return serialize_reject(
            IlpReject(code=code, triggered_by=self.gateway.ilp_address, message=message)
        )

    async def submit(self, prepare_bytes: bytes) -> bytes:
        """
        Run one round trip.

        Args:
            prepare_bytes: Serialized ILP prepare carrying an initiate envelope

        Returns:
            Serialized fulfill or reject

        Raises:
            MalformedPacket: If the bytes are not a prepare packet
            MalformedEnvelope: If the packet data is not an envelope
            DuplicateRegistration: If the transaction is already in flight
        """
        prepare = deserialize_prepare(prepare_bytes)
        envelope = decode_envelope(prepare.data)
        transaction_id = envelope.transaction_id

        waiter = self.registry.register(transaction_id)

        try:
            request = self.gateway.to_outbound_request(prepare, envelope)
        except UnknownMessageKind as e:
            self._logger.warning(f"skipping outbound call: {e}")
        else:
            self.http_client.send_in_background(request)

        timeout = self.deadline_for(prepare)
        try:
            fulfill = await waiter.wait(timeout)
        except ReplyRejected as e:
            self._logger.info(
                f"transactionId={transaction_id} rejected with {e.reply.code}",
                extra={"transaction_id": transaction_id},
            )
            return serialize_reject(e.reply)
        except asyncio.TimeoutError:
            self.registry.discard(transaction_id, waiter)
            self._logger.warning(
                f"no callback for transactionId={transaction_id} within {timeout:.3f}s",
                extra={"transaction_id": transaction_id},
            )
            return self._reject(TIMEOUT_ERROR_CODE, "transfer timed out")
        except asyncio.CancelledError:
            self.registry.discard(transaction_id, waiter)
            raise
        except BridgeError as e:
            self._logger.warning(
                f"round trip for transactionId={transaction_id} aborted: {e}",
                extra={"transaction_id": transaction_id},
            )
            return self._reject(DISCONNECTED_ERROR_CODE, str(e))

        self._logger.info(
            f"transactionId={transaction_id} fulfilled",
            extra={"transaction_id": transaction_id},
        )
        return serialize_fulfill(fulfill)
