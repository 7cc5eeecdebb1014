"""
Inbound dispatcher.

Classifies inbound FSPIOP requests by route and message kind. Initiate
requests start a round trip through the registered data handler; resolve and
error callbacks complete a waiter held by the correlation registry.
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

import inspect
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.envelope import MessageKind
from ..core.errors import (
    BridgeError,
    DownstreamCallFailure,
    MalformedPacket,
    MalformedRequest,
    NoHandlerRegistered,
)
from ..core.packets import IlpPrepare, deserialize_reply, serialize_prepare
from ..events import BridgeEvent, EventEmitter
from .gateway import PacketGateway
from .http_client import FspiopHttpClient
from .registry import CorrelationRegistry
from .tasks import BackgroundTasks

DataHandler = Callable[[bytes], Any]


class InboundDispatcher:
    """
    Routes inbound REST traffic into the bridge.

    Everything that can fail synchronously (missing handler, invalid body)
    raises before the caller answers 202. The round trip through the data
    handler and the forwarding PUT run as tracked background tasks.
    """

    def __init__(
        self,
        gateway: PacketGateway,
        registry: CorrelationRegistry,
        http_client: FspiopHttpClient,
        handler_provider: Callable[[], Optional[DataHandler]],
        emitter: Optional[EventEmitter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            gateway: Packet gateway used for every translation
            registry: Registry holding waiters created by ``submit``
            http_client: Client used to forward handler replies
            handler_provider: Returns the currently registered data handler
            emitter: Emitter receiving ``outbound_error`` events
            logger: Logger instance
        """
        self.gateway = gateway
        self.registry = registry
        self.http_client = http_client
        self._handler_provider = handler_provider
        self._emitter = emitter
        self._logger = logger or logging.getLogger(__name__)
        self._round_trips = BackgroundTasks("round trip", self._logger)

    @property
    def in_flight(self) -> int:
        return len(self._round_trips)

    def handle_initiate(
        self, message_kind: MessageKind, body: Dict[str, Any], headers: Mapping[str, str]
    ) -> IlpPrepare:
        """
        Start a round trip for ``POST /transfers`` or ``POST /quotes``.

        Returns:
            The prepare packet handed to the data handler

        Raises:
            NoHandlerRegistered: If no data handler is registered
            MalformedRequest: If the request cannot be turned into a prepare
        """
        handler = self._handler_provider()
        if handler is None:
            raise NoHandlerRegistered(
                f"no data handler registered to receive {message_kind.value}"
            )

        prepare = self.gateway.to_prepare(body, headers, message_kind)
        try:
            packet = serialize_prepare(prepare)
        except MalformedPacket as e:
            status = 422 if message_kind is MessageKind.QUOTE_INITIATE else 400
            raise MalformedRequest(f"cannot encode prepare: {e}", status) from e

        transaction_id = self._transaction_id(message_kind, body)
        self._logger.info(
            f"accepted {message_kind.value} transactionId={transaction_id}",
            extra={"transaction_id": transaction_id, "message_kind": message_kind.value},
        )
        self._round_trips.spawn(
            self._round_trip(handler, packet, transaction_id, message_kind, dict(headers))
        )
        return prepare

    @staticmethod
    def _transaction_id(message_kind: MessageKind, body: Dict[str, Any]) -> str:
        key = "transferId" if message_kind.resource == "transfers" else "quoteId"
        return body[key]

    async def _round_trip(
        self,
        handler: DataHandler,
        packet: bytes,
        transaction_id: str,
        message_kind: MessageKind,
        headers: Dict[str, str],
    ) -> None:
        try:
            result = handler(packet)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._logger.error(
                f"data handler failed for transactionId={transaction_id}: {e}", exc_info=True
            )
            self._report(transaction_id, DownstreamCallFailure(f"data handler failed: {e}"))
            return

        try:
            reply = deserialize_reply(result)
            request = self.gateway.to_resolve_request(
                reply, headers, transaction_id, message_kind.resource
            )
        except (BridgeError, TypeError) as e:
            self._logger.error(
                f"cannot forward reply for transactionId={transaction_id}: {e}",
                extra={"transaction_id": transaction_id},
            )
            self._report(transaction_id, e)
            return

        await self.http_client.send(request)

    def _report(self, transaction_id: str, error: Exception) -> None:
        if self._emitter is not None:
            self._emitter.emit(
                BridgeEvent.OUTBOUND_ERROR, transaction_id=transaction_id, error=error
            )

    def handle_resolve(
        self,
        message_kind: MessageKind,
        transaction_id: str,
        body: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> bool:
        """
        Complete the waiter for a ``PUT /{resource}/{id}[/error]`` callback.

        Returns:
            True if a pending waiter was completed, False if the reply was
            dropped as late or unknown

        Raises:
            MalformedRequest: If the callback body is invalid
        """
        if message_kind.is_error:
            reply = self.gateway.to_reject(transaction_id, message_kind, body, headers)
        else:
            reply = self.gateway.to_fulfill(transaction_id, message_kind, body, headers)

        self._logger.info(
            f"received {message_kind.value} for transactionId={transaction_id}",
            extra={"transaction_id": transaction_id, "message_kind": message_kind.value},
        )
        return self.registry.resolve(transaction_id, reply)

    async def drain(self) -> None:
        """Wait for in-flight round trips and their forwarding calls."""
        await self._round_trips.drain()
        await self.http_client.drain()

    async def close(self) -> None:
        await self._round_trips.cancel()
