"""
MojaHttpPlugin: the ILP plugin face of the bridge.

Owns the lifecycle of the FSPIOP listener, the single data and money handler
slots, and the connection state reported to the connector.

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

import logging
from enum import IntEnum
from typing import Any, Callable, Optional

import httpx
from fastapi import FastAPI

from ..config import BridgeConfig
from ..core.errors import AlreadyRegistered, BridgeError, InvalidHandler
from ..events import BridgeEvent, EventEmitter
from ..integration.dispatcher import InboundDispatcher
from ..integration.gateway import PacketGateway
from ..integration.http_client import FspiopHttpClient
from ..integration.outbound import OutboundGateway
from ..integration.registry import CorrelationRegistry
from ..integration.server import HttpListener, create_app


class ReadyState(IntEnum):
    """Connection states of the plugin."""

    INITIAL = 0
    CONNECTING = 1
    CONNECTED = 2
    DISCONNECTED = 3
    READY_TO_EMIT = 4


class MojaHttpPlugin:
    """
    ILP plugin speaking FSPIOP over HTTP.

    Packets handed to :meth:`submit` become FSPIOP POSTs; FSPIOP POSTs
    received by the listener become prepare packets for the registered data
    handler.

    Example:
        async with MojaHttpPlugin(BridgeConfig(ilp_address="moja.dfsp1")) as plugin:
            plugin.register_data_handler(handle_prepare)
            reply = await plugin.submit(prepare_bytes)
    """

    # ILP plugin interface version
    version = 2

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """
        Initialize the plugin.

        Args:
            config: Bridge configuration. Defaults are used if omitted.
            logger: Logger shared by every component of the bridge
            http_client: Optional httpx client for outbound calls. It is not
                closed by the plugin.
            emitter: Optional event emitter. A private one is created if omitted.
        """
        self.config = config or BridgeConfig()
        self._logger = logger or logging.getLogger(__name__)
        self.events = emitter or EventEmitter(self._logger)

        self._ready_state = ReadyState.INITIAL
        self._data_handler: Optional[Callable] = None
        self._money_handler: Optional[Callable] = None

        self.gateway = PacketGateway(self.config, self._logger)
        self.registry = CorrelationRegistry(self._logger)
        self.http = FspiopHttpClient(
            timeout=self.config.http_timeout_ms / 1000,
            emitter=self.events,
            client=http_client,
            logger=self._logger,
        )
        self.outbound = OutboundGateway(self.gateway, self.registry, self.http, self._logger)
        self.dispatcher = InboundDispatcher(
            self.gateway,
            self.registry,
            self.http,
            handler_provider=lambda: self._data_handler,
            emitter=self.events,
            logger=self._logger,
        )

        self.app: Optional[FastAPI] = None
        self._listener: Optional[HttpListener] = None

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def listener(self) -> Optional[HttpListener]:
        return self._listener

    def is_connected(self) -> bool:
        return self._ready_state == ReadyState.CONNECTED

    # ---- lifecycle ----

    async def connect(self) -> None:
        """
        Build the routes, start the listener and emit ``connect``.

        Does nothing once the plugin has left the initial state, including
        after a disconnect.
        """
        if self._ready_state > ReadyState.INITIAL:
            self._logger.debug(f"connect ignored in state {self._ready_state.name}")
            return

        self._ready_state = ReadyState.CONNECTING
        self._logger.info(f"Connecting plugin for {self.config.ilp_address}...")

        if self.app is None:
            self.app = create_app(self.dispatcher, self.config.listener.base_path, self._logger)

        listener_config = self.config.listener
        if listener_config.enabled:
            self._listener = HttpListener(
                self.app, listener_config.host, listener_config.port, self._logger
            )
            try:
                await self._listener.start()
            except (OSError, BridgeError) as e:
                self._listener = None
                self._ready_state = ReadyState.INITIAL
                self._logger.error(f"❌ Failed to start listener: {e}")
                raise

        self._ready_state = ReadyState.READY_TO_EMIT
        self._emit_connect()
        self._logger.info("✅ Plugin connected")

    async def disconnect(self) -> None:
        """
        Emit ``disconnect`` and release every resource.

        Pending ``submit`` calls complete with a reject and in-flight round
        trips are cancelled.
        """
        self._emit_disconnect()

        if self._listener is not None:
            await self._listener.stop()
            self._listener = None

        self.registry.fail_all(BridgeError("bridge disconnected"))
        await self.dispatcher.close()
        await self.http.aclose()
        self._logger.info("Plugin disconnected")

    async def start(self) -> None:
        await self.connect()

    async def stop(self) -> None:
        await self.disconnect()

    def _emit_connect(self) -> None:
        if self._ready_state == ReadyState.CONNECTING:
            self.events.emit(BridgeEvent.FIRST_TIME_CONNECT)
        elif self._ready_state == ReadyState.READY_TO_EMIT:
            self._ready_state = ReadyState.CONNECTED
            self.events.emit(BridgeEvent.CONNECT)

    def _emit_disconnect(self) -> None:
        if self._ready_state != ReadyState.DISCONNECTED:
            self._ready_state = ReadyState.DISCONNECTED
            self.events.emit(BridgeEvent.DISCONNECT)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    # ---- handlers ----

    def register_data_handler(self, handler: Callable) -> None:
        """
        Register the handler receiving serialized prepare packets.

        Raises:
            AlreadyRegistered: If a data handler is already registered
            InvalidHandler: If ``handler`` is not callable
        """
        if self._data_handler is not None:
            raise AlreadyRegistered("requestHandler is already registered")
        if not callable(handler):
            raise InvalidHandler("requestHandler must be a function")
        self._data_handler = handler

    def deregister_data_handler(self) -> None:
        self._data_handler = None

    def register_money_handler(self, handler: Callable) -> None:
        """Register the money handler. It is accepted but never invoked."""
        if self._money_handler is not None:
            raise AlreadyRegistered("moneyHandler is already registered")
        if not callable(handler):
            raise InvalidHandler("moneyHandler must be a function")
        self._money_handler = handler

    def deregister_money_handler(self) -> None:
        self._money_handler = None

    # ---- packets ----

    async def submit(self, prepare: bytes) -> bytes:
        """Send a serialized prepare packet and return the serialized reply."""
        return await self.outbound.submit(prepare)

    async def send_data(self, prepare: bytes) -> bytes:
        return await self.submit(prepare)

    async def send_money(self, amount: Any) -> None:
        """Money movement is settled elsewhere."""
        return None

    async def drain(self) -> None:
        """Wait for in-flight inbound round trips and outbound calls."""
        await self.dispatcher.drain()
