"""
Outbound FSPIOP HTTP client.

Thin wrapper over ``httpx.AsyncClient``. Every call the bridge makes towards
the switch happens after the originating request has already been
acknowledged, so failures are reported through the log and the
``outbound_error`` event instead of being raised to a caller.
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

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..core.envelope import MessageKind
from ..core.errors import DownstreamCallFailure
from ..events import BridgeEvent, EventEmitter
from .tasks import BackgroundTasks


@dataclass
class OutboundRequest:
    """A fully built FSPIOP call."""

    method: str
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    transaction_id: str
    message_kind: Optional[MessageKind] = None


class FspiopHttpClient:
    """Sends OutboundRequests to the switch."""

    def __init__(
        self,
        timeout: float = 10.0,
        emitter: Optional[EventEmitter] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            emitter: Emitter receiving ``outbound_error`` events
            client: Pre-built httpx client. It is used as-is and never closed here.
            logger: Logger for request tracing
        """
        self._timeout = timeout
        self._emitter = emitter
        self._external_client = client
        self._client: Optional[httpx.AsyncClient] = client
        self._logger = logger or logging.getLogger(__name__)
        self._background = BackgroundTasks("outbound http", self._logger)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(self, request: OutboundRequest) -> Optional[httpx.Response]:
        """
        Perform the call.

        Returns:
            The response, or None if the call failed
        """
        self._logger.info(
            f"sending {request.method} {request.url} for transactionId={request.transaction_id}",
            extra={
                "transaction_id": request.transaction_id,
                "message_kind": request.message_kind.value if request.message_kind else None,
            },
        )
        self._logger.debug(f"headers={request.headers} body={request.body}")

        try:
            response = await self._get_client().request(
                request.method, request.url, json=request.body, headers=request.headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._report(
                request,
                DownstreamCallFailure(
                    f"{request.method} {request.url} returned {e.response.status_code}",
                    status_code=e.response.status_code,
                ),
            )
            return None
        except httpx.HTTPError as e:
            self._report(request, DownstreamCallFailure(f"{request.method} {request.url} failed: {e}"))
            return None

        return response

    def send_in_background(self, request: OutboundRequest):
        """Schedule ``send`` without waiting for it."""
        return self._background.spawn(self.send(request))

    def _report(self, request: OutboundRequest, error: DownstreamCallFailure) -> None:
        self._logger.error(
            f"outbound call failed for transactionId={request.transaction_id}: {error}",
            extra={"transaction_id": request.transaction_id},
        )
        if self._emitter is not None:
            self._emitter.emit(
                BridgeEvent.OUTBOUND_ERROR,
                transaction_id=request.transaction_id,
                method=request.method,
                url=request.url,
                error=error,
            )

    async def drain(self) -> None:
        await self._background.drain()

    async def aclose(self) -> None:
        """Cancel in-flight background calls and close the owned client."""
        await self._background.cancel()
        if self._client is not None and self._client is not self._external_client:
            await self._client.aclose()
        self._client = self._external_client
