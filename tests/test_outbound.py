#!/usr/bin/env python3
"""
Unit tests for the outbound gateway (submit) and the FSPIOP HTTP client.
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
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from ilpmoja.config import BridgeConfig, EndpointsConfig
from ilpmoja.core.envelope import MessageKind, TransferEnvelope, encode_envelope
from ilpmoja.core.errors import (
    BridgeError,
    DownstreamCallFailure,
    DuplicateRegistration,
    MalformedEnvelope,
    MalformedPacket,
)
from ilpmoja.core.packets import (
    IlpFulfill,
    IlpPrepare,
    IlpReject,
    deserialize_reply,
    serialize_prepare,
)
from ilpmoja.events import BridgeEvent, EventEmitter
from ilpmoja.integration.gateway import PacketGateway
from ilpmoja.integration.http_client import FspiopHttpClient, OutboundRequest
from ilpmoja.integration.outbound import OutboundGateway
from ilpmoja.integration.registry import CorrelationRegistry

CONDITION = bytes(range(32))


class Stack:
    """Outbound gateway wired to a mock switch."""

    def __init__(self, response_timeout_ms=35000, status_code=202):
        self.config = BridgeConfig(
            ilp_address="moja.adapter",
            response_timeout_ms=response_timeout_ms,
            endpoints=EndpointsConfig(transfers="http://switch:3000", quotes="http://switch:3002"),
        )
        self.requests = []
        self.status_code = status_code
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))
        self.emitter = EventEmitter()
        self.gateway = PacketGateway(self.config)
        self.registry = CorrelationRegistry()
        self.http = FspiopHttpClient(emitter=self.emitter, client=self.client)
        self.outbound = OutboundGateway(self.gateway, self.registry, self.http)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    def prepare(self, transaction_id="T1", expires_in=timedelta(hours=1)) -> bytes:
        body = {
            "transferId": transaction_id,
            "amount": {"currency": "USD", "amount": "123"},
            "condition": base64.b64encode(CONDITION).decode("ascii"),
            "expiration": (datetime.now(timezone.utc) + expires_in).isoformat(),
        }
        prepare = self.gateway.to_prepare(
            body, {"fspiop-final-destination": "moja.partyB"}, MessageKind.TRANSFER_INITIATE
        )
        return serialize_prepare(prepare)

    async def aclose(self):
        await self.http.aclose()
        await self.client.aclose()


@pytest_asyncio.fixture
async def stack():
    stack = Stack()
    yield stack
    await stack.aclose()


async def until_pending(registry, transaction_id):
    for _ in range(100):
        if transaction_id in registry:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{transaction_id} never registered")


class TestSubmit:
    """Test OutboundGateway.submit."""

    @pytest.mark.asyncio
    async def test_fulfill(self, stack):
        task = asyncio.create_task(stack.outbound.submit(stack.prepare()))
        await until_pending(stack.registry, "T1")
        await stack.http.drain()

        stack.registry.resolve("T1", IlpFulfill(b"\x07" * 32))
        reply = deserialize_reply(await task)

        assert reply == IlpFulfill(b"\x07" * 32)
        assert len(stack.requests) == 1
        request = stack.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://switch:3000/transfers"
        assert request.headers["fspiop-source"] == "moja.adapter"
        assert request.headers["fspiop-final-destination"] == "moja.partyB"
        body = json.loads(request.content)
        assert body["payerFsp"] == "moja.adapter"
        assert body["payeeFsp"] == "moja.partyB"

    @pytest.mark.asyncio
    async def test_reject(self, stack):
        task = asyncio.create_task(stack.outbound.submit(stack.prepare()))
        await until_pending(stack.registry, "T1")

        stack.registry.resolve("T1", IlpReject("F99", "moja.adapter", "declined"))
        reply = deserialize_reply(await task)

        assert isinstance(reply, IlpReject)
        assert reply.code == "F99"
        assert reply.message == "declined"

    @pytest.mark.asyncio
    async def test_timeout(self):
        stack = Stack(response_timeout_ms=20)
        try:
            reply = deserialize_reply(await stack.outbound.submit(stack.prepare()))
        finally:
            await stack.aclose()

        assert reply.code == "R00"
        assert reply.triggered_by == "moja.adapter"
        assert reply.message == "transfer timed out"
        assert len(stack.registry) == 0

    @pytest.mark.asyncio
    async def test_late_reply_after_timeout_is_dropped(self):
        stack = Stack(response_timeout_ms=20)
        try:
            await stack.outbound.submit(stack.prepare())
            assert stack.registry.resolve("T1", IlpFulfill(bytes(32))) is False
        finally:
            await stack.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_transaction(self, stack):
        first = asyncio.create_task(stack.outbound.submit(stack.prepare()))
        await until_pending(stack.registry, "T1")

        with pytest.raises(DuplicateRegistration):
            await stack.outbound.submit(stack.prepare())

        stack.registry.resolve("T1", IlpFulfill(bytes(32)))
        await first

    @pytest.mark.asyncio
    async def test_malformed_packet(self, stack):
        with pytest.raises(MalformedPacket):
            await stack.outbound.submit(b"\x0c\x01")
        assert len(stack.registry) == 0

    @pytest.mark.asyncio
    async def test_malformed_envelope(self, stack):
        prepare = IlpPrepare(
            "1", datetime.now(timezone.utc) + timedelta(hours=1), CONDITION, "g.x", b"{}"
        )
        with pytest.raises(MalformedEnvelope):
            await stack.outbound.submit(serialize_prepare(prepare))

    @pytest.mark.asyncio
    async def test_unknown_kind_skips_call(self):
        stack = Stack(response_timeout_ms=20)
        envelope = TransferEnvelope("T9", MessageKind.TRANSFER_RESOLVE, {}, {})
        prepare = IlpPrepare(
            "1",
            datetime.now(timezone.utc) + timedelta(hours=1),
            CONDITION,
            "g.x",
            encode_envelope(envelope),
        )
        try:
            reply = deserialize_reply(await stack.outbound.submit(serialize_prepare(prepare)))
            await stack.http.drain()
        finally:
            await stack.aclose()

        assert stack.requests == []
        assert reply.code == "R00"

    @pytest.mark.asyncio
    async def test_aborted_by_disconnect(self, stack):
        task = asyncio.create_task(stack.outbound.submit(stack.prepare()))
        await until_pending(stack.registry, "T1")

        stack.registry.fail_all(BridgeError("bridge disconnected"))
        reply = deserialize_reply(await task)

        assert reply.code == "T00"
        assert reply.message == "bridge disconnected"

    @pytest.mark.asyncio
    async def test_cancelled_submit_discards_waiter(self, stack):
        task = asyncio.create_task(stack.outbound.submit(stack.prepare()))
        await until_pending(stack.registry, "T1")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert "T1" not in stack.registry


class TestDeadline:
    """Test OutboundGateway.deadline_for."""

    def _prepare(self, expires_at):
        return IlpPrepare("1", expires_at, CONDITION, "g.x")

    @pytest.mark.asyncio
    async def test_short_expiry_wins(self, stack):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        prepare = self._prepare(now + timedelta(seconds=10))
        assert stack.outbound.deadline_for(prepare, now) == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_timeout_wins(self, stack):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        prepare = self._prepare(now + timedelta(minutes=5))
        assert stack.outbound.deadline_for(prepare, now) == pytest.approx(35.0)

    @pytest.mark.asyncio
    async def test_expired_packet_gets_default_timeout(self, stack, caplog):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        prepare = self._prepare(now - timedelta(seconds=1))

        with caplog.at_level("WARNING"):
            assert stack.outbound.deadline_for(prepare, now) == pytest.approx(35.0)
        assert "expired" in caplog.text


class TestHttpClient:
    """Test FspiopHttpClient error reporting."""

    @pytest.mark.asyncio
    async def test_error_status_is_reported(self):
        stack = Stack(status_code=500)
        errors = []
        stack.emitter.on(BridgeEvent.OUTBOUND_ERROR, lambda **data: errors.append(data))
        request = OutboundRequest(
            method="PUT",
            url="http://switch:3000/transfers/T1",
            headers={"content-type": "application/json"},
            body={"foo": "bar"},
            transaction_id="T1",
        )
        try:
            response = await stack.http.send(request)
        finally:
            await stack.aclose()

        assert response is None
        assert len(errors) == 1
        assert errors[0]["transaction_id"] == "T1"
        assert isinstance(errors[0]["error"], DownstreamCallFailure)
        assert errors[0]["error"].status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_is_reported(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        emitter = EventEmitter()
        errors = []
        emitter.on(BridgeEvent.OUTBOUND_ERROR, lambda **data: errors.append(data))
        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        http = FspiopHttpClient(emitter=emitter, client=client)
        request = OutboundRequest("POST", "http://switch:3000/transfers", {}, {}, "T2")

        try:
            assert await http.send(request) is None
        finally:
            await http.aclose()
            await client.aclose()

        assert errors[0]["error"].status_code is None
        assert "connection refused" in str(errors[0]["error"])

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        http = FspiopHttpClient(client=client)

        await http.aclose()

        assert not client.is_closed
        await client.aclose()
