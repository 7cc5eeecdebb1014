#!/usr/bin/env python3
"""
Unit tests for the inbound dispatcher.
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

import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from ilpmoja.config import BridgeConfig, EndpointsConfig
from ilpmoja.core.envelope import MessageKind, TransferEnvelope, decode_envelope, encode_envelope
from ilpmoja.core.errors import (
    DownstreamCallFailure,
    MalformedPacket,
    MalformedRequest,
    NoHandlerRegistered,
    ReplyRejected,
)
from ilpmoja.core.fspiop import QUOTE_FULFILLMENT
from ilpmoja.core.packets import (
    IlpFulfill,
    IlpReject,
    deserialize_prepare,
    serialize_fulfill,
    serialize_reject,
)
from ilpmoja.events import BridgeEvent, EventEmitter
from ilpmoja.integration.dispatcher import InboundDispatcher
from ilpmoja.integration.gateway import PacketGateway
from ilpmoja.integration.http_client import FspiopHttpClient
from ilpmoja.integration.registry import CorrelationRegistry

FULFILMENT = b"\x05" * 32

HEADERS = {
    "Content-Type": "application/vnd.interoperability.transfers+json;version=1.0",
    "FSPIOP-Source": "moja.payer",
    "FSPIOP-Final-Destination": "moja.adapter",
    "Date": "Tue, 15 Oct 2024 10:00:00 GMT",
}


def transfer_body(transfer_id="T1"):
    return {
        "transferId": transfer_id,
        "amount": {"currency": "USD", "amount": "10"},
        "condition": base64.b64encode(bytes(range(32))).decode("ascii"),
        "expiration": (datetime.now(timezone.utc) + timedelta(minutes=5)).isoformat(),
    }


def resolve_reply(transaction_id="T1"):
    envelope = TransferEnvelope(
        transaction_id=transaction_id,
        message_kind=MessageKind.TRANSFER_RESOLVE,
        body={
            "fulfilment": base64.urlsafe_b64encode(FULFILMENT).decode("ascii").rstrip("="),
            "transferState": "COMMITTED",
        },
        headers={"fspiop-source": "moja.payee"},
    )
    return serialize_fulfill(IlpFulfill(FULFILMENT, encode_envelope(envelope)))


class Harness:
    def __init__(self):
        self.config = BridgeConfig(
            ilp_address="moja.adapter",
            endpoints=EndpointsConfig(transfers="http://switch:3000", quotes="http://switch:3002"),
        )
        self.requests = []
        self.client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: self.requests.append(r) or httpx.Response(202))
        )
        self.emitter = EventEmitter()
        self.errors = []
        self.emitter.on(BridgeEvent.OUTBOUND_ERROR, lambda **data: self.errors.append(data))
        self.handler = None
        self.gateway = PacketGateway(self.config)
        self.registry = CorrelationRegistry()
        self.http = FspiopHttpClient(emitter=self.emitter, client=self.client)
        self.dispatcher = InboundDispatcher(
            self.gateway,
            self.registry,
            self.http,
            handler_provider=lambda: self.handler,
            emitter=self.emitter,
        )


@pytest_asyncio.fixture
async def harness():
    harness = Harness()
    yield harness
    await harness.dispatcher.close()
    await harness.http.aclose()
    await harness.client.aclose()


class TestHandleInitiate:
    """Test POST handling and the round trip through the data handler."""

    @pytest.mark.asyncio
    async def test_no_handler(self, harness):
        with pytest.raises(NoHandlerRegistered):
            harness.dispatcher.handle_initiate(
                MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS
            )
        assert harness.dispatcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_handler_receives_prepare(self, harness):
        received = []

        def handler(packet):
            received.append(packet)
            return resolve_reply()

        harness.handler = handler
        prepare = harness.dispatcher.handle_initiate(
            MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS
        )
        await harness.dispatcher.drain()

        assert len(received) == 1
        packet = deserialize_prepare(received[0])
        assert packet == prepare
        assert packet.amount == "10"
        assert packet.destination == "moja.adapter"
        envelope = decode_envelope(packet.data)
        assert envelope.transaction_id == "T1"
        assert envelope.message_kind is MessageKind.TRANSFER_INITIATE

    @pytest.mark.asyncio
    async def test_fulfill_is_forwarded(self, harness):
        harness.handler = lambda packet: resolve_reply()

        harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS)
        await harness.dispatcher.drain()

        assert len(harness.requests) == 1
        request = harness.requests[0]
        assert request.method == "PUT"
        assert str(request.url) == "http://switch:3000/transfers/T1"
        assert request.headers["fspiop-final-destination"] == "moja.payer"
        assert request.headers["fspiop-source"] == "moja.payee"
        assert json.loads(request.content)["transferState"] == "COMMITTED"

    @pytest.mark.asyncio
    async def test_async_handler(self, harness):
        async def handler(packet):
            return resolve_reply()

        harness.handler = handler
        harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS)
        await harness.dispatcher.drain()

        assert str(harness.requests[0].url) == "http://switch:3000/transfers/T1"

    @pytest.mark.asyncio
    async def test_reject_goes_to_error_route(self, harness):
        harness.handler = lambda packet: serialize_reject(
            IlpReject("F02", "moja.connector", "unreachable")
        )

        harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS)
        await harness.dispatcher.drain()

        request = harness.requests[0]
        assert str(request.url) == "http://switch:3000/transfers/T1/error"
        assert json.loads(request.content) == {
            "errorInformation": {"errorCode": "3100", "errorDescription": "unreachable"}
        }

    @pytest.mark.asyncio
    async def test_failing_handler_is_reported(self, harness):
        def handler(packet):
            raise RuntimeError("connector down")

        harness.handler = handler
        harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS)
        await harness.dispatcher.drain()

        assert harness.requests == []
        assert len(harness.errors) == 1
        assert harness.errors[0]["transaction_id"] == "T1"
        assert isinstance(harness.errors[0]["error"], DownstreamCallFailure)

    @pytest.mark.asyncio
    async def test_garbage_reply_is_reported(self, harness):
        harness.handler = lambda packet: b"\x01\x02"

        harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, transfer_body(), HEADERS)
        await harness.dispatcher.drain()

        assert harness.requests == []
        assert isinstance(harness.errors[0]["error"], MalformedPacket)

    @pytest.mark.asyncio
    async def test_invalid_body(self, harness):
        harness.handler = lambda packet: resolve_reply()
        body = transfer_body()
        del body["condition"]

        with pytest.raises(MalformedRequest) as exc_info:
            harness.dispatcher.handle_initiate(MessageKind.TRANSFER_INITIATE, body, HEADERS)
        assert exc_info.value.status_code == 400
        assert harness.dispatcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_quote_uses_its_own_endpoint(self, harness):
        def handler(packet):
            envelope = TransferEnvelope("Q1", MessageKind.QUOTE_RESOLVE, {"ilpPacket": "x"}, {})
            return serialize_fulfill(IlpFulfill(QUOTE_FULFILLMENT, encode_envelope(envelope)))

        harness.handler = handler
        body = {"quoteId": "Q1", "amount": {"currency": "USD", "amount": "5"}}
        harness.dispatcher.handle_initiate(MessageKind.QUOTE_INITIATE, body, HEADERS)
        await harness.dispatcher.drain()

        request = harness.requests[0]
        assert str(request.url) == "http://switch:3002/quotes/Q1"
        assert request.headers["content-type"].startswith("application/vnd.interoperability")


class TestHandleResolve:
    """Test PUT callbacks completing pending waiters."""

    @pytest.mark.asyncio
    async def test_transfer_fulfil(self, harness):
        waiter = harness.registry.register("T1")
        body = {
            "fulfilment": base64.b64encode(FULFILMENT).decode("ascii"),
            "transferState": "COMMITTED",
        }

        assert harness.dispatcher.handle_resolve(
            MessageKind.TRANSFER_RESOLVE, "T1", body, HEADERS
        ) is True

        fulfill = await waiter.wait(1)
        assert fulfill.fulfillment == FULFILMENT
        envelope = decode_envelope(fulfill.data)
        assert envelope.message_kind is MessageKind.TRANSFER_RESOLVE
        assert envelope.body == body
        assert envelope.headers["fspiop-source"] == "moja.adapter"
        assert envelope.headers["fspiop-final-destination"] == "moja.adapter"
        assert envelope.headers["date"] == HEADERS["Date"]

    @pytest.mark.asyncio
    async def test_quote_resolve_uses_zero_fulfillment(self, harness):
        waiter = harness.registry.register("Q1")

        harness.dispatcher.handle_resolve(MessageKind.QUOTE_RESOLVE, "Q1", {"any": "thing"}, {})

        assert (await waiter.wait(1)).fulfillment == QUOTE_FULFILLMENT

    @pytest.mark.asyncio
    async def test_error_callback_rejects(self, harness):
        waiter = harness.registry.register("T1")
        body = {"errorInformation": {"errorCode": "5001", "errorDescription": "payee limit"}}

        harness.dispatcher.handle_resolve(MessageKind.TRANSFER_ERROR, "T1", body, HEADERS)

        with pytest.raises(ReplyRejected) as exc_info:
            await waiter.wait(1)
        reject = exc_info.value.reply
        assert reject.code == "F99"
        assert reject.triggered_by == "moja.adapter"
        assert reject.message == "payee limit"
        assert decode_envelope(reject.data).body == body

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_dropped(self, harness):
        body = {"fulfilment": base64.b64encode(FULFILMENT).decode("ascii")}
        assert harness.dispatcher.handle_resolve(
            MessageKind.TRANSFER_RESOLVE, "nobody", body, HEADERS
        ) is False

    @pytest.mark.asyncio
    async def test_bad_fulfilment(self, harness):
        waiter = harness.registry.register("T1")

        with pytest.raises(MalformedRequest):
            harness.dispatcher.handle_resolve(
                MessageKind.TRANSFER_RESOLVE, "T1", {"fulfilment": "c2hvcnQ="}, HEADERS
            )
        assert not waiter.done

    @pytest.mark.asyncio
    async def test_bad_error_body(self, harness):
        with pytest.raises(MalformedRequest):
            harness.dispatcher.handle_resolve(
                MessageKind.QUOTE_ERROR, "Q1", {"errorInformation": {}}, HEADERS
            )
