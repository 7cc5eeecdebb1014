"""
Packet gateway.

Stateless translation between FSPIOP REST requests and ILP packets:

- REST initiate (POST) -> IlpPrepare carrying a TransferEnvelope
- IlpPrepare -> outbound REST initiate call
- data handler reply -> outbound REST resolve call (PUT)
- REST resolve/error (PUT) -> IlpFulfill / IlpReject
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
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from ..config import BridgeConfig
from ..core.envelope import MessageKind, TransferEnvelope, decode_envelope, encode_envelope
from ..core.errors import MalformedEnvelope, MalformedRequest, UnknownMessageKind
from ..core.fspiop import (
    DEFAULT_FSPIOP_ERROR_CODE,
    HEADER_DATE,
    HEADER_DESTINATION,
    HEADER_FINAL_DESTINATION,
    HEADER_SOURCE,
    ILP_ERROR_CLASS_TO_FSPIOP,
    MEDIA_TYPES,
    QUOTE_CONDITION,
    QUOTE_FULFILLMENT,
    ErrorInformationObject,
    QuotePostRequest,
    TransferPostRequest,
    TransferPutRequest,
    decode_crypto_value,
    http_date,
    select_forwarded_headers,
    to_ledger_units,
)
from ..core.packets import IlpFulfill, IlpPrepare, IlpReject, IlpReply, truncate_to_millis
from .http_client import OutboundRequest

# Reject code used for FSPIOP error callbacks
INBOUND_ERROR_CODE = "F99"

# Malformed initiate requests are answered with these statuses
_INITIATE_ERROR_STATUS = {
    MessageKind.TRANSFER_INITIATE: 400,
    MessageKind.QUOTE_INITIATE: 422,
}


def _lower(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts)


class PacketGateway:
    """
    Builds packets and REST calls on behalf of the dispatcher and the
    outbound gateway.

    The gateway holds no state besides its configuration; every method is a
    pure function of its arguments and the bridge's own ILP address.
    """

    def __init__(self, config: BridgeConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self._logger = logger or logging.getLogger(__name__)

    @property
    def ilp_address(self) -> str:
        return self.config.ilp_address

    # ---- REST initiate -> prepare ----

    def to_prepare(
        self, body: Dict[str, Any], headers: Mapping[str, str], message_kind: MessageKind
    ) -> IlpPrepare:
        """
        Build a prepare packet from an initiate request.

        Args:
            body: Parsed JSON body of the POST
            headers: Request headers
            message_kind: TRANSFER_INITIATE or QUOTE_INITIATE

        Returns:
            Prepare packet whose data is the encoded envelope

        Raises:
            MalformedRequest: If the body or routing headers are invalid
            UnknownMessageKind: If ``message_kind`` is not an initiate kind
        """
        status = _INITIATE_ERROR_STATUS.get(message_kind)
        if status is None:
            raise UnknownMessageKind(f"{message_kind.value} cannot start a round trip")

        try:
            if message_kind is MessageKind.TRANSFER_INITIATE:
                request = TransferPostRequest.model_validate(body)
                transaction_id = request.transfer_id
                condition = decode_crypto_value(request.condition, "condition")
                expires_at = truncate_to_millis(request.expiration)
            else:
                request = QuotePostRequest.model_validate(body)
                transaction_id = request.quote_id
                condition = QUOTE_CONDITION
                expires_at = self.config.quote_expiry

            amount = to_ledger_units(request.amount.amount, self.config.asset_scale)
            destination = self._destination(headers)
        except ValidationError as e:
            raise MalformedRequest(
                f"invalid {message_kind.resource} request: {_describe(e)}", status
            ) from e
        except MalformedRequest as e:
            e.status_code = status
            raise

        envelope = TransferEnvelope(
            transaction_id=transaction_id,
            message_kind=message_kind,
            body=dict(body),
            headers=select_forwarded_headers(headers),
        )

        self._logger.debug(
            f"built prepare for {message_kind.value} transactionId={transaction_id} "
            f"destination={destination} amount={amount}"
        )

        return IlpPrepare(
            amount=amount,
            expires_at=expires_at,
            execution_condition=condition,
            destination=destination,
            data=encode_envelope(envelope),
        )

    @staticmethod
    def _destination(headers: Mapping[str, str]) -> str:
        lowered = _lower(headers)
        destination = lowered.get(HEADER_FINAL_DESTINATION) or lowered.get(HEADER_DESTINATION)
        if not destination:
            raise MalformedRequest(
                f"one of {HEADER_FINAL_DESTINATION} or {HEADER_DESTINATION} headers is required"
            )
        return destination

    # ---- prepare -> REST initiate ----

    def to_outbound_request(
        self, prepare: IlpPrepare, envelope: Optional[TransferEnvelope] = None
    ) -> OutboundRequest:
        """
        Build the POST that forwards a prepare packet to the switch.

        The envelope body is copied and stamped with ``payerFsp`` and
        ``payeeFsp``; nothing else in it is touched.

        Raises:
            MalformedEnvelope: If the packet data is not an envelope
            UnknownMessageKind: If the envelope is not an initiate kind
        """
        if envelope is None:
            envelope = decode_envelope(prepare.data)

        kind = envelope.message_kind
        if not kind.is_initiate:
            raise UnknownMessageKind(
                f"cannot forward {kind.value} for transactionId={envelope.transaction_id}"
            )

        resource = kind.resource
        media_type = MEDIA_TYPES[resource]

        body = dict(envelope.body)
        body["payerFsp"] = self.ilp_address
        body["payeeFsp"] = prepare.destination

        headers = {
            HEADER_SOURCE: self.ilp_address,
            HEADER_FINAL_DESTINATION: prepare.destination,
            "accept": media_type,
            "content-type": media_type,
            HEADER_DATE: envelope.headers.get(HEADER_DATE) or http_date(),
        }

        return OutboundRequest(
            method="POST",
            url=f"{self.config.endpoints.for_resource(resource)}/{resource}",
            headers=headers,
            body=body,
            transaction_id=envelope.transaction_id,
            message_kind=kind,
        )

    # ---- handler reply -> REST resolve ----

    def to_resolve_request(
        self,
        reply: IlpReply,
        original_headers: Mapping[str, str],
        transaction_id: str,
        resource: str,
    ) -> OutboundRequest:
        """
        Build the PUT that forwards the data handler's reply.

        Replies carrying a resolve envelope are forwarded verbatim to
        ``{resource}/{id}``. Error envelopes and rejects go to
        ``{resource}/{id}/error``; a reject without an error envelope gets an
        FSPIOP error body derived from its ILP code.

        Raises:
            MalformedEnvelope: If a fulfill carries no usable envelope
        """
        envelope = None
        if reply.data:
            try:
                envelope = decode_envelope(reply.data)
            except MalformedEnvelope:
                if isinstance(reply, IlpFulfill):
                    raise
                self._logger.warning(
                    f"reject for transactionId={transaction_id} carries no envelope, "
                    f"sending generated error body"
                )

        is_reject = isinstance(reply, IlpReject)
        if envelope is None and not is_reject:
            raise MalformedEnvelope(f"fulfill for transactionId={transaction_id} has no envelope")

        is_error = is_reject or envelope.message_kind.is_error
        if is_reject and (envelope is None or not envelope.message_kind.is_error):
            body = self._error_body(reply)
        else:
            body = envelope.body

        headers = dict(envelope.headers) if envelope is not None else {}
        source = _lower(original_headers).get(HEADER_SOURCE)
        if source:
            headers[HEADER_FINAL_DESTINATION] = source
        headers.setdefault(HEADER_SOURCE, self.ilp_address)
        headers.setdefault("content-type", MEDIA_TYPES[resource])
        headers.setdefault(HEADER_DATE, http_date())

        if envelope is not None:
            kind = envelope.message_kind
        elif resource == "transfers":
            kind = MessageKind.TRANSFER_ERROR
        else:
            kind = MessageKind.QUOTE_ERROR

        url = f"{self.config.endpoints.for_resource(resource)}/{resource}/{transaction_id}"
        if is_error:
            url += "/error"

        return OutboundRequest(
            method="PUT",
            url=url,
            headers=headers,
            body=body,
            transaction_id=transaction_id,
            message_kind=kind,
        )

    @staticmethod
    def _error_body(reject: IlpReject) -> Dict[str, Any]:
        error_code = ILP_ERROR_CLASS_TO_FSPIOP.get(reject.code[:1], DEFAULT_FSPIOP_ERROR_CODE)
        return {
            "errorInformation": {
                "errorCode": error_code,
                "errorDescription": reject.message or f"ILP reject {reject.code}",
            }
        }

    # ---- REST resolve/error -> reply ----

    def _reply_headers(self, kind: MessageKind, headers: Mapping[str, str]) -> Dict[str, str]:
        lowered = _lower(headers)
        reply_headers = {
            "content-type": MEDIA_TYPES[kind.resource],
            HEADER_SOURCE: self.ilp_address,
        }
        if HEADER_FINAL_DESTINATION in lowered:
            reply_headers[HEADER_FINAL_DESTINATION] = lowered[HEADER_FINAL_DESTINATION]
        if kind.resource == "transfers" and lowered.get(HEADER_DATE):
            reply_headers[HEADER_DATE] = lowered[HEADER_DATE]
        else:
            reply_headers[HEADER_DATE] = http_date()
        return reply_headers

    def to_fulfill(
        self,
        transaction_id: str,
        message_kind: MessageKind,
        body: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> IlpFulfill:
        """
        Build the fulfill for a ``PUT /{resource}/{id}`` callback.

        Transfers carry the ``fulfilment`` from the body; quotes always use
        the all-zero quote preimage.

        Raises:
            MalformedRequest: If a transfer fulfilment is missing or invalid
        """
        if message_kind is MessageKind.TRANSFER_RESOLVE:
            try:
                request = TransferPutRequest.model_validate(body)
            except ValidationError as e:
                raise MalformedRequest(f"invalid transfers callback: {_describe(e)}") from e
            fulfillment = decode_crypto_value(request.fulfilment, "fulfilment")
        elif message_kind is MessageKind.QUOTE_RESOLVE:
            fulfillment = QUOTE_FULFILLMENT
        else:
            raise UnknownMessageKind(f"{message_kind.value} is not a resolve kind")

        envelope = TransferEnvelope(
            transaction_id=transaction_id,
            message_kind=message_kind,
            body=dict(body),
            headers=self._reply_headers(message_kind, headers),
        )
        return IlpFulfill(fulfillment=fulfillment, data=encode_envelope(envelope))

    def to_reject(
        self,
        transaction_id: str,
        message_kind: MessageKind,
        body: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> IlpReject:
        """Build the reject for a ``PUT /{resource}/{id}/error`` callback."""
        if not message_kind.is_error:
            raise UnknownMessageKind(f"{message_kind.value} is not an error kind")

        try:
            error = ErrorInformationObject.model_validate(body)
        except ValidationError as e:
            raise MalformedRequest(f"invalid error callback: {_describe(e)}") from e

        envelope = TransferEnvelope(
            transaction_id=transaction_id,
            message_kind=message_kind,
            body=dict(body),
            headers=self._reply_headers(message_kind, headers),
        )
        return IlpReject(
            code=INBOUND_ERROR_CODE,
            triggered_by=self.ilp_address,
            message=error.error_information.error_description,
            data=encode_envelope(envelope),
        )

