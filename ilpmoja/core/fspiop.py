"""
FSPIOP (Mojaloop REST) protocol constants and request models.

Request models validate the fields the bridge needs while allowing any other
fields through, so the raw body can be forwarded verbatim.
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
import binascii
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from email.utils import format_datetime
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import MalformedRequest
from .packets import CONDITION_LENGTH, fulfillment_to_condition

TRANSFERS_MEDIA_TYPE = "application/vnd.interoperability.transfers+json;version=1.0"
QUOTES_MEDIA_TYPE = "application/vnd.interoperability.quotes+json;version=1.0"

MEDIA_TYPES = {
    "transfers": TRANSFERS_MEDIA_TYPE,
    "quotes": QUOTES_MEDIA_TYPE,
}

CONTENT_TYPE_PATTERN = re.compile(
    r"^application/vnd\.interoperability\.(transfers|quotes|parties)\+json;\s*version=1(\.\d+)?"
)

HEADER_SOURCE = "fspiop-source"
HEADER_DESTINATION = "fspiop-destination"
HEADER_FINAL_DESTINATION = "fspiop-final-destination"
HEADER_DATE = "date"

# Headers worth carrying across the packet network to rebuild the REST call
FORWARDED_HEADERS = (
    "accept",
    "content-type",
    HEADER_DATE,
    HEADER_SOURCE,
    HEADER_DESTINATION,
    HEADER_FINAL_DESTINATION,
    "fspiop-signature",
    "fspiop-encryption",
    "fspiop-uri",
    "fspiop-http-method",
)

# Quotes carry no value-transfer guarantee: every quote uses the all-zero
# preimage and its SHA-256 hash as the condition.
QUOTE_FULFILLMENT = bytes(CONDITION_LENGTH)
QUOTE_CONDITION = fulfillment_to_condition(QUOTE_FULFILLMENT)

# FSPIOP error codes used when an ILP reject has no envelope to forward
ILP_ERROR_CLASS_TO_FSPIOP = {
    "F": "3100",  # generic validation error
    "T": "2001",  # internal server error
    "R": "3300",  # generic expired error
}
DEFAULT_FSPIOP_ERROR_CODE = "2001"


def is_fspiop_content_type(content_type: Optional[str]) -> bool:
    """Check whether a request content type can be parsed as JSON."""
    if not content_type:
        return False
    value = content_type.strip().lower()
    return value.startswith("application/json") or bool(CONTENT_TYPE_PATTERN.match(value))


def select_forwarded_headers(headers: Mapping[str, str]) -> dict:
    """Return the routing/negotiation subset of request headers, lower-cased."""
    lowered = {k.lower(): v for k, v in headers.items()}
    return {name: lowered[name] for name in FORWARDED_HEADERS if name in lowered}


def http_date(moment: Optional[datetime] = None) -> str:
    """Format a timestamp as an RFC 7231 HTTP date."""
    moment = moment or datetime.now(timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def decode_crypto_value(value: str, field_name: str) -> bytes:
    """
    Decode a base64 or base64url condition/fulfilment into 32 bytes.

    Raises:
        MalformedRequest: If the value is not valid base64 or not 32 bytes long
    """
    if not isinstance(value, str) or not value:
        raise MalformedRequest(f"{field_name} is required")
    text = value.strip().replace("+", "-").replace("/", "_").rstrip("=")
    try:
        raw = base64.b64decode(text + "=" * (-len(text) % 4), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedRequest(f"{field_name} is not valid base64: {e}") from e
    if len(raw) != CONDITION_LENGTH:
        raise MalformedRequest(
            f"{field_name} must decode to {CONDITION_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def to_ledger_units(amount: str, asset_scale: int) -> str:
    """
    Convert a FSPIOP decimal amount to an integer amount in ledger units.

    Raises:
        MalformedRequest: If the amount is negative or not representable at the scale
    """
    try:
        scaled = Decimal(amount).scaleb(asset_scale)
    except (InvalidOperation, TypeError) as e:
        raise MalformedRequest(f"invalid amount {amount!r}") from e
    if not scaled.is_finite() or scaled < 0 or scaled != scaled.to_integral_value():
        raise MalformedRequest(f"amount {amount!r} is not representable at scale {asset_scale}")
    return str(int(scaled))


class Money(BaseModel):
    """FSPIOP money object."""

    model_config = ConfigDict(extra="allow")

    currency: Optional[str] = Field(default=None, description="ISO 4217 currency code")
    amount: str = Field(min_length=1, description="Decimal amount")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        try:
            value = Decimal(v)
        except InvalidOperation:
            raise ValueError(f"amount must be a decimal string, got {v!r}")
        if not value.is_finite() or value < 0:
            raise ValueError("amount must be a non-negative decimal")
        return v


class TransferPostRequest(BaseModel):
    """Body of ``POST /transfers``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    transfer_id: str = Field(alias="transferId", min_length=1)
    amount: Money
    condition: str = Field(min_length=1)
    expiration: datetime


class QuotePostRequest(BaseModel):
    """Body of ``POST /quotes``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    quote_id: str = Field(alias="quoteId", min_length=1)
    amount: Money


class TransferPutRequest(BaseModel):
    """Body of ``PUT /transfers/{id}``."""

    model_config = ConfigDict(extra="allow")

    fulfilment: str = Field(min_length=1)
    completed_timestamp: Optional[str] = Field(default=None, alias="completedTimestamp")
    transfer_state: Optional[str] = Field(default=None, alias="transferState")


class ErrorInformation(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    error_code: str = Field(alias="errorCode")
    error_description: str = Field(default="", alias="errorDescription")


class ErrorInformationObject(BaseModel):
    """Body of the ``PUT .../{id}/error`` callbacks."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    error_information: ErrorInformation = Field(alias="errorInformation")
