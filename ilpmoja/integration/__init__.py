"""
Integration layer between the ILP packet side and the FSPIOP REST side.

This module contains all components responsible for bridging the two protocols:
- Translation between REST requests and ILP packets
- Correlation of outbound round trips with inbound callbacks
- HTTP transport in both directions

Architecture:
    Connector (ILP)                                   Switch (FSPIOP)
         │                                                  │
         │ submit(prepare)                                  │
         ├─> OutboundGateway ──> FspiopHttpClient ── POST ──>│
         │        │                                         │
         │        └── waits on CorrelationRegistry          │
         │                          ▲                       │
         │                          │ resolve               │
         │                   InboundDispatcher <── PUT ─────┤
         │                          │                       │
         │<── data handler(prepare) ┘<── POST ──────────────┘

Public API:
    - PacketGateway: REST <-> packet translation
    - CorrelationRegistry: Pending waiters keyed by transaction id
    - InboundDispatcher: Entry point for inbound REST traffic
    - OutboundGateway: Entry point for outbound packets
    - FspiopHttpClient: Fire-and-forget FSPIOP client
    - create_app / HttpListener: FastAPI routes and embedded uvicorn listener
"""

from .dispatcher import InboundDispatcher
from .gateway import PacketGateway
from .http_client import FspiopHttpClient, OutboundRequest
from .outbound import OutboundGateway
from .registry import CorrelationRegistry, PendingWaiter
from .server import LIVENESS_TEXT, HttpListener, create_app
from .tasks import BackgroundTasks

__all__ = [
    # Translation
    "PacketGateway",
    "OutboundRequest",
    # Correlation
    "CorrelationRegistry",
    "PendingWaiter",
    # Dispatch
    "InboundDispatcher",
    "OutboundGateway",
    # Transport
    "FspiopHttpClient",
    "HttpListener",
    "create_app",
    "LIVENESS_TEXT",
    "BackgroundTasks",
]
