"""
Inbound FSPIOP HTTP surface.

FastAPI routes feeding the InboundDispatcher, plus an embedded uvicorn
listener that runs inside the caller's event loop.
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
import contextlib
import json
import logging
import socket
from typing import Any, Dict, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from ..core.envelope import MessageKind
from ..core.errors import BridgeError, MalformedRequest, NoHandlerRegistered
from ..core.fspiop import is_fspiop_content_type
from .dispatcher import InboundDispatcher

LIVENESS_TEXT = "Hello from Moja CNP!"


async def _read_json(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type")
    if not is_fspiop_content_type(content_type):
        raise MalformedRequest(f"unsupported content type {content_type!r}")
    raw = await request.body()
    try:
        body = json.loads(raw or b"null")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRequest(f"request body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedRequest("request body must be a JSON object")
    return body


def create_app(
    dispatcher: InboundDispatcher, base_path: str = "", logger: Optional[logging.Logger] = None
) -> FastAPI:
    """
    Build the ASGI application serving the FSPIOP routes.

    Args:
        dispatcher: Dispatcher receiving every request
        base_path: Optional prefix such as ``/moja``
        logger: Logger for rejected requests

    Returns:
        FastAPI application
    """
    app = FastAPI(title="ilpmoja", docs_url=None, redoc_url=None, openapi_url=None)
    router = APIRouter()
    logger = logger or logging.getLogger(__name__)

    async def initiate(request: Request, kind: MessageKind) -> Response:
        body = await _read_json(request)
        dispatcher.handle_initiate(kind, body, request.headers)
        return Response(status_code=202)

    async def resolve(request: Request, kind: MessageKind, transaction_id: str) -> Response:
        body = await _read_json(request)
        dispatcher.handle_resolve(kind, transaction_id, body, request.headers)
        return Response(status_code=202)

    @router.get("/", response_class=PlainTextResponse)
    async def liveness():
        return LIVENESS_TEXT

    @router.post("/transfers")
    async def post_transfers(request: Request):
        return await initiate(request, MessageKind.TRANSFER_INITIATE)

    @router.put("/transfers/{transfer_id}")
    async def put_transfer(transfer_id: str, request: Request):
        return await resolve(request, MessageKind.TRANSFER_RESOLVE, transfer_id)

    @router.put("/transfers/{transfer_id}/error")
    async def put_transfer_error(transfer_id: str, request: Request):
        return await resolve(request, MessageKind.TRANSFER_ERROR, transfer_id)

    @router.post("/quotes")
    async def post_quotes(request: Request):
        return await initiate(request, MessageKind.QUOTE_INITIATE)

    @router.put("/quotes/{quote_id}")
    async def put_quote(quote_id: str, request: Request):
        return await resolve(request, MessageKind.QUOTE_RESOLVE, quote_id)

    @router.put("/quotes/{quote_id}/error")
    async def put_quote_error(quote_id: str, request: Request):
        return await resolve(request, MessageKind.QUOTE_ERROR, quote_id)

    app.include_router(router, prefix=base_path)

    @app.exception_handler(MalformedRequest)
    async def malformed_request(request: Request, exc: MalformedRequest):
        logger.warning(f"rejecting {request.method} {request.url.path}: {exc}")
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    @app.exception_handler(NoHandlerRegistered)
    async def no_handler(request: Request, exc: NoHandlerRegistered):
        logger.error(f"rejecting {request.method} {request.url.path}: {exc}")
        return PlainTextResponse(str(exc), status_code=400)

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host application."""

    def install_signal_handlers(self) -> None:
        pass

    def capture_signals(self):
        return contextlib.nullcontext()


class HttpListener:
    """Serves an ASGI app on a socket bound by the listener itself."""

    def __init__(
        self, app, host: str = "localhost", port: int = 1080, logger: Optional[logging.Logger] = None
    ):
        self.app = app
        self.host = host
        self._requested_port = port
        self._logger = logger or logging.getLogger(__name__)
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def port(self) -> int:
        if self._socket is not None:
            return self._socket.getsockname()[1]
        return self._requested_port

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self._requested_port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def start(self) -> None:
        """
        Bind and start serving.

        Raises:
            OSError: If the address cannot be bound
            BridgeError: If the server stops before it is ready
        """
        if self.is_running:
            return

        self._socket = self._bind()
        config = uvicorn.Config(self.app, log_config=None, lifespan="off", access_log=False)
        self._server = _EmbeddedServer(config)
        self._task = asyncio.get_running_loop().create_task(
            self._server.serve(sockets=[self._socket])
        )

        while not self._server.started:
            if self._task.done():
                self._close_socket()
                raise BridgeError(f"listener on {self.host}:{self._requested_port} failed to start")
            await asyncio.sleep(0.01)

        self._logger.info(f"listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            results = await asyncio.gather(self._task, return_exceptions=True)
            if isinstance(results[0], Exception):
                self._logger.error(f"listener stopped with error: {results[0]}")
        self._close_socket()
        self._server = None
        self._task = None

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
