from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

import anyio
import httpx
from anyio.abc import ObjectStream
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)

from .exceptions import TransportError

log = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
PROVISIONING_SESSION_PATH = "/v3/provisioning_session"

# Text frames carry the JSON messages, binary frames are passed through untouched
Frame = Union[str, bytes]


def provisioning_session_url(base_url: str) -> str:
    url = httpx.URL(base_url)
    scheme = "ws" if url.scheme in ("http", "ws") else "wss"
    return str(url.copy_with(scheme=scheme, path=PROVISIONING_SESSION_PATH))


@dataclass
class FrameStream(ObjectStream[Frame]):
    """
    Pull-based view of a WebSocket connection

    Iterating yields frames until the peer closes normally. Transport failures
    raise TransportError. After cancel() the iteration ends immediately.
    """

    connection: ClientConnection
    _cancelled: bool = field(default=False, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def receive(self) -> Frame:
        if self._cancelled:
            raise anyio.EndOfStream
        try:
            frame = await self.connection.recv()
        except ConnectionClosedOK:
            raise anyio.EndOfStream
        except ConnectionClosed as e:
            if self._cancelled:
                raise anyio.EndOfStream
            raise TransportError(f"WebSocket connection lost: {e}") from e
        if self._cancelled:
            raise anyio.EndOfStream
        log.debug(f"Received frame: {frame!r}")
        return frame

    async def send(self, item: Frame) -> None:
        log.debug(f"Sending frame: {item!r}")
        try:
            await self.connection.send(item)
        except ConnectionClosed as e:
            raise TransportError(f"Could not send frame: {e}") from e

    async def cancel(self) -> None:
        if self._cancelled:
            return
        log.warning("Cancelling WebSocket session")
        self._cancelled = True
        await self.connection.close(GOING_AWAY)

    async def aclose(self) -> None:
        await self.connection.close(NORMAL_CLOSURE)

    async def send_eof(self) -> None:
        await self.aclose()


@asynccontextmanager
async def connect_frame_stream(
    url: str, headers: Optional[dict[str, str]] = None
) -> AsyncIterator[FrameStream]:
    log.debug(f"Connecting to {url}")
    try:
        connection = await connect(url, additional_headers=headers)
    except (OSError, TimeoutError, WebSocketException) as e:
        raise TransportError(f"Could not connect to {url}: {e}") from e

    async with FrameStream(connection) as stream:
        yield stream
