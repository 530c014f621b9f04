# Provisioning handshake, relayed by the anisette server between us and Apple
from __future__ import annotations

import json
import logging
import typing
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Callable, Optional

import httpx

from . import _util, builder, messages, transport
from ._codec import encode_plist_request
from .exceptions import (
    AnisetteError,
    DecodeError,
    IncompleteHandshake,
    ProvisioningTimeout,
    ServerError,
    TransportError,
)

if typing.TYPE_CHECKING:
    from .device import DeviceIdentity

log = logging.getLogger(__name__)

LOOKUP_URL = "https://gsa.apple.com/grandslam/GsService2/lookup"

Connector = Callable[[str], AbstractAsyncContextManager[transport.FrameStream]]


class State(Enum):
    Init = "Init"
    EndpointsReady = "EndpointsReady"
    AwaitIdentifier = "AwaitIdentifier"
    AwaitStart = "AwaitStart"
    AwaitEnd = "AwaitEnd"
    AwaitOutcome = "AwaitOutcome"
    Completed = "Completed"
    Failed = "Failed"


# The only message each waiting state acts on, anything else is ignored
EXPECTED_MESSAGES: dict[State, type[messages.HandshakeMessage]] = {
    State.AwaitIdentifier: messages.GiveIdentifier,
    State.AwaitStart: messages.GiveStartProvisioningData,
    State.AwaitEnd: messages.GiveEndProvisioningData,
    State.AwaitOutcome: messages.ProvisioningSuccess,
}


T = typing.TypeVar("T")


def decode_plist(response: httpx.Response, record: type[T]) -> T:
    try:
        return record.from_plist(response.content)  # type: ignore
    except DecodeError:
        if response.is_error:
            raise TransportError(
                f"{response.request.url} responded with HTTP {response.status_code}"
            )
        raise


class ProvisioningSession:
    def __init__(
        self,
        identity: DeviceIdentity,
        client: httpx.AsyncClient,
        connect: Connector = transport.connect_frame_stream,
        lookup_url: str = LOOKUP_URL,
    ):
        """
        A single provisioning handshake for `identity`

        :param client: HTTP client used for the lookup and the Apple provisioning calls
        :param connect: opens the provisioning WebSocket, given its URL
        :param lookup_url: GrandSlam lookup endpoint listing the provisioning URLs
        """
        self.identity = identity
        self.state = State.Init
        self.error: Optional[AnisetteError] = None
        self.secret: Optional[str] = None

        self._client = client
        self._connect = connect
        self._lookup_url = lookup_url
        self._endpoints: Optional[messages.ProvisioningEndpoints] = None
        self._stream: Optional[transport.FrameStream] = None
        self._cancelled = False

    def _transition(self, state: State):
        log.debug(f"Provisioning: {self.state.name} -> {state.name}")
        self.state = state

    async def run(self) -> str:
        """Run the handshake, returning the personalization secret (adi_pb)"""
        if self.state is not State.Init:
            raise RuntimeError("A provisioning session can only be run once")
        try:
            self._endpoints = await self._lookup_endpoints()
            self._transition(State.EndpointsReady)
            self._check_cancelled()

            async with self._connect(
                transport.provisioning_session_url(self.identity.url)
            ) as stream:
                self._stream = stream
                if self._cancelled:
                    await stream.cancel()
                    self._check_cancelled()
                self._transition(State.AwaitIdentifier)
                async for frame in stream:
                    await self._handle(frame)
                    if self.state is State.Completed:
                        assert self.secret is not None
                        return self.secret
            raise IncompleteHandshake(
                f"Provisioning session closed while in {self.state.name}"
            )
        except AnisetteError as e:
            log.error(f"Provisioning failed: {e}")
            self.error = e
            self._transition(State.Failed)
            raise
        finally:
            self._stream = None
            self._endpoints = None

    async def cancel(self):
        """
        Stop the handshake at any point

        Closes the socket if it is open. An HTTP call still in flight completes
        but its result is discarded, and run() raises IncompleteHandshake.
        """
        self._cancelled = True
        if self._stream is not None:
            await self._stream.cancel()

    def _check_cancelled(self):
        if self._cancelled:
            raise IncompleteHandshake(
                f"Provisioning session cancelled while in {self.state.name}"
            )

    async def _lookup_endpoints(self) -> messages.ProvisioningEndpoints:
        response = await _util.send_request(
            self._client, builder.build_request(self.identity, self._lookup_url)
        )
        endpoints = decode_plist(response, messages.ProvisioningEndpoints)
        log.debug(f"Provisioning endpoints: {endpoints}")
        return endpoints

    async def _handle(self, frame: transport.Frame):
        expected = EXPECTED_MESSAGES[self.state]
        try:
            message = messages.message_from_frame(frame)
        except DecodeError:
            if messages.peek_result(frame) == expected.Result:  # type: ignore
                raise
            log.warning(f"Ignoring malformed frame while in {self.state.name}: {frame!r}")
            return

        if isinstance(message, messages.Timeout):
            raise ProvisioningTimeout(
                f"Provisioning session timed out while in {self.state.name}"
            )
        if isinstance(message, messages.ErrorMessage):
            raise ServerError(message.reason)
        if not isinstance(message, expected):
            # Unclear if the server ever does this, keep waiting for the expected step
            log.warning(
                f"Ignoring {message} while in {self.state.name}, expected {expected.__name__}"
            )
            return

        if isinstance(message, messages.GiveIdentifier):
            if await self._send({"identifier": self.identity.local_user_id}):
                self._transition(State.AwaitStart)
        elif isinstance(message, messages.GiveStartProvisioningData):
            start = await self._start_provisioning()
            if await self._send({"spim": start.spim}):
                self._transition(State.AwaitEnd)
        elif isinstance(message, messages.GiveEndProvisioningData):
            end = await self._end_provisioning(message.cpim)
            if await self._send({"ptm": end.ptm, "tk": end.tk}):
                self._transition(State.AwaitOutcome)
        elif isinstance(message, messages.ProvisioningSuccess):
            self.secret = message.adi_pb
            log.info("Provisioning succeeded")
            self._transition(State.Completed)

    async def _send(self, payload: dict) -> bool:
        assert self._stream is not None
        if self._cancelled or self._stream.cancelled:
            log.warning(f"Session was cancelled, discarding {list(payload)}")
            return False
        await self._stream.send(json.dumps(payload))
        return True

    async def _start_provisioning(self) -> messages.StartProvisioningResponse:
        assert self._endpoints is not None
        response = await _util.send_request(
            self._client,
            builder.build_request(
                self.identity,
                self._endpoints.start_url,
                "POST",
                encode_plist_request(),
            ),
        )
        start = decode_plist(response, messages.StartProvisioningResponse)
        log.debug(f"Start provisioning response: {start}")
        return start

    async def _end_provisioning(self, cpim: str) -> messages.EndProvisioningResponse:
        assert self._endpoints is not None
        response = await _util.send_request(
            self._client,
            builder.build_request(
                self.identity,
                self._endpoints.end_url,
                "POST",
                encode_plist_request({"cpim": cpim}),
            ),
        )
        end = decode_plist(response, messages.EndProvisioningResponse)
        log.debug(f"End provisioning response: {end}")
        return end
