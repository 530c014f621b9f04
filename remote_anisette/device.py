from __future__ import annotations

import hashlib
import logging
import random
import uuid
from base64 import b64encode
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import anyio
import httpx

from . import headers, transport
from ._codec import json_record, key
from .provisioning import Connector, ProvisioningSession

log = logging.getLogger(__name__)

DEFAULT_URL = "https://ani.sidestore.io"
DEFAULT_CLIENT_INFO = "<MacBookPro13,2> <macOS;13.1;22C65> <com.apple.AuthKit/1 (com.apple.dt.Xcode/3594.4.19)>"
DEFAULT_USER_AGENT = "akd/1.0 CFNetwork/808.1.4"


def generate_local_user_id() -> str:
    return hashlib.sha256(b64encode(random.randbytes(16))).hexdigest().upper()


def generate_device_id() -> str:
    return str(uuid.uuid4()).upper()


@asynccontextmanager
async def _http_client(
    client: Optional[httpx.AsyncClient],
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    # gsa.apple.com is signed by Apple's private CA
    async with httpx.AsyncClient(verify=False) as client:
        yield client


@json_record
@dataclass
class DeviceIdentity:
    """
    A virtual device registered with Apple through a remote anisette server

    Every identity is a separate "device" on the Apple ID it is used with.
    Only `adi_pb` changes after creation, once, when provisioning succeeds.
    """

    # The anisette v3 server
    url: str = key("url", default=DEFAULT_URL)
    # The "device" to mock as when creating requests
    client_info: str = key("client_info", default=DEFAULT_CLIENT_INFO)
    # The process to mock as
    user_agent: str = key("user_agent", default=DEFAULT_USER_AGENT)
    # Can be phony as long as the "device" is trusted
    serial: str = key("serial", default="0")
    local_user_id: str = key("localUserID", default_factory=generate_local_user_id)
    device_id: str = key("deviceID", default_factory=generate_device_id)
    # Personalization data, required for anisette generation
    adi_pb: Optional[str] = key("adiPB", default=None, repr=False)

    _lock: Optional[anyio.Lock] = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def provisioned(self) -> bool:
        return self.adi_pb is not None

    async def provision(
        self,
        client: Optional[httpx.AsyncClient] = None,
        connect: Connector = transport.connect_frame_stream,
    ):
        """
        Provision the "device" for use with anisette generation

        Does nothing if it is already provisioned. Concurrent calls wait for the
        handshake already running instead of starting a second one.
        """
        if self.provisioned:
            return
        if self._lock is None:
            self._lock = anyio.Lock()
        async with self._lock:
            if self.provisioned:
                return
            async with _http_client(client) as client:
                session = ProvisioningSession(self, client, connect)
                self.adi_pb = await session.run()
            log.info(f"Provisioned device {self.device_id}")

    async def fetch_headers(
        self,
        client: Optional[httpx.AsyncClient] = None,
        provision: bool = False,
        connect: Connector = transport.connect_frame_stream,
    ) -> dict[str, str]:
        """
        Fetch anisette headers from the server at `url`

        :param provision: provision first if needed, otherwise raise MissingSecret
        """
        async with _http_client(client) as client:
            if provision:
                await self.provision(client, connect)
            anisette = await headers.fetch_v3_anisette(client, self)
        return headers.anisette_headers(self, anisette)
