import inspect
import json
import logging
import plistlib
from contextlib import asynccontextmanager

import httpx
import pytest
from rich.logging import RichHandler
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from remote_anisette import DeviceIdentity, transport
from remote_anisette.provisioning import LOOKUP_URL

logging.basicConfig(level=logging.DEBUG, handlers=[RichHandler()], format="%(message)s")

START_URL = "https://gsa.apple.com/grandslam/MidService/startMachineProvisioning"
END_URL = "https://gsa.apple.com/grandslam/MidService/finishMachineProvisioning"


def frame(result: str, **fields) -> str:
    return json.dumps({"result": result, **fields})


IDENTIFIER = frame("GiveIdentifier")
START = frame("GiveStartProvisioningData")
END = frame("GiveEndProvisioningData", cpim="Y3BpbQ==")
SUCCESS = frame("ProvisioningSuccess", adi_pb="YWRpX3Bi")
TIMEOUT = frame("Timeout")


def apple_response(ec: int = 0, em: str = "", ed: str = "", **fields) -> httpx.Response:
    body = {"Response": {"Status": {"ec": ec, "em": em, "ed": ed}, **fields}}
    return httpx.Response(200, content=plistlib.dumps(body))


class FakeApple:
    """Stands in for GrandSlam and the anisette server behind an httpx.MockTransport"""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes = {
            LOOKUP_URL: lambda request: httpx.Response(
                200,
                content=plistlib.dumps(
                    {
                        "urls": {
                            "midStartProvisioning": START_URL,
                            "midFinishProvisioning": END_URL,
                        }
                    }
                ),
            ),
            START_URL: lambda request: apple_response(spim="c3BpbQ==", ptxid="1"),
            END_URL: lambda request: apple_response(
                tk="dGs=", ptm="cHRt", ptxid="1", **{"X-Apple-I-MD-RINFO": "17106176"}
            ),
        }

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes[str(request.url)](request)
        if inspect.isawaitable(response):
            response = await response
        return response

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


class FakeConnection:
    """Scripted replacement for a websockets ClientConnection"""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.close_code = None

    async def recv(self):
        if self.close_code is not None or not self.frames:
            code = self.close_code or 1000
            closing = Close(code, "")
            raise ConnectionClosedOK(closing, closing, rcvd_then_sent=True)
        item = self.frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message):
        self.sent.append(json.loads(message) if isinstance(message, str) else message)

    async def close(self, code=1000, reason=""):
        if self.close_code is None:
            self.close_code = code


class FakeConnector:
    def __init__(self, connection: FakeConnection):
        self.connection = connection
        self.urls: list[str] = []

    @asynccontextmanager
    async def __call__(self, url: str):
        self.urls.append(url)
        async with transport.FrameStream(self.connection) as stream:  # type: ignore
            yield stream


@pytest.fixture
def apple():
    return FakeApple()


@pytest.fixture
def client(apple):
    return httpx.AsyncClient(transport=httpx.MockTransport(apple))


@pytest.fixture
def identity():
    return DeviceIdentity(
        url="https://ani.example.com",
        serial="C02XXXXXXXXX",
        local_user_id="XYZ",
        device_id="6A0C0AD8-0B1F-4A53-9D30-4B0C0DE1A9F7",
    )
