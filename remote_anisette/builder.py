from __future__ import annotations

import json
import locale
import typing
from datetime import datetime, timezone
from typing import Optional

import httpx

if typing.TYPE_CHECKING:
    from .device import DeviceIdentity


def client_time(now: Optional[datetime] = None) -> str:
    """Timestamp in the yyyy-MM-ddTHH:mm:ssZ format Apple expects, always UTC"""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def locale_identifier() -> str:
    # Locale of the device (e.g. en_US)
    return locale.getlocale()[0] or "en_US"


def timezone_abbreviation() -> str:
    # Abbreviation of the timezone of the device (e.g. EST)
    return datetime.now().astimezone().tzname() or "UTC"


def endpoint(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def build_request(
    identity: DeviceIdentity,
    url: str,
    method: str = "GET",
    body: Optional[bytes] = None,
    now: Optional[datetime] = None,
) -> httpx.Request:
    """
    Build a request to Apple's provisioning service, carrying the headers of the emulated device

    No I/O happens here, send the request with an httpx client
    """
    headers = {
        "X-Mme-Client-Info": identity.client_info,
        "User-Agent": identity.user_agent,
        "Content-Type": "text/x-xml-plist",
        "Accept": "*/*",
        # Apple keys the provisioning on the local user ID here, not the device ID
        "X-Mme-Device-Id": identity.local_user_id,
        "X-Apple-I-Client-Time": client_time(now),
        "X-Apple-Locale": locale_identifier(),
        "X-Apple-I-TimeZone": timezone_abbreviation(),
    }
    return httpx.Request(method, url, headers=headers, content=body)


def build_json_request(url: str, payload: dict) -> httpx.Request:
    return httpx.Request(
        "POST",
        url,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        content=json.dumps(payload).encode(),
    )
