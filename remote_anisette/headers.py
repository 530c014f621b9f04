from __future__ import annotations

import logging
import typing
from datetime import datetime
from typing import Optional

import httpx

from . import _util, builder
from .exceptions import DecodeError, MissingSecret, ServerError
from .messages import AnisetteV3Response, ErrorResponse

if typing.TYPE_CHECKING:
    from .device import DeviceIdentity

log = logging.getLogger(__name__)

GET_HEADERS_PATH = "v3/get_headers"


async def fetch_v3_anisette(
    client: httpx.AsyncClient, identity: DeviceIdentity
) -> AnisetteV3Response:
    """
    Ask the anisette server for the machine headers of a provisioned identity

    Raises MissingSecret if `identity` has not been provisioned yet
    """
    if identity.adi_pb is None:
        raise MissingSecret()

    request = builder.build_json_request(
        builder.endpoint(identity.url, GET_HEADERS_PATH),
        {"identifier": identity.local_user_id, "adi_pb": identity.adi_pb},
    )
    response = await _util.send_request(client, request)
    try:
        return AnisetteV3Response.from_json(response.content)
    except DecodeError as e:
        try:
            error = ErrorResponse.from_json(response.content)
        except DecodeError:
            raise e
        raise ServerError(f"{error.result} - {error.message}") from None


def anisette_headers(
    identity: DeviceIdentity,
    anisette: AnisetteV3Response,
    now: Optional[datetime] = None,
) -> dict[str, str]:
    return {
        "X-Apple-Client-Time": builder.client_time(now),
        "X-Apple-I-TimeZone": builder.timezone_abbreviation(),
        "X-Apple-Locale": builder.locale_identifier(),
        # 'One Time Password'
        "X-Apple-I-MD": anisette.one_time_password,
        # 'Local User ID'
        "X-Apple-I-MD-LU": identity.local_user_id,
        # 'Machine ID'
        "X-Apple-I-MD-M": anisette.machine_id,
        # 'Routing Info'
        "X-Apple-I-MD-RINFO": anisette.routing_info,
        "X-Apple-I-SRL-NO": identity.serial,
        # sic
        "X-Mme-Drvice-Id": identity.device_id,
    }
