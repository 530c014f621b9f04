import logging

import httpx

from .exceptions import TransportError

log = logging.getLogger(__name__)


async def send_request(
    client: httpx.AsyncClient, request: httpx.Request
) -> httpx.Response:
    log.debug(f"{request.method} {request.url}")
    try:
        response = await client.send(request)
    except httpx.HTTPError as e:
        raise TransportError(f"{request.method} {request.url} failed: {e}") from e
    log.debug(f"{request.url} responded with HTTP {response.status_code}")
    return response
