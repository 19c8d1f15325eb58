"""Shared handling of aiohttp responses and transport failures."""

import asyncio
import logging
from typing import Optional

import aiohttp

from .errors import BadStatus, EmptyBody, NetworkError

logger = logging.getLogger(__name__)


def network_error(e: BaseException, service: str) -> NetworkError:
    """Translate a transport exception into a NetworkError with diagnostics."""
    domain = type(e).__name__
    code: Optional[int] = getattr(e, "errno", None)
    os_error = getattr(e, "os_error", None)
    if code is None and os_error is not None:
        code = getattr(os_error, "errno", None)
    if isinstance(e, asyncio.TimeoutError):
        message = f"{service} request timed out"
    else:
        message = f"{service} request failed: {e or domain}"
    return NetworkError(message, domain=domain, code=code)


async def read_body(response: aiohttp.ClientResponse, service: str) -> bytes:
    """Check the status of ``response`` and return its non-empty body.

    Raises:
        BadStatus: for any status outside 200-299
        EmptyBody: when the successful response carries no data
    """
    logger.debug(f"{service} HTTP status code: {response.status}")
    if not 200 <= response.status < 300:
        detail = (await response.text(errors="replace"))[:200]
        logger.debug(f"{service} error body: {detail}")
        raise BadStatus(response.status, f"{service} responded with status {response.status}")

    body = await response.read()
    if not body or not body.strip():
        raise EmptyBody(f"{service} returned no data")
    logger.debug(f"{service} raw response body ({len(body)} bytes): {body[:500]!r}")
    return body


TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)
