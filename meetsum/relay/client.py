"""Client for the remote summarization workflow.

The relay accepts a transcript and answers with a link to the summary. Its
response shape has changed across deployments, so decoding tries a fixed,
ordered list of variants:

1. an object with a known key (``summaryUrl``, then ``url``)
2. a one-entry object whose only value is an absolute URL
3. a bare string (JSON string, or a plain-text body)

Anything else is a MalformedResponse. The chosen candidate must then be a
valid absolute URL, otherwise it is a LinkParseError.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
from pydantic import AnyUrl, BaseModel, TypeAdapter, ValidationError

from ..errors import LinkParseError, MalformedResponse
from ..http_errors import TRANSPORT_ERRORS, network_error, read_body

logger = logging.getLogger(__name__)


class SummaryUrlResponse(BaseModel):
    summaryUrl: str


class UrlResponse(BaseModel):
    url: str


_ABSOLUTE_URL = TypeAdapter(AnyUrl)
_SINGLE_ENTRY = TypeAdapter(Dict[str, str])
_BARE_STRING = TypeAdapter(str)


def _known_key(model) -> Callable[[Any], Optional[str]]:
    field = next(iter(model.model_fields))

    def decode(payload: Any) -> Optional[str]:
        try:
            return getattr(model.model_validate(payload), field)
        except ValidationError:
            return None
    return decode


def _single_entry(payload: Any) -> Optional[str]:
    try:
        entries = _SINGLE_ENTRY.validate_python(payload)
    except ValidationError:
        return None
    if len(entries) != 1:
        return None
    value = next(iter(entries.values()))
    return value if is_absolute_url(value) else None


def _bare_string(payload: Any) -> Optional[str]:
    try:
        return _BARE_STRING.validate_python(payload, strict=True)
    except ValidationError:
        return None


RESPONSE_VARIANTS: List[Tuple[str, Callable[[Any], Optional[str]]]] = [
    ("summaryUrl key", _known_key(SummaryUrlResponse)),
    ("url key", _known_key(UrlResponse)),
    ("single-entry object", _single_entry),
    ("bare string", _bare_string),
]


def is_absolute_url(value: str) -> bool:
    try:
        url = _ABSOLUTE_URL.validate_python(value.strip())
    except ValidationError:
        return False
    return bool(url.scheme and url.host)


def decode_summary_link(body: bytes) -> str:
    """Extract the summary link from a relay response body.

    Raises:
        MalformedResponse: if no response variant matches
        LinkParseError: if the matched value is not an absolute URL
    """
    text = body.decode("utf-8", errors="replace")
    try:
        payload = json.loads(text)
    except ValueError:
        logger.debug("Relay response is plain text; treating it as a bare string")
        return validate_link(text)

    for name, decode in RESPONSE_VARIANTS:
        candidate = decode(payload)
        if candidate is not None:
            logger.debug(f"Relay response matched variant: {name}")
            return validate_link(candidate)

    raise MalformedResponse(
        f'expected {{"summaryUrl": "..."}}, {{"url": "..."}} or a plain string URL, got: {text[:200]}'
    )


def validate_link(candidate: str) -> str:
    link = candidate.strip()
    if not is_absolute_url(link):
        raise LinkParseError(f"could not parse summary URL: {candidate!r}")
    return link


class SummaryRelay:
    """Posts a transcript to the summarization workflow and returns the summary link."""

    def __init__(self, endpoint: str, timeout: float = 900.0):
        """Initialize the relay client.

        Args:
            endpoint: Workflow URL accepting ``{"transcript": ...}``
            timeout: Total deadline in seconds covering request and response
        """
        if not endpoint:
            raise ValueError("Relay endpoint is required")
        self.endpoint = endpoint
        self.timeout = timeout
        self.service_name = "Relay"

        logger.info(f"SummaryRelay initialized with endpoint: {endpoint}")

    async def relay(self, transcript: str) -> str:
        """Send ``transcript`` and return the summary link.

        Raises:
            PipelineError: NetworkError, BadStatus, EmptyBody,
                MalformedResponse or LinkParseError
        """
        start_time = time.time()
        logger.info(f"Relaying transcript ({len(transcript)} chars) to {self.endpoint}")

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(self.endpoint, json={"transcript": transcript}) as response:
                    body = await read_body(response, self.service_name)
        except TRANSPORT_ERRORS as e:
            logger.error(f"Relay request failed: {type(e).__name__}: {e}")
            raise network_error(e, self.service_name) from e

        link = decode_summary_link(body)
        logger.info(f"Summary link received in {time.time() - start_time:.1f}s: {link}")
        return link
