"""
Response normalizers for the blip.tv legacy API.

The XML skins (``api`` and ``rss``) are handed back untouched. The ``json``
skin is not JSON: it is wrapped in a ``blip_ws_results(...);`` call, carries
badly escaped single quotes and, with ``version=3``, appends a bare
``[{page:1},{total:50}]`` trailer after the result array. The functions here
repair that payload and split it into results and a pagination record.
"""

import json
import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .errors import (
    DecodeFailure,
    FormatMismatch,
    PaginationParseFailure,
    TransportFailure,
    UpstreamError,
)

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "blip_ws_results("
ENVELOPE_SUFFIX = ");"
FRAGMENT_BOUNDARY = "],"
XML_DATA_TYPES = ("api", "rss")
JSON_DATA_TYPE = "json"
PAGINATED_VERSION = 3
XML_DECLARATION = re.compile(rb'\s*<\?xml[^>]*?encoding=["\']([A-Za-z0-9._-]+)["\']')

RawPayload = Union[bytes, str, None]


class NormalizedJson(NamedTuple):
    """Decoded pseudo-JSON: result records plus pagination (None when not applicable)."""
    results: List[Dict[str, Any]]
    pagination: Optional[Dict[str, str]]


def _declared_encoding(raw: bytes) -> Optional[str]:
    match = XML_DECLARATION.match(raw)
    if match is None:
        return None
    return match.group(1).decode("ascii")


def _as_text(raw: RawPayload) -> str:
    """
    Decode a response body without replacing characters.

    Tries the encoding named in an XML declaration, then UTF-8, then
    Latin-1, which maps every byte and so never fails.
    """
    if raw is None:
        return ""
    if not isinstance(raw, bytes):
        return raw

    candidates = [_declared_encoding(raw), "utf-8"]
    for encoding in candidates:
        if not encoding:
            continue
        try:
            return raw.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            logger.debug("Response body is not valid %s", encoding)
    return raw.decode("latin-1")


def _require_payload(raw: RawPayload, url: str) -> str:
    text = _as_text(raw)
    if not text:
        raise TransportFailure(f"Data retrieval failed for url: {url}")
    return text


def strip_envelope(payload: str) -> str:
    """Remove the ``blip_ws_results(`` prefix and the closing ``);``."""
    text = payload.strip()
    if text.startswith(ENVELOPE_PREFIX):
        text = text[len(ENVELOPE_PREFIX):]
    if text.endswith(ENVELOPE_SUFFIX):
        text = text[:-len(ENVELOPE_SUFFIX)]
    return text


def repair_quotes(payload: str) -> str:
    """Double the backslash in ``\\'`` so the decoder does not choke on it."""
    return payload.replace("\\'", "\\\\'")


def _is_upstream_error(decoded: Any) -> bool:
    return (
        isinstance(decoded, list)
        and len(decoded) == 1
        and isinstance(decoded[0], dict)
        and "error" in decoded[0]
    )


def _as_results(decoded: Any) -> List[Dict[str, Any]]:
    if _is_upstream_error(decoded):
        value = decoded[0]["error"]
        message = value if isinstance(value, str) else json.dumps(value)
        raise UpstreamError(message)
    if isinstance(decoded, dict):
        return [decoded]
    if not isinstance(decoded, list):
        raise DecodeFailure(
            f"Expected a list of results, got {type(decoded).__name__}"
        )
    return decoded


def parse_pagination(fragment: str) -> Dict[str, str]:
    """
    Parse the version 3 trailer into a flat mapping.

    The trailer looks like ``[{page:1},{total:50}]``: brackets and braces are
    dropped, the rest is split on commas and each piece on its first colon.
    Exactly two pairs are expected.

    Args:
        fragment: Text following the last ``],`` of the repaired payload

    Returns:
        Mapping of trailer names to their (string) values

    Raises:
        PaginationParseFailure: If the trailer is not two ``name:value`` pairs
    """
    cleaned = fragment
    for char in "[]{}":
        cleaned = cleaned.replace(char, "")
    pieces = cleaned.strip().split(",")
    if len(pieces) != 2:
        raise PaginationParseFailure(
            f"Expected 2 pagination fields, found {len(pieces)}: {fragment.strip()!r}"
        )

    pagination: Dict[str, str] = {}
    for piece in pieces:
        name, sep, value = piece.partition(":")
        name = name.strip()
        if not sep or not name:
            raise PaginationParseFailure(
                f"Malformed pagination field {piece.strip()!r}"
            )
        pagination[name] = value.strip()

    if len(pagination) != 2:
        raise PaginationParseFailure(
            f"Duplicate pagination fields in {fragment.strip()!r}"
        )
    return pagination


def _decode(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeFailure(f"Could not decode response: {e}") from e


def _split_versioned(payload: str) -> NormalizedJson:
    boundary = payload.rfind(FRAGMENT_BOUNDARY)
    head = payload[:boundary + 1] if boundary >= 0 else ""

    try:
        decoded = json.loads(head)
    except json.JSONDecodeError:
        # No usable result array; the service may have sent a bare error envelope
        decoded = _decode(payload)
        results = _as_results(decoded)
        raise PaginationParseFailure(
            f"No pagination trailer found after {len(results)} result(s)"
        )

    results = _as_results(decoded)
    pagination = parse_pagination(payload[boundary + len(FRAGMENT_BOUNDARY):])
    return NormalizedJson(results, pagination)


def parse_json_response(
    raw: RawPayload,
    data_type: str,
    version: int,
    url: str = "",
) -> NormalizedJson:
    """
    Repair and decode a pseudo-JSON response.

    Args:
        raw: Response body as returned by the transport (None on failure)
        data_type: Skin the request was made with; must be ``json``
        version: JSON protocol version; 3 carries a pagination trailer
        url: Request URL, used in the transport failure message

    Returns:
        NormalizedJson with the result records and, for version 3, pagination

    Raises:
        NormalizationError: One of its subclasses describing the failure
    """
    if data_type != JSON_DATA_TYPE:
        raise FormatMismatch(f"Wrong data_type specified! Type: {data_type}")

    payload = repair_quotes(strip_envelope(_require_payload(raw, url)))

    if version == PAGINATED_VERSION:
        return _split_versioned(payload)

    return NormalizedJson(_as_results(_decode(payload)), None)


def parse_xml_response(raw: RawPayload, data_type: str, url: str = "") -> str:
    """Return an ``api``/``rss`` response body unchanged."""
    if data_type not in XML_DATA_TYPES:
        raise FormatMismatch(f"Wrong data_type specified! Type: {data_type}")
    return _require_payload(raw, url)


def normalize_response(
    raw: RawPayload,
    data_type: str,
    version: int,
    url: str = "",
) -> Union[str, NormalizedJson]:
    """Dispatch to the normalizer matching ``data_type``."""
    if data_type in XML_DATA_TYPES:
        return parse_xml_response(raw, data_type, url)
    if data_type == JSON_DATA_TYPE:
        return parse_json_response(raw, data_type, version, url)
    raise FormatMismatch(f"The data type `{data_type}` is invalid!")
