"""
Error taxonomy for the blip.tv client.

The normalizer raises these internally; the client catches them and reports
them through ``BlipResult`` so a long-lived client keeps serving calls.

- TransportFailure: no bytes (or empty bytes) came back for the request URL
- FormatMismatch: a normalizer was invoked for a data type it does not handle
- DecodeFailure: the repaired payload could not be decoded as JSON
- UpstreamError: the service reported an ``error`` inside a valid envelope
- PaginationParseFailure: the version 3 trailer was not two ``name:value`` pairs
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failed operation."""
    TRANSPORT_FAILURE = "transport_failure"
    FORMAT_MISMATCH = "format_mismatch"
    DECODE_FAILURE = "decode_failure"
    UPSTREAM_ERROR = "upstream_error"
    PAGINATION_PARSE_FAILURE = "pagination_parse_failure"


class NormalizationError(ValueError):
    """Base class for failures while fetching or normalizing a response."""
    kind: ErrorKind = ErrorKind.DECODE_FAILURE


class TransportFailure(NormalizationError):
    kind = ErrorKind.TRANSPORT_FAILURE


class FormatMismatch(NormalizationError):
    kind = ErrorKind.FORMAT_MISMATCH


class DecodeFailure(NormalizationError):
    kind = ErrorKind.DECODE_FAILURE


class UpstreamError(NormalizationError):
    kind = ErrorKind.UPSTREAM_ERROR


class PaginationParseFailure(NormalizationError):
    kind = ErrorKind.PAGINATION_PARSE_FAILURE
