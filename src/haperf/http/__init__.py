"""
HTTP-facing pieces of the listener.

The record listener does not parse HTTP. The only HTTP it speaks is the
fixed echo response built in response.py.
"""

from .response import (
    RESPONSE_HEAD,
    RECEIVED_MARKER,
    TIMESTAMP_FORMAT,
    build_response,
    format_timestamp,
)

__all__ = [
    "RESPONSE_HEAD",
    "RECEIVED_MARKER",
    "TIMESTAMP_FORMAT",
    "build_response",
    "format_timestamp",
]
