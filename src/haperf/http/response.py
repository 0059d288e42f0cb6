"""
=============================================================================
ECHO RESPONSE
=============================================================================

Every accepted connection gets exactly one, fixed-form response:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  HTTP/1.1 200 OK\r\n                          ◄── Status line       │
    │  Content-Type: text/plain\r\n                 ◄── Only header       │
    │  \r\n                                         ◄── End of headers    │
    │  2026-10-19 14:03:27 - received:\n\n          ◄── Local timestamp   │
    │  GET / HTTP/1.1\r\nHost: ...                  ◄── Bytes we read     │
    └─────────────────────────────────────────────────────────────────────┘

There is NO Content-Length header. The server closes the connection
right after writing, and for HTTP/1.1 a close without Content-Length
or chunked encoding marks the end of the body.

The received bytes are echoed verbatim: exactly the bytes recv()
returned, embedded NUL bytes included. Nothing is decoded, so binary
payloads and TLS-looking garbage come back untouched.

=============================================================================
"""

from datetime import datetime
from typing import Optional


RESPONSE_HEAD = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n"

RECEIVED_MARKER = b" - received:\n\n"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(now: Optional[datetime] = None) -> str:
    """
    Format a local wall-clock time as "YYYY-MM-DD HH:MM:SS".

    Args:
        now: Time to format. Defaults to the current local time.
    """
    if now is None:
        now = datetime.now()
    return now.strftime(TIMESTAMP_FORMAT)


def build_response(received: bytes, now: Optional[datetime] = None) -> bytes:
    """
    Build the echo response for one connection.

    Args:
        received: The request bytes exactly as read from the socket.
        now: Timestamp to embed. Defaults to the current local time.

    Returns:
        The full response, ready for sendall().
    """
    timestamp = format_timestamp(now).encode("ascii")
    return b"".join((RESPONSE_HEAD, timestamp, RECEIVED_MARKER, bytes(received)))
