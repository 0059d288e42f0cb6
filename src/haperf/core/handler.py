"""
Per-connection handler: read once, write once, close.

Runs on a worker (or a dedicated thread). Every error is contained
here and logged; the connection is closed on every exit path.
"""

import logging
from typing import Optional

from ..errors import ReadError, WriteError
from ..http.response import build_response
from .connection import Connection


logger = logging.getLogger(__name__)


def handle_connection(conn: Connection, log: Optional[logging.Logger] = None) -> None:
    """
    Echo one buffer of request bytes back with a timestamp.

    The same function serves plain and TLS connections; Connection hides
    the difference between socket and SSL read/write primitives.
    """
    log = log or logger
    kind = "TLS" if conn.is_tls else "plain"

    with conn:
        try:
            received = conn.read_request()
        except ReadError as e:
            log.warning(f"[{conn.id}] Read from {conn.client_ip} failed: {e}")
            return

        if not received:
            log.debug(f"[{conn.id}] {conn.client_ip} closed the connection without sending data")
            return

        log.debug(f"[{conn.id}] Received {len(received)} bytes over {kind} from {conn.client_ip}")

        try:
            conn.send_response(build_response(received))
        except WriteError as e:
            log.warning(f"[{conn.id}] Write to {conn.client_ip} failed: {e}")
