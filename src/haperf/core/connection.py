"""
=============================================================================
CONNECTION
=============================================================================

Wraps one accepted client socket (plain or TLS) for its whole, very
short life: read once, write once, close.

=============================================================================
ONE READ, NOT ONE REQUEST
=============================================================================

TCP is a byte stream. A single recv() returns whatever the kernel has
buffered, up to the size we ask for:

    Client sends:   "GET / HTTP/1.1\r\nHost: x\r\n\r\n"

    recv(1024) →    "GET / HTTP/1.1\r\nHost: x\r\n\r\n"    (usually)
    recv(1024) →    "GET / HT"                              (sometimes)

The recorder front-end deliberately does NOT reassemble requests: the
first buffer is treated as opaque bytes and echoed back as-is. What
we guarantee is that exactly the bytes recv() returned are echoed,
no more (no zero padding) and no fewer (no truncation at NUL bytes).

=============================================================================
PLAIN VS TLS
=============================================================================

    ┌───────────────────────────┬─────────────────────────────────────────┐
    │  Plain (socket.socket)    │  TLS (ssl.SSLSocket)                    │
    ├───────────────────────────┼─────────────────────────────────────────┤
    │  recv()  = read(2)        │  recv()  = SSL_read                     │
    │  sendall() = write(2) loop│  sendall() = SSL_write loop             │
    │  close:                   │  close:                                 │
    │    shutdown(SHUT_WR)      │    unwrap()  (sends close_notify)       │
    │    drain leftovers        │    close()                              │
    │    close()                │                                         │
    └───────────────────────────┴─────────────────────────────────────────┘

The handler never needs to know which one it has: both socket types
expose the same recv()/sendall() surface, and close() picks the right
teardown.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► WRITING ──► CLOSING ──► CLOSED
             │                         ▲
             └─────────────────────────┘
           (read error, timeout or EOF: no response)

=============================================================================
"""

import socket
import ssl
import time
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import ReadError, WriteError


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, for logging and tests."""
    NEW = "new"
    READING = "reading"
    WRITING = "writing"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One accepted client connection.

    Attributes:
        socket: The client socket. An ssl.SSLSocket for TLS connections.
        address: Client address as returned by accept().
        id: Short identifier used as a log prefix.
        state: Current lifecycle state.
        created_at: When the connection was accepted.
        buffer_size: Maximum bytes read by read_request().
        timeout: Read/write timeout in seconds. None = block forever.
        close_timeout: Time allowed for the close sequence (drain or close_notify).
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    buffer_size: int = 1024
    timeout: Optional[float] = 5.0
    close_timeout: float = 0.5

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def client_ip(self) -> str:
        return self.address[0] if self.address else "?"

    @property
    def client_port(self) -> int:
        return self.address[1] if self.address else 0

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> bytes:
        """
        Read one buffer of request bytes.

        Returns:
            Up to buffer_size bytes. b"" means the peer closed without
            sending anything.

        Raises:
            ReadError: recv() failed or timed out.
        """
        self.state = ConnectionState.READING

        try:
            return self.socket.recv(self.buffer_size)
        except socket.timeout as e:
            raise ReadError(f"no request bytes within {self.timeout}s") from e
        except (ssl.SSLError, OSError) as e:
            raise ReadError(str(e)) from e

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> None:
        """
        Send the whole response.

        sendall() keeps calling send() (or SSL_write) until every byte is
        out, so partial writes are retried for us.

        Raises:
            WriteError: The peer went away or the write timed out.
        """
        self.state = ConnectionState.WRITING

        try:
            self.socket.sendall(data)
        except socket.timeout as e:
            raise WriteError(f"response not written within {self.timeout}s") from e
        except (ssl.SSLError, OSError) as e:
            raise WriteError(str(e)) from e

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Release the connection. Safe to call more than once.

        TLS: send close_notify (one-way shutdown is enough), then close.
        Plain: half-close, drain what the client still sends, then close.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        if self.is_tls:
            self._close_tls()
        else:
            self._close_plain()

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def _close_tls(self):
        try:
            self.socket.settimeout(self.close_timeout)
            self.socket.unwrap()
        except (ssl.SSLError, OSError, ValueError):
            pass  # peer already gone or never answered close_notify

        try:
            self.socket.close()
        except OSError:
            pass

    def _close_plain(self):
        try:
            # Sends FIN: the client sees end-of-body
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            # Unread request bytes would turn close() into an RST, which
            # can destroy the response before the client reads it
            self.socket.settimeout(self.close_timeout)
            deadline = time.monotonic() + self.close_timeout
            while time.monotonic() < deadline and self.socket.recv(4096):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
