"""
=============================================================================
LISTENER
=============================================================================

One listener = one listening socket + one accept loop. Whether it speaks
plain HTTP or terminates TLS is decided by its ListenSpec, not by a
subclass:

    Listener(ListenSpec("::", "80",  Plain()))
    Listener(ListenSpec("::", "443", TlsTerminated("server.crt", "server.key")))

=============================================================================
LISTENER INTERNALS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │    bind()                                                            │
    │        ├──► TlsContext.from_files()     (TLS only, once)            │
    │        └──► create_listening_socket()   resolve, bind, listen        │
    │                                                                      │
    │    serve_forever()                      (blocks; own thread)         │
    │        │                                                             │
    │        └──► while running:                                           │
    │                accept()                                              │
    │                   ├── timeout   → check running flag, loop           │
    │                   ├── OSError   → log (AcceptError), pause, loop     │
    │                   └── socket    → _dispatch()                        │
    │                                                                      │
    │    _dispatch(socket)                                                 │
    │        ├──► tls.wrap()            handshake; failure → close, drop   │
    │        ├──► Connection(...)                                          │
    │        └──► pool.submit(handle_connection)   or a detached thread    │
    │                                                                      │
    │    stop()                         running = False; the loop notices  │
    │                                   within accept_poll_interval        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHY ACCEPT HAS A TIMEOUT
=============================================================================

Closing a socket from another thread does not reliably wake a thread
blocked in accept(). So accept() is given a short timeout and the loop
re-checks the running flag:

    while running:
        try:
            accept()         # blocks for accept_poll_interval max
        except timeout:
            continue         # not an error, just a chance to stop

Only the listener's own thread ever touches the listening socket.

=============================================================================
THE TLS HANDSHAKE RUNS ON THE ACCEPT THREAD
=============================================================================

A TLS listener completes each handshake before it accepts the next
client. A client that opens TCP and then says nothing holds the accept
loop for up to handshake_timeout (5 s by default):

    t=0s   silent client connects      → handshake blocks
    t=0.1  real client connects        → waits in the backlog
    t=5s   handshake times out, dropped → real client is accepted

A steady stream of silent connections can therefore keep the TLS port
from serving anyone. Lower handshake_timeout if that matters. The plain
listener is not affected.

=============================================================================
"""

import logging
import socket
import threading
from typing import Optional, Tuple

from ..config import ListenSpec, ServerConfig, TlsTerminated
from ..errors import AcceptError, HandshakeError
from .connection import Connection
from .handler import handle_connection
from .socket_factory import create_listening_socket
from .thread_pool import WorkerPool
from .tls import TlsContext


logger = logging.getLogger(__name__)

# Seconds to wait before accepting again after accept() failed
ACCEPT_ERROR_BACKOFF = 0.1


class Listener:
    """
    Accepts connections for one ListenSpec and dispatches them to handlers.

    Usage:
        listener = Listener(ListenSpec("127.0.0.1", "8080"), config, pool)
        listener.bind()            # raises StartupError on failure
        listener.serve_forever()   # blocks until stop()
    """

    def __init__(
        self,
        spec: ListenSpec,
        config: Optional[ServerConfig] = None,
        pool: Optional[WorkerPool] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            spec: Where to listen and whether to terminate TLS.
            config: Timeouts, buffer size and backlog. Defaults apply if None.
            pool: Worker pool for handlers. None = one thread per connection.
            log: Logger for this listener and its handlers.
        """
        self.spec = spec
        self.config = config or ServerConfig()
        self.pool = pool
        self.logger = log or logger

        self._socket: Optional[socket.socket] = None
        self._tls: Optional[TlsContext] = None
        self._running = False
        self._shutdown_event = threading.Event()

    def __str__(self) -> str:
        return str(self.spec)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tls(self) -> Optional[TlsContext]:
        """The TLS context, once bind() has materialised it."""
        return self._tls

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port). Useful when listening on port 0."""
        if self._socket is None:
            raise RuntimeError("Listener is not bound")
        return self._socket.getsockname()[:2]

    # =========================================================================
    # BRING-UP
    # =========================================================================

    def bind(self):
        """
        Load the TLS material (if any) and create the listening socket.

        Raises:
            TlsConfigurationError: Certificate or key unusable.
            AddressResolutionError: Host/port did not resolve.
            SocketBringupError: Socket could not be created, bound or listened.
        """
        if self._socket is not None:
            return

        if isinstance(self.spec.termination, TlsTerminated) and self._tls is None:
            self._tls = TlsContext.from_files(
                self.spec.termination.cert_file,
                self.spec.termination.key_file,
            )

        sock = create_listening_socket(self.spec.host, self.spec.port, self.config.backlog)
        sock.settimeout(self.config.accept_poll_interval)

        self._socket = sock
        self._running = True
        self._shutdown_event.clear()
        self.logger.info(f"Listening on {self.spec} (bound to {self.address[0]}:{self.address[1]})")

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def serve_forever(self):
        """Run the accept loop until stop(). Binds first if needed."""
        self.bind()

        try:
            while self._running:
                try:
                    client_socket, client_address = self._accept()
                except socket.timeout:
                    continue
                except AcceptError as e:
                    if not self._running:
                        break
                    # Transient (EMFILE, ECONNABORTED, ...): pause, then keep serving
                    self.logger.error(f"Accept error on {self.spec}: {e}")
                    self._shutdown_event.wait(ACCEPT_ERROR_BACKOFF)
                    continue

                self._dispatch(client_socket, client_address)
        finally:
            self.close()

    def _accept(self) -> Tuple[socket.socket, tuple]:
        try:
            return self._socket.accept()
        except socket.timeout:
            raise
        except OSError as e:
            raise AcceptError(str(e)) from e

    def _dispatch(self, client_socket: socket.socket, client_address: tuple):
        """Hand one accepted socket to a handler. Never blocks on the handler."""
        if self._tls is not None:
            try:
                client_socket = self._tls.wrap(client_socket, timeout=self.config.handshake_timeout)
            except HandshakeError as e:
                # Socket already closed by wrap(); nothing was dispatched
                self.logger.debug(f"Dropped {client_address[0]}: {e}")
                return

        conn = Connection(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            timeout=self.config.read_timeout,
        )
        self.logger.debug(f"[{conn.id}] Accepted {conn.client_ip}:{conn.client_port} on {self.spec}")

        if self.pool is None:
            try:
                threading.Thread(
                    target=handle_connection,
                    args=(conn, self.logger),
                    name=f"haperf-conn-{conn.id}",
                    daemon=True,
                ).start()
            except RuntimeError as e:
                self.logger.error(f"[{conn.id}] Cannot start handler thread: {e}")
                conn.close()
            return

        try:
            submitted = self.pool.submit(handle_connection, args=(conn, self.logger))
        except RuntimeError:
            submitted = False

        if not submitted:
            self.logger.warning(f"[{conn.id}] Worker pool saturated, dropping {conn.client_ip}")
            conn.close()

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def stop(self):
        """Ask the accept loop to exit. Idempotent, callable from any thread."""
        self._running = False

    def close(self):
        """Close the listening socket. Called by the accept loop on exit."""
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            self.logger.info(f"Stopped listening on {self.spec}")
        self._shutdown_event.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Wait until the listening socket is closed. Returns False on timeout."""
        return self._shutdown_event.wait(timeout)
