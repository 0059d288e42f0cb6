"""
=============================================================================
CORE LISTENER COMPONENTS
=============================================================================

The networking plumbing of the record listener, leaves first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SOCKET FACTORY   resolve → socket → SO_REUSEADDR → bind → listen   │
    └─────────────────────────────────────────────────────────────────────┘
    ┌─────────────────────────────────────────────────────────────────────┐
    │  TLS CONTEXT      certificate chain + key, wraps accepted sockets   │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  LISTENER         accept loop, handshake (TLS), dispatch            │
    └─────────────────────────────────────────────────────────────────────┘
                                    │  one per connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  WORKER POOL      bounded threads (or one thread per connection)    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  HANDLER          read once → echo with timestamp → close           │
    │  (Connection)     plain socket or ssl.SSLSocket, same surface       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_factory import create_listening_socket
from .tls import TlsContext
from .connection import Connection, ConnectionState
from .handler import handle_connection
from .thread_pool import WorkerPool
from .listener import Listener

__all__ = [
    "create_listening_socket",  # Passive socket bring-up
    "TlsContext",               # Certificate + key, handshake
    "Connection",               # One accepted client
    "ConnectionState",
    "handle_connection",        # Read once, write once, close
    "WorkerPool",               # Bounded handler threads
    "Listener",                 # Accept loop for one ListenSpec
]
