"""
=============================================================================
HAPERF - HTTP/HTTPS Record Listener
=============================================================================

The data-intake front-end of the HAperf record/replay tool. It accepts
plain and TLS connections, reads the first buffer of request bytes and
answers with a timestamped echo:

    $ curl -s http://127.0.0.1:8080/ -d hello
    2026-10-19 14:03:27 - received:

    POST / HTTP/1.1
    Host: 127.0.0.1:8080
    ...

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    haperf/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m haperf)
    ├── server.py            # Supervisor: runs both listeners
    ├── config.py            # ServerConfig, ListenSpec, Plain/TlsTerminated
    ├── errors.py            # Error taxonomy
    ├── core/
    │   ├── socket_factory.py # Resolve, bind, listen
    │   ├── tls.py            # Certificate/key loading, handshake
    │   ├── listener.py       # Accept loop + dispatch
    │   ├── connection.py     # Accepted socket wrapper
    │   ├── handler.py        # Read once, write once, close
    │   └── thread_pool.py    # Bounded worker threads
    └── http/
        └── response.py       # Echo response + timestamp

=============================================================================
QUICK START
=============================================================================

    from haperf import ServerConfig, Supervisor
    from haperf.server import setup_logging

    config = ServerConfig(
        host="127.0.0.1",
        port="8080",
        tls_port="8443",
        cert_file="ssl/server.crt",
        key_file="ssl/server.key",
    )
    Supervisor(config, log=setup_logging(verbose=True)).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, ListenSpec, Plain, TlsTerminated
from .server import Supervisor

__all__ = [
    "ServerConfig",
    "ListenSpec",
    "Plain",
    "TlsTerminated",
    "Supervisor",
    "__version__",
]
