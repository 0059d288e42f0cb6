"""
=============================================================================
LISTENING SOCKET FACTORY
=============================================================================

Turns a (host, port) pair into a passive socket ready for accept().

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. getaddrinfo()  Resolve host/port into a concrete sockaddr
                      └─ AF_UNSPEC: let the resolver pick v4 or v6
                      └─ AI_PASSIVE: we want an address to bind, not connect

    2. socket()       Create a stream socket of the resolved family

    3. setsockopt()   SO_REUSEADDR, and IPV6_V6ONLY=0 for dual-stack

    4. bind()         Reserve the resolved address

    5. listen()       Start queueing connections (backlog = SOMAXCONN)

=============================================================================
DUAL-STACK
=============================================================================

Binding "::" with IPV6_V6ONLY cleared gives ONE socket that accepts both
IPv6 clients and IPv4 clients (which show up as ::ffff:a.b.c.d):

                    ┌───────────────────────┐
    IPv6 client ──► │  [::]:80  (AF_INET6)  │ ◄── IPv4 client
                    │   IPV6_V6ONLY = 0     │     (as ::ffff:10.0.0.7)
                    └───────────────────────┘

Whether this is the default depends on the OS (Linux: yes, BSDs and
Windows: no), so we clear the option explicitly and ignore platforms
that refuse.

=============================================================================
"""

import logging
import socket
from typing import Optional, Union

from ..errors import AddressResolutionError, SocketBringupError


logger = logging.getLogger(__name__)


def resolve_passive(host: Optional[str], port: Union[str, int]) -> tuple:
    """
    Resolve (host, port) for binding.

    Returns:
        The first getaddrinfo() result: (family, type, proto, canonname, sockaddr).

    Raises:
        AddressResolutionError: If resolution fails or yields nothing.
    """
    try:
        results = socket.getaddrinfo(
            host or None,
            str(port),
            socket.AF_UNSPEC,
            socket.SOCK_STREAM,
            0,
            socket.AI_PASSIVE,
        )
    except socket.gaierror as e:
        raise AddressResolutionError(
            f"Failed to get address information for {host}:{port}: {e}"
        ) from e

    if not results:
        raise AddressResolutionError(f"No address information for {host}:{port}")

    return results[0]


def create_listening_socket(
    host: Optional[str],
    port: Union[str, int],
    backlog: int = socket.SOMAXCONN,
) -> socket.socket:
    """
    Create a bound, listening stream socket.

    Args:
        host: Address to bind. "::" = all interfaces, dual-stack preferred.
              Empty string or None = all interfaces.
        port: Port number or service name.
        backlog: listen() backlog. Defaults to the platform maximum.

    Returns:
        A socket in listening state. The caller owns it.

    Raises:
        AddressResolutionError: host/port could not be resolved.
        SocketBringupError: socket(), setsockopt(), bind() or listen() failed.
    """
    family, socktype, proto, _, sockaddr = resolve_passive(host, port)

    try:
        sock = socket.socket(family, socktype, proto)
    except OSError as e:
        raise SocketBringupError("create socket", str(e)) from e

    # From here on, any failure must close the half-built socket
    try:
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as e:
            raise SocketBringupError("set socket options", str(e)) from e

        if family == socket.AF_INET6:
            try:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            except (AttributeError, OSError):
                logger.debug("IPV6_V6ONLY cannot be cleared, listening on IPv6 only")

        try:
            sock.bind(sockaddr)
        except OSError as e:
            raise SocketBringupError(f"bind to {host}:{port}", str(e)) from e

        try:
            sock.listen(backlog)
        except OSError as e:
            raise SocketBringupError("listen on socket", str(e)) from e

    except SocketBringupError:
        sock.close()
        raise

    logger.debug(f"Listening socket ready on {sock.getsockname()[:2]} (family {family.name})")
    return sock
