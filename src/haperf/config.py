"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the record listener.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── haperf record -c server.crt -k server.key -p 8080         │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HAPERF_TLS_PORT=8443 haperf record ...                    │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TWO LISTENERS, ONE CONFIG
=============================================================================

The record command always runs two listeners on the same address:

    host:port       plain HTTP        (port from --port, default 80)
    host:tls_port   TLS-terminated    (fixed at 443 on the command line)

listen_specs() turns the config into the two ListenSpec values the
supervisor needs. The termination mode is a tagged variant, not a flag
plus two optional paths:

    ListenSpec("::", "80",  Plain())
    ListenSpec("::", "443", TlsTerminated("ssl/server.crt", "ssl/server.key"))

=============================================================================
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .errors import ConfigurationError


def _env_number(name: str, default: str, convert):
    """Read a numeric environment variable, naming it if it is malformed."""
    raw = os.getenv(name, default)
    try:
        return convert(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {name}: {raw!r} is not a valid number") from e


# =============================================================================
# TERMINATION VARIANTS
# =============================================================================

@dataclass(frozen=True)
class Plain:
    """Serve plain TCP. No TLS."""


@dataclass(frozen=True)
class TlsTerminated:
    """Terminate TLS with this certificate chain and private key (PEM)."""
    cert_file: str
    key_file: str


Termination = Union[Plain, TlsTerminated]


@dataclass(frozen=True)
class ListenSpec:
    """
    Where one listener binds and how it terminates connections.

    Attributes:
        host: Address to bind to. "::" means all interfaces, dual-stack.
        port: Port as a string (passed straight to getaddrinfo).
        termination: Plain() or TlsTerminated(cert_file, key_file).
    """
    host: str
    port: str
    termination: Termination = Plain()

    @property
    def tls_required(self) -> bool:
        return isinstance(self.termination, TlsTerminated)

    def __str__(self) -> str:
        scheme = "https" if self.tls_required else "http"
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{scheme}://{host}:{self.port}"


@dataclass
class ServerConfig:
    """
    Configuration for the record listener.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, tls_port, backlog

    TLS SETTINGS
    - cert_file, key_file, handshake_timeout

    CONNECTION SETTINGS
    - buffer_size, read_timeout, accept_poll_interval

    DISPATCH SETTINGS
    - min_workers, max_workers, queue_size

    LOGGING
    - verbose

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "::"
    """
    The address to bind both listeners to.
    - "::" - All interfaces, IPv4 and IPv6 (dual-stack where supported)
    - "0.0.0.0" - All IPv4 interfaces
    - "127.0.0.1" - Localhost only
    """

    port: str = "80"
    """Port of the plain HTTP listener."""

    tls_port: str = "443"
    """
    Port of the TLS listener.
    Not exposed on the command line: `haperf record` always uses 443.
    """

    backlog: int = socket.SOMAXCONN
    """Accept queue length. The platform maximum by default."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    cert_file: str = "ssl/server.crt"
    """PEM certificate chain, leaf certificate first."""

    key_file: str = "ssl/server.key"
    """PEM private key matching the leaf certificate. Must not be encrypted."""

    handshake_timeout: float = 5.0
    """
    Seconds a client gets to complete the TLS handshake.
    The handshake runs on the listener thread, so a silent client
    would otherwise stall every other TLS client.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONNECTION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    buffer_size: int = 1024
    """Maximum number of request bytes read (and echoed) per connection."""

    read_timeout: float = 5.0
    """
    Seconds to wait for the request bytes before giving up.
    Protects against slow-loris clients that connect and never send.
    """

    accept_poll_interval: float = 1.0
    """How often a blocked accept() wakes up to check for stop()."""

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads started up front."""

    max_workers: Optional[int] = 64
    """
    Upper bound on concurrent handlers.
    None = one detached thread per connection, no bound.
    """

    queue_size: int = 256
    """Connections waiting for a free worker before new ones are refused."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    verbose: bool = False
    """Log at DEBUG instead of WARNING."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HAPERF_ADDRESS       Bind address       (default: ::)
        HAPERF_PORT          Plain HTTP port    (default: 80)
        HAPERF_TLS_PORT      TLS port           (default: 443)
        HAPERF_CERT_FILE     Certificate chain  (default: ssl/server.crt)
        HAPERF_KEY_FILE      Private key        (default: ssl/server.key)
        HAPERF_READ_TIMEOUT  Read timeout, s    (default: 5)
        HAPERF_WORKERS       Max worker threads (default: 64, 0 = unbounded)

        =====================================================================
        """
        workers = _env_number("HAPERF_WORKERS", "64", int)
        return cls(
            host=os.getenv("HAPERF_ADDRESS", "::"),
            port=os.getenv("HAPERF_PORT", "80"),
            tls_port=os.getenv("HAPERF_TLS_PORT", "443"),
            cert_file=os.getenv("HAPERF_CERT_FILE", "ssl/server.crt"),
            key_file=os.getenv("HAPERF_KEY_FILE", "ssl/server.key"),
            read_timeout=_env_number("HAPERF_READ_TIMEOUT", "5", float),
            max_workers=workers or None,
        )

    def listen_specs(self) -> Tuple[ListenSpec, ListenSpec]:
        """Return the (plain, tls) listen specs for the record command."""
        return (
            ListenSpec(self.host, self.port, Plain()),
            ListenSpec(
                self.host,
                self.tls_port,
                TlsTerminated(self.cert_file, self.key_file),
            ),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast at startup rather than on the first connection.
        Port 0 is accepted and means "let the OS pick". A port that is not
        a number is taken as a service name ("http", "http-alt") and left
        to getaddrinfo(); an unknown name fails as AddressResolutionError.
        """
        for name in ("port", "tls_port"):
            value = str(getattr(self, name)).strip()
            if not value:
                raise ConfigurationError(f"Invalid {name}: empty port")
            numeric = value.isdecimal() or (value[0] in "+-" and value[1:].isdecimal())
            if numeric and not 0 <= int(value) < 65536:
                raise ConfigurationError(f"Invalid {name}: {value!r}. Must be 0-65535.")

        if self.buffer_size < 1:
            raise ConfigurationError("buffer_size must be >= 1")

        if self.read_timeout <= 0 or self.handshake_timeout <= 0:
            raise ConfigurationError("timeouts must be > 0")

        if self.accept_poll_interval <= 0:
            raise ConfigurationError("accept_poll_interval must be > 0")

        if self.max_workers is not None:
            if self.min_workers < 1:
                raise ConfigurationError("min_workers must be >= 1")
            if self.max_workers < self.min_workers:
                raise ConfigurationError("max_workers must be >= min_workers")
            if self.queue_size < 1:
                raise ConfigurationError("queue_size must be >= 1")
