"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the listener can hit falls into one of two families:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        HaperfError                                   │
    ├──────────────────────────────────┬──────────────────────────────────┤
    │  StartupError (FATAL)            │  ConnectionFailure (CONTAINED)   │
    │  ──────────────────────          │  ──────────────────────────      │
    │  AddressResolutionError          │  AcceptError                     │
    │  SocketBringupError              │  HandshakeError                  │
    │  TlsConfigurationError           │  ReadError                       │
    │  ConfigurationError              │  WriteError                      │
    │                                  │                                  │
    │  Propagates to the CLI, which    │  Logged by the listener or the   │
    │  prints one line and exits 1.    │  handler. Only that connection   │
    │                                  │  is closed; the server goes on.  │
    └──────────────────────────────────┴──────────────────────────────────┘

The original OSError / ssl.SSLError is always chained (raise ... from e)
so tracebacks still show the syscall that failed.

=============================================================================
"""


class HaperfError(Exception):
    """Base class for all errors raised by haperf."""


# =============================================================================
# STARTUP ERRORS
# =============================================================================

class StartupError(HaperfError):
    """A listener could not be brought up. Fatal."""


class AddressResolutionError(StartupError):
    """getaddrinfo() failed or returned no usable address."""


class SocketBringupError(StartupError):
    """socket(), setsockopt(), bind() or listen() failed."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"Failed to {step}: {message}")


class TlsConfigurationError(StartupError):
    """The certificate chain or private key could not be loaded."""


class ConfigurationError(StartupError, ValueError):
    """A ServerConfig value is out of range."""


# =============================================================================
# PER-CONNECTION ERRORS
# =============================================================================

class ConnectionFailure(HaperfError):
    """A single connection failed. Never affects other connections."""


class AcceptError(ConnectionFailure):
    """accept() failed. Transient; the accept loop continues."""


class HandshakeError(ConnectionFailure):
    """The TLS handshake with a client failed."""


class ReadError(ConnectionFailure):
    """Reading the request bytes failed or timed out."""


class WriteError(ConnectionFailure):
    """Writing the response failed."""
