"""
=============================================================================
TLS TERMINATION
=============================================================================

The TLS listener terminates TLS itself: clients speak TLS to us, we
decrypt, and the handler sees plain request bytes.

=============================================================================
BUILDING THE CONTEXT
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  TlsContext.from_files(cert, key)                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. SSLContext(PROTOCOL_TLS_SERVER)   server role, TLS >= 1.2      │
    │   2. load certificate                  x509 PEM, leaf first         │
    │   3. load private key                  PEM, unencrypted              │
    │   4. key matches certificate?          compare public keys           │
    │   5. load_cert_chain()                 hand both to OpenSSL          │
    │                                                                      │
    │   Any failure → TlsConfigurationError naming the step               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

ssl.SSLContext.load_cert_chain() does steps 2-4 in one call, but its
errors are opaque ("[SSL] PEM lib (_ssl.c:3900)"). Parsing with the
cryptography package first lets us tell the operator WHICH file is
wrong before OpenSSL ever sees it.

=============================================================================
ACCEPTING A TLS CLIENT
=============================================================================

    raw socket ──► wrap_socket(server_side=True) ──► do_handshake()
                                                        │
                                   ┌────────────────────┴──────────────┐
                                   ▼                                   ▼
                              success                              failure
                          ssl.SSLSocket                   close socket, raise
                        (recv/sendall now                  HandshakeError
                         encrypt/decrypt)

A plain-text HTTP request on the TLS port fails here ("http request"
alert), so it never reaches a handler and never gets a response.

=============================================================================
"""

import logging
import socket
import ssl
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ..errors import HandshakeError, TlsConfigurationError


logger = logging.getLogger(__name__)


def _read_pem(path: str, what: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise TlsConfigurationError(f"Failed to read {what} file {path}: {e.strerror or e}") from e


def _public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


class TlsContext:
    """
    Server certificate chain + private key, ready to wrap sockets.

    Read-only once built: one instance is shared by the TLS listener and
    every connection it hands out, from any number of threads.

    Usage:
        tls = TlsContext.from_files("ssl/server.crt", "ssl/server.key")
        tls_sock = tls.wrap(client_socket, timeout=5.0)
    """

    def __init__(self, ssl_context: ssl.SSLContext, cert_file: str = "", key_file: str = ""):
        self.ssl_context = ssl_context
        self.cert_file = cert_file
        self.key_file = key_file

    @classmethod
    def from_files(cls, cert_file: str, key_file: str) -> "TlsContext":
        """
        Load and check a PEM certificate chain and private key.

        Raises:
            TlsConfigurationError: If any step fails. The message names
                                   the certificate or the private key.
        """
        # ─────────────────────────────────────────────────────────────────
        # STEP 1: Server context, TLS 1.2 minimum
        # ─────────────────────────────────────────────────────────────────
        try:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.minimum_version = ssl.TLSVersion.TLSv1_2
        except (ssl.SSLError, ValueError) as e:
            raise TlsConfigurationError(f"Failed to create TLS server context: {e}") from e

        # ─────────────────────────────────────────────────────────────────
        # STEP 2: Certificate
        # ─────────────────────────────────────────────────────────────────
        cert_pem = _read_pem(cert_file, "certificate")
        try:
            certificate = x509.load_pem_x509_certificate(cert_pem)
        except ValueError as e:
            raise TlsConfigurationError(
                f"Failed to load server certificate from {cert_file}: {e}"
            ) from e

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: Private key
        # ─────────────────────────────────────────────────────────────────
        key_pem = _read_pem(key_file, "private key")
        try:
            private_key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise TlsConfigurationError(
                f"Failed to load server private key from {key_file}: {e}"
            ) from e

        # ─────────────────────────────────────────────────────────────────
        # STEP 4: Key must belong to the certificate
        # ─────────────────────────────────────────────────────────────────
        if _public_bytes(private_key.public_key()) != _public_bytes(certificate.public_key()):
            raise TlsConfigurationError(
                "Server private key does not match the certificate public key"
            )

        # ─────────────────────────────────────────────────────────────────
        # STEP 5: Install into OpenSSL
        # ─────────────────────────────────────────────────────────────────
        try:
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
        except (ssl.SSLError, OSError) as e:
            raise TlsConfigurationError(
                f"Failed to install certificate chain {cert_file}: {e}"
            ) from e

        logger.debug(f"Loaded certificate for {certificate.subject.rfc4514_string()} from {cert_file}")
        return cls(context, cert_file, key_file)

    def wrap(self, sock: socket.socket, timeout: Optional[float] = None) -> ssl.SSLSocket:
        """
        Wrap an accepted socket and run the server-side handshake.

        Args:
            sock: A freshly accepted client socket. Ownership passes to
                  this call: on failure it is closed.
            timeout: Handshake deadline in seconds. None = block.

        Returns:
            The TLS connection, left in blocking mode.

        Raises:
            HandshakeError: The client did not complete a valid handshake.
        """
        try:
            sock.settimeout(timeout)
            tls_sock = self.ssl_context.wrap_socket(
                sock,
                server_side=True,
                do_handshake_on_connect=False,
            )
        except (ssl.SSLError, OSError) as e:
            sock.close()
            raise HandshakeError(f"Failed to set up TLS session: {e}") from e

        try:
            tls_sock.do_handshake()
        except (ssl.SSLError, OSError) as e:
            # wrap_socket() detached `sock`; the fd now belongs to tls_sock
            tls_sock.close()
            raise HandshakeError(f"TLS handshake failed: {e}") from e

        tls_sock.settimeout(None)
        return tls_sock
