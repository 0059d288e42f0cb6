"""
pytest configuration and fixtures.
"""

import datetime
import ipaddress
import socket
import ssl
import threading
import time
from dataclasses import dataclass
from typing import Generator, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from haperf import ServerConfig, ListenSpec, Plain, TlsTerminated
from haperf.core import Listener, WorkerPool


# =============================================================================
# CERTIFICATES
# =============================================================================

@dataclass
class TlsFiles:
    ca_file: str
    cert_file: str
    key_file: str


def _write_key(key, path: Path) -> str:
    path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ))
    return str(path)


def _write_cert(cert, path: Path) -> str:
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return str(path)


def _make_tls_files(directory: Path) -> TlsFiles:
    """Test CA + a localhost server certificate signed by it."""
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "haperf test CA")])
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    key = ec.generate_private_key(ec.SECP256R1())
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")]))
        .issuer_name(ca_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    return TlsFiles(
        ca_file=_write_cert(ca_cert, directory / "ca.crt"),
        cert_file=_write_cert(cert, directory / "server.crt"),
        key_file=_write_key(key, directory / "server.key"),
    )


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory) -> TlsFiles:
    """A valid certificate/key pair and the CA that signed it."""
    return _make_tls_files(tmp_path_factory.mktemp("tls"))


@pytest.fixture(scope="session")
def foreign_key_file(tmp_path_factory) -> str:
    """A private key that matches no certificate."""
    path = tmp_path_factory.mktemp("foreign") / "other.key"
    return _write_key(ec.generate_private_key(ec.SECP256R1()), path)


@pytest.fixture
def client_tls_context(tls_files: TlsFiles) -> ssl.SSLContext:
    """Client context that trusts the test CA."""
    return ssl.create_default_context(cafile=tls_files.ca_file)


# =============================================================================
# CONFIG
# =============================================================================

@pytest.fixture
def config(tls_files: TlsFiles) -> ServerConfig:
    """Test configuration: localhost, OS-assigned ports, short timeouts."""
    return ServerConfig(
        host="127.0.0.1",
        port="0",
        tls_port="0",
        cert_file=tls_files.cert_file,
        key_file=tls_files.key_file,
        read_timeout=2.0,
        handshake_timeout=2.0,
        accept_poll_interval=0.1,
        min_workers=2,
        max_workers=16,
        queue_size=256,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# RUNNING LISTENERS
# =============================================================================

class TestListener:
    """Runs a Listener's accept loop in a background thread."""

    __test__ = False  # not a test class

    def __init__(self, listener: Listener):
        self.listener = listener
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.listener.address[1]

    def start(self) -> "TestListener":
        self.listener.bind()
        self._thread = threading.Thread(target=self.listener.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self.listener.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def worker_pool(config: ServerConfig) -> Generator[WorkerPool, None, None]:
    pool = WorkerPool(
        min_workers=config.min_workers,
        max_workers=config.max_workers,
        queue_size=config.queue_size,
    )
    pool.start()
    yield pool
    pool.shutdown()


@pytest.fixture
def plain_server(config: ServerConfig, worker_pool: WorkerPool) -> Generator[TestListener, None, None]:
    server = TestListener(Listener(ListenSpec(config.host, "0", Plain()), config, worker_pool)).start()
    yield server
    server.stop()


@pytest.fixture
def tls_server(config: ServerConfig, worker_pool: WorkerPool) -> Generator[TestListener, None, None]:
    spec = ListenSpec(config.host, "0", TlsTerminated(config.cert_file, config.key_file))
    server = TestListener(Listener(spec, config, worker_pool)).start()
    yield server
    server.stop()


# =============================================================================
# CLIENT HELPERS
# =============================================================================

def read_until_closed(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read until the server closes the connection."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def exchange(port: int, payload: bytes, host: str = "127.0.0.1") -> bytes:
    """Send payload over plain TCP and return the full response."""
    with socket.create_connection((host, port), timeout=5.0) as sock:
        sock.sendall(payload)
        return read_until_closed(sock)


def tls_exchange(port: int, payload: bytes, context: ssl.SSLContext, host: str = "127.0.0.1") -> bytes:
    """Send payload over TLS (verifying the server as "localhost") and return the response."""
    with socket.create_connection((host, port), timeout=5.0) as raw:
        with context.wrap_socket(raw, server_hostname="localhost") as sock:
            sock.sendall(payload)
            return read_until_closed(sock)


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Poll predicate() until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
