"""
Unit tests for configuration.
"""

import pytest

from haperf import ServerConfig, ListenSpec, Plain, TlsTerminated
from haperf.errors import ConfigurationError, StartupError


class TestListenSpec:
    """Tests for ListenSpec."""

    def test_defaults_to_plain(self):
        spec = ListenSpec("::", "80")
        assert spec.termination == Plain()
        assert not spec.tls_required

    def test_tls_required(self):
        spec = ListenSpec("::", "443", TlsTerminated("a.crt", "a.key"))
        assert spec.tls_required

    def test_str_ipv6(self):
        spec = ListenSpec("::", "443", TlsTerminated("a.crt", "a.key"))
        assert str(spec) == "https://[::]:443"

    def test_str_ipv4(self):
        assert str(ListenSpec("127.0.0.1", "8080")) == "http://127.0.0.1:8080"

    def test_frozen(self):
        spec = ListenSpec("::", "80")
        with pytest.raises(AttributeError):
            spec.port = "81"


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()
        assert config.host == "::"
        assert config.port == "80"
        assert config.tls_port == "443"
        assert config.buffer_size == 1024
        config.validate()

    def test_listen_specs(self):
        config = ServerConfig(host="127.0.0.1", port="8080", cert_file="c.pem", key_file="k.pem")
        plain, tls = config.listen_specs()

        assert plain == ListenSpec("127.0.0.1", "8080", Plain())
        assert tls == ListenSpec("127.0.0.1", "443", TlsTerminated("c.pem", "k.pem"))

    @pytest.mark.parametrize("port", ["-1", "65536", "99999", "", "  "])
    def test_invalid_port(self, port):
        with pytest.raises(ConfigurationError, match="Invalid port"):
            ServerConfig(port=port).validate()

    def test_invalid_tls_port(self):
        with pytest.raises(ConfigurationError, match="Invalid tls_port"):
            ServerConfig(tls_port="99999").validate()

    def test_port_zero_allowed(self):
        ServerConfig(port="0", tls_port="0").validate()

    @pytest.mark.parametrize("port", ["http", "http-alt", "no-such-service"])
    def test_service_names_left_to_resolver(self, port):
        """Non-numeric ports are service names; getaddrinfo() decides."""
        ServerConfig(port=port, tls_port="https").validate()

    def test_invalid_buffer_size(self):
        with pytest.raises(ConfigurationError):
            ServerConfig(buffer_size=0).validate()

    def test_invalid_timeouts(self):
        with pytest.raises(ConfigurationError):
            ServerConfig(read_timeout=0).validate()
        with pytest.raises(ConfigurationError):
            ServerConfig(handshake_timeout=-1).validate()
        with pytest.raises(ConfigurationError):
            ServerConfig(accept_poll_interval=0).validate()

    def test_invalid_workers(self):
        with pytest.raises(ConfigurationError):
            ServerConfig(min_workers=8, max_workers=4).validate()
        with pytest.raises(ConfigurationError):
            ServerConfig(queue_size=0).validate()

    def test_unbounded_workers_skip_pool_checks(self):
        ServerConfig(max_workers=None, min_workers=0, queue_size=0).validate()

    def test_configuration_error_is_startup_and_value_error(self):
        with pytest.raises(StartupError):
            ServerConfig(port="99999").validate()
        with pytest.raises(ValueError):
            ServerConfig(port="99999").validate()


class TestFromEnv:
    """Tests for ServerConfig.from_env()."""

    def test_defaults_without_env(self, monkeypatch):
        for name in ("ADDRESS", "PORT", "TLS_PORT", "CERT_FILE", "KEY_FILE", "READ_TIMEOUT", "WORKERS"):
            monkeypatch.delenv(f"HAPERF_{name}", raising=False)

        config = ServerConfig.from_env()
        assert config == ServerConfig()

    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("HAPERF_ADDRESS", "127.0.0.1")
        monkeypatch.setenv("HAPERF_PORT", "8080")
        monkeypatch.setenv("HAPERF_TLS_PORT", "8443")
        monkeypatch.setenv("HAPERF_CERT_FILE", "/tmp/c.pem")
        monkeypatch.setenv("HAPERF_KEY_FILE", "/tmp/k.pem")
        monkeypatch.setenv("HAPERF_READ_TIMEOUT", "1.5")
        monkeypatch.setenv("HAPERF_WORKERS", "8")

        config = ServerConfig.from_env()
        assert config.host == "127.0.0.1"
        assert config.port == "8080"
        assert config.tls_port == "8443"
        assert config.cert_file == "/tmp/c.pem"
        assert config.key_file == "/tmp/k.pem"
        assert config.read_timeout == 1.5
        assert config.max_workers == 8

    def test_zero_workers_means_unbounded(self, monkeypatch):
        monkeypatch.setenv("HAPERF_WORKERS", "0")
        assert ServerConfig.from_env().max_workers is None

    @pytest.mark.parametrize("name,value", [
        ("HAPERF_WORKERS", "many"),
        ("HAPERF_WORKERS", "4.5"),
        ("HAPERF_READ_TIMEOUT", "soon"),
    ])
    def test_malformed_number_names_variable(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError, match=name):
            ServerConfig.from_env()
