"""Unit tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from conftest import make_config
from device_relay.config import ApplicationConfig, str_to_bool
from device_relay.models import AcceptFailurePolicy, MessageType, TlsMode


class TestStrToBool:
    """Test cases for str_to_bool."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes", "on", "enabled", True, 1])
    def test_truthy_values(self, value) -> None:
        assert str_to_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", "", False, 0])
    def test_falsy_values(self, value) -> None:
        assert str_to_bool(value) is False


class TestApplicationConfig:
    """Test cases for ApplicationConfig."""

    def test_defaults(self) -> None:
        config = ApplicationConfig(_env_file=None, tenant="acme", sink="events")

        assert config.amqp_uri == "localhost"
        assert config.amqp_port == "5671"
        assert config.message_type == MessageType.TELEMETRY
        assert config.tls_config == TlsMode.DISABLED
        assert config.accept_failure_policy == AcceptFailurePolicy.TERMINATE
        assert config.send_timeout == 5.0
        assert config.receiver_close_timeout == 1.0
        assert config.sender_cache_size == 0
        assert config.accept_initial_backoff == 0.2
        assert config.accept_max_backoff == 2.0
        assert config.forward_queue_size == 0
        assert config.log_level == "INFO"
        assert config.log_json is False

    def test_loads_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AMQP_URI", "hub.example.net")
        monkeypatch.setenv("AMQP_PORT", "5672")
        monkeypatch.setenv("MESSAGE_TYPE", "EVENT")
        monkeypatch.setenv("TENANT", "tenant-7")
        monkeypatch.setenv("SINK", "downstream/")
        monkeypatch.setenv("TLS_CONFIG", "1")
        monkeypatch.setenv("CLIENT_USERNAME", "relay")
        monkeypatch.setenv("CLIENT_PASSWORD", "s3cret")
        monkeypatch.setenv("ACCEPT_FAILURE_POLICY", "Retry")
        monkeypatch.setenv("LOG_JSON", "yes")
        monkeypatch.setenv("ACCEPT_INITIAL_BACKOFF", "0.5")
        monkeypatch.setenv("SENDER_CACHE_SIZE", "16")

        config = ApplicationConfig(_env_file=None)

        assert config.amqp_uri == "hub.example.net"
        assert config.amqp_port == "5672"
        assert config.message_type == MessageType.EVENT
        assert config.tenant == "tenant-7"
        assert config.sink == "downstream"
        assert config.tls_config == TlsMode.INSECURE
        assert config.client_username == "relay"
        assert config.client_password == "s3cret"
        assert config.accept_failure_policy == AcceptFailurePolicy.RETRY
        assert config.log_json is True
        assert config.accept_initial_backoff == 0.5
        assert config.sender_cache_size == 16

    def test_server_settings(self) -> None:
        config = make_config()

        assert (config.server_host, config.server_port) == ("0.0.0.0", 8081)

        assert not hasattr(config, "app_name")
        assert not hasattr(config, "debug")
        assert config.app_version

    def test_integer_port_is_kept_as_text(self) -> None:
        assert make_config(amqp_port=5672).amqp_port == "5672"

    @pytest.mark.parametrize("port", ["0", "65536", "amqp", ""])
    def test_invalid_port(self, port: str) -> None:
        with pytest.raises(ValidationError):
            make_config(amqp_port=port)

    @pytest.mark.parametrize("uri", ["amqps://broker.example.com", "", "   "])
    def test_invalid_uri(self, uri: str) -> None:
        with pytest.raises(ValidationError):
            make_config(amqp_uri=uri)

    def test_unknown_message_type(self) -> None:
        with pytest.raises(ValidationError):
            make_config(message_type="metrics")

    def test_unknown_tls_mode(self) -> None:
        with pytest.raises(ValidationError):
            make_config(tls_config="3")

    def test_tenant_required(self) -> None:
        with pytest.raises(ValidationError):
            make_config(tenant="  ")

    def test_sink_required(self) -> None:
        with pytest.raises(ValidationError):
            make_config(sink="/")

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            make_config(log_level="verbose")

    def test_log_level_is_normalised(self) -> None:
        assert make_config(log_level="debug").log_level == "DEBUG"

    def test_cert_file_is_read_in_secure_mode(self, tmp_path) -> None:
        cert_file = tmp_path / "ca.pem"
        cert_file.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")

        config = make_config(tls_config=2, tls_cert_file=str(cert_file))

        assert config.tls_cert == "-----BEGIN CERTIFICATE-----\n"

    def test_inline_cert_wins_over_cert_file(self, tmp_path) -> None:
        cert_file = tmp_path / "ca.pem"
        cert_file.write_text("from file", encoding="utf-8")

        config = make_config(tls_config=2, tls_cert="inline", tls_cert_file=str(cert_file))

        assert config.tls_cert == "inline"

    def test_cert_file_ignored_outside_secure_mode(self, tmp_path) -> None:
        config = make_config(tls_config=1, tls_cert_file=str(tmp_path / "missing.pem"))

        assert config.tls_cert == ""
