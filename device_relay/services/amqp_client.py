"""AMQP client service for the Device Relay.

Wraps a proton blocking connection. Proton's blocking utilities multiplex every
link over the connection's single session, so the session opened here is
shared by the inbound receiver and all outbound senders created through the
same client.
"""

from typing import Any, Dict, Optional

from proton import ProtonException
from proton.utils import BlockingConnection, BlockingReceiver, BlockingSender

from device_relay.config import ApplicationConfig
from device_relay.utils import create_contextual_logger, log_exception
from .errors import AmqpConnectionError
from .tls import TransportSecurityConfig


def build_connection_url(host: str, port: str) -> str:
    """Broker URL; TLS is implied by the scheme whatever the TLS mode."""
    return f"amqps://{host}:{port}"


class AmqpClient:
    """Blocking AMQP 1.0 client with connection management and link factories."""

    def __init__(
        self,
        config: ApplicationConfig,
        tls_config: Optional[TransportSecurityConfig] = None,
        name: str = "inbound",
    ) -> None:
        self.config = config
        self.tls_config = tls_config
        self.name = name
        self.url = build_connection_url(config.amqp_uri, config.amqp_port)
        self.logger = create_contextual_logger(__name__, service="amqp_client", connection=name)
        self._connection: Optional[BlockingConnection] = None
        self._connected = False

    def connection_options(self) -> Dict[str, Any]:
        """Keyword options for the connection: TLS domain and SASL PLAIN credentials."""
        options: Dict[str, Any] = {}

        if self.tls_config is not None:
            options["ssl_domain"] = self.tls_config.to_ssl_domain()

        if self.config.client_username and self.config.client_password:
            options["sasl_enabled"] = True
            options["allowed_mechs"] = "PLAIN"
            options["user"] = self.config.client_username
            options["password"] = self.config.client_password

        return options

    def connect(self) -> None:
        """Dial the broker.

        Raises:
            AmqpConnectionError: The connection or its session could not be opened.
        """
        options = self.connection_options()
        authenticated = "user" in options
        try:
            self._connection = BlockingConnection(
                self.url, timeout=self.config.amqp_connect_timeout, **options
            )
            self._connected = True

            self.logger.info(
                "AMQP connection established",
                url=self.url,
                tls_mode=int(self.config.tls_config),
                sasl_plain=authenticated,
            )
        except (ProtonException, OSError) as e:
            log_exception(
                self.logger,
                e,
                "AMQP dial failed",
                url=self.url,
                tls_mode=int(self.config.tls_config),
                sasl_plain=authenticated,
            )
            raise AmqpConnectionError(f"Failed to connect to {self.url}: {e}", cause=e) from e

    def disconnect(self) -> None:
        """Close the connection. Teardown is best effort: failures are only logged."""
        if self._connection is None:
            return
        try:
            self._connection.close()
            self.logger.info("Disconnected from AMQP broker", url=self.url)
        except Exception as e:
            self.logger.warning("Failed to close AMQP connection", url=self.url, error=str(e))
        finally:
            self._connection = None
            self._connected = False

    def mark_disconnected(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connection is not None and self._connected

    def _require_connection(self) -> BlockingConnection:
        if self._connection is None:
            raise AmqpConnectionError(f"AMQP connection {self.name} is not open")
        return self._connection

    def create_receiver(self, address: str, credit: int) -> BlockingReceiver:
        """Open the receiving link.

        Raises:
            AmqpConnectionError: The link could not be attached.
        """
        connection = self._require_connection()
        try:
            receiver = connection.create_receiver(address, credit=credit)
        except ProtonException as e:
            log_exception(self.logger, e, "Failed to open receiver", address=address)
            raise AmqpConnectionError(f"Failed to open receiver on {address}: {e}", cause=e) from e

        self.logger.info("Receiver opened", address=address, credit=credit)
        return receiver

    def create_sender(self, address: str) -> BlockingSender:
        """Open a sending link. Proton errors propagate to the caller."""
        sender = self._require_connection().create_sender(address)
        self.logger.debug("Sender opened", address=address)
        return sender

    def close_link(self, link: Any, timeout: float) -> None:
        """Close ``link`` waiting at most ``timeout`` seconds; failures are logged."""
        connection = self._connection
        previous_timeout = connection.timeout if connection is not None else None
        try:
            if connection is not None:
                connection.timeout = timeout
            link.close()
        except Exception as e:
            self.logger.warning(
                "Failed to close link",
                link=getattr(getattr(link, "link", None), "name", None),
                error=str(e),
            )
        finally:
            if connection is not None:
                connection.timeout = previous_timeout

    def health_check(self) -> Dict[str, Any]:
        if not self.is_connected():
            return {"status": "unhealthy", "url": self.url, "error": "Not connected to broker"}
        return {"status": "healthy", "url": self.url}
