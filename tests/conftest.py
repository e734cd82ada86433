"""Test utilities and fixtures for Device Relay tests."""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from proton import Message, ProtonException, Timeout

from device_relay.config import ApplicationConfig
from device_relay.services import AmqpClient
from device_relay.utils import RelayStateTracker


def make_config(**overrides: Any) -> ApplicationConfig:
    """Build a config without reading .env, using field names for overrides."""
    values: Dict[str, Any] = {
        "amqp_uri": "broker.example.com",
        "amqp_port": "5671",
        "tenant": "acme",
        "message_type": "telemetry",
        "sink": "events",
        "receive_poll_interval": 0.01,
        "forward_initial_backoff": 0.0,
        "forward_max_backoff": 0.0,
    }
    values.update(overrides)
    return ApplicationConfig(_env_file=None, **values)


def make_message(device_id: Optional[str] = None, message_id: Any = None, **annotations: Any) -> Message:
    """Create an inbound message as the broker would deliver it."""
    if device_id is not None:
        annotations["device-id"] = device_id
    return Message(body=b'{"temp": 21.5}', id=message_id, annotations=annotations or None)


class FakeReceiver:
    """Scripted inbound link.

    Yields the queued messages in order. Once they are exhausted it calls
    ``on_empty`` and then behaves like an idle link.
    """

    def __init__(
        self,
        messages: List[Message],
        journal: List[Tuple[str, Any]],
        on_empty: Optional[Callable[[], None]] = None,
        receive_error: Optional[BaseException] = None,
        accept_errors: int = 0,
    ) -> None:
        self.messages = list(messages)
        self.journal = journal
        self.on_empty = on_empty
        self.receive_error = receive_error
        self.accept_errors = accept_errors
        self.last: Optional[Message] = None
        self.closed = False

    def receive(self, timeout: Optional[float] = None) -> Message:
        if self.messages:
            self.last = self.messages.pop(0)
            self.journal.append(("receive", self.last.id))
            return self.last
        if self.receive_error is not None:
            raise self.receive_error
        if self.on_empty is not None:
            self.on_empty()
        raise Timeout("Timed out waiting for message")

    def accept(self) -> None:
        if self.accept_errors > 0:
            self.accept_errors -= 1
            raise ProtonException("settlement failed")
        self.journal.append(("accept", self.last.id if self.last else None))

    def close(self) -> None:
        self.closed = True


class FakeSender:
    """Outbound link recording every send in the shared journal."""

    def __init__(
        self,
        address: str,
        journal: List[Tuple[str, Any]],
        failures: int = 0,
        error_type: type = ProtonException,
    ) -> None:
        self.address = address
        self.journal = journal
        self.failures = failures
        self.error_type = error_type
        self.closed = False
        self.sent: List[Message] = []

    def send(self, message: Message, timeout: Optional[float] = None) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise self.error_type(f"sink {self.address} unavailable")
        self.sent.append(message)
        self.journal.append(("send", (self.address, message.id)))

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """Stands in for proton's BlockingConnection."""

    def __init__(self) -> None:
        self.timeout: Optional[float] = 60.0
        self.journal: List[Tuple[str, Any]] = []
        self.receiver: Optional[FakeReceiver] = None
        self.senders: List[FakeSender] = []
        self.receiver_args: Optional[Tuple[str, int]] = None
        self.send_failures: Dict[str, int] = {}
        self.sender_open_failures: Dict[str, int] = {}
        self.send_error_type: type = ProtonException
        self.connection_error: Optional[BaseException] = None
        self.peak_open_senders = 0
        self.closed = False

    def create_receiver(self, address: str, credit: Optional[int] = None) -> FakeReceiver:
        self.receiver_args = (address, credit)
        assert self.receiver is not None
        return self.receiver

    def create_sender(self, address: str) -> FakeSender:
        if self.connection_error is not None:
            raise self.connection_error
        if self.sender_open_failures.get(address, 0) > 0:
            self.sender_open_failures[address] -= 1
            raise ProtonException(f"cannot attach to {address}")
        sender = FakeSender(
            address, self.journal, self.send_failures.pop(address, 0), self.send_error_type
        )
        self.senders.append(sender)
        self.peak_open_senders = max(self.peak_open_senders, len(self.open_senders()))
        return sender

    def close(self) -> None:
        self.closed = True

    def open_senders(self) -> List[str]:
        return [sender.address for sender in self.senders if not sender.closed]

    def sends(self) -> List[Tuple[str, Any]]:
        return [entry for kind, entry in self.journal if kind == "send"]


@pytest.fixture
def mock_config() -> ApplicationConfig:
    return make_config()


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def connected_client(mock_config: ApplicationConfig, fake_connection: FakeConnection) -> AmqpClient:
    """AmqpClient wired to a fake connection instead of a live broker."""
    client = AmqpClient(mock_config)
    client._connection = fake_connection
    client._connected = True
    return client


@pytest.fixture
def relay_state() -> RelayStateTracker:
    return RelayStateTracker()
