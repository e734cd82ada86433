"""Unit tests for the forward dispatchers."""

from unittest.mock import Mock, patch

import pytest

from conftest import FakeConnection, make_config, make_message
from device_relay.services import (
    AmqpClient,
    ForwardRequest,
    QueuedDispatcher,
    SynchronousDispatcher,
    create_dispatcher,
)
from device_relay.services.errors import DispatchError


def make_request(device_id: str, message_id: str) -> ForwardRequest:
    return ForwardRequest(
        message=make_message(device_id, message_id),
        device_id=device_id,
        message_id=message_id,
        correlation_id=f"corr-{message_id}",
    )


class TestCreateDispatcher:
    """Test dispatch mode selection."""

    def test_synchronous_by_default(self, connected_client, relay_state) -> None:
        dispatcher = create_dispatcher(make_config(), connected_client, None, relay_state)

        assert isinstance(dispatcher, SynchronousDispatcher)
        assert dispatcher.amqp_client is connected_client

    def test_queued_uses_own_connection(self, connected_client, relay_state) -> None:
        dispatcher = create_dispatcher(
            make_config(forward_queue_size=8), connected_client, None, relay_state
        )

        assert isinstance(dispatcher, QueuedDispatcher)
        assert dispatcher.amqp_client is not connected_client
        assert dispatcher.amqp_client.name == "outbound"
        assert dispatcher.amqp_client.url == connected_client.url


class TestSynchronousDispatcher:
    """Test cases for SynchronousDispatcher."""

    def test_submit_forwards_immediately(self, connected_client, fake_connection, relay_state) -> None:
        dispatcher = SynchronousDispatcher(make_config(), connected_client, relay_state)

        dispatcher.submit(make_request("dev-1", "msg-1"))

        assert fake_connection.sends() == [("events/topics/dev-1", "msg-1")]
        assert relay_state.counters.forwarded == 1

    def test_forward_failure_is_recorded(self, connected_client, fake_connection, relay_state) -> None:
        config = make_config(forward_retry_attempts=1)
        fake_connection.sender_open_failures["events/topics/dev-1"] = 1
        dispatcher = SynchronousDispatcher(config, connected_client, relay_state)

        dispatcher.submit(make_request("dev-1", "msg-1"))

        assert relay_state.counters.forward_failures == 1
        assert relay_state.counters.forwarded == 0

    def test_idle_evicts_stale_links(self, connected_client, relay_state) -> None:
        dispatcher = SynchronousDispatcher(make_config(), connected_client, relay_state)
        dispatcher.sender_cache.evict_idle = Mock(return_value=0)

        dispatcher.idle()

        dispatcher.sender_cache.evict_idle.assert_called_once_with()


class TestQueuedDispatcher:
    """Test cases for QueuedDispatcher."""

    def test_drains_queue_on_stop(self, relay_state) -> None:
        config = make_config(forward_queue_size=4)
        outbound = FakeConnection()
        dispatcher = QueuedDispatcher(config, AmqpClient(config, name="outbound"), relay_state)

        with patch("device_relay.services.amqp_client.BlockingConnection", return_value=outbound):
            dispatcher.start()
        assert dispatcher.is_connected()
        assert dispatcher.health_check()["mode"] == "queued"
        for n in range(3):
            dispatcher.submit(make_request("dev-1", f"msg-{n}"))
        dispatcher.stop(timeout=5)

        assert outbound.sends() == [("events/topics/dev-1", f"msg-{n}") for n in range(3)]
        assert outbound.closed
        assert dispatcher.pending == 0

    def test_worker_crash_surfaces_on_submit(self, relay_state) -> None:
        config = make_config(forward_queue_size=1)
        outbound = FakeConnection()
        dispatcher = QueuedDispatcher(config, AmqpClient(config, name="outbound"), relay_state)
        dispatcher.relay.forward = Mock(side_effect=KeyError("boom"))

        with patch("device_relay.services.amqp_client.BlockingConnection", return_value=outbound):
            dispatcher.start()
        dispatcher.submit(make_request("dev-1", "msg-1"))
        dispatcher._thread.join(timeout=5)

        with pytest.raises(DispatchError):
            dispatcher.submit(make_request("dev-1", "msg-2"))
        assert outbound.closed
        assert not dispatcher.is_connected()
        assert dispatcher.health_check()["error"] is not None

    def test_stop_without_start(self, relay_state) -> None:
        config = make_config(forward_queue_size=1)
        QueuedDispatcher(config, AmqpClient(config, name="outbound"), relay_state).stop()
