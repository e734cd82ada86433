"""Forward dispatchers.

``SynchronousDispatcher`` forwards inside the receive loop on the inbound
connection, so the loop stalls while a sink is slow. ``QueuedDispatcher``
hands accepted messages to a bounded FIFO queue drained by one forwarding
thread that owns its own outbound connection; a full queue blocks the receive
loop, which stops pulling from the broker until the forwarder catches up.
Both forward strictly in submission order.
"""

import queue
import threading
from typing import Any, Callable, Dict, NamedTuple, Optional

from proton import Message

from device_relay.config import ApplicationConfig
from device_relay.utils import RelayStateTracker, create_contextual_logger, log_exception, set_correlation_id
from .amqp_client import AmqpClient
from .errors import AmqpConnectionError, DispatchError, ForwardingError, RelayError
from .outbound_relay import OutboundRelay
from .sender_cache import SenderLinkCache
from .tls import TransportSecurityConfig


class ForwardRequest(NamedTuple):
    message: Message
    device_id: str
    message_id: Optional[str]
    correlation_id: Optional[str]


class ForwardDispatcher:
    """Shared forwarding bookkeeping for both dispatch modes."""

    def __init__(
        self,
        config: ApplicationConfig,
        amqp_client: AmqpClient,
        state: RelayStateTracker,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.config = config
        self.amqp_client = amqp_client
        self.state = state
        self.sender_cache = SenderLinkCache(
            amqp_client,
            max_size=config.sender_cache_size,
            idle_timeout=config.sender_idle_timeout,
            close_timeout=config.receiver_close_timeout,
        )
        self.relay = OutboundRelay(config, self.sender_cache, sink_base=config.sink, sleep=sleep)
        self.logger = create_contextual_logger(__name__, service=type(self).__name__)

    def start(self) -> None:
        pass

    def stop(self, timeout: Optional[float] = None) -> None:
        self.relay.close()

    def idle(self) -> None:
        """Called by the receive loop when no message arrived within a poll."""

    def is_connected(self) -> bool:
        return self.amqp_client.is_connected()

    def health_check(self) -> Dict[str, Any]:
        return {
            "mode": "synchronous",
            "open_links": len(self.sender_cache),
            "connection": self.amqp_client.health_check(),
        }

    def submit(self, request: ForwardRequest) -> None:
        raise NotImplementedError

    def _forward(self, request: ForwardRequest) -> None:
        try:
            target = self.relay.forward(request.message, request.device_id, request.message_id)
        except ForwardingError as e:
            self.state.record("forward_failures")
            self.logger.error(
                "Forwarding failed, continuing with next message",
                target=e.target,
                attempts=e.attempts,
                device_id=request.device_id,
                message_id=request.message_id,
                correlation_id=request.correlation_id,
                error=str(e),
            )
            return

        self.state.record("forwarded")
        self.logger.info(
            "Message relayed",
            target=target,
            device_id=request.device_id,
            message_id=request.message_id,
            correlation_id=request.correlation_id,
        )


class SynchronousDispatcher(ForwardDispatcher):
    """Forwards on the caller's thread over the inbound connection."""

    def submit(self, request: ForwardRequest) -> None:
        self._forward(request)

    def idle(self) -> None:
        self.sender_cache.evict_idle()


_STOP = object()


class QueuedDispatcher(ForwardDispatcher):
    """Forwards from a bounded queue on a dedicated thread and connection."""

    def __init__(
        self,
        config: ApplicationConfig,
        amqp_client: AmqpClient,
        state: RelayStateTracker,
        sleep: Optional[Callable[[float], object]] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        super().__init__(config, amqp_client, state, sleep=sleep)
        self.poll_interval = poll_interval or config.receive_poll_interval
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=config.forward_queue_size)
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[RelayError] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def is_connected(self) -> bool:
        if self._error is not None:
            return False
        return self.amqp_client.is_connected()

    def health_check(self) -> Dict[str, Any]:
        return {
            "mode": "queued",
            "pending": self.pending,
            "open_links": len(self.sender_cache),
            "error": str(self._error) if self._error is not None else None,
            "connection": self.amqp_client.health_check(),
        }

    def start(self) -> None:
        """Start the forwarder and wait until its connection is open.

        Raises:
            AmqpConnectionError: The outbound connection could not be opened.
        """
        self._thread = threading.Thread(
            target=self._forward_worker, name="relay_forwarder", daemon=True
        )
        self._thread.start()
        self._ready.wait()
        if self._error is not None:
            raise self._error

    def submit(self, request: ForwardRequest) -> None:
        """Enqueue ``request``, blocking while the queue is full."""
        while True:
            if self._error is not None:
                raise self._error
            try:
                self._queue.put(request, timeout=self.poll_interval)
                return
            except queue.Full:
                self.logger.debug("Forward queue full, waiting", queue_size=self.config.forward_queue_size)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Drain queued messages, then close the outbound connection."""
        if self._thread is None:
            return
        if self._thread.is_alive():
            self._queue.put(_STOP)
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.logger.warning("Forwarder did not stop in time", pending=self.pending)
        self._thread = None

    def _forward_worker(self) -> None:
        try:
            self.amqp_client.connect()
        except AmqpConnectionError as e:
            self._error = e
            self._ready.set()
            return
        self._ready.set()
        self.logger.info("Forwarder started", queue_size=self.config.forward_queue_size)

        try:
            while True:
                try:
                    item = self._queue.get(timeout=self.poll_interval)
                except queue.Empty:
                    self.sender_cache.evict_idle()
                    continue
                if item is _STOP:
                    break
                set_correlation_id(item.correlation_id)
                self._forward(item)
        except Exception as e:
            log_exception(self.logger, e, "Forwarder crashed", pending=self.pending)
            self._error = DispatchError(f"Forwarder stopped: {e}", cause=e)
        finally:
            self.relay.close()
            self.amqp_client.disconnect()
            self.logger.info("Forwarder stopped")


def create_dispatcher(
    config: ApplicationConfig,
    inbound_client: AmqpClient,
    tls_config: Optional[TransportSecurityConfig],
    state: RelayStateTracker,
) -> ForwardDispatcher:
    """Pick the dispatch mode from ``forward_queue_size``."""
    if config.forward_queue_size > 0:
        outbound_client = AmqpClient(config, tls_config, name="outbound")
        return QueuedDispatcher(config, outbound_client, state)
    return SynchronousDispatcher(config, inbound_client, state)
