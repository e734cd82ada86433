"""Relay consumer service for the Device Relay.

This service owns the inbound link: it receives each message from
``{messageType}/{tenant}``, accepts it, decodes its annotations and hands it to
the forward dispatcher. One message is fully handled before the next is read.
"""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Union

from proton import Message, ProtonException, Timeout
from proton.utils import BlockingReceiver

from device_relay.config import ApplicationConfig
from device_relay.models import AcceptFailurePolicy, MessageType, RelayState, SkipReason
from device_relay.utils import (
    BackoffPolicy,
    RelayStateTracker,
    create_contextual_logger,
    log_exception,
    set_correlation_id,
)
from .amqp_client import AmqpClient
from .annotations import extract_annotations
from .dispatcher import ForwardDispatcher, ForwardRequest
from .errors import AcknowledgeError, AnnotationError, ReceiveError, RelayError, is_fatal
from .health_metrics import messages_accepted, messages_received, messages_skipped

# Broker flow control window; not configurable.
INBOUND_LINK_CREDIT = 10

ExitCallback = Callable[[Optional[BaseException]], None]


def build_source_address(message_type: Union[MessageType, str], tenant: str) -> str:
    if isinstance(message_type, MessageType):
        message_type = message_type.value
    return f"{message_type}/{tenant}"


class RelayConsumerService:
    """Receive loop run on a worker thread."""

    def __init__(
        self,
        config: ApplicationConfig,
        amqp_client: AmqpClient,
        dispatcher: ForwardDispatcher,
        state: RelayStateTracker,
        executor: Optional[ThreadPoolExecutor] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.config = config
        self.amqp_client = amqp_client
        self.dispatcher = dispatcher
        self.state = state
        self.executor = executor
        self.source_address = build_source_address(config.message_type, config.tenant)
        self.logger = create_contextual_logger(
            __name__, service="relay_consumer", source=self.source_address
        )

        self._sleep = sleep
        self._shutdown_event = threading.Event()
        self._future: Optional[Future] = None
        self._exit_callbacks: List[ExitCallback] = []

    def add_exit_callback(self, callback: ExitCallback) -> None:
        """Register ``callback(error)``, called when the loop ends."""
        self._exit_callbacks.append(callback)

    def start(self) -> None:
        """Start the receive loop in the thread pool."""
        if self.executor is None:
            raise RuntimeError("RelayConsumerService.start requires an executor")
        self.logger.info("Starting relay worker...")
        self._shutdown_event.clear()
        self._future = self.executor.submit(self._relay_worker)

    def stop(self) -> None:
        """Signal the receive loop to stop at the next poll."""
        self.logger.info("Stopping relay worker...")
        self._shutdown_event.set()

    @property
    def running(self) -> bool:
        return self._future is not None and not self._future.done()

    def _relay_worker(self) -> None:
        error: Optional[BaseException] = None
        try:
            self.run()
        except Exception as e:
            error = e
            log_exception(self.logger, e, "Relay loop terminated", fatal=is_fatal(e))
        finally:
            self.state.close(error)
            for callback in self._exit_callbacks:
                try:
                    callback(error)
                except Exception as e:
                    self.logger.error("Exit callback failed", error=str(e))

    def run(self) -> None:
        """Receive until shutdown is requested or a fatal error occurs.

        Raises:
            AmqpConnectionError: The receiver could not be opened.
            ReceiveError: The inbound link failed.
            AcknowledgeError: A message could not be accepted under the
                ``terminate`` or ``retry`` policy.
        """
        receiver = self.amqp_client.create_receiver(self.source_address, INBOUND_LINK_CREDIT)
        self.logger.info("Relay loop started", credit=INBOUND_LINK_CREDIT, sink=self.config.sink)
        try:
            while not self._shutdown_event.is_set():
                self.state.transition(RelayState.AWAITING_MESSAGE)
                try:
                    message = receiver.receive(timeout=self.config.receive_poll_interval)
                except Timeout:
                    self.dispatcher.idle()
                    continue
                except (ProtonException, OSError) as e:
                    self.amqp_client.mark_disconnected()
                    raise ReceiveError(f"Receive failed on {self.source_address}: {e}", cause=e) from e

                self.state.transition(RelayState.PROCESSING)
                self.handle_message(receiver, message)
        finally:
            self.amqp_client.close_link(receiver, self.config.receiver_close_timeout)
            self.logger.info("Receiver closed")

    def handle_message(self, receiver: BlockingReceiver, message: Message) -> None:
        """Accept, decode and dispatch one message.

        Per-message failures are logged and swallowed; fatal ones propagate.
        """
        correlation_id = set_correlation_id(str(uuid.uuid4()))
        message_id = str(message.id) if message.id is not None else None
        self.state.record("received")
        messages_received.labels(source=self.source_address).inc()

        if not self._accept(receiver, message_id):
            return
        self.state.record("accepted")
        messages_accepted.labels(source=self.source_address).inc()

        try:
            extraction = extract_annotations(message.annotations)
            if extraction.skipped:
                self.logger.warning(
                    "Skipped non-text annotations",
                    message_id=message_id,
                    skipped=[entry.model_dump() for entry in extraction.skipped],
                )

            device_id = extraction.device_id
            if device_id is None:
                raise AnnotationError(
                    "Message has no device-id annotation", message_id=message_id
                )

            self.dispatcher.submit(
                ForwardRequest(
                    message=message,
                    device_id=device_id,
                    message_id=message_id,
                    correlation_id=correlation_id,
                )
            )
        except AnnotationError as e:
            self.state.record("skipped")
            messages_skipped.labels(reason=SkipReason.MISSING_DEVICE_ID.value).inc()
            self.logger.warning(
                "Message skipped",
                reason=SkipReason.MISSING_DEVICE_ID.value,
                message_id=message_id,
                annotation_keys=sorted(extraction.annotations),
                error=str(e),
            )
        except RelayError as e:
            if is_fatal(e):
                raise
            self.logger.error("Message dropped", message_id=message_id, error=str(e))

    def _accept(self, receiver: BlockingReceiver, message_id: Optional[str]) -> bool:
        """Accept the last received message, applying the accept failure policy.

        Returns False when the message should be skipped.
        """
        policy = self.config.accept_failure_policy
        attempts = self.config.accept_retry_attempts if policy == AcceptFailurePolicy.RETRY else 1
        retry = BackoffPolicy(
            max_attempts=attempts,
            initial_delay=self.config.accept_initial_backoff,
            max_delay=self.config.accept_max_backoff,
            sleep=self._sleep,
        )

        while True:
            try:
                receiver.accept()
                return True
            except (ProtonException, OSError) as e:
                retry.mark_failure()
                self.logger.warning(
                    "Failed to accept message",
                    message_id=message_id,
                    attempt=retry.consecutive_failures,
                    policy=policy.value,
                    error=str(e),
                )
                if retry.exhausted:
                    last_error = e
                    break
                retry.wait()

        if policy == AcceptFailurePolicy.CONTINUE:
            self.state.record("skipped")
            messages_skipped.labels(reason=SkipReason.ACCEPT_FAILED.value).inc()
            self.logger.error(
                "Message not acknowledged, skipping", message_id=message_id, error=str(last_error)
            )
            return False

        raise AcknowledgeError(
            f"Failed to accept message {message_id}: {last_error}", cause=last_error
        )
