"""Outbound relay: forwards messages to per-device sink addresses."""

from typing import Callable, Optional

from proton import ConnectionException, Message, ProtonException, Timeout

from device_relay.config import ApplicationConfig
from device_relay.models import ForwardStatus
from device_relay.utils import BackoffPolicy, create_contextual_logger
from .errors import ForwardingError
from .health_metrics import forward_duration, messages_forwarded
from .sender_cache import SenderLinkCache


def build_target_address(sink_base: str, device_id: str) -> str:
    return f"{sink_base}/topics/{device_id}"


class OutboundRelay:
    """Sends each message unchanged to ``{sink_base}/topics/{device_id}``.

    A failed link is discarded and the send is retried with exponential
    backoff. When every attempt fails a ``ForwardingError`` is raised; it is
    not fatal to the relay run.
    """

    def __init__(
        self,
        config: ApplicationConfig,
        sender_cache: SenderLinkCache,
        sink_base: str,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.config = config
        self.sender_cache = sender_cache
        self.sink_base = sink_base
        self.send_timeout = config.send_timeout
        self._sleep = sleep
        self.logger = create_contextual_logger(__name__, service="outbound_relay", sink=sink_base)

    def forward(self, message: Message, device_id: str, message_id: Optional[str] = None) -> str:
        """Send ``message`` to the device's sink address and return that address.

        A send that timed out may already have reached the sink, so it is not
        retried. A lost connection is not retried either; the client is marked
        disconnected so health reporting picks it up.

        Raises:
            ForwardingError: The send timed out, the connection is gone, or all
                attempts to open a link or send failed.
        """
        target = build_target_address(self.sink_base, device_id)
        retry = BackoffPolicy.for_forwarding(self.config, sleep=self._sleep)
        last_error: Optional[BaseException] = None

        with forward_duration.time():
            while True:
                try:
                    with self.sender_cache.lease(target) as sender:
                        sender.send(message, timeout=self.send_timeout)
                except Timeout as e:
                    last_error = e
                    retry.mark_failure()
                    self.logger.warning(
                        "Send timed out, not retrying", target=target, message_id=message_id
                    )
                    break
                except ConnectionException as e:
                    last_error = e
                    retry.mark_failure()
                    self.sender_cache.amqp_client.mark_disconnected()
                    break
                except (ProtonException, OSError) as e:
                    last_error = e
                    retry.mark_failure()
                    if retry.exhausted:
                        break
                    self.logger.warning(
                        "Forward attempt failed, retrying",
                        target=target,
                        device_id=device_id,
                        message_id=message_id,
                        attempt=retry.consecutive_failures,
                        delay_seconds=retry.get_backoff_delay(),
                        error=str(e),
                    )
                    retry.wait()
                    continue

                messages_forwarded.labels(status=ForwardStatus.SUCCESS.value).inc()
                self.logger.debug(
                    "Message forwarded",
                    target=target,
                    device_id=device_id,
                    message_id=message_id,
                    attempts=retry.consecutive_failures + 1,
                )
                return target

        messages_forwarded.labels(status=ForwardStatus.FAILED.value).inc()
        raise ForwardingError(
            f"Failed to forward message to {target} after {retry.consecutive_failures} attempts: {last_error}",
            target=target,
            attempts=retry.consecutive_failures,
            cause=last_error,
        )

    def close(self) -> None:
        self.sender_cache.close_all()
