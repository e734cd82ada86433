"""Outbound sender link cache.

Holds at most one open sender per target address. Links idle for longer than
``idle_timeout`` are closed on the next access, and the least recently used
link is closed when the cache is full. A cache size of zero disables caching:
every lease opens a fresh link and closes it afterwards.
"""

import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Tuple

from proton.utils import BlockingSender

from device_relay.utils import create_contextual_logger
from .amqp_client import AmqpClient
from .health_metrics import open_sender_links


class SenderLinkCache:
    """Per-target cache of outbound links, confined to one thread."""

    def __init__(
        self,
        amqp_client: AmqpClient,
        max_size: int,
        idle_timeout: float,
        close_timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.amqp_client = amqp_client
        self.max_size = max_size
        self.idle_timeout = idle_timeout
        self.close_timeout = close_timeout
        self._clock = clock
        self._links: "OrderedDict[str, Tuple[BlockingSender, float]]" = OrderedDict()
        self.logger = create_contextual_logger(__name__, service="sender_cache")

    def __len__(self) -> int:
        return len(self._links)

    def __contains__(self, address: str) -> bool:
        return address in self._links

    @property
    def enabled(self) -> bool:
        return self.max_size > 0

    @contextmanager
    def lease(self, address: str) -> Iterator[BlockingSender]:
        """Yield the sender for ``address``.

        The link is discarded if the body raises, and closed on exit when
        caching is disabled.
        """
        sender = self.acquire(address)
        try:
            yield sender
        except BaseException:
            self.discard(address, sender)
            raise
        self.release(address, sender)

    def acquire(self, address: str) -> BlockingSender:
        self.evict_idle()

        if address in self._links:
            sender, _ = self._links.pop(address)
            self._links[address] = (sender, self._clock())
            return sender

        sender = self.amqp_client.create_sender(address)
        if self.enabled:
            while len(self._links) >= self.max_size:
                lru_address, (lru_sender, _) = self._links.popitem(last=False)
                self.logger.debug("Evicting least recently used sender", address=lru_address)
                self._close(lru_address, lru_sender)
            self._links[address] = (sender, self._clock())
        open_sender_links.inc()
        return sender

    def release(self, address: str, sender: BlockingSender) -> None:
        if not self.enabled:
            self._close(address, sender)
            return
        if address in self._links:
            self._links[address] = (sender, self._clock())

    def discard(self, address: str, sender: BlockingSender) -> None:
        """Drop a link after a failure so the next lease opens a new one."""
        cached = self._links.get(address)
        if cached is not None and cached[0] is sender:
            del self._links[address]
        self._close(address, sender)

    def evict_idle(self) -> int:
        now = self._clock()
        idle = [
            address
            for address, (_, last_used) in self._links.items()
            if now - last_used >= self.idle_timeout
        ]
        for address in idle:
            sender, _ = self._links.pop(address)
            self.logger.debug("Closing idle sender", address=address)
            self._close(address, sender)
        return len(idle)

    def close_all(self) -> None:
        while self._links:
            address, (sender, _) = self._links.popitem(last=False)
            self._close(address, sender)

    def snapshot(self) -> Dict[str, float]:
        return {address: last_used for address, (_, last_used) in self._links.items()}

    def _close(self, address: str, sender: BlockingSender) -> None:
        self.amqp_client.close_link(sender, self.close_timeout)
        open_sender_links.dec()
