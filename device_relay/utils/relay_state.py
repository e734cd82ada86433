"""Receive loop state tracking.

Shared between the relay worker thread and the HTTP health endpoints, so all
access goes through a lock.
"""

import threading
import time
from typing import Any, Dict, Optional

from device_relay.models import RelayCounters, RelayState

from .logging import get_logger

_ALLOWED_TRANSITIONS = {
    RelayState.IDLE: {RelayState.AWAITING_MESSAGE, RelayState.CLOSED},
    RelayState.AWAITING_MESSAGE: {RelayState.PROCESSING, RelayState.CLOSED},
    RelayState.PROCESSING: {RelayState.AWAITING_MESSAGE, RelayState.CLOSED},
    RelayState.CLOSED: set(),
}


class RelayStateTracker:
    """Tracks the receive loop state machine and per-run counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.logger = get_logger(__name__, service="relay_state")

        self._state = RelayState.IDLE
        self._counters = RelayCounters()
        self._last_error: Optional[str] = None
        self._last_message_time: Optional[float] = None
        self._closed_time: Optional[float] = None

    @property
    def state(self) -> RelayState:
        with self._lock:
            return self._state

    def transition(self, new_state: RelayState) -> None:
        """Move to ``new_state``; CLOSED is terminal."""
        with self._lock:
            if new_state == self._state:
                return
            if new_state not in _ALLOWED_TRANSITIONS[self._state]:
                raise RuntimeError(
                    f"Invalid relay state transition {self._state.value} -> {new_state.value}"
                )
            self._state = new_state
            if new_state == RelayState.CLOSED:
                self._closed_time = time.time()

    def close(self, error: Optional[BaseException] = None) -> None:
        """Enter the terminal state, recording the error that ended the run."""
        with self._lock:
            if self._state == RelayState.CLOSED:
                return
            self._state = RelayState.CLOSED
            self._closed_time = time.time()
            if error is not None:
                self._last_error = f"{type(error).__name__}: {error}"

        self.logger.info("Relay loop closed", last_error=self._last_error)

    def record(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self._counters, counter, getattr(self._counters, counter) + amount)
            if counter == "received":
                self._last_message_time = time.time()

    @property
    def counters(self) -> RelayCounters:
        with self._lock:
            return self._counters.model_copy()

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    def is_healthy(self) -> bool:
        with self._lock:
            return self._state != RelayState.CLOSED

    def get_state_info(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "last_error": self._last_error,
                "last_message_time": self._last_message_time,
                "closed_time": self._closed_time,
                "counters": self._counters.model_dump(),
            }
