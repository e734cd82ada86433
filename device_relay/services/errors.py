"""Error taxonomy for the relay.

Every failure the relay raises derives from ``RelayError`` and carries a
``fatal`` flag. Fatal errors end the process run; everything else is handled
per message and the receive loop moves on.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for relay failures."""

    fatal = False

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TlsConfigurationError(RelayError):
    """Certificate material is missing, malformed, or the mode is unknown."""

    fatal = True


class CertificateVerificationError(TlsConfigurationError):
    """A server certificate chain does not resolve to the trust pool."""


class AmqpConnectionError(RelayError):
    """Dialing the broker, or opening the session or receiver failed."""

    fatal = True


class ReceiveError(RelayError):
    """The inbound link failed mid-run."""

    fatal = True


class AcknowledgeError(RelayError):
    """An inbound message could not be accepted."""

    fatal = True


class DispatchError(RelayError):
    """The forwarding worker stopped unexpectedly."""

    fatal = True


class AnnotationError(RelayError):
    """A message's annotations do not carry what forwarding needs."""

    def __init__(self, message: str, *, message_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class ForwardingError(RelayError):
    """A message could not be delivered to its device sink."""

    def __init__(
        self,
        message: str,
        *,
        target: str,
        attempts: int,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.target = target
        self.attempts = attempts


def is_fatal(error: BaseException) -> bool:
    """Decide whether ``error`` should end the relay run.

    Unknown exceptions are treated as fatal so that programming errors are not
    silently looped over.
    """
    if isinstance(error, RelayError):
        return error.fatal
    return True
