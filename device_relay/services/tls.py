"""Transport security configuration for the broker connection.

TLS_CONFIG selects one of three modes:

* ``0`` disabled: no TLS options are applied to the connection.
* ``1`` insecure: TLS without server identity verification. Testing only.
* ``2`` secure: the server chain must resolve to the CA certificates given in
  TLS_CERT.
"""

import os
import tempfile
from typing import Iterable, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError
from proton import SSLDomain

from device_relay.models import TlsMode
from device_relay.utils import get_logger
from .errors import CertificateVerificationError, TlsConfigurationError

logger = get_logger(__name__, service="tls")

CertificateInput = Union[x509.Certificate, str, bytes]


def _load_certificate(certificate: CertificateInput) -> x509.Certificate:
    if isinstance(certificate, x509.Certificate):
        return certificate
    if isinstance(certificate, str):
        certificate = certificate.encode("utf-8")
    try:
        return x509.load_pem_x509_certificate(certificate)
    except ValueError as e:
        raise CertificateVerificationError(f"Unparseable server certificate: {e}", cause=e) from e


class TransportSecurityConfig:
    """TLS settings for the AMQP connection.

    Secure mode owns a trust pool of CA certificates. Insecure mode has an
    empty pool and never checks server identity.
    """

    def __init__(self, mode: TlsMode, trust_pool: Optional[List[x509.Certificate]] = None) -> None:
        if mode == TlsMode.DISABLED:
            raise TlsConfigurationError("TransportSecurityConfig requires TLS to be enabled")
        if mode == TlsMode.SECURE and not trust_pool:
            raise TlsConfigurationError("Secure TLS mode requires at least one CA certificate")

        self.mode = mode
        self.trust_pool: List[x509.Certificate] = list(trust_pool or [])
        self._ca_file: Optional[str] = None

    @property
    def verify_peer(self) -> bool:
        return self.mode == TlsMode.SECURE

    def verify_server_certificate(
        self,
        certificate: CertificateInput,
        hostname: str,
        intermediates: Iterable[CertificateInput] = (),
    ) -> None:
        """Check that ``certificate`` chains to the trust pool and names ``hostname``.

        Always passes in insecure mode.

        Raises:
            CertificateVerificationError: The chain does not resolve.
        """
        if not self.verify_peer:
            return

        leaf = _load_certificate(certificate)
        chain = [_load_certificate(cert) for cert in intermediates]
        verifier = (
            PolicyBuilder()
            .store(Store(self.trust_pool))
            .build_server_verifier(x509.DNSName(hostname))
        )
        try:
            verifier.verify(leaf, chain)
        except VerificationError as e:
            raise CertificateVerificationError(
                f"Server certificate for {hostname} is not trusted: {e}", cause=e
            ) from e

    def trust_pool_pem(self) -> bytes:
        return b"".join(
            cert.public_bytes(serialization.Encoding.PEM) for cert in self.trust_pool
        )

    def to_ssl_domain(self) -> SSLDomain:
        """Build the proton client SSL domain for this configuration."""
        domain = SSLDomain(SSLDomain.MODE_CLIENT)
        if not self.verify_peer:
            domain.set_peer_authentication(SSLDomain.ANONYMOUS_PEER)
            return domain

        # proton only reads trusted CAs from disk
        ca_file = self._ensure_ca_file()
        domain.set_trusted_ca_db(ca_file)
        domain.set_peer_authentication(SSLDomain.VERIFY_PEER_NAME, trusted_CAs=ca_file)
        return domain

    def _ensure_ca_file(self) -> str:
        if self._ca_file is None:
            fd, path = tempfile.mkstemp(prefix="device-relay-ca-", suffix=".pem")
            with os.fdopen(fd, "wb") as handle:
                handle.write(self.trust_pool_pem())
            self._ca_file = path
        return self._ca_file

    def close(self) -> None:
        """Remove the CA file written for the transport, if any."""
        if self._ca_file is None:
            return
        try:
            os.unlink(self._ca_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove CA file", path=self._ca_file, error=str(e))
        self._ca_file = None


def build_tls_config(mode: Union[TlsMode, int], cert_pem: Optional[str] = None) -> Optional[TransportSecurityConfig]:
    """Create the transport security configuration for ``mode``.

    Args:
        mode: 0 disabled, 1 insecure, 2 secure.
        cert_pem: PEM encoded CA certificates, used only in secure mode.

    Returns:
        None when TLS options are disabled, otherwise the configuration.

    Raises:
        TlsConfigurationError: Unknown mode, or secure mode without usable
            certificate text.
    """
    try:
        mode = TlsMode(mode)
    except ValueError as e:
        raise TlsConfigurationError(f"Unknown TLS mode: {mode!r}", cause=e) from e

    if mode == TlsMode.DISABLED:
        return None

    if mode == TlsMode.INSECURE:
        logger.warning(
            "TLS server verification is DISABLED (insecure mode); do not use in production",
            tls_mode=int(mode),
        )
        return TransportSecurityConfig(mode)

    if not cert_pem or not cert_pem.strip():
        raise TlsConfigurationError("Secure TLS mode requires CA certificate text")

    try:
        trust_pool = x509.load_pem_x509_certificates(cert_pem.encode("utf-8"))
    except ValueError as e:
        raise TlsConfigurationError(f"No usable CA certificates in PEM text: {e}", cause=e) from e

    logger.info(
        "TLS server verification enabled (secure mode)",
        tls_mode=int(mode),
        ca_certificates=len(trust_pool),
    )
    return TransportSecurityConfig(mode, trust_pool)
