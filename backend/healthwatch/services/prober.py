"""Prober service - performs reachability checks and TLS certificate inspection."""
import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import urlsplit

import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID

from ..schemas.endpoint import MonitoredEndpoint
from ..utils.clock import Clock, system_clock, to_naive_utc

logger = logging.getLogger(__name__)

# Browser-like headers; some hosts reject obvious bots
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


@dataclass
class CheckResult:
    """Result of one probe of one endpoint."""
    server_name: str
    server_url: str
    checked_at: datetime
    online: bool
    response_time_ms: Optional[int] = None
    ssl_valid: Optional[bool] = None  # None = not applicable (plain http)
    ssl_expires_at: Optional[datetime] = None
    ssl_days_remaining: Optional[int] = None
    ssl_issuer: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    consecutive_failures: int = 0


@dataclass
class CertificateInfo:
    """Peer certificate summary."""
    valid: bool
    expires_at: datetime
    days_remaining: int
    issuer: Optional[str] = None


class CertificateInspectionError(Exception):
    """Raised when a bare TLS handshake cannot produce a peer certificate."""


def evaluate_certificate(not_after: datetime, issuer: Optional[str], now: datetime) -> CertificateInfo:
    """Compute validity from the certificate expiry.

    days_remaining is floored, so a certificate expiring later today yields 0
    and is already reported invalid.
    """
    expires_at = to_naive_utc(not_after)
    days_remaining = (expires_at - now).days
    return CertificateInfo(
        valid=days_remaining > 0,
        expires_at=expires_at,
        days_remaining=days_remaining,
        issuer=issuer,
    )


def certificate_issuer(cert: x509.Certificate) -> Optional[str]:
    """Issuer organization, falling back to the common name."""
    for oid in (NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME):
        attributes = cert.issuer.get_attributes_for_oid(oid)
        if attributes:
            return str(attributes[0].value)
    return None


def host_and_port(url: str) -> Tuple[str, int]:
    parts = urlsplit(url)
    return parts.hostname or "", parts.port or 443


def is_tls_error(exc: BaseException) -> bool:
    """True if an httpx error was caused by certificate verification or the TLS layer."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    message = str(exc).upper()
    return "CERTIFICATE_VERIFY_FAILED" in message or "SSL" in message


class ProberService:
    """Runs the reachability request and, for https endpoints, a separate certificate inspection."""

    def __init__(
        self,
        timeout: float = 15.0,
        ssl_timeout: float = 10.0,
        max_redirects: int = 10,
        clock: Clock = system_clock,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.ssl_timeout = ssl_timeout
        self.max_redirects = max_redirects
        self.clock = clock
        self._transport = transport

    async def probe(self, endpoint: MonitoredEndpoint) -> CheckResult:
        """Probe an endpoint.

        Only connection-level failures mark it offline. Any HTTP response,
        including 4xx/5xx, means the service is reachable. A certificate that
        fails verification on the content request is retried as a bare
        handshake, and reachability is decided by that handshake instead.
        """
        result = CheckResult(
            server_name=endpoint.name,
            server_url=endpoint.url,
            checked_at=self.clock.now(),
            online=False,
        )

        try:
            start = datetime.now()
            response = await self._request(endpoint.url)
            response_time = int((datetime.now() - start).total_seconds() * 1000)

            result.online = True
            result.response_time_ms = response_time
            result.status_code = response.status_code
            if not (200 <= response.status_code < 400):
                result.error_message = f"HTTP {response.status_code}"

            if endpoint.is_secure:
                await self._attach_certificate(endpoint.url, result)

        except httpx.TimeoutException:
            result.error_message = "Request timeout"
            await self._attach_certificate_after_failure(endpoint, result)
        except httpx.TooManyRedirects as e:
            result.error_message = f"Too many redirects: {e}"
        except httpx.TransportError as e:
            if endpoint.is_secure and is_tls_error(e):
                await self._fallback_to_handshake(endpoint, result, e)
            else:
                result.error_message = f"Connection error: {e}"
                await self._attach_certificate_after_failure(endpoint, result)
        except httpx.HTTPError as e:
            result.error_message = f"Request failed: {e}"
            await self._attach_certificate_after_failure(endpoint, result)

        if not result.online:
            logger.debug(f"{endpoint.name} unreachable: {result.error_message}")
        return result

    async def _request(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            headers=DEFAULT_HEADERS,
            transport=self._transport,
        ) as client:
            return await client.get(url)

    async def _attach_certificate(self, url: str, result: CheckResult):
        """Fill certificate fields; an inspection failure never changes reachability."""
        try:
            cert = await self.inspect_certificate(url)
        except CertificateInspectionError as e:
            result.ssl_valid = False
            note = f"SSL inspection failed: {e}"
            result.error_message = f"{result.error_message} | {note}" if result.error_message else note
            return
        self._apply_certificate(result, cert)

    async def _attach_certificate_after_failure(self, endpoint: MonitoredEndpoint, result: CheckResult):
        if not endpoint.is_secure:
            return
        try:
            cert = await self.inspect_certificate(endpoint.url)
        except CertificateInspectionError as e:
            result.ssl_valid = False
            result.error_message = f"{result.error_message} | SSL: {e}"
            return
        self._apply_certificate(result, cert)

    async def _fallback_to_handshake(self, endpoint: MonitoredEndpoint, result: CheckResult, error: Exception):
        try:
            cert = await self.inspect_certificate(endpoint.url)
        except CertificateInspectionError as e:
            result.online = False
            result.ssl_valid = False
            result.error_message = f"Connection failed: {error} | SSL: {e}"
            logger.warning(f"Complete failure for {endpoint.url}: {error}")
            return

        self._apply_certificate(result, cert)
        result.online = True
        result.ssl_valid = False
        result.error_message = f"TLS verification failed: {error}"
        logger.info(f"TLS error for {endpoint.url}, but server is reachable (days remaining: {cert.days_remaining})")

    @staticmethod
    def _apply_certificate(result: CheckResult, cert: CertificateInfo):
        result.ssl_valid = cert.valid
        result.ssl_expires_at = cert.expires_at
        result.ssl_days_remaining = cert.days_remaining
        result.ssl_issuer = cert.issuer

    async def inspect_certificate(self, url: str) -> CertificateInfo:
        """Open a bare TLS handshake and summarise the peer certificate."""
        host, port = host_and_port(url)
        if not host:
            raise CertificateInspectionError(f"No hostname in {url}")

        try:
            # Socket operations are blocking - run in thread pool
            loop = asyncio.get_running_loop()
            cert = await asyncio.wait_for(
                loop.run_in_executor(None, self._fetch_certificate, host, port),
                timeout=self.ssl_timeout,
            )
        except asyncio.TimeoutError:
            raise CertificateInspectionError("SSL connection timeout")
        except (OSError, ValueError) as e:
            raise CertificateInspectionError(f"SSL connection failed: {e}") from e

        return evaluate_certificate(cert.not_valid_after_utc, certificate_issuer(cert), self.clock.now())

    def _fetch_certificate(self, host: str, port: int) -> x509.Certificate:
        """Read the peer certificate (blocking operation)."""
        # Don't verify the chain - we want to read expiry even from untrusted certs
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        with socket.create_connection((host, port), timeout=self.ssl_timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                # getpeercert() returns an empty dict under CERT_NONE; use DER form
                cert_der = ssock.getpeercert(binary_form=True)
                if not cert_der:
                    raise ValueError("No certificate found")
                return x509.load_der_x509_certificate(cert_der)
