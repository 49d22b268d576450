"""URL admission validator: decides whether a target URL may be fetched.

Pure and stateless (no DNS lookups, no I/O), so it can run before
authentication and be tested exhaustively.  Checks run in a fixed order and
stop at the first failure:

1. empty / unparseable input                     → ``MALFORMED_URL``
2. scheme other than http/https                  → ``SCHEME_NOT_ALLOWED``
3. hostname on the metadata/loopback denylist    → ``BLOCKED_HOST``
4. private, loopback, link-local or reserved
   address (textual prefix or numeric range)     → ``PRIVATE_ADDRESS``
5. denied service port or dev-server port        → ``PORT_NOT_ALLOWED``
6. canonical URL longer than 2048 characters     → ``URL_TOO_LONG``

URLs are parsed with :class:`httpx.URL`, the same parser the light driver
hands the request to.  Hosts that a resolver would read as an IPv4 address
(``0x7f.1``, ``017700000001``, ``2130706433``) are rewritten to dotted-quad
form before any check runs, and the rewritten URL is what callers fetch.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from scrape_gateway.core.exceptions import SSRFBlockedError

# ---------------------------------------------------------------------------
# Policy tables
# ---------------------------------------------------------------------------

BLOCKED_HOSTS: frozenset[str] = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "127.0.0.1",
        "0.0.0.0",
        "::1",
        "[::1]",
        "169.254.169.254",
        "169.254.170.2",
        "169.254.0.0",
        "metadata.google.internal",
        "metadata.google.com",
        "metadata",
        "instance-data",
        "kubernetes.default.svc",
        "kubernetes.default",
        "kubernetes",
    }
)

#: Non-HTTP service ports: SSH, telnet, SMTP, DNS, POP3, IMAP, SMB, MySQL,
#: RDP, PostgreSQL, VNC, Redis, memcached, MongoDB.
BLOCKED_PORTS: frozenset[int] = frozenset(
    {22, 23, 25, 53, 110, 143, 445, 3306, 3389, 5432, 5900, 6379, 11211, 27017}
)

#: Ports 5000-9999 are refused unless listed here.
DEV_PORT_RANGE: range = range(5000, 10000)
DEV_PORT_ALLOWLIST: frozenset[int] = frozenset({5000, 8000, 8080, 8443, 9000})

MAX_URL_LENGTH: int = 2048

_PRIVATE_HOST_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^10\.",
        r"^172\.(1[6-9]|2\d|3[01])\.",
        r"^192\.168\.",
        r"^127\.",
        r"^0\.",
        r"^169\.254\.",
        r"^localhost$",
        r"^::1$",
        r"^fc00:",
        r"^fd00:",
        r"^fe80:",
        r"^ff00:",
    )
)

_DOTTED_QUAD = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
_HEX_PART = re.compile(r"^0[xX][0-9a-fA-F]*$")
_OCT_PART = re.compile(r"^0[0-7]+$")
_DEC_PART = re.compile(r"^(0|[1-9]\d*)$")

_PRIVATE_MESSAGE = "Access to private IP addresses is not allowed"


class AdmissionReason(str, Enum):
    """Why a URL was refused."""

    MALFORMED_URL = "MALFORMED_URL"
    SCHEME_NOT_ALLOWED = "SCHEME_NOT_ALLOWED"
    BLOCKED_HOST = "BLOCKED_HOST"
    PRIVATE_ADDRESS = "PRIVATE_ADDRESS"
    PORT_NOT_ALLOWED = "PORT_NOT_ALLOWED"
    URL_TOO_LONG = "URL_TOO_LONG"


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of :func:`validate_url`.

    Attributes:
        accepted: ``True`` when the URL may be fetched.
        canonical_url: Re-serialised URL to fetch instead of the raw input.
            Set only when accepted.
        reason: Rejection reason code.  Set only when rejected.
        message: Human-readable rejection reason.
    """

    accepted: bool
    canonical_url: Optional[str] = None
    reason: Optional[AdmissionReason] = None
    message: Optional[str] = None

    def raise_if_rejected(self) -> str:
        """Return the canonical URL, or raise :class:`SSRFBlockedError`."""
        if not self.accepted or self.canonical_url is None:
            reason = self.reason or AdmissionReason.MALFORMED_URL
            raise SSRFBlockedError(reason.value, self.message or "URL is not allowed")
        return self.canonical_url


def _reject(reason: AdmissionReason, message: str) -> AdmissionResult:
    return AdmissionResult(accepted=False, reason=reason, message=message)


# ---------------------------------------------------------------------------
# Host normalisation
# ---------------------------------------------------------------------------


def _parse_ipv4_part(part: str) -> int:
    """Parse one dotted component the way ``inet_aton`` does (hex, octal, decimal)."""
    if _HEX_PART.match(part):
        return int(part[2:] or "0", 16)
    if _OCT_PART.match(part):
        return int(part[1:], 8)
    if _DEC_PART.match(part):
        return int(part, 10)
    raise ValueError(f"invalid IPv4 component {part!r}")


def _ends_in_number(host: str) -> bool:
    parts = host.split(".")
    if parts[-1] == "" and len(parts) > 1:
        parts.pop()
    last = parts[-1]
    return bool(last) and (last.isdigit() or bool(_HEX_PART.match(last)))


def _normalise_ipv4_host(host: str) -> Optional[str]:
    """Return the dotted-quad form of a numeric host, or ``None`` for a DNS name.

    Raises:
        ValueError: If the host ends in a number but is not a valid IPv4
            address in any legacy notation.
    """
    if ":" in host or not _ends_in_number(host):
        return None
    parts = host.split(".")
    if parts[-1] == "":
        parts.pop()
    if not 1 <= len(parts) <= 4:
        raise ValueError("too many IPv4 components")
    numbers = [_parse_ipv4_part(p) for p in parts]
    if any(n > 255 for n in numbers[:-1]):
        raise ValueError("IPv4 component out of range")
    if numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError("IPv4 address out of range")
    value = numbers[-1]
    for index, number in enumerate(numbers[:-1]):
        value += number * 256 ** (3 - index)
    return str(ipaddress.IPv4Address(value))


def _private_ipv4_message(host: str) -> Optional[str]:
    """Range-check a dotted quad against the private/reserved blocks."""
    match = _DOTTED_QUAD.match(host)
    if match is None:
        return None
    a, b = int(match.group(1)), int(match.group(2))
    if a == 10:
        return _PRIVATE_MESSAGE
    if a == 172 and 16 <= b <= 31:
        return _PRIVATE_MESSAGE
    if a == 192 and b == 168:
        return _PRIVATE_MESSAGE
    if a == 127:
        return "Access to loopback addresses is not allowed"
    if a == 0:
        return "Access to reserved addresses is not allowed"
    if a == 169 and b == 254:
        return "Access to link-local addresses is not allowed"
    return None


def _is_private_ipv6(host: str) -> bool:
    try:
        address = ipaddress.IPv6Address(host.split("%", 1)[0])
    except ValueError:
        return False
    if address.ipv4_mapped is not None:
        return _private_ipv4_message(str(address.ipv4_mapped)) is not None
    return (
        address.is_loopback
        or address.is_unspecified
        or address.is_link_local
        or address.is_site_local
        or address.is_multicast
        or address in ipaddress.IPv6Network("fc00::/7")
    )


def _private_address_message(host: str) -> Optional[str]:
    if any(pattern.search(host) for pattern in _PRIVATE_HOST_PATTERNS):
        return _PRIVATE_MESSAGE
    message = _private_ipv4_message(host)
    if message is not None:
        return message
    if ":" in host and _is_private_ipv6(host):
        return _PRIVATE_MESSAGE
    return None


def _effective_port(url: httpx.URL) -> int:
    if url.port is not None:
        return url.port
    return 443 if url.scheme == "https" else 80


def is_port_allowed(port: int) -> bool:
    """Return ``True`` if ``port`` passes the service-port and dev-port tables."""
    if port in BLOCKED_PORTS:
        return False
    if port in DEV_PORT_RANGE and port not in DEV_PORT_ALLOWLIST:
        return False
    return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_url(raw_url: object) -> AdmissionResult:
    """Decide whether ``raw_url`` may be fetched.

    Args:
        raw_url: Caller-supplied URL.  Non-string input is rejected as
            malformed.

    Returns:
        An :class:`AdmissionResult`.  When accepted, callers must fetch
        ``canonical_url`` and never the raw input.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        return _reject(AdmissionReason.MALFORMED_URL, "URL cannot be empty")

    try:
        url = httpx.URL(raw_url.strip())
    except (httpx.InvalidURL, ValueError, TypeError):
        return _reject(AdmissionReason.MALFORMED_URL, "Invalid URL format")

    scheme = url.scheme.lower()
    if not scheme:
        return _reject(AdmissionReason.MALFORMED_URL, "Invalid URL format")
    if scheme not in ("http", "https"):
        return _reject(
            AdmissionReason.SCHEME_NOT_ALLOWED,
            f'Protocol "{scheme}" is not allowed. Use http or https.',
        )

    host = url.host.lower()
    if not host:
        return _reject(AdmissionReason.MALFORMED_URL, "Invalid URL format")

    try:
        dotted = _normalise_ipv4_host(host)
    except ValueError:
        return _reject(AdmissionReason.MALFORMED_URL, "Invalid IP address")
    if dotted is not None and dotted != host:
        url = url.copy_with(host=dotted)
        host = dotted

    bare_host = host.rstrip(".")
    if bare_host in BLOCKED_HOSTS or f"[{bare_host}]" in BLOCKED_HOSTS:
        return _reject(AdmissionReason.BLOCKED_HOST, "Access to this host is not allowed")

    private_message = _private_address_message(bare_host)
    if private_message is not None:
        return _reject(AdmissionReason.PRIVATE_ADDRESS, private_message)

    port = _effective_port(url)
    if not is_port_allowed(port):
        return _reject(AdmissionReason.PORT_NOT_ALLOWED, f"Port {port} is not allowed")

    canonical = str(url)
    if len(canonical) > MAX_URL_LENGTH:
        return _reject(
            AdmissionReason.URL_TOO_LONG,
            f"URL exceeds maximum length of {MAX_URL_LENGTH} characters",
        )

    return AdmissionResult(accepted=True, canonical_url=canonical)


def ensure_admitted(raw_url: object) -> str:
    """Validate ``raw_url`` and return its canonical form.

    Used by the fetch drivers as a second enforcement point.

    Raises:
        SSRFBlockedError: If the URL is rejected.
    """
    return validate_url(raw_url).raise_if_rejected()
