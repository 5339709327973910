"""
URL classification and validation for untrusted request fields.

Source and destination URLs must be signed object-storage (S3) URLs; webhook
URLs may point anywhere public. Every check returns a ``ValidationResult``
instead of raising, so a malformed URL can never escape as an exception.
"""

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from urllib.parse import parse_qsl, unquote, urlsplit, SplitResult

logger = logging.getLogger(__name__)

S3_DOMAIN = "amazonaws.com"
DEFAULT_REGION = "us-east-1"
SIGNATURE_PARAM = "X-Amz-Algorithm"
DOCUMENT_EXTENSION = ".pdf"

_PATH_STYLE_PATTERNS = (
    re.compile(r"s3\.amazonaws\.com"),
    re.compile(r"s3\.(?P<region>[a-z0-9-]+)\.amazonaws\.com"),
)
_VIRTUAL_HOSTED_PATTERNS = (
    re.compile(r"(?P<bucket>[a-z0-9][a-z0-9.-]*)\.s3\.amazonaws\.com"),
    re.compile(r"(?P<bucket>[a-z0-9][a-z0-9.-]*)\.s3\.(?P<region>[a-z0-9-]+)\.amazonaws\.com"),
)

LOCAL_EMULATOR_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})
LOCAL_EMULATOR_PREFIX = "localstack"

# Dotted or bare decimal, octal and hex IPv4 parts
_NUMERIC_HOST_PATTERN = re.compile(r"(?:0x[0-9a-f]*|[0-9]+)(?:\.(?:0x[0-9a-f]*|[0-9]+)){0,3}")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class TrustMode(str, Enum):
    """Which URL rules apply: hardened production rules or local-emulator testing."""
    STRICT = "strict"
    PERMISSIVE = "permissive-for-local-testing"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'TrustMode':
        if not value:
            return cls.STRICT
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown trust mode '{value}', expected one of: "
                + ", ".join(mode.value for mode in cls)
            )


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> 'ValidationResult':
        return cls(True)

    @classmethod
    def fail(cls, reason: str) -> 'ValidationResult':
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True)
class S3Location:
    """Bucket, key and region addressed by an object-storage URL."""
    bucket: str
    key: str
    region: str
    style: str  # "path" or "virtual-hosted"


def is_local_emulator_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower()
    return hostname in LOCAL_EMULATOR_HOSTS or hostname.startswith(LOCAL_EMULATOR_PREFIX)


def _match_path_style(hostname: str) -> Optional[re.Match]:
    for pattern in _PATH_STYLE_PATTERNS:
        match = pattern.fullmatch(hostname)
        if match:
            return match
    return None


def _match_virtual_hosted(hostname: str) -> Optional[re.Match]:
    for pattern in _VIRTUAL_HOSTED_PATTERNS:
        match = pattern.fullmatch(hostname)
        if match:
            return match
    return None


def is_s3_hostname(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower()
    return bool(_match_path_style(hostname) or _match_virtual_hosted(hostname))


def has_path_traversal(path: str) -> bool:
    """True when the path has a ``..`` segment or a doubled separator, raw or percent-decoded."""
    for candidate in (path, unquote(path)):
        if "//" in candidate or "\\" in candidate:
            return True
        if any(segment == ".." for segment in candidate.split("/")):
            return True
    return False


def parse_ip_literal(hostname: str) -> Optional[IPAddress]:
    """
    Parse an IP literal, including the legacy IPv4 spellings resolvers accept.

    ``127.1``, ``2130706433`` and ``0x7f000001`` all reach 127.0.0.1, so they
    are normalised with ``inet_aton`` before range checks. Returns None for
    names that are not IP literals.

    Raises:
        ValueError: the host looks numeric but no resolver form matches it
    """
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    if not _NUMERIC_HOST_PATTERN.fullmatch(hostname):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        raise ValueError(f"Unparseable numeric host '{hostname}'") from None


def has_signature_param(query: str) -> bool:
    """True when the query string carries the S3 signing proof parameter."""
    if not query:
        return False
    keys = {key for key, _ in parse_qsl(query, keep_blank_values=True)}
    return SIGNATURE_PARAM in keys


class URLValidator:
    """
    Validates source, destination and webhook URLs under a TrustMode.

    In strict mode only HTTPS object-storage URLs are accepted. In permissive
    mode local emulators (localhost, 127.0.0.1, ::1, localstack*) are also
    accepted, over HTTP as well.
    """

    def __init__(self, trust_mode: TrustMode = TrustMode.STRICT,
                 document_extension: str = DOCUMENT_EXTENSION):
        self.trust_mode = trust_mode
        self.document_extension = document_extension.lower()

    @property
    def permissive(self) -> bool:
        return self.trust_mode is TrustMode.PERMISSIVE

    # ----- public checks -----

    def validate_source(self, url: object) -> ValidationResult:
        """Signed object-storage URL of the document to convert."""
        return self._validate_signed_url(url, require_document=True)

    def validate_destination(self, url: object) -> ValidationResult:
        """Signed object-storage URL of the prefix the pages are uploaded under."""
        return self._validate_signed_url(url, require_document=False)

    def validate_webhook(self, url: object) -> ValidationResult:
        """Callback URL. Any public host is allowed; internal addresses only when permissive."""
        parsed, error = self._parse(url)
        if error:
            return error

        scheme_check = self._check_scheme(parsed)
        if not scheme_check:
            return scheme_check

        if has_path_traversal(parsed.path):
            return ValidationResult.fail("URL path contains traversal segments")

        if not self.permissive and self._is_internal_host(parsed.hostname):
            return ValidationResult.fail("Webhook host must not be a loopback or private address")

        return ValidationResult.ok()

    def is_signed_url(self, url: object) -> bool:
        """True when ``url`` is an object-storage URL carrying the signing parameter."""
        parsed, error = self._parse(url)
        if error:
            return False
        return self._is_storage_host(parsed.hostname) and has_signature_param(parsed.query)

    def parse_s3_location(self, url: str) -> Optional[S3Location]:
        """Extract bucket, key and region from a path-style or virtual-hosted URL."""
        parsed, error = self._parse(url)
        if error or not parsed.hostname:
            return None
        hostname = parsed.hostname.lower()

        match = _match_path_style(hostname)
        if match:
            segments = parsed.path.split("/", 2)
            if len(segments) < 3 or not segments[1]:
                return None
            region = match.groupdict().get("region") or DEFAULT_REGION
            return S3Location(bucket=segments[1], key=segments[2], region=region, style="path")

        match = _match_virtual_hosted(hostname)
        if match:
            region = match.groupdict().get("region") or DEFAULT_REGION
            return S3Location(
                bucket=hostname.split(".", 1)[0],
                key=parsed.path.lstrip("/"),
                region=region,
                style="virtual-hosted",
            )
        return None

    # ----- internals -----

    def _validate_signed_url(self, url: object, require_document: bool) -> ValidationResult:
        parsed, error = self._parse(url)
        if error:
            return error

        scheme_check = self._check_scheme(parsed)
        if not scheme_check:
            return scheme_check

        if not self._is_storage_host(parsed.hostname):
            return ValidationResult.fail("Host is not a recognized S3 endpoint")

        if has_path_traversal(parsed.path):
            return ValidationResult.fail("URL path contains traversal segments")

        if self._is_path_style(parsed.hostname) and not parsed.path.strip("/"):
            return ValidationResult.fail("Path-style URL is missing the bucket name")

        if require_document and not parsed.path.lower().endswith(self.document_extension):
            return ValidationResult.fail(f"URL must point to a {self.document_extension} file")

        if not has_signature_param(parsed.query):
            return ValidationResult.fail(f"URL is not signed (missing {SIGNATURE_PARAM} parameter)")

        return ValidationResult.ok()

    def _parse(self, url: object):
        if not isinstance(url, str) or not url.strip():
            return None, ValidationResult.fail("URL must be a non-empty string")
        try:
            parsed = urlsplit(url.strip())
            # Accessing port validates it; urlsplit is lazy about that
            parsed.port
        except ValueError as e:
            return None, ValidationResult.fail(f"Invalid URL format: {e}")

        if not parsed.scheme or not parsed.hostname:
            return None, ValidationResult.fail("Invalid URL format: scheme and host are required")
        if parsed.username is not None or parsed.password is not None:
            return None, ValidationResult.fail("URL must not contain user credentials")
        return parsed, None

    def _check_scheme(self, parsed: SplitResult) -> ValidationResult:
        scheme = parsed.scheme.lower()
        if scheme == "https":
            return ValidationResult.ok()
        if scheme == "http" and self.permissive and is_local_emulator_host(parsed.hostname):
            return ValidationResult.ok()
        if scheme == "http":
            return ValidationResult.fail("URL must use HTTPS")
        return ValidationResult.fail(f"Unsupported URL scheme '{parsed.scheme}'")

    def _is_storage_host(self, hostname: Optional[str]) -> bool:
        if is_s3_hostname(hostname):
            return True
        return self.permissive and is_local_emulator_host(hostname)

    @staticmethod
    def _is_path_style(hostname: Optional[str]) -> bool:
        return bool(hostname) and _match_path_style(hostname.lower()) is not None

    @staticmethod
    def _is_internal_host(hostname: Optional[str]) -> bool:
        if not hostname:
            return True
        hostname = hostname.lower().rstrip(".")
        if hostname == "localhost" or hostname.endswith(".localhost"):
            return True
        try:
            address = parse_ip_literal(hostname)
        except ValueError:
            return True
        if address is None:
            return False
        return (
            address.is_private
            or address.is_loopback
            or address.is_link_local
            or address.is_reserved
            or address.is_multicast
            or address.is_unspecified
        )
