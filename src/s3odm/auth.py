"""AWS Signature Version 4 request signing for s3odm.

Every call to the object store is signed on the client side before it is
handed to the transport. The module is split the same way the protocol is:

    - canonical request construction (pure, no I/O, no clock)
    - signing key derivation, memoized per UTC day by ``SigningKeyCache``
    - ``RequestSigner``, which stamps the request and emits the
      ``Authorization`` header

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
    - https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
"""

import hashlib
import hmac
import logging
import re
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, NamedTuple

from s3odm.errors import InvalidBodyType

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

CONTENT_SHA256_HEADER = "x-amz-content-sha256"
DATE_HEADER = "x-amz-date"
AUTHORIZATION_HEADER = "authorization"

# Headers that proxies and HTTP stacks are free to rewrite; never signed.
UNSIGNABLE_HEADERS = frozenset(
    {
        "authorization",
        "content-type",
        "content-length",
        "user-agent",
        "presigned-expires",
        "expect",
        "x-amzn-trace-id",
        "range",
        "connection",
    }
)

_WHITESPACE_RE = re.compile(r"\s+")


class CanonicalRequest(NamedTuple):
    """A canonical request and the semicolon-joined list of headers it signs."""

    text: str
    signed_headers: str

    @property
    def digest(self) -> str:
        """Lowercase hex SHA-256 of the canonical request."""
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SignedRequest:
    """A fully authenticated request, ready for the transport.

    A descriptor is single-use: its timestamp and signature belong to one
    call only. Headers are a read-only view and buffer bodies are copied to
    ``bytes``, so nothing covered by the signature can change after signing.

    Attributes:
        method: HTTP method.
        url: Absolute request URL, exactly as it was signed.
        headers: Lower-cased request headers including ``authorization``,
            ``x-amz-date`` and ``x-amz-content-sha256``.
        body: The request body (``str`` bodies are UTF-8 encoded).
    """

    method: str
    url: str
    headers: Mapping[str, str]
    body: Any = None


class SigningKeyCache:
    """Memoizes derived signing keys by (secret, date, region, service).

    A key is only valid for the UTC day it was derived for, so a process
    accumulates at most one entry per credential and calendar day. Two
    concurrent misses for the same entry may both derive the key; the first
    one stored wins and both callers get an identical value.
    """

    def __init__(self) -> None:
        self._keys: dict[tuple[str, str, str, str], bytes] = {}

    def get(self, secret_key: str, date: str, region: str, service: str) -> bytes:
        """Return the signing key for the scope, deriving it on a miss.

        Args:
            secret_key: The secret access key.
            date: Date stamp (YYYYMMDD).
            region: Signing region.
            service: Signing service name.

        Returns:
            The 32-byte signing key.
        """
        cache_key = (secret_key, date, region, service)
        signing_key = self._keys.get(cache_key)
        if signing_key is None:
            logger.debug("Deriving signing key for scope %s/%s/%s", date, region, service)
            derived = derive_signing_key(secret_key, date, region, service)
            signing_key = self._keys.setdefault(cache_key, derived)
        return signing_key

    def __contains__(self, cache_key: object) -> bool:
        return cache_key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class RequestSigner:
    """Signs outgoing requests with AWS Signature Version 4.

    Each signer owns its own ``SigningKeyCache``, so clients built with
    different credentials never share derived keys.

    Attributes:
        access_key: The access key ID placed in the credential scope.
        region: Signing region (``auto`` for R2 and similar providers).
        service: Signing service name.
        cache: The signer's signing key cache.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str = "auto",
        service: str = SERVICE_NAME,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the signer.

        Args:
            access_key: The access key ID.
            secret_key: The secret access key.
            region: Signing region.
            service: Signing service name.
            clock: Returns the current aware UTC datetime; defaults to the
                system clock.
        """
        self.access_key = access_key
        self._secret_key = secret_key
        self.region = region
        self.service = service
        self._clock = clock or _utc_now
        self.cache = SigningKeyCache()

    def sign(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> SignedRequest:
        """Sign a request.

        Args:
            method: HTTP method.
            url: Absolute request URL.
            headers: Extra request headers. ``Host`` is ignored and always
                derived from the URL.
            body: Optional request body.

        Returns:
            The signed request descriptor.

        Raises:
            InvalidBodyType: If the body cannot be hashed and no
                ``x-amz-content-sha256`` header was supplied.
        """
        timestamp = amz_timestamp(self._clock())
        date = timestamp[:8]

        prepared = prepare_headers(headers, body, timestamp)
        canonical = build_canonical_request(
            method, url, prepared, prepared[CONTENT_SHA256_HEADER]
        )

        scope = credential_scope(date, self.region, self.service)
        signing_key = self.cache.get(self._secret_key, date, self.region, self.service)
        signature = compute_signature(
            signing_key, build_string_to_sign(timestamp, scope, canonical)
        )

        prepared[AUTHORIZATION_HEADER] = (
            f"{ALGORITHM} Credential={self.access_key}/{scope}, "
            f"SignedHeaders={canonical.signed_headers}, Signature={signature}"
        )
        return SignedRequest(
            method=method,
            url=url,
            headers=MappingProxyType(prepared),
            body=_freeze_body(body),
        )


# ---------------------------------------------------------------------------
# Module-level signing functions
# ---------------------------------------------------------------------------


def prepare_headers(
    headers: Mapping[str, str] | None, body: Any, timestamp: str
) -> dict[str, str]:
    """Normalize caller headers and add the date and payload hash headers.

    Args:
        headers: Caller-supplied headers (any name casing).
        body: The request body, or None.
        timestamp: The request timestamp (YYYYMMDDTHHMMSSZ).

    Returns:
        A new dict with lower-cased names, without ``host``.
    """
    prepared = {name.lower(): str(value) for name, value in (headers or {}).items()}
    prepared.pop("host", None)

    if CONTENT_SHA256_HEADER not in prepared:
        prepared[CONTENT_SHA256_HEADER] = (
            UNSIGNED_PAYLOAD if body is None else hash_payload(body)
        )

    prepared[DATE_HEADER] = timestamp
    return prepared


def hash_payload(body: Any) -> str:
    """Hex SHA-256 of a request body.

    Raises:
        InvalidBodyType: If the body is not text or a bytes-like value.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    elif not isinstance(body, (bytes, bytearray, memoryview)):
        raise InvalidBodyType()
    return hashlib.sha256(body).hexdigest()


def build_canonical_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload_hash: str,
) -> CanonicalRequest:
    """Build the SigV4 canonical request.

    Args:
        method: HTTP method.
        url: Absolute request URL; its host is the signed ``host`` value.
        headers: Request headers. ``host`` and unsignable headers are skipped.
        payload_hash: Hex SHA-256 of the body, or ``UNSIGNED-PAYLOAD``.

    Returns:
        The canonical request text and its signed header list.
    """
    parts = urllib.parse.urlsplit(url)

    signable = {"host": parts.netloc}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name == "host" or lower_name in UNSIGNABLE_HEADERS:
            continue
        signable[lower_name] = value

    names = sorted(signable)
    canonical_headers = "".join(
        f"{name}:{_trim_header_value(signable[name])}\n" for name in names
    )
    signed_headers = ";".join(names)

    text = "\n".join(
        [
            method.upper(),
            canonical_uri(parts.path),
            canonical_query_string(parts.query),
            canonical_headers,
            signed_headers,
            payload_hash,
        ]
    )
    return CanonicalRequest(text=text, signed_headers=signed_headers)


def canonical_uri(path: str) -> str:
    """Canonicalize a URL path.

    The path is decoded (``+`` meaning space), then every segment is
    re-encoded with slashes preserved.
    """
    try:
        decoded = urllib.parse.unquote(path.replace("+", " "), errors="strict")
    except UnicodeDecodeError:
        decoded = path
    return _uri_encode(decoded, encode_slash=False) or "/"


def canonical_query_string(query: str) -> str:
    """Canonicalize a raw query string.

    Only the first occurrence of a parameter name is kept and empty names
    are dropped. Pairs are encoded, then sorted by name and value.
    """
    if not query:
        return ""

    seen: set[str] = set()
    pairs: list[tuple[str, str]] = []
    for name, value in urllib.parse.parse_qsl(query, keep_blank_values=True):
        if not name or name in seen:
            continue
        seen.add(name)
        pairs.append((_uri_encode(name), _uri_encode(value)))

    pairs.sort()
    return "&".join(f"{name}={value}" for name, value in pairs)


def credential_scope(date: str, region: str, service: str = SERVICE_NAME) -> str:
    """Return the ``date/region/service/aws4_request`` credential scope."""
    return f"{date}/{region}/{service}/{SCOPE_TERMINATOR}"


def build_string_to_sign(timestamp: str, scope: str, canonical_request: CanonicalRequest) -> str:
    """Build the string to sign.

    Args:
        timestamp: ISO 8601 basic timestamp (YYYYMMDDTHHMMSSZ).
        scope: Credential scope.
        canonical_request: The canonical request.

    Returns:
        The string to sign.
    """
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_request.digest}"


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: Signing region.
        service: Signing service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = _hmac((KEY_PREFIX + secret_key).encode("utf-8"), date)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, SCOPE_TERMINATOR)


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the final signature as 64 lowercase hex characters."""
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def amz_timestamp(now: datetime) -> str:
    """Format an instant as a SigV4 timestamp, truncated to the second."""
    return now.astimezone(timezone.utc).strftime(AMZ_DATE_FORMAT)


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _freeze_body(body: Any) -> Any:
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    return body


def _uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Only A-Z, a-z, 0-9, '-', '_', '.' and '~' are left as-is, so the
    sub-delimiters ``! ' ( ) *`` are escaped too. Hex digits are uppercase
    and spaces become %20.

    Args:
        s: The string to encode.
        encode_slash: If False, '/' is left as-is.

    Returns:
        The URI-encoded string.
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def _trim_header_value(value: str) -> str:
    """Collapse whitespace runs to one space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", value).strip()
