"""AWS Signature Version 4 request signing.

canonical request -> string to sign -> derived key chain -> HMAC-SHA256,
scoped to the service, region and calendar date of the request timestamp.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Mapping
from urllib.parse import quote, urlsplit, urlencode

from strata.core.types import HeaderValue
from strata.models.request import Credentials, HttpRequest, SignedRequest

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
EMPTY_PAYLOAD_HASH = hashlib.sha256(b"").hexdigest()
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
MAX_PRESIGN_EXPIRY = 604800  # 7 days

_WHITESPACE = re.compile(r"\s+")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


@lru_cache(maxsize=100)
def derive_signing_key(secret_access_key: str, date: str, region: str, service: str) -> bytes:
    """kDate -> kRegion -> kService -> kSigning; cached per secret, day and scope."""
    k_date = _hmac(f"AWS4{secret_access_key}".encode("utf-8"), date)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, TERMINATOR)


def uri_encode(value: str) -> str:
    """RFC 3986 encoding: only unreserved characters pass through."""
    return quote(value, safe="-_.~")


def canonical_path(path: str) -> str:
    if not path:
        return "/"
    return "/".join(uri_encode(segment) for segment in path.split("/"))


def canonical_query(query: Mapping[str, HeaderValue]) -> str:
    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        values = value if isinstance(value, list) else [value]
        pairs.extend((uri_encode(key), uri_encode(v)) for v in values)
    pairs.sort()
    return "&".join(f"{k}={v}" for k, v in pairs)


def normalize_headers(headers: Mapping[str, HeaderValue]) -> dict[str, str]:
    """Lower-case names, trim values, comma-join duplicates in the order given."""
    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        values = value if isinstance(value, list) else [value]
        merged.setdefault(name.lower(), []).extend(
            _WHITESPACE.sub(" ", v.strip()) for v in values
        )
    return {name: ",".join(values) for name, values in merged.items()}


def canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Return (canonical header block, signed header list) for normalised headers."""
    names = sorted(headers)
    block = "".join(f"{name}:{headers[name]}\n" for name in names)
    return block, ";".join(names)


def format_timestamp(timestamp: datetime) -> str:
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime(TIMESTAMP_FORMAT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestSigner:
    """Signs HttpRequests with SigV4. Stateless apart from the clock."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def sign(
        self,
        request: HttpRequest,
        credentials: Credentials,
        timestamp: datetime | None = None,
    ) -> SignedRequest:
        amz_date = format_timestamp(timestamp or self._clock())
        date = amz_date[:8]
        scope = f"{date}/{request.region}/{request.service}/{TERMINATOR}"
        host = urlsplit(request.endpoint).netloc

        headers = normalize_headers(request.headers)
        headers["host"] = host
        headers["x-amz-date"] = amz_date
        if credentials.session_token:
            headers["x-amz-security-token"] = credentials.session_token

        payload_hash = sha256_hex(request.body) if request.body else EMPTY_PAYLOAD_HASH
        if request.service == "s3":
            headers.setdefault("x-amz-content-sha256", payload_hash)

        header_block, signed_headers = canonical_headers(headers)
        query = canonical_query(request.query)
        canonical_request = "\n".join([
            request.method.upper(),
            canonical_path(request.path),
            query,
            header_block,
            signed_headers,
            payload_hash,
        ])

        signature = self._signature(credentials, date, request, amz_date, scope, canonical_request)
        headers["authorization"] = (
            f"{ALGORITHM} Credential={credentials.access_key_id}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )

        url = f"{request.endpoint.rstrip('/')}{request.path or '/'}"
        if query:
            url = f"{url}?{query}"

        return SignedRequest(
            service=request.service,
            region=request.region,
            method=request.method.upper(),
            url=url,
            headers=headers,
            body=request.body,
            signature=signature,
            timestamp=amz_date,
            credential_scope=scope,
            canonical_request=canonical_request,
        )

    def presign_url(
        self,
        request: HttpRequest,
        credentials: Credentials,
        expires_in: int = 3600,
        timestamp: datetime | None = None,
    ) -> str:
        """Sign via query string; only the host header is signed."""
        amz_date = format_timestamp(timestamp or self._clock())
        date = amz_date[:8]
        scope = f"{date}/{request.region}/{request.service}/{TERMINATOR}"
        host = urlsplit(request.endpoint).netloc

        query: dict[str, HeaderValue] = dict(request.query)
        query.update({
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{credentials.access_key_id}/{scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(min(expires_in, MAX_PRESIGN_EXPIRY)),
            "X-Amz-SignedHeaders": "host",
        })
        if credentials.session_token:
            query["X-Amz-Security-Token"] = credentials.session_token

        payload_hash = UNSIGNED_PAYLOAD if request.service == "s3" else sha256_hex(request.body)
        canonical_request = "\n".join([
            request.method.upper(),
            canonical_path(request.path),
            canonical_query(query),
            f"host:{host}\n",
            "host",
            payload_hash,
        ])
        signature = self._signature(credentials, date, request, amz_date, scope, canonical_request)
        query["X-Amz-Signature"] = signature

        return f"{request.endpoint.rstrip('/')}{request.path or '/'}?{urlencode(query, doseq=True, quote_via=quote, safe='-_.~')}"

    @staticmethod
    def _signature(
        credentials: Credentials,
        date: str,
        request: HttpRequest,
        amz_date: str,
        scope: str,
        canonical_request: str,
    ) -> str:
        string_to_sign = "\n".join([
            ALGORITHM,
            amz_date,
            scope,
            sha256_hex(canonical_request.encode("utf-8")),
        ])
        key = derive_signing_key(
            credentials.secret_access_key, date, request.region, request.service
        )
        return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
