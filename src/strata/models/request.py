"""Credentials, HTTP request descriptions and the retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from strata.core.types import HeaderValue


class Credentials(BaseModel):
    """Access key pair with optional session token."""

    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    session_token: Optional[str] = Field(default=None, repr=False)
    expiration: Optional[datetime] = None

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        if self.expiration is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expiration - now <= timedelta(seconds=seconds)


class HttpRequest(BaseModel):
    """An unsigned HTTP exchange addressed to one service in one region."""

    service: str  # signing name, e.g. "cloudcontrolapi"
    region: str
    method: str = "POST"
    endpoint: str  # scheme://host[:port]
    path: str = "/"
    query: dict[str, HeaderValue] = Field(default_factory=dict)
    headers: dict[str, HeaderValue] = Field(default_factory=dict)
    body: bytes = b""


@dataclass(frozen=True)
class SignedRequest:
    """An HttpRequest plus its authentication headers.

    Immutable: the signature covers exactly these headers and body bytes.
    Changing anything means building a new HttpRequest and signing again.
    """

    service: str
    region: str
    method: str
    url: str
    headers: Mapping[str, str]
    body: bytes
    signature: str
    timestamp: str
    credential_scope: str
    canonical_request: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def authorization(self) -> str:
        return self.headers["authorization"]


class ApiCall(BaseModel):
    """One logical control-plane action, before endpoint and protocol details."""

    service: str
    region: str
    action: str
    payload: Any = None  # pydantic model or plain dict


class RetryPolicy(BaseModel):
    """Bounded exponential backoff with jitter."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.1, ge=0)
    max_delay: float = Field(default=5.0, ge=0)
    jitter: bool = True

    def compute_delay(self, attempt: int, rand: float) -> float:
        """Delay before retrying after zero-based ``attempt``; ``rand`` is in [0, 1)."""
        delay = min(self.max_delay, self.base_delay * (2 ** attempt))
        if self.jitter:
            delay *= 0.5 + 0.5 * rand
        return delay
