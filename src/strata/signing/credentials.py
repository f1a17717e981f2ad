"""Credential sources and the caching, single-flight credential provider.

Sources are plain callables returning ``Credentials | None``. Providers are
what signers talk to: they cache, refresh ahead of expiry, and make sure
concurrent signers share one refresh instead of each starting their own.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Awaitable, Callable, Iterable

import boto3
from botocore.exceptions import BotoCoreError

from strata.core.exceptions import CredentialsNotFoundError
from strata.models.request import Credentials

logger = logging.getLogger(__name__)

CredentialSource = Callable[[], Awaitable["Credentials | None"]]


async def from_environment() -> Credentials | None:
    """AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_SESSION_TOKEN."""
    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if not access_key or not secret_key:
        return None
    return Credentials(
        access_key_id=access_key,
        secret_access_key=secret_key,
        session_token=os.environ.get("AWS_SESSION_TOKEN") or None,
    )


def from_boto_session(profile: str | None = None) -> CredentialSource:
    """Source backed by the boto3 credential chain.

    Covers shared credentials and config files, SSO, web identity, and the
    container and instance metadata endpoints. Resolution may block on I/O, so
    it runs in a worker thread.
    """

    def _resolve() -> Credentials | None:
        try:
            session = boto3.Session(profile_name=profile)
            creds = session.get_credentials()
        except BotoCoreError as exc:
            logger.debug("boto3 credential resolution failed: %s", exc)
            return None
        if creds is None:
            return None
        frozen = creds.get_frozen_credentials()
        return Credentials(
            access_key_id=frozen.access_key,
            secret_access_key=frozen.secret_key,
            session_token=frozen.token,
        )

    async def source() -> Credentials | None:
        return await asyncio.to_thread(_resolve)

    return source


class CredentialChain:
    """Tries sources in order; the first to yield credentials wins."""

    def __init__(self, sources: Iterable[CredentialSource]) -> None:
        self._sources = list(sources)

    async def __call__(self) -> Credentials:
        for source in self._sources:
            creds = await source()
            if creds is not None:
                return creds
        raise CredentialsNotFoundError(
            "Could not find AWS credentials. Set AWS_ACCESS_KEY_ID and "
            "AWS_SECRET_ACCESS_KEY, configure a shared credentials profile, "
            "or run with an attached IAM role."
        )


class StaticCredentialProvider:
    """ICredentialProvider returning fixed credentials."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    async def get_credentials(self) -> Credentials:
        return self._credentials


class RefreshingCredentialProvider:
    """Caching ICredentialProvider with single-flight refresh.

    Cached credentials are reused until they expire within ``refresh_margin``
    seconds, or are older than ``max_age`` when the source gives no expiry.
    """

    def __init__(
        self,
        source: Callable[[], Awaitable[Credentials]],
        refresh_margin: float = 300.0,
        max_age: float | None = None,
    ) -> None:
        self._source = source
        self._refresh_margin = refresh_margin
        self._max_age = max_age
        self._cached: Credentials | None = None
        self._fetched_at = 0.0
        self._inflight: asyncio.Task[Credentials] | None = None
        self.refresh_count = 0

    def _fresh(self) -> bool:
        creds = self._cached
        if creds is None:
            return False
        if creds.expires_within(self._refresh_margin):
            return False
        if self._max_age is not None and time.monotonic() - self._fetched_at > self._max_age:
            return False
        return True

    async def get_credentials(self) -> Credentials:
        if self._fresh():
            return self._cached  # type: ignore[return-value]
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
        # shield: a cancelled caller must not cancel the refresh other callers await
        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> Credentials:
        try:
            creds = await self._source()
            self._cached = creds
            self._fetched_at = time.monotonic()
            self.refresh_count += 1
            logger.debug("Refreshed credentials for access key %s", creds.access_key_id)
            return creds
        finally:
            self._inflight = None

    def invalidate(self) -> None:
        self._cached = None
