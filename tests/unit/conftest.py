"""Shared unit fixtures: dispatchers backed by httpx.MockTransport."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from strata.models.request import RetryPolicy
from strata.signing.credentials import StaticCredentialProvider
from strata.transport.dispatcher import RequestDispatcher
from strata.transport.endpoints import EndpointResolver
from tests.fakes.http import CREDS


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_dispatcher(sleeps) -> Callable[..., RequestDispatcher]:
    def factory(handler, *, max_attempts: int = 3, jitter: bool = False,
                credentials=None) -> RequestDispatcher:
        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        return RequestDispatcher(
            credentials or StaticCredentialProvider(CREDS),
            policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.1, max_delay=5.0,
                               jitter=jitter),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            endpoints=EndpointResolver(),
            sleep=fake_sleep,
            rand=lambda: 0.5,
        )

    return factory
