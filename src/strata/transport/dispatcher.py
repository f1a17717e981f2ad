"""Signed, retried and classified control-plane calls over httpx.

Every attempt fetches credentials, signs with a fresh timestamp and sends.
Retryable failures (transport errors, throttling, 5xx) back off
exponentially with jitter; everything else surfaces immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from strata.core.exceptions import (
    AuthenticationError,
    ClientRequestError,
    DispatchError,
    MalformedResponseError,
    RetryExhaustedError,
    ServerError,
    ThrottlingError,
    TransientNetworkError,
    ValidationError,
)
from strata.core.protocols import ICredentialProvider
from strata.models.outcome import DispatchOutcome, DispatchResult
from strata.models.request import ApiCall, HttpRequest, RetryPolicy
from strata.signing.signer import RequestSigner
from strata.transport.endpoints import EndpointResolver

logger = logging.getLogger(__name__)

THROTTLING_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "TransactionInProgressException",
    "RequestLimitExceeded",
    "BandwidthLimitExceeded",
    "LimitExceededException",
    "RequestThrottled",
    "SlowDown",
    "PriorRequestNotComplete",
    "EC2ThrottledException",
})

AUTH_CODES = frozenset({
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "SignatureDoesNotMatch",
    "IncompleteSignature",
    "MissingAuthenticationToken",
    "MissingAuthenticationTokenException",
    "InvalidClientTokenId",
    "ExpiredToken",
    "ExpiredTokenException",
    "RequestExpired",
    "AuthFailure",
    "AccessDenied",
    "AccessDeniedException",
})

VALIDATION_CODES = frozenset({
    "ValidationException",
    "ValidationError",
    "InvalidParameterException",
    "InvalidParameterValue",
    "InvalidParameterValueException",
    "InvalidRequestException",
    "SerializationException",
    "InvalidInput",
})

TRANSIENT_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "IDPCommunicationError",
})


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, DispatchError) and error.retryable


def encode_payload(payload: Any) -> bytes:
    """Single JSON encoder for every request body."""
    if payload is None:
        data: Any = {}
    elif isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        data = payload
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def _normalize_code(raw: str | None) -> str | None:
    if not raw:
        return None
    return raw.split(":", 1)[0].rsplit("#", 1)[-1] or None


def parse_error(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (error code, message) from an AWS JSON error response."""
    body: Any = {}
    try:
        body = response.json()
    except ValueError:
        pass
    if not isinstance(body, dict):
        body = {}

    code = _normalize_code(response.headers.get("x-amzn-errortype"))
    code = code or _normalize_code(body.get("__type") or body.get("code") or body.get("Code"))
    message = body.get("message") or body.get("Message") or response.reason_phrase or ""
    return code, str(message)


def classify_error(status: int, code: str | None, message: str) -> DispatchError:
    label = code or f"HTTP {status}"
    text = f"{label}: {message}" if message else label
    kwargs = {"status_code": status, "error_code": code}

    if status == 429 or code in THROTTLING_CODES:
        return ThrottlingError(text, **kwargs)
    if status in (401, 403) or code in AUTH_CODES:
        return AuthenticationError(text, **kwargs)
    if code in VALIDATION_CODES:
        return ValidationError(text, **kwargs)
    if code in TRANSIENT_CODES:
        return TransientNetworkError(text, **kwargs)
    if status >= 500:
        return ServerError(text, **kwargs)
    return ClientRequestError(text, **kwargs)


def classify_response(response: httpx.Response, attempt: int) -> DispatchOutcome:
    status = response.status_code
    if 200 <= status < 300:
        if not response.content.strip():
            return DispatchOutcome(attempt=attempt, payload={}, status_code=status)
        try:
            payload = response.json()
        except ValueError as exc:
            error = MalformedResponseError(f"Response body is not valid JSON: {exc}",
                                           status_code=status)
            return DispatchOutcome(attempt=attempt, error=error, status_code=status)
        if not isinstance(payload, dict):
            error = MalformedResponseError("Response body is not a JSON object",
                                           status_code=status)
            return DispatchOutcome(attempt=attempt, error=error, status_code=status)
        return DispatchOutcome(attempt=attempt, payload=payload, status_code=status)

    code, message = parse_error(response)
    return DispatchOutcome(
        attempt=attempt, error=classify_error(status, code, message), status_code=status
    )


class RequestDispatcher:
    """IDispatcher over the AWS JSON protocol."""

    def __init__(
        self,
        credentials: ICredentialProvider,
        *,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        endpoints: EndpointResolver | None = None,
        signer: RequestSigner | None = None,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._credentials = credentials
        self._policy = policy or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._endpoints = endpoints or EndpointResolver()
        self._signer = signer or (RequestSigner(clock) if clock else RequestSigner())
        self._sleep = sleep
        self._rand = rand

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def __aenter__(self) -> RequestDispatcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_request(self, call: ApiCall) -> HttpRequest:
        spec = self._endpoints.spec(call.service)
        return HttpRequest(
            service=spec.signing_name,
            region=call.region,
            method="POST",
            endpoint=self._endpoints.endpoint(call.service, call.region),
            path="/",
            headers={
                "content-type": spec.content_type,
                "x-amz-target": f"{spec.target_prefix}.{call.action}",
            },
            body=encode_payload(call.payload),
        )

    async def attempt(self, request: HttpRequest, attempt: int = 1) -> DispatchOutcome:
        """Sign and send once; transport failures become outcomes, not exceptions."""
        credentials = await self._credentials.get_credentials()
        signed = self._signer.sign(request, credentials)
        logger.debug("%s %s attempt=%d target=%s", signed.method, signed.url, attempt,
                     signed.headers.get("x-amz-target"))
        try:
            response = await self._client.request(
                signed.method, signed.url, headers=dict(signed.headers), content=signed.body,
            )
        except httpx.TimeoutException as exc:
            error = TransientNetworkError(f"Request to {signed.url} timed out: {exc!r}")
            return DispatchOutcome(attempt=attempt, error=error)
        except httpx.TransportError as exc:
            error = TransientNetworkError(f"Request to {signed.url} failed: {exc!r}")
            return DispatchOutcome(attempt=attempt, error=error)
        return classify_response(response, attempt)

    def _backoff(self, retry_state: RetryCallState) -> float:
        return self._policy.compute_delay(retry_state.attempt_number - 1, self._rand())

    async def dispatch(self, call: ApiCall) -> DispatchResult:
        """Run ``call`` under the retry policy.

        Raises the classified error for a non-retryable failure and
        RetryExhaustedError once every attempt failed with a retryable one.
        """
        request = self.build_request(call)
        outcomes: list[DispatchOutcome] = []
        delays: list[float] = []

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep
            delays.append(delay)
            logger.warning(
                "%s.%s attempt %d/%d failed (%s); retrying in %.2fs",
                call.service, call.action, retry_state.attempt_number,
                self._policy.max_attempts, outcomes[-1].error.kind, delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=self._backoff,
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    outcome = await self.attempt(
                        request, attempt=attempt.retry_state.attempt_number
                    )
                    outcomes.append(outcome)
                    if outcome.error is not None:
                        raise outcome.error
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            raise RetryExhaustedError(
                last_error, attempts=exc.last_attempt.attempt_number, delays=delays  # type: ignore[arg-type]
            ) from last_error

        return DispatchResult(
            payload=outcomes[-1].payload or {},
            attempts=len(outcomes),
            delays=delays,
            outcomes=outcomes,
        )

    async def send(self, call: ApiCall) -> dict[str, Any]:
        return (await self.dispatch(call)).payload
