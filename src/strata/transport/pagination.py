"""Continuation-token pagination on top of IDispatcher."""

from __future__ import annotations

from typing import Any, AsyncIterator

from pydantic import BaseModel

from strata.core.exceptions import MalformedResponseError
from strata.core.protocols import IDispatcher
from strata.models.request import ApiCall


def _with_token(call: ApiCall, token_key: str, token: str) -> ApiCall:
    payload = call.payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload = dict(payload or {})
    payload[token_key] = token
    return call.model_copy(update={"payload": payload})


async def iter_pages(
    dispatcher: IDispatcher,
    call: ApiCall,
    *,
    token_key: str = "NextToken",
    input_token_key: str | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Yield response pages until one comes back without a continuation token.

    Raises MalformedResponseError when the service hands back a token it
    already returned, which would otherwise loop forever.
    """
    page = await dispatcher.send(call)
    yield page
    token = page.get(token_key)
    seen: set[str] = set()
    while token:
        if token in seen:
            raise MalformedResponseError(
                f"{call.action} returned continuation token {token!r} more than once"
            )
        seen.add(token)
        page = await dispatcher.send(_with_token(call, input_token_key or token_key, token))
        yield page
        token = page.get(token_key)


async def paginate(
    dispatcher: IDispatcher,
    call: ApiCall,
    result_key: str,
    *,
    token_key: str = "NextToken",
    input_token_key: str | None = None,
) -> list[Any]:
    """Concatenate ``result_key`` items across all pages, in order."""
    items: list[Any] = []
    async for page in iter_pages(
        dispatcher, call, token_key=token_key, input_token_key=input_token_key
    ):
        items.extend(page.get(result_key, []))
    return items
