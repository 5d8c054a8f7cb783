from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import json
import logging
from typing import Any

import httpx
from fastapi import Depends
from opentelemetry import trace

from app.core.config import Settings, get_settings
from app.core.urls import append_query
from app.schemas.postback import PostbackAck

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_GOAL = "conversion"
PAYOUT_NOT_PROVIDED = "not provided"
FORWARDING_DISABLED = "forwarding_disabled"

CLICK_ID_KEYS = ("click_id",)
GOAL_KEYS = ("goal", "type")
PAYOUT_KEYS = ("payout",)
CLICK_ID_ALIASES = ("clickId", "clickid")
GOAL_ALIASES = ("event",)
PAYOUT_ALIASES = ("amount", "revenue")


class RelayError(Exception):
    pass


class PostbackValidationError(RelayError):
    pass


class ForwardingError(RelayError):
    pass


@dataclass(frozen=True, slots=True)
class PostbackEvent:
    click_id: str
    goal: str
    payout: str | None
    params: tuple[tuple[str, str], ...]

    @property
    def payout_display(self) -> str:
        return self.payout if self.payout else PAYOUT_NOT_PROVIDED

    @property
    def payout_value(self) -> float | None:
        if not self.payout:
            return None
        try:
            return float(self.payout)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class Relayed:
    body: Any
    status_code: int
    success = True
    kind = "relayed"


@dataclass(frozen=True, slots=True)
class Fallback:
    body: dict[str, Any]
    reason: str
    success = True
    kind = "fallback"
    status_code = 200


RelayResult = Relayed | Fallback


def parse_postback_event(
    pairs: Iterable[tuple[str, str]],
    *,
    accept_aliases: bool = False,
) -> PostbackEvent:
    params = tuple((str(key), str(value)) for key, value in pairs)
    first_values: dict[str, str] = {}
    for key, value in params:
        first_values.setdefault(key, value)

    click_keys = CLICK_ID_KEYS + CLICK_ID_ALIASES if accept_aliases else CLICK_ID_KEYS
    goal_keys = GOAL_KEYS + GOAL_ALIASES if accept_aliases else GOAL_KEYS
    payout_keys = PAYOUT_KEYS + PAYOUT_ALIASES if accept_aliases else PAYOUT_KEYS

    click_id = _first_present(first_values, click_keys)
    if click_id is None:
        raise PostbackValidationError("Missing required parameter: click_id")

    return PostbackEvent(
        click_id=click_id,
        goal=_first_present(first_values, goal_keys) or DEFAULT_GOAL,
        payout=_first_present(first_values, payout_keys),
        params=params,
    )


def local_ack(event: PostbackEvent, *, include_payout: bool = False) -> dict[str, Any]:
    ack = PostbackAck(
        message=f"Conversion recorded for click_id {event.click_id}",
        clickId=event.click_id,
        goal=event.goal,
        payout=event.payout if include_payout else None,
    )
    return ack.model_dump(exclude_none=True)


class PostbackForwarder:
    """Relays a postback's query string to the downstream processing endpoint."""

    def __init__(
        self,
        downstream_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        retry_once: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.downstream_url = downstream_url.strip()
        self.timeout_seconds = timeout_seconds
        self.max_attempts = 2 if retry_once else 1
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["apikey"] = api_key
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._transport = transport

    def forward_url(self, event: PostbackEvent) -> str:
        try:
            return append_query(self.downstream_url, event.params)
        except ValueError as exc:
            raise ForwardingError(f"invalid downstream url: {exc}") from exc

    async def forward(self, event: PostbackEvent) -> Relayed:
        url = self.forward_url(event)
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await self._get_with_retry(client, url)

        try:
            payload = json.loads(response.content, parse_constant=_reject_non_finite)
        except ValueError as exc:
            raise ForwardingError(
                f"downstream returned non-JSON body status={response.status_code}"
            ) from exc

        logger.info("downstream response status=%s body=%s", response.status_code, payload)
        return Relayed(body=payload, status_code=response.status_code)

    async def _get_with_retry(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await client.get(url, headers=self.headers)
            except httpx.TransportError as exc:
                last_error = exc
                logger.warning(
                    "downstream transport error attempt=%s/%s error=%r",
                    attempt,
                    self.max_attempts,
                    exc,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise ForwardingError(f"downstream request failed: {exc!r}") from exc
        raise ForwardingError(f"downstream unreachable: {last_error!r}") from last_error


async def relay_postback(
    event: PostbackEvent,
    forwarder: PostbackForwarder | None,
    *,
    include_payout_in_ack: bool = False,
) -> RelayResult:
    with tracer.start_as_current_span("postback.forward") as span:
        span.set_attribute("postback.click_id", event.click_id)
        span.set_attribute("postback.goal", event.goal)

        if forwarder is None:
            result: RelayResult = Fallback(
                body=local_ack(event, include_payout=include_payout_in_ack),
                reason=FORWARDING_DISABLED,
            )
        else:
            logger.info("forwarding postback click_id=%s to %s", event.click_id, forwarder.downstream_url)
            try:
                result = await forwarder.forward(event)
            except ForwardingError as exc:
                logger.warning("error forwarding postback click_id=%s: %s", event.click_id, exc)
                result = Fallback(
                    body=local_ack(event, include_payout=include_payout_in_ack),
                    reason=str(exc),
                )

        span.set_attribute("postback.relay", result.kind)

    if isinstance(result, Relayed):
        logger.info("postback relayed click_id=%s status=%s", event.click_id, result.status_code)
    else:
        logger.info("postback fallback click_id=%s reason=%s", event.click_id, result.reason)
    return result


def get_forwarder(settings: Settings = Depends(get_settings)) -> PostbackForwarder | None:
    if not settings.downstream_url:
        return None
    return PostbackForwarder(
        settings.downstream_url,
        api_key=settings.downstream_api_key,
        timeout_seconds=settings.downstream_timeout_seconds,
        retry_once=settings.downstream_retry_once,
    )


def _first_present(values: dict[str, str], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = values.get(key)
        if value:
            return value
    return None


def _reject_non_finite(token: str) -> Any:
    raise ValueError(f"non-finite JSON number {token}")
