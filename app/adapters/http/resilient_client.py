import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from app.core.errors import (
    AuthenticationError,
    MalformedResponseError,
    ProviderError,
    RateLimitedError,
    TransportError,
    UnknownProviderError,
)
from app.domain.models import AttemptEvent, ProviderRequest
from app.ports.attempt_observer_port import AttemptObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
BASE_DELAY_S = 1.0
MAX_JITTER_S = 0.5

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
# Extra margin on top of a provider-supplied retryDelay
RETRY_INFO_MARGIN_S = 1.0

AUTH_MARKERS = ("permission_denied", "unregistered callers", "api key not valid")


class LoggingAttemptObserver(AttemptObserver):
    def on_attempt(self, event: AttemptEvent) -> None:
        if event.success:
            logger.info(
                "%s %s attempt %d succeeded in %.0fms",
                event.provider, event.operation, event.attempt, event.latency_ms
            )
        else:
            logger.warning(
                "%s %s attempt %d failed (%s, status=%s) after %.0fms",
                event.provider, event.operation, event.attempt,
                event.error_kind, event.status_code, event.latency_ms
            )


def _parse_duration(value: Any) -> Optional[float]:
    # google.protobuf.Duration JSON form: "4s", "4.815910382s"
    text = str(value or "").strip().lower()
    if not text.endswith("s"):
        return None
    try:
        return float(text[:-1])
    except ValueError:
        return None


def parse_retry_hint(response: httpx.Response) -> Optional[float]:
    """
    Seconds the provider asked us to wait, from the Retry-After header
    (delta-seconds or HTTP date) or a google.rpc.RetryInfo error detail.
    """
    header = response.headers.get("retry-after")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            try:
                when = parsedate_to_datetime(header)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                if when.tzinfo is None:
                    when = when.replace(tzinfo=timezone.utc)
                return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return None

    for detail in payload["error"].get("details") or []:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
            seconds = _parse_duration(detail.get("retryDelay"))
            if seconds is not None:
                return seconds + RETRY_INFO_MARGIN_S
    return None


class ResilientClient:
    """
    Posts a ProviderRequest and turns the JSON body into a result with
    `extract`, retrying failed attempts.

    Every failure is classified into a ProviderError subclass. Rate limits
    wait for the provider's retry hint when there is one; everything else
    uses exponential backoff with jitter. The last error is raised once the
    attempt budget is spent. Cancellation propagates out of any await.
    """
    def __init__(
        self,
        http: httpx.AsyncClient,
        provider: str,
        max_attempts: int = MAX_ATTEMPTS,
        max_retry_delay_s: float = 60.0,
        observer: Optional[AttemptObserver] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._http = http
        self.provider = provider
        self.max_attempts = max_attempts
        self.max_retry_delay_s = max_retry_delay_s
        self.observer = observer or LoggingAttemptObserver()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        return (2 ** attempt) * BASE_DELAY_S + self._rng.uniform(0, MAX_JITTER_S)

    def retry_delay(self, error: ProviderError, attempt: int) -> float:
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            delay = error.retry_after
        else:
            delay = self.backoff_delay(attempt)
        return min(delay, self.max_retry_delay_s)

    async def invoke(self, request: ProviderRequest, extract: Callable[[Any], T]) -> T:
        last_error: Optional[ProviderError] = None

        for attempt in range(self.max_attempts):
            started = time.perf_counter()
            try:
                result = await self._attempt(request, extract)
            except ProviderError as exc:
                self._emit(request, attempt, started, exc)
                last_error = exc
                if attempt == self.max_attempts - 1:
                    break
                delay = self.retry_delay(exc, attempt)
                logger.warning(
                    "%s %s attempt %d/%d failed: %s. Retrying in %.2fs",
                    self.provider, request.operation, attempt + 1, self.max_attempts, exc, delay
                )
                await self._sleep(delay)
                continue

            self._emit(request, attempt, started, None)
            return result

        logger.error(
            "%s %s failed after %d attempts: %s",
            self.provider, request.operation, self.max_attempts, last_error
        )
        raise last_error

    async def _attempt(self, request: ProviderRequest, extract: Callable[[Any], T]) -> T:
        try:
            response = await self._http.post(request.url, json=request.payload, headers=request.headers)
        except httpx.TransportError as exc:
            raise TransportError(f"{self.provider} request failed: {type(exc).__name__}: {exc}") from exc

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                f"{self.provider} rate limit reached",
                retry_after=parse_retry_hint(response),
            )

        if not response.is_success:
            body = response.text
            if status in (401, 403) or any(m in body.lower() for m in AUTH_MARKERS):
                raise AuthenticationError(
                    f"{self.provider} authentication failed. Verify the API key and its permissions. "
                    f"Error: {body[:500]}",
                    status,
                )
            raise UnknownProviderError(f"{self.provider} API error {status}: {body[:500]}", status)

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{self.provider} returned a non-JSON body", status) from exc

        try:
            return extract(body)
        except ProviderError:
            raise
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedResponseError(
                f"{self.provider} response did not have the expected shape: {exc}", status
            ) from exc

    def _emit(self, request: ProviderRequest, attempt: int, started: float, error: Optional[ProviderError]) -> None:
        event = AttemptEvent(
            provider=self.provider,
            operation=request.operation,
            attempt=attempt + 1,
            success=error is None,
            latency_ms=(time.perf_counter() - started) * 1000.0,
            error_kind=error.kind.value if error is not None else None,
            status_code=error.status_code if error is not None else None,
        )
        self.observer.on_attempt(event)
