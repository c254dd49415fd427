from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, NoReturn
from urllib.parse import quote

import httpx
import structlog

from message_observer.adapters.http_util import parse_retry_after_seconds, timeouts_for
from message_observer.adapters.trigger.errors import (
    TriggerAuthError,
    TriggerError,
    TriggerNotFoundError,
    TriggerRateLimitError,
    TriggerServerError,
)

if TYPE_CHECKING:
    from message_observer.config.settings import Settings

log = structlog.get_logger(__name__)

# Failures that happen before any byte of the request is sent.
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


@dataclass(frozen=True, slots=True)
class _RetryPolicy:
    # "retry up to 3 times" => 1 initial attempt + 3 retries = 4 total attempts.
    max_retries: int = 3
    backoff_base_seconds: float = 0.2

    def backoff_seconds(self, attempt: int) -> float:
        # attempt is 0-based for *retry count* (i.e., after the first failure).
        return self.backoff_base_seconds * (2**attempt)


class TriggerClient:
    """
    HTTP client that fires the actions whose side-effect messages the observer waits for.

    GETs are retried on transport errors, 429 and 5xx. POSTs create things, so they
    are only retried when the request never left (connect and pool errors) or on 429.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth_token: str | None = None,
        timeout_seconds: float = 10.0,
        retry_policy: _RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        url = httpx.URL(base_url)
        if not url.scheme or not url.host:
            raise ValueError("base_url must include scheme and host, e.g. https://api.example")

        # Ensure a trailing slash to make httpx base_url joining unambiguous.
        base_path = url.path.rstrip("/") + "/"
        self._base_url = url.copy_with(path=base_path)

        self._sleep = sleep
        self._retry = retry_policy or _RetryPolicy()

        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = auth_token

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeouts_for(timeout_seconds),
            follow_redirects=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> TriggerClient:
        trigger = settings.trigger
        if trigger.api_base_url is None:
            raise ValueError("trigger.api_base_url is required (set API_BASE_URL)")
        token = trigger.auth_token.get_secret_value() if trigger.auth_token else None
        return cls(
            base_url=str(trigger.api_base_url),
            auth_token=token,
            timeout_seconds=trigger.timeout_seconds,
            retry_policy=_RetryPolicy(max_retries=trigger.max_retries),
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> TriggerClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: Any,
    ) -> None:
        await self.aclose()

    async def place_order(self, restaurant_name: str) -> Any:
        """POST restaurants/{name}/orders; returns the decoded JSON body (e.g. the orderId)."""
        path = f"restaurants/{quote(restaurant_name, safe='')}/orders"
        return await self.post_json(path, {})

    async def post_json(self, path: str, payload: Any) -> Any:
        return await self._request_json("POST", path, json=payload)

    async def get_json(self, path: str, *, params: dict[str, str] | None = None) -> Any:
        return await self._request_json("GET", path, params=params)

    async def _request_json(
        self,
        method: Literal["GET", "POST"],
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any | None = None,
    ) -> Any:
        response = await self._request(method, path, params=params, json=json)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TriggerError(
                f"Invalid JSON (status={response.status_code}) at {response.request.url!s}"
            ) from exc

    async def _request(
        self,
        method: Literal["GET", "POST"],
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        # Total attempts = 1 initial + max_retries
        max_attempts = self._retry.max_retries + 1
        retry_count = 0

        while True:
            try:
                response = await self._http.request(method, path, params=params, json=json)
            except httpx.TransportError as exc:
                if method == "POST" and not isinstance(exc, _NOT_SENT_ERRORS):
                    raise TriggerServerError(
                        f"{exc.__class__.__name__} after the request was sent to {path}; not retried"
                    ) from exc
                if retry_count >= self._retry.max_retries:
                    raise TriggerServerError(
                        f"Network error after {max_attempts} attempts at {path}"
                    ) from exc
                log.warning("trigger.retrying", path=path, reason=exc.__class__.__name__)
                await self._sleep(self._retry.backoff_seconds(retry_count))
                retry_count += 1
                continue

            retry_delay = self._retry_delay_for_response(
                response,
                method=method,
                retry_count=retry_count,
                max_attempts=max_attempts,
            )
            if retry_delay is not None:
                log.warning("trigger.retrying", path=path, status=response.status_code)
                await self._sleep(retry_delay)
                retry_count += 1
                continue

            if 200 <= response.status_code < 300:
                return response

            self._raise_for_status(response)

    def _retry_delay_for_response(
        self,
        response: httpx.Response,
        *,
        method: str,
        retry_count: int,
        max_attempts: int,
    ) -> float | None:
        status = response.status_code
        if status >= 500:
            if method == "POST":
                raise TriggerServerError(f"Server error (status={status}); POST not retried")
            if retry_count >= self._retry.max_retries:
                raise TriggerServerError(
                    f"Server error (status={status}) after {max_attempts} attempts"
                )
            return self._retry.backoff_seconds(retry_count)
        if status == 429:
            if retry_count >= self._retry.max_retries:
                raise TriggerRateLimitError(
                    f"Rate limited (status=429) after {max_attempts} attempts"
                )
            retry_after = parse_retry_after_seconds(response.headers.get("Retry-After"))
            return retry_after or self._retry.backoff_seconds(retry_count)
        return None

    def _raise_for_status(self, response: httpx.Response) -> NoReturn:
        status = response.status_code
        url = str(response.request.url)

        if status in (401, 403):
            raise TriggerAuthError(f"Auth failed (status={status}) at {url}")
        if status == 404:
            raise TriggerNotFoundError(f"Action endpoint not found (status=404) at {url}")
        if status >= 400:
            raise TriggerError(f"Client error (status={status}) at {url}")

        raise TriggerError(f"Unexpected HTTP status={status} at {url}")
