"""
Streaming HTTP transport shared by the provider adapters.

One POST per model turn, retried on rate limits and network failures before
any body text has been delivered, bounded by a per-attempt deadline and
abandoned as soon as the cancel event fires.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from agent.events import ErrorKind
from config import app_config
from providers.errors import ProviderError, classify_http_error

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], Awaitable[None]]

_CONNECT_TIMEOUT = 10.0


async def sleep_or_cancel(seconds: float, cancel_event: Optional[asyncio.Event] = None) -> bool:
    """Sleep for `seconds`; returns True if the cancel event fired first."""
    if seconds <= 0:
        return bool(cancel_event and cancel_event.is_set())
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


def _cancelled_error() -> ProviderError:
    return ProviderError("Request cancelled", ErrorKind.CANCELLED)


@dataclass
class RetryPolicy:
    """When and how long to wait before re-sending a failed request.

    attempt is zero-based. Rate limits honor the server's wait hint, then
    fixed_rate_limit_wait, then (attempt + 1) * backoff. Network failures wait
    (attempt + 1) * network_backoff.
    """
    max_attempts: int = field(default_factory=lambda: app_config.stream_max_retries)
    backoff: float = field(default_factory=lambda: app_config.stream_retry_backoff)
    network_backoff: float = 1.0
    fixed_rate_limit_wait: Optional[float] = None
    retry_server_errors: bool = False

    def should_retry(self, error: ProviderError, attempt: int) -> bool:
        if attempt + 1 >= self.max_attempts:
            return False
        if error.kind == ErrorKind.RATE_LIMIT:
            return True
        if error.kind == ErrorKind.TRANSPORT:
            return error.status is None or self.retry_server_errors
        return False

    def delay_for(self, error: ProviderError, attempt: int) -> float:
        if error.kind == ErrorKind.RATE_LIMIT:
            if error.retry_after is not None:
                return error.retry_after
            if self.fixed_rate_limit_wait is not None:
                return self.fixed_rate_limit_wait
            return (attempt + 1) * self.backoff
        if error.status is None:
            return (attempt + 1) * self.network_backoff
        return (attempt + 1) * self.backoff


class HttpStreamClient:
    """POSTs a JSON body and feeds the decoded response text to a callback."""

    def __init__(
        self,
        provider: str,
        deadline: float,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.deadline = deadline
        self.retry = retry or RetryPolicy()
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        total = timeout or self.deadline
        return httpx.AsyncClient(
            timeout=httpx.Timeout(total, connect=min(_CONNECT_TIMEOUT, total)),
            transport=self._transport,
        )

    async def stream(
        self,
        url: str,
        payload: Dict[str, Any],
        on_text: TextCallback,
        headers: Optional[Dict[str, str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        notify: Optional[TextCallback] = None,
    ) -> None:
        """Send the request, retrying per the policy, and stream the body into on_text.

        Raises ProviderError. notify receives a user-facing line before each
        rate-limit wait.
        """
        policy = self.retry
        for attempt in range(policy.max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise _cancelled_error()

            state = {"received": False}
            try:
                await self._bounded(
                    self._attempt(url, payload, headers, on_text, cancel_event, state),
                    cancel_event,
                )
                return
            except ProviderError as e:
                error = e

            if state["received"] or not policy.should_retry(error, attempt):
                raise error

            delay = policy.delay_for(error, attempt)
            logger.warning(
                f"{self.provider} attempt {attempt + 1}/{policy.max_attempts} failed "
                f"({error.kind.value}): {error}. Retrying in {delay:.1f}s"
            )
            if notify is not None and error.kind == ErrorKind.RATE_LIMIT:
                await notify(
                    f"\n\n⏳ Rate limit reached. Waiting {delay:.0f}s before retrying "
                    f"({attempt + 2}/{policy.max_attempts})...\n\n"
                )
            if await sleep_or_cancel(delay, cancel_event):
                raise _cancelled_error()

    async def _attempt(self, url, payload, headers, on_text, cancel_event, state) -> None:
        try:
            async with self._client() as client:
                request = client.build_request("POST", url, json=payload, headers=headers)
                response = await client.send(request, stream=True)
                try:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"{self.provider} HTTP {response.status_code}: {body[:500]}")
                        raise classify_http_error(
                            response.status_code, body, self.provider,
                            response.headers.get("retry-after"),
                        )
                    async for text in response.aiter_text():
                        if cancel_event is not None and cancel_event.is_set():
                            raise _cancelled_error()
                        if text:
                            state["received"] = True
                            await on_text(text)
                finally:
                    await response.aclose()
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.provider} request timed out: {e}", ErrorKind.TIMEOUT)
        except httpx.RequestError as e:
            if state["received"]:
                raise ProviderError(f"Connection to {self.provider} lost mid-stream: {e}", ErrorKind.TRANSPORT)
            raise ProviderError(f"Network error contacting {self.provider}: {e}", ErrorKind.TRANSPORT)

    async def _bounded(self, coro, cancel_event: Optional[asyncio.Event]) -> None:
        """Run one attempt under the deadline, abandoning it if the cancel event fires."""
        task = asyncio.ensure_future(coro)
        waiters = {task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)
        try:
            done, _ = await asyncio.wait(waiters, timeout=self.deadline, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if task in done:
            task.result()
            return

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, ProviderError):
            pass
        if cancel_task is not None and cancel_task in done:
            raise _cancelled_error()
        raise ProviderError(
            f"Request timed out ({self.deadline:.0f}s) waiting for {self.provider}",
            ErrorKind.TIMEOUT,
        )

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None,
                       timeout: float = 10.0) -> Any:
        """Plain GET returning decoded JSON; used for model listings."""
        try:
            async with self._client(timeout) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise classify_http_error(e.response.status_code, e.response.text, self.provider)
        except httpx.RequestError as e:
            raise ProviderError(f"Network error contacting {self.provider}: {e}", ErrorKind.TRANSPORT)
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from {self.provider}: {e}", ErrorKind.TRANSPORT)
