"""Provider error taxonomy and HTTP error classification."""

import json
import re
from typing import Optional

from agent.events import ErrorKind

# 400 bodies that mean "the request no longer fits"; the session is resumed
# in a fresh continuation instead of failing
CONTEXT_LIMIT_PHRASES = (
    "context length", "token limit", "maximum context", "resource_exhausted",
    "input too long", "context window", "exceeded", "too many requests",
    "rate limit exceeded", "quota exceeded", "resource exhausted",
    "service unavailable", "temporarily unavailable", "try again later",
    "please try again",
)

_WAIT_HINT_RE = re.compile(r"try again in (\d+(?:\.\d+)?)\s*(ms|s)?", re.IGNORECASE)

_BODY_LIMIT = 1000


class ProviderError(Exception):
    """Failure talking to a provider, tagged with its ErrorKind"""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSPORT,
                 status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.TRANSPORT, ErrorKind.RATE_LIMIT)


def extract_error_message(body: str) -> str:
    """Unwrap {"error": {"message": ...}} bodies; otherwise return the (truncated) text."""
    text = (body or "")[:_BODY_LIMIT]
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return text
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])[:_BODY_LIMIT]
        if isinstance(err, str) and err:
            return err[:_BODY_LIMIT]
        if data.get("message"):
            return str(data["message"])[:_BODY_LIMIT]
    return text


def extract_wait_hint(body: str, retry_after_header: Optional[str] = None) -> Optional[float]:
    """Seconds to wait before retrying, from 'try again in 1.5s' text or a Retry-After header.

    The text hint gets a 0.5s safety margin.
    """
    match = _WAIT_HINT_RE.search(body or "")
    if match:
        value = float(match.group(1))
        if (match.group(2) or "s").lower() == "ms":
            value /= 1000.0
        return value + 0.5
    if retry_after_header:
        try:
            return max(0.0, float(retry_after_header))
        except ValueError:
            return None
    return None


def classify_http_error(status: int, body: str, provider: str = "",
                        retry_after_header: Optional[str] = None) -> ProviderError:
    """Map an HTTP failure to a ProviderError of the right kind."""
    message = extract_error_message(body)
    label = f"{provider} " if provider else ""

    if status == 429:
        return ProviderError(
            f"Rate limit exceeded ({label}429): {message}",
            ErrorKind.RATE_LIMIT, status,
            retry_after=extract_wait_hint(body, retry_after_header),
        )
    if status in (400, 413):
        lower = message.lower()
        if status == 413 or any(phrase in lower for phrase in CONTEXT_LIMIT_PHRASES):
            return ProviderError(f"Context limit reached: {message}", ErrorKind.CONTEXT_EXHAUSTED, status)
        return ProviderError(f"Bad request: {message}", ErrorKind.BAD_REQUEST, status)
    if status == 408:
        return ProviderError(f"Request timed out ({label}408): {message}", ErrorKind.TIMEOUT, status)
    if status >= 500:
        return ProviderError(f"{label}API error {status}: {message}", ErrorKind.TRANSPORT, status)
    return ProviderError(f"{label}API error {status}: {message}", ErrorKind.BAD_REQUEST, status)
