"""HTTP error classification and retry policy."""

from agent.events import ErrorKind
from providers.errors import ProviderError, classify_http_error, extract_error_message, extract_wait_hint
from providers.transport import RetryPolicy


def test_rate_limit():
    """429 is RATE_LIMIT with the server's wait hint plus margin."""
    err = classify_http_error(429, '{"error": {"message": "Please try again in 1.5s"}}', "groq")
    assert err.kind == ErrorKind.RATE_LIMIT
    assert err.retry_after == 2.0


def test_retry_after_header():
    """Retry-After is used when the body has no hint."""
    err = classify_http_error(429, "slow down", "grok", retry_after_header="7")
    assert err.retry_after == 7.0


def test_context_exhausted_phrases():
    """400/413 with context phrases mean the request no longer fits."""
    body = '{"error": {"message": "This model\'s maximum context length is 8192 tokens"}}'
    assert classify_http_error(400, body).kind == ErrorKind.CONTEXT_EXHAUSTED
    assert classify_http_error(413, "too big").kind == ErrorKind.CONTEXT_EXHAUSTED
    assert classify_http_error(400, "RESOURCE_EXHAUSTED").kind == ErrorKind.CONTEXT_EXHAUSTED


def test_other_statuses():
    """Plain 4xx are BAD_REQUEST, 408 is TIMEOUT, 5xx is TRANSPORT."""
    assert classify_http_error(400, '{"error": {"message": "bad field"}}').kind == ErrorKind.BAD_REQUEST
    assert classify_http_error(401, "nope").kind == ErrorKind.BAD_REQUEST
    assert classify_http_error(404, "missing").kind == ErrorKind.BAD_REQUEST
    assert classify_http_error(422, "invalid").kind == ErrorKind.BAD_REQUEST
    assert classify_http_error(408, "slow").kind == ErrorKind.TIMEOUT
    assert classify_http_error(503, "down").kind == ErrorKind.TRANSPORT


def test_error_message_unwrapped():
    """{error: {message}} bodies are unwrapped into the message."""
    err = classify_http_error(400, '{"error": {"message": "bad field", "type": "invalid"}}', "deepseek")
    assert str(err) == "Bad request: bad field"
    assert extract_error_message('[{"error": {"message": "inner"}}]') == "inner"
    assert extract_error_message("plain text") == "plain text"


def test_wait_hint_milliseconds():
    """Millisecond hints are converted to seconds."""
    assert extract_wait_hint("try again in 500ms") == 1.0
    assert extract_wait_hint("no hint") is None


def test_retry_policy():
    """Rate limits and network errors retry; HTTP 5xx only when enabled."""
    policy = RetryPolicy(max_attempts=3, backoff=2.0, network_backoff=1.0)
    rate = ProviderError("429", ErrorKind.RATE_LIMIT, 429)
    network = ProviderError("reset", ErrorKind.TRANSPORT)
    server = ProviderError("500", ErrorKind.TRANSPORT, 500)
    bad = ProviderError("400", ErrorKind.BAD_REQUEST, 400)

    assert policy.should_retry(rate, 0)
    assert not policy.should_retry(rate, 2)
    assert policy.should_retry(network, 1)
    assert not policy.should_retry(server, 0)
    assert RetryPolicy(max_attempts=3, retry_server_errors=True).should_retry(server, 0)
    assert not policy.should_retry(bad, 0)

    assert policy.delay_for(rate, 1) == 4.0
    assert policy.delay_for(network, 1) == 2.0
    assert RetryPolicy(fixed_rate_limit_wait=65.0).delay_for(rate, 0) == 65.0
    hinted = ProviderError("429", ErrorKind.RATE_LIMIT, 429, retry_after=3.5)
    assert RetryPolicy(fixed_rate_limit_wait=65.0).delay_for(hinted, 0) == 3.5
