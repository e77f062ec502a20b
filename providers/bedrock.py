"""
Amazon Bedrock adapter.
Claude models through invoke_model_with_response_stream, using the Anthropic
Messages format shared with providers.anthropic.
"""

import asyncio
import functools
import json
import logging
import queue
import threading
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, PartialCredentialsError

from agent.events import ChunkEmitter, ErrorKind
from config import app_config, aws_config
from providers.anthropic import AnthropicStreamHandler, build_anthropic_body
from providers.base import ProviderAdapter, StreamOptions
from providers.errors import CONTEXT_LIMIT_PHRASES, ProviderError
from providers.transport import sleep_or_cancel

logger = logging.getLogger(__name__)

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
_QUEUE_POLL_SECONDS = 0.5
_STREAM_DONE = object()

_THROTTLE_CODES = {"ThrottlingException", "TooManyRequestsException", "ServiceQuotaExceededException"}
_CREDENTIAL_CODES = {"ExpiredTokenException", "InvalidSignatureException", "UnrecognizedClientException",
                     "AccessDeniedException"}


def classify_client_error(e: ClientError) -> ProviderError:
    """Map a botocore ClientError onto the provider error taxonomy."""
    code = e.response.get("Error", {}).get("Code", "Unknown")
    message = e.response.get("Error", {}).get("Message", str(e))
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if code in _THROTTLE_CODES:
        return ProviderError(f"Rate limit exceeded (bedrock): {message}", ErrorKind.RATE_LIMIT, status or 429)
    if code in _CREDENTIAL_CODES:
        return ProviderError(f"AWS credentials rejected ({code}): {message}", ErrorKind.BAD_REQUEST, status)
    if code == "ModelTimeoutException":
        return ProviderError(f"Bedrock model timed out: {message}", ErrorKind.TIMEOUT, status)
    if code == "ValidationException":
        lower = message.lower()
        # Bedrock words it "Input is too long for requested model"
        if "too long" in lower or any(phrase in lower for phrase in CONTEXT_LIMIT_PHRASES):
            return ProviderError(f"Context limit reached: {message}", ErrorKind.CONTEXT_EXHAUSTED, status)
        return ProviderError(f"Bad request: {message}", ErrorKind.BAD_REQUEST, status)
    return ProviderError(f"Bedrock API error ({code}): {message}", ErrorKind.TRANSPORT, status)


class BedrockAdapter(ProviderAdapter):
    provider_id = "bedrock"

    def __init__(self, *args, client: Any = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> Any:
        """Create the Bedrock runtime client from the configured AWS credentials"""
        session_kwargs: Dict[str, Any] = {"region_name": aws_config.region}
        if aws_config.has_profile():
            session_kwargs["profile_name"] = aws_config.profile_name
        elif aws_config.has_explicit_credentials():
            session_kwargs["aws_access_key_id"] = aws_config.access_key_id
            session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
            if aws_config.has_session_token():
                session_kwargs["aws_session_token"] = aws_config.session_token
        try:
            return boto3.Session(**session_kwargs).client("bedrock-runtime")
        except (NoCredentialsError, PartialCredentialsError):
            raise ProviderError("AWS credentials not configured.", ErrorKind.BAD_REQUEST)
        except BotoCoreError as e:
            raise ProviderError(f"Failed to initialize Bedrock client: {e}", ErrorKind.BAD_REQUEST)

    @staticmethod
    def model_identifier(model_id: str, region: str) -> str:
        """Cross-region inference profile id for bare anthropic.* model ids."""
        if model_id.startswith(("us.", "eu.", "ap.")) or not model_id.startswith("anthropic."):
            return model_id
        prefix = "eu" if region.startswith("eu-") else "ap" if region.startswith("ap-") else "us"
        return f"{prefix}.{model_id}"

    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        model = self.model_for(options)
        body = build_anthropic_body(options, self.turns_with_prompt(prompt, options),
                                    self.max_tokens_for(options, model))
        body["anthropic_version"] = BEDROCK_ANTHROPIC_VERSION
        model_identifier = self.model_identifier(model, aws_config.region)

        max_retries = max(1, app_config.stream_max_retries)
        retry_backoff = app_config.stream_retry_backoff
        for attempt in range(1, max_retries + 1):
            handler = AnthropicStreamHandler(emitter, self.provider_id)
            delivered = {"any": False}
            try:
                await self._consume(model_identifier, body, handler, options.cancel_event, delivered)
                await handler.finish()
                return
            except ProviderError as e:
                if delivered["any"] or not e.retryable or attempt >= max_retries:
                    raise
                delay = e.retry_after or attempt * retry_backoff
                logger.warning(f"Bedrock attempt {attempt}/{max_retries} failed: {e}. Retrying in {delay:.1f}s")
                if e.kind == ErrorKind.RATE_LIMIT:
                    await emitter.text(
                        f"\n\n⏳ Rate limit reached. Waiting {delay:.0f}s before retrying "
                        f"({attempt + 1}/{max_retries})...\n\n"
                    )
                if await sleep_or_cancel(delay, options.cancel_event):
                    raise ProviderError("Request cancelled", ErrorKind.CANCELLED)

    async def _consume(self, model_identifier: str, body: Dict[str, Any], handler: AnthropicStreamHandler,
                       cancel_event: Optional[asyncio.Event], delivered: Dict[str, bool]) -> None:
        """Drain the boto3 event stream from a producer thread through a queue."""
        chunk_queue: queue.Queue = queue.Queue()
        client = self.client

        def _stream_producer():
            """Run the blocking stream in a background thread, forwarding events to the queue."""
            try:
                response = client.invoke_model_with_response_stream(
                    modelId=model_identifier,
                    body=json.dumps(body),
                    contentType="application/json",
                    accept="application/json",
                )
                for event in response["body"]:
                    if "chunk" in event:
                        chunk_queue.put(json.loads(event["chunk"]["bytes"]))
                chunk_queue.put(_STREAM_DONE)
            except Exception as exc:
                chunk_queue.put(exc)

        logger.info(f"Streaming from Bedrock model: {model_identifier}")
        threading.Thread(target=_stream_producer, daemon=True).start()

        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.deadline
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise ProviderError("Request cancelled", ErrorKind.CANCELLED)
            if loop.time() > deadline:
                raise ProviderError(f"Request timed out ({self.deadline:.0f}s) waiting for bedrock", ErrorKind.TIMEOUT)
            try:
                item = await loop.run_in_executor(None, functools.partial(chunk_queue.get, timeout=_QUEUE_POLL_SECONDS))
            except queue.Empty:
                continue
            if item is _STREAM_DONE:
                return
            if isinstance(item, ClientError):
                raise classify_client_error(item)
            if isinstance(item, (NoCredentialsError, PartialCredentialsError)):
                raise ProviderError("AWS credentials not configured.", ErrorKind.BAD_REQUEST)
            if isinstance(item, BotoCoreError):
                raise ProviderError(f"Bedrock connection error: {item}", ErrorKind.TRANSPORT)
            if isinstance(item, Exception):
                raise item
            delivered["any"] = True
            await handler.handle(item)
