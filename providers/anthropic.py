"""
Anthropic Messages API adapter.

The message formatting and stream-event handling here are shared with the
Bedrock adapter, which speaks the same Messages format over boto3.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from agent.events import Chunk, ChunkEmitter, ErrorKind
from agent.history import ChatTurn
from agent.prompts import SYSTEM_INSTRUCTION
from providers.base import ProviderAdapter, StreamOptions
from providers.errors import ProviderError, classify_http_error
from providers.framing import SseDecoder
from providers.reassembler import NativeCallAccumulator
from tools.schemas import to_anthropic_tools

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
EMPTY_CONTENT = "(no content)"

# Stream error types -> HTTP status for classification
_ERROR_TYPE_STATUS = {
    "rate_limit_error": 429,
    "overloaded_error": 529,
    "invalid_request_error": 400,
    "request_too_large": 413,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "api_error": 500,
}


def format_anthropic_messages(turns: List[ChatTurn]) -> List[Dict[str, Any]]:
    """ChatTurns -> Messages API messages. Tool results ride in user turns as tool_result blocks."""
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        if turn.role == "tool" and turn.tool_result is not None:
            block: Dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": turn.tool_result.call_id,
                "content": turn.tool_result.to_json(),
            }
            if turn.tool_result.is_error:
                block["is_error"] = True
            last = messages[-1] if messages else None
            if last and last["role"] == "user" and isinstance(last["content"], list) \
                    and all(b.get("type") == "tool_result" for b in last["content"]):
                last["content"].append(block)
            else:
                messages.append({"role": "user", "content": [block]})
        elif turn.role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if turn.content.strip():
                blocks.append({"type": "text", "text": turn.content})
            for call in turn.tool_calls:
                blocks.append({"type": "tool_use", "id": call.call_id, "name": call.name, "input": call.arguments})
            messages.append({"role": "assistant", "content": blocks or [{"type": "text", "text": EMPTY_CONTENT}]})
        else:
            messages.append({"role": "user", "content": turn.content if turn.content.strip() else EMPTY_CONTENT})
    return messages


def build_anthropic_body(options: StreamOptions, turns: List[ChatTurn], max_tokens: int) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "max_tokens": max_tokens,
        "system": options.system_instruction or SYSTEM_INSTRUCTION,
        "messages": format_anthropic_messages(turns),
    }
    if options.tools:
        body["tools"] = to_anthropic_tools(options.tools)
    return body


class AnthropicStreamHandler:
    """Turns Messages stream events into chunks; tool_use input is accumulated per block index."""

    def __init__(self, emitter: ChunkEmitter, provider: str = "anthropic"):
        self.emitter = emitter
        self.provider = provider
        self.calls = NativeCallAccumulator(id_prefix="toolu")
        self.stop_reason: Optional[str] = None

    async def handle(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type", "")

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self.calls.add(index=event.get("index", 0), call_id=block.get("id"), name=block.get("name"))

        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type", "")
            if delta_type == "text_delta":
                await self.emitter.text(delta.get("text", ""))
            elif delta_type == "input_json_delta":
                self.calls.add(index=event.get("index", 0), arguments=delta.get("partial_json", ""))

        elif event_type == "message_delta":
            self.stop_reason = (event.get("delta") or {}).get("stop_reason") or self.stop_reason

        elif event_type == "error":
            err = event.get("error") or {}
            status = _ERROR_TYPE_STATUS.get(err.get("type", ""), 500)
            raise classify_http_error(status, json.dumps(event), self.provider)

    async def finish(self) -> None:
        for call in self.calls.finish():
            await self.emitter.emit(Chunk.function_call(call.name, call.arguments, call.call_id))
        if self.stop_reason == "max_tokens":
            logger.warning(f"{self.provider} response cut off at max_tokens")


class AnthropicAdapter(ProviderAdapter):
    provider_id = "anthropic"

    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        if not options.api_key:
            raise ProviderError("Anthropic API key is required", ErrorKind.BAD_REQUEST)
        model = self.model_for(options)
        body = build_anthropic_body(options, self.turns_with_prompt(prompt, options),
                                    self.max_tokens_for(options, model))
        body["model"] = model
        body["stream"] = True

        decoder = SseDecoder()
        handler = AnthropicStreamHandler(emitter, self.provider_id)

        async def on_text(raw: str) -> None:
            for event in decoder.feed_json(raw):
                await handler.handle(event)

        logger.info(f"Streaming from Anthropic model: {model}")
        await self.http_client().stream(
            f"{self.config['base_url']}messages", body, on_text,
            headers={
                "x-api-key": options.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            cancel_event=options.cancel_event,
            notify=emitter.text,
        )
        for event in decoder.flush_json():
            await handler.handle(event)
        await handler.finish()
