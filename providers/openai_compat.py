"""
OpenAI-compatible chat completions adapter: Groq, Grok (xAI), DeepSeek, Moonshot.

Native mode sends OpenAI `tools` and accumulates `delta.tool_calls` by index.
Inline mode (Moonshot, optional) describes the tools in the system prompt and
reassembles `TOOL_CALL: {...}` lines from the text stream.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from agent.events import Chunk, ChunkEmitter, ErrorKind
from agent.history import ChatTurn
from agent.prompts import SYSTEM_INSTRUCTION, compose_system_prompt
from config import provider_settings
from providers.base import ProviderAdapter, StreamOptions
from providers.errors import ProviderError, classify_http_error
from providers.framing import SseDecoder
from providers.reassembler import NativeCallAccumulator, StreamReassembler
from providers.transport import RetryPolicy
from tools.schemas import describe_tools, to_openai_tools

logger = logging.getLogger(__name__)

OPENAI_COMPATIBLE_PROVIDERS = ("groq", "grok", "deepseek", "moonshot")


def render_inline_call(name: str, arguments: Dict[str, Any]) -> str:
    return "TOOL_CALL: " + json.dumps({"name": name, "arguments": arguments})


class OpenAICompatAdapter(ProviderAdapter):

    def __init__(self, provider_id: str, transport: Optional[httpx.AsyncBaseTransport] = None,
                 retry: Optional[RetryPolicy] = None, inline_tools: Optional[bool] = None):
        if provider_id not in OPENAI_COMPATIBLE_PROVIDERS:
            raise ValueError(f"Not an OpenAI-compatible provider: {provider_id}")
        self.provider_id = provider_id
        super().__init__(transport, retry)
        if inline_tools is None:
            inline_tools = provider_id == "moonshot" and provider_settings.moonshot_inline_tools
        self.inline_tools = inline_tools

    def build_messages(self, turns: List[ChatTurn], options: StreamOptions) -> List[Dict[str, Any]]:
        system = options.system_instruction or SYSTEM_INSTRUCTION
        if self.inline_tools and options.tools:
            system = compose_system_prompt(system, catalog=describe_tools(options.tools))
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]

        for turn in turns:
            if turn.role == "tool" and turn.tool_result is not None:
                if self.inline_tools:
                    messages.append({
                        "role": "user",
                        "content": f"Result of {turn.tool_result.name}:\n{turn.tool_result.to_json()}",
                    })
                else:
                    messages.append({
                        "role": "tool",
                        "tool_call_id": turn.tool_result.call_id,
                        "content": turn.tool_result.to_json(),
                    })
            elif turn.role == "assistant":
                if self.inline_tools:
                    lines = [turn.content] if turn.content else []
                    lines.extend(render_inline_call(c.name, c.arguments) for c in turn.tool_calls)
                    messages.append({"role": "assistant", "content": "\n".join(lines)})
                elif turn.tool_calls:
                    messages.append({
                        "role": "assistant",
                        "content": turn.content or None,
                        "tool_calls": [
                            {
                                "id": c.call_id,
                                "type": "function",
                                "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                            }
                            for c in turn.tool_calls
                        ],
                    })
                else:
                    messages.append({"role": "assistant", "content": turn.content})
            else:
                messages.append({"role": "user", "content": turn.content})
        return messages

    def build_request(self, options: StreamOptions, turns: List[ChatTurn], model: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model,
            "messages": self.build_messages(turns, options),
            "stream": True,
            "temperature": 0.7,
            "max_tokens": self.max_tokens_for(options, model),
        }
        if options.tools and not self.inline_tools:
            body["tools"] = to_openai_tools(options.tools)
            body["tool_choice"] = "auto"
        return body

    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        if not options.api_key:
            raise ProviderError(f"{self.config.get('name', self.provider_id)} API key is required",
                                ErrorKind.BAD_REQUEST)
        model = self.model_for(options)
        body = self.build_request(options, self.turns_with_prompt(prompt, options), model)
        url = f"{self.config['base_url']}chat/completions"

        decoder = SseDecoder()
        accumulator = NativeCallAccumulator(id_prefix="call")
        reassembler = self.make_reassembler(options) if self.inline_tools else None
        state = {"finish_reason": None}

        async def handle(events: List[Dict[str, Any]]) -> None:
            for event in events:
                await self._handle_event(event, emitter, accumulator, reassembler, state)

        async def on_text(raw: str) -> None:
            await handle(decoder.feed_json(raw))

        logger.info(f"Streaming from {self.provider_id} model: {model} (inline tools: {self.inline_tools})")
        await self.http_client().stream(
            url, body, on_text,
            headers={"Authorization": f"Bearer {options.api_key}", "Content-Type": "application/json"},
            cancel_event=options.cancel_event,
            notify=emitter.text,
        )
        await handle(decoder.flush_json())

        if reassembler is not None:
            for chunk in reassembler.finish():
                await emitter.emit(chunk)
        await self.emit_calls(emitter, accumulator.finish())
        logger.debug(f"{self.provider_id} turn finished: {state['finish_reason']}")

    async def _handle_event(self, event: Dict[str, Any], emitter: ChunkEmitter,
                            accumulator: NativeCallAccumulator,
                            reassembler: Optional[StreamReassembler],
                            state: Dict[str, Any]) -> None:
        if event.get("error"):
            err = event["error"]
            status = int(err.get("code") or 500) if isinstance(err, dict) and str(err.get("code", "")).isdigit() else 500
            raise classify_http_error(status, json.dumps(event), self.provider_id)

        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                if reassembler is not None:
                    for chunk in reassembler.feed(content):
                        await emitter.emit(chunk)
                else:
                    await emitter.emit(Chunk.text(content))
            for tc in delta.get("tool_calls") or []:
                fn = tc.get("function") or {}
                accumulator.add(
                    index=tc.get("index", 0),
                    call_id=tc.get("id"),
                    name=fn.get("name"),
                    arguments=fn.get("arguments"),
                )
            if choice.get("finish_reason"):
                state["finish_reason"] = choice["finish_reason"]
