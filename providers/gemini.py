"""Google Gemini adapter (native function calling, streamed JSON array)."""

import json
import logging
from typing import Any, Dict, List

from agent.events import Chunk, ChunkEmitter, ErrorKind
from agent.history import ChatTurn
from agent.prompts import SYSTEM_INSTRUCTION
from config import get_model_by_id
from providers.base import ProviderAdapter, StreamOptions
from providers.errors import ProviderError, classify_http_error
from providers.framing import JsonObjectStreamDecoder
from providers.reassembler import StreamReassembler, make_call_id
from providers.transport import HttpStreamClient, RetryPolicy
from tools.schemas import to_gemini_tools

logger = logging.getLogger(__name__)

# Free-tier quotas reset per minute
RATE_LIMIT_WAIT_SECONDS = 65.0
DEFAULT_THINKING_BUDGET = 8192


class GeminiAdapter(ProviderAdapter):
    provider_id = "gemini"

    def http_client(self) -> HttpStreamClient:
        retry = self._retry or RetryPolicy(fixed_rate_limit_wait=RATE_LIMIT_WAIT_SECONDS)
        return HttpStreamClient(self.provider_id, self.deadline, retry, self._transport)

    def build_contents(self, turns: List[ChatTurn]) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for turn in turns:
            if turn.role == "tool" and turn.tool_result is not None:
                part = {"functionResponse": {
                    "name": turn.tool_result.name,
                    "response": {"result": turn.tool_result.payload},
                }}
                # consecutive results share one user turn
                if contents and contents[-1]["role"] == "user" and "functionResponse" in contents[-1]["parts"][0]:
                    contents[-1]["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
            elif turn.role == "assistant":
                parts: List[Dict[str, Any]] = []
                if turn.content:
                    parts.append({"text": turn.content})
                for call in turn.tool_calls:
                    part = {"functionCall": {"name": call.name, "args": call.arguments}}
                    # thought signatures must be echoed back with their functionCall part
                    signature = call.metadata.get("thoughtSignature")
                    if signature:
                        part["thoughtSignature"] = signature
                    parts.append(part)
                if parts:
                    contents.append({"role": "model", "parts": parts})
            elif turn.content:
                contents.append({"role": "user", "parts": [{"text": turn.content}]})
        return contents

    def build_request(self, options: StreamOptions, turns: List[ChatTurn], model: str) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": 0.7,
            "topP": 0.95,
            "maxOutputTokens": self.max_tokens_for(options, model),
        }
        if "gemini-3" in model:
            model_cfg = get_model_by_id(model, self.provider_id) or {}
            generation_config["thinkingConfig"] = {
                "thinkingBudget": model_cfg.get("thinking_budget", DEFAULT_THINKING_BUDGET),
            }
        body: Dict[str, Any] = {
            "contents": self.build_contents(turns),
            "generationConfig": generation_config,
            "systemInstruction": {"parts": [{"text": options.system_instruction or SYSTEM_INSTRUCTION}]},
        }
        if options.tools:
            body["tools"] = to_gemini_tools(options.tools)
            body["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}
        return body

    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        if not options.api_key:
            raise ProviderError("Gemini API key is required", ErrorKind.BAD_REQUEST)
        model = self.model_for(options)
        body = self.build_request(options, self.turns_with_prompt(prompt, options), model)
        url = f"{self.config['base_url']}/models/{model}:streamGenerateContent?key={options.api_key}"

        decoder = JsonObjectStreamDecoder()
        reassembler = self.make_reassembler(options)

        async def on_text(raw: str) -> None:
            for item in decoder.feed(raw):
                await self._handle_item(item, emitter, reassembler)

        logger.info(f"Streaming from Gemini model: {model}")
        await self.http_client().stream(
            url, body, on_text,
            headers={"Content-Type": "application/json"},
            cancel_event=options.cancel_event,
            notify=emitter.text,
        )
        for chunk in reassembler.finish():
            await emitter.emit(chunk)

    async def _handle_item(self, item: Dict[str, Any], emitter: ChunkEmitter,
                           reassembler: StreamReassembler) -> None:
        if isinstance(item.get("error"), dict):
            err = item["error"]
            raise classify_http_error(int(err.get("code") or 500), json.dumps(item), self.provider_id)
        for candidate in item.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("text") and not part.get("thought"):
                    for chunk in reassembler.feed(part["text"]):
                        await emitter.emit(chunk)
                call = part.get("functionCall")
                if call and call.get("name"):
                    # text streamed before the call keeps its place
                    for chunk in reassembler.finish():
                        await emitter.emit(chunk)
                    metadata = {"thoughtSignature": part["thoughtSignature"]} if part.get("thoughtSignature") else None
                    await emitter.emit(Chunk.function_call(
                        call["name"], call.get("args") or {}, make_call_id(call["name"]), metadata,
                    ))
