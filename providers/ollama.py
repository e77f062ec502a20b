"""Ollama adapter for local models (NDJSON /api/chat)."""

import json
import logging
from typing import Any, Dict, List, Set

from agent.events import ChunkEmitter
from agent.history import ChatTurn
from agent.prompts import FALLBACK_TOOL_INSTRUCTION, SYSTEM_INSTRUCTION, compose_system_prompt
from config import provider_settings
from providers.base import ProviderAdapter, StreamOptions
from providers.errors import ProviderError, classify_http_error
from providers.framing import NdjsonDecoder
from providers.reassembler import NativeCallAccumulator, StreamReassembler
from tools.schemas import to_openai_tools

logger = logging.getLogger(__name__)

NO_TOOLS_MARKER = "does not support tools"


def render_fallback_call(name: str, arguments: Dict[str, Any]) -> str:
    return f"TOOL_CALL: {name}({json.dumps(arguments)})"


class OllamaAdapter(ProviderAdapter):
    provider_id = "ollama"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # models that rejected the tools parameter; they get the text-format instruction
        self._no_native_tools: Set[str] = set()

    @property
    def host(self) -> str:
        return provider_settings.ollama_host.rstrip("/")

    def build_messages(self, turns: List[ChatTurn], options: StreamOptions, native: bool) -> List[Dict[str, Any]]:
        system = options.system_instruction or SYSTEM_INSTRUCTION
        if not native and options.tools:
            system = compose_system_prompt(system, extra=FALLBACK_TOOL_INSTRUCTION)
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        for turn in turns:
            if turn.role == "tool" and turn.tool_result is not None:
                if native:
                    messages.append({"role": "tool", "content": turn.tool_result.to_json()})
                else:
                    messages.append({
                        "role": "user",
                        "content": f"Result of {turn.tool_result.name}:\n{turn.tool_result.to_json()}",
                    })
            elif turn.role == "assistant":
                if native and turn.tool_calls:
                    messages.append({
                        "role": "assistant",
                        "content": turn.content,
                        "tool_calls": [
                            {"function": {"name": c.name, "arguments": c.arguments}} for c in turn.tool_calls
                        ],
                    })
                else:
                    lines = [turn.content] if turn.content else []
                    lines.extend(render_fallback_call(c.name, c.arguments) for c in turn.tool_calls)
                    messages.append({"role": "assistant", "content": "\n".join(lines)})
            else:
                messages.append({"role": "user", "content": turn.content})
        return messages

    def build_request(self, options: StreamOptions, turns: List[ChatTurn], model: str, native: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model,
            "messages": self.build_messages(turns, options, native),
            "stream": True,
            "options": {
                "temperature": 0.7,
                "top_p": 0.9,
                "num_predict": self.max_tokens_for(options, model),
            },
        }
        if native and options.tools:
            body["tools"] = to_openai_tools(options.tools)
        return body

    async def _stream_turn(self, prompt: str, options: StreamOptions, emitter: ChunkEmitter) -> None:
        model = self.model_for(options)
        turns = self.turns_with_prompt(prompt, options)
        native = bool(options.tools) and model not in self._no_native_tools
        try:
            await self._stream_once(options, turns, model, native, emitter)
        except ProviderError as e:
            if not native or NO_TOOLS_MARKER not in str(e):
                raise
            logger.warning(f"Ollama model {model} does not support native tools. Retrying without tools...")
            self._no_native_tools.add(model)
            await self._stream_once(options, turns, model, False, emitter)

    async def _stream_once(self, options: StreamOptions, turns: List[ChatTurn], model: str,
                           native: bool, emitter: ChunkEmitter) -> None:
        body = self.build_request(options, turns, model, native)
        decoder = NdjsonDecoder()
        reassembler = self.make_reassembler(options)
        calls = NativeCallAccumulator(id_prefix="call")
        counter = {"index": 0}

        async def handle(items: List[Dict[str, Any]]) -> None:
            for item in items:
                await self._handle_item(item, emitter, reassembler, calls, counter)

        async def on_text(raw: str) -> None:
            await handle(decoder.feed(raw))

        logger.info(f"Streaming from Ollama model: {model} (native tools: {native})")
        await self.http_client().stream(
            f"{self.host}/api/chat", body, on_text,
            headers={"Content-Type": "application/json"},
            cancel_event=options.cancel_event,
            notify=emitter.text,
        )
        await handle(decoder.flush())
        for chunk in reassembler.finish():
            await emitter.emit(chunk)
        await self.emit_calls(emitter, calls.finish())

    async def _handle_item(self, item: Dict[str, Any], emitter: ChunkEmitter,
                           reassembler: StreamReassembler, calls: NativeCallAccumulator,
                           counter: Dict[str, int]) -> None:
        if item.get("error"):
            raise classify_http_error(400 if NO_TOOLS_MARKER in str(item["error"]) else 500,
                                      json.dumps(item), self.provider_id)
        message = item.get("message") or {}
        if message.get("content"):
            for chunk in reassembler.feed(message["content"]):
                await emitter.emit(chunk)
        for tool_call in message.get("tool_calls") or []:
            fn = tool_call.get("function") or {}
            args = fn.get("arguments") or {}
            calls.add(index=counter["index"], name=fn.get("name"), arguments=args)
            counter["index"] += 1

    async def list_models(self) -> List[Dict[str, Any]]:
        """Static entries plus whatever is installed locally."""
        models = await super().list_models()
        known = {m["id"] for m in models}
        try:
            data = await self.http_client().get_json(f"{self.host}/api/tags")
        except ProviderError as e:
            logger.debug(f"Could not list installed Ollama models: {e}")
            return models
        for entry in (data or {}).get("models") or []:
            name = entry.get("name") or entry.get("model")
            if not name or name in known:
                continue
            size = (entry.get("details") or {}).get("parameter_size") or ""
            models.append({
                "id": name,
                "name": name,
                "desc": f"Installed locally{f' ({size})' if size else ''}",
                "limits": "Local",
                "provider": self.provider_id,
            })
        return models
