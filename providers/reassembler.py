"""
Streaming reassembly of tool calls from model output.

Backends that expose structured tool-call deltas go through NativeCallAccumulator.
Backends that encode calls inline in their text go through StreamReassembler,
which keeps one growing buffer per stream and asks an ordered list of matchers
whether the buffered text holds a complete call, the start of one that needs
more text, or nothing at all. Text is released only when no pending call could
still claim it, so a half-streamed call is never shown to the user as text.
"""

import itertools
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from agent.events import Chunk
from agent.history import ToolCallRequest
from providers.framing import find_json_object_end

logger = logging.getLogger(__name__)

INLINE_TAG = "TOOL_CALL:"
TOOL_CODE_OPEN = "<tool_code>"
TOOL_CODE_CLOSE = "</tool_code>"
XML_CALL_OPEN = "<call:"

_NAME_RE = re.compile(r"[a-zA-Z_][\w\-]*")
_KEY_RE = re.compile(r"[a-zA-Z0-9_]+")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_XML_ATTR_RE = re.compile(r'([a-zA-Z0-9_:-]+)\s*=\s*"([^"]*)"')
_BARE_CALL_RE = re.compile(r"^\s*([a-zA-Z_][\w\-]*)\s*\(\s*(.*?)\s*\)\s*;?\s*$", re.DOTALL)
_PROSE_CALL_RE = re.compile(r"^\s*Call\s+`?([a-zA-Z_][\w\-]*)`?\s+with\s+(.+?)\s*$", re.IGNORECASE)

_id_counter = itertools.count(1)


def make_call_id(prefix: str) -> str:
    """Unique id for calls the backend did not name: <prefix>_<ms>_<n>."""
    return f"{prefix}_{int(time.time() * 1000)}_{next(_id_counter)}"


# ============================================================
# Argument parsing helpers
# ============================================================

def coerce_scalar(raw: str) -> Any:
    """Unquoted argument value: boolean literal, number, else the raw string."""
    value = raw.strip()
    if value in ("true", "false"):
        return value == "true"
    if _NUMBER_RE.fullmatch(value):
        return float(value) if "." in value else int(value)
    return value


def parse_keyword_args(raw: str) -> Dict[str, Any]:
    """Parse `key=value, key2="value 2"` token by token.

    Quoted values stay strings (escapes honored, commas and parens allowed inside);
    unquoted values run to the next comma and are coerced by coerce_scalar().
    """
    args: Dict[str, Any] = {}
    i, n = 0, len(raw)
    while i < n:
        while i < n and (raw[i].isspace() or raw[i] == ","):
            i += 1
        key_match = _KEY_RE.match(raw, i)
        if not key_match:
            break
        key = key_match.group(0)
        i = key_match.end()
        while i < n and raw[i].isspace():
            i += 1
        if i >= n or raw[i] != "=":
            break
        i += 1
        while i < n and raw[i].isspace():
            i += 1
        if i < n and raw[i] in ("'", '"'):
            quote = raw[i]
            i += 1
            chars = []
            while i < n and raw[i] != quote:
                if raw[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(raw[i])
                i += 1
            i += 1  # closing quote
            args[key] = "".join(chars)
        else:
            comma = raw.find(",", i)
            end = n if comma == -1 else comma
            args[key] = coerce_scalar(raw[i:end])
            i = end
    return args


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _call_from_payload(payload: Dict[str, Any], id_prefix: str) -> Optional[ToolCallRequest]:
    """Accept {name|tool|function, arguments|args|parameters, callId?} payloads."""
    name = payload.get("name") or payload.get("tool") or payload.get("function")
    if not isinstance(name, str) or not name:
        return None
    args = payload.get("arguments") or payload.get("args") or payload.get("parameters") or {}
    if isinstance(args, str):
        args = _load_object(args) or {}
    if not isinstance(args, dict):
        return None
    call_id = payload.get("callId") or payload.get("id") or make_call_id(id_prefix)
    return ToolCallRequest(name=name, arguments=args, call_id=str(call_id))


def _partial_tail(buffer: str, marker: str) -> int:
    """Start of a proper prefix of marker sitting at the end of buffer, or -1."""
    for size in range(min(len(marker) - 1, len(buffer)), 0, -1):
        if buffer.endswith(marker[:size]):
            return len(buffer) - size
    return -1


def _skip_ws(text: str, i: int) -> int:
    while i < len(text) and text[i].isspace():
        i += 1
    return i


# ============================================================
# Matchers
# ============================================================

class MatchStatus(Enum):
    NO_MATCH = "no_match"
    INCOMPLETE = "incomplete"
    MATCHED = "matched"


@dataclass
class Match:
    status: MatchStatus
    start: int = -1
    end: int = -1
    call: Optional[ToolCallRequest] = None

    @classmethod
    def incomplete(cls, start: int) -> "Match":
        return cls(MatchStatus.INCOMPLETE, start=start)

    @classmethod
    def matched(cls, start: int, end: int, call: ToolCallRequest) -> "Match":
        return cls(MatchStatus.MATCHED, start=start, end=end, call=call)


NO_MATCH = Match(MatchStatus.NO_MATCH)


class Matcher:
    """One tool-call encoding. heuristic matchers only apply when nothing else matched."""
    name = "matcher"
    heuristic = False

    def match(self, buffer: str, final: bool) -> Match:
        raise NotImplementedError

    def _pending(self, start: int, final: bool) -> Match:
        # At stream end an unfinished marker is just text
        return NO_MATCH if final else Match.incomplete(start)

    def _tail(self, buffer: str, marker: str, final: bool) -> Match:
        tail = _partial_tail(buffer, marker)
        if tail == -1:
            return NO_MATCH
        return self._pending(tail, final)


class InlineJsonMatcher(Matcher):
    """`TOOL_CALL: {"name": ..., "arguments": {...}}`"""
    name = "inline_json"

    def __init__(self, tag: str = INLINE_TAG):
        self.tag = tag

    def match(self, buffer: str, final: bool) -> Match:
        pos = 0
        while True:
            idx = buffer.find(self.tag, pos)
            if idx == -1:
                return self._tail(buffer, self.tag, final)
            i = _skip_ws(buffer, idx + len(self.tag))
            if i >= len(buffer):
                return self._pending(idx, final)
            if buffer[i] != "{":
                pos = i
                continue
            end = find_json_object_end(buffer, i)
            if end == -1:
                return self._pending(idx, final)
            payload = _load_object(buffer[i:end])
            call = _call_from_payload(payload, "tool_fc") if payload else None
            if call is None:
                # balanced but not a call payload; it stays narration
                logger.debug(f"Ignoring malformed {self.tag} payload: {buffer[i:end][:120]!r}")
                pos = end
                continue
            return Match.matched(idx, end, call)


class InlineCallExpressionMatcher(Matcher):
    """`TOOL_CALL: write_file({"path": "a.txt"})`, the format taught to models without native tools."""
    name = "inline_expression"

    def __init__(self, tag: str = INLINE_TAG):
        self.tag = tag

    def match(self, buffer: str, final: bool) -> Match:
        pos = 0
        n = len(buffer)
        while True:
            idx = buffer.find(self.tag, pos)
            if idx == -1:
                return self._tail(buffer, self.tag, final)
            i = _skip_ws(buffer, idx + len(self.tag))
            if i >= n:
                return self._pending(idx, final)
            name_match = _NAME_RE.match(buffer, i)
            if not name_match:
                pos = i
                continue
            j = _skip_ws(buffer, name_match.end())
            if j >= n:
                return self._pending(idx, final)
            if buffer[j] != "(":
                pos = j
                continue
            j = _skip_ws(buffer, j + 1)
            if j >= n:
                return self._pending(idx, final)
            if buffer[j] == "{":
                obj_end = find_json_object_end(buffer, j)
                if obj_end == -1:
                    return self._pending(idx, final)
                k = _skip_ws(buffer, obj_end)
                if k >= n:
                    return self._pending(idx, final)
                if buffer[k] != ")":
                    pos = k
                    continue
                args = _load_object(buffer[j:obj_end])
                if args is None:
                    pos = k
                    continue
                end = k + 1
            else:
                close = buffer.find(")", j)
                newline = buffer.find("\n", j)
                if close == -1 or (newline != -1 and newline < close):
                    if newline != -1:
                        pos = j
                        continue
                    return self._pending(idx, final)
                args = parse_keyword_args(buffer[j:close])
                end = close + 1
            call = ToolCallRequest(name=name_match.group(0), arguments=args, call_id=make_call_id("manual"))
            return Match.matched(idx, end, call)


class TaggedBlockMatcher(Matcher):
    """`<tool_code> name(key=value, key2="value2") </tool_code>`"""
    name = "tagged_block"

    def __init__(self, open_tag: str = TOOL_CODE_OPEN, close_tag: str = TOOL_CODE_CLOSE):
        self.open_tag = open_tag
        self.close_tag = close_tag

    def match(self, buffer: str, final: bool) -> Match:
        pos = 0
        while True:
            idx = buffer.find(self.open_tag, pos)
            if idx == -1:
                return self._tail(buffer, self.open_tag, final)
            body_start = idx + len(self.open_tag)
            close = buffer.find(self.close_tag, body_start)
            if close == -1:
                return self._pending(idx, final)
            end = close + len(self.close_tag)
            body = buffer[body_start:close].strip()
            name_match = _NAME_RE.match(body)
            if name_match and body.endswith(")"):
                rest = body[name_match.end():].lstrip()
                if rest.startswith("("):
                    args = parse_keyword_args(rest[1:-1])
                    call = ToolCallRequest(name=name_match.group(0), arguments=args,
                                           call_id=make_call_id("gemini_fc"))
                    return Match.matched(idx, end, call)
            pos = end


class XmlCallMatcher(Matcher):
    """`<call:write_file path="a.txt" content="hi"/>`"""
    name = "xml_call"

    def match(self, buffer: str, final: bool) -> Match:
        pos = 0
        while True:
            idx = buffer.find(XML_CALL_OPEN, pos)
            if idx == -1:
                return self._tail(buffer, XML_CALL_OPEN, final)
            name_match = _NAME_RE.match(buffer, idx + len(XML_CALL_OPEN))
            if not name_match:
                if idx + len(XML_CALL_OPEN) >= len(buffer):
                    return self._pending(idx, final)
                pos = idx + len(XML_CALL_OPEN)
                continue
            gt = self._find_tag_end(buffer, name_match.end())
            if gt == -1:
                return self._pending(idx, final)
            attrs_raw = buffer[name_match.end():gt].rstrip("/")
            name = name_match.group(0)
            end = gt + 1
            closing = f"</call:{name}>"
            if not buffer[gt - 1] == "/":
                rest = buffer[end:]
                if rest.startswith(closing):
                    end += len(closing)
                elif closing.startswith(rest) and not final:
                    return Match.incomplete(idx)
            args = {key: value for key, value in _XML_ATTR_RE.findall(attrs_raw)}
            call = ToolCallRequest(name=name, arguments=args, call_id=make_call_id("xml_fc"))
            return Match.matched(idx, end, call)

    @staticmethod
    def _find_tag_end(buffer: str, start: int) -> int:
        in_quote = False
        for i in range(start, len(buffer)):
            ch = buffer[i]
            if ch == '"':
                in_quote = not in_quote
            elif ch == ">" and not in_quote:
                return i
        return -1


class _LineMatcher(Matcher):
    """Heuristic matchers that only look at completed lines naming a registered tool."""
    heuristic = True

    def __init__(self, tool_names: Iterable[str]):
        self.tool_names = frozenset(tool_names)

    def match(self, buffer: str, final: bool) -> Match:
        if not self.tool_names:
            return NO_MATCH
        offset = 0
        for line in buffer.splitlines(keepends=True):
            start = offset
            offset += len(line)
            if not line.endswith("\n") and not final:
                break
            call = self._match_line(line.rstrip("\r\n"))
            if call:
                return Match.matched(start, offset, call)
        return NO_MATCH

    def _match_line(self, line: str) -> Optional[ToolCallRequest]:
        raise NotImplementedError

    @staticmethod
    def _parse_args(raw: str) -> Optional[Dict[str, Any]]:
        raw = raw.strip()
        if not raw:
            return {}
        if raw.startswith("{"):
            return _load_object(raw)
        args = parse_keyword_args(raw)
        return args or None


class BareCallMatcher(_LineMatcher):
    """A line that is nothing but `name(args)`."""
    name = "bare_call"

    def _match_line(self, line: str) -> Optional[ToolCallRequest]:
        match = _BARE_CALL_RE.match(line)
        if not match or match.group(1) not in self.tool_names:
            return None
        args = self._parse_args(match.group(2))
        if args is None:
            return None
        return ToolCallRequest(name=match.group(1), arguments=args, call_id=make_call_id("heuristic_fc"))


class ProseCallMatcher(_LineMatcher):
    """'Call `name` with {...}' sentences; only when explicitly enabled."""
    name = "prose_call"

    def _match_line(self, line: str) -> Optional[ToolCallRequest]:
        match = _PROSE_CALL_RE.match(line)
        if not match or match.group(1) not in self.tool_names:
            return None
        args = self._parse_args(match.group(2))
        if not args:
            return None
        return ToolCallRequest(name=match.group(1), arguments=args, call_id=make_call_id("textcall_fc"))


def default_matchers(tool_names: Iterable[str] = (), prose_calls: bool = False) -> List[Matcher]:
    """Matchers in priority order."""
    names = list(tool_names)
    matchers: List[Matcher] = [
        InlineJsonMatcher(),
        InlineCallExpressionMatcher(),
        TaggedBlockMatcher(),
        XmlCallMatcher(),
        BareCallMatcher(names),
    ]
    if prose_calls:
        matchers.append(ProseCallMatcher(names))
    return matchers


# ============================================================
# Reassemblers
# ============================================================

class StreamReassembler:
    """Turns text fragments into text and function_call chunks."""

    def __init__(self, matchers: Optional[List[Matcher]] = None, tool_names: Iterable[str] = ()):
        self.matchers = matchers if matchers is not None else default_matchers(tool_names)
        self._buffer = ""
        self.calls: List[ToolCallRequest] = []

    @property
    def buffered(self) -> str:
        return self._buffer

    def feed(self, fragment: str) -> List[Chunk]:
        if not fragment:
            return []
        self._buffer += fragment
        return self._drain(final=False)

    def finish(self) -> List[Chunk]:
        """Stream ended: extract what is complete and release the rest as text."""
        chunks = self._drain(final=True)
        if self._buffer.strip():
            chunks.append(Chunk.text(self._buffer))
        self._buffer = ""
        return chunks

    def _drain(self, final: bool) -> List[Chunk]:
        chunks: List[Chunk] = []
        while self._buffer:
            strict: List[Match] = []
            heuristic: List[Match] = []
            hold = len(self._buffer)
            for matcher in self.matchers:
                result = matcher.match(self._buffer, final)
                if result.status is MatchStatus.MATCHED:
                    (heuristic if matcher.heuristic else strict).append(result)
                elif result.status is MatchStatus.INCOMPLETE:
                    hold = min(hold, result.start)

            candidates = strict or heuristic
            best = min(candidates, key=lambda m: m.start) if candidates else None
            if best is not None and best.start <= hold:
                before = self._buffer[:best.start]
                if before.strip():
                    chunks.append(Chunk.text(before))
                self._buffer = self._buffer[best.end:]
                self.calls.append(best.call)
                logger.debug(f"Reassembled function_call: {best.call.name}")
                chunks.append(Chunk.function_call(best.call.name, best.call.arguments, best.call.call_id))
                continue

            # Completed lines were already rejected by the line matchers and no pending
            # marker starts before hold, so everything up to the last newline is narration
            cut = self._buffer.rfind("\n", 0, hold)
            if cut != -1 and self._buffer[:cut + 1].strip():
                chunks.append(Chunk.text(self._buffer[:cut + 1]))
                self._buffer = self._buffer[cut + 1:]
            break
        return chunks


class NativeCallAccumulator:
    """Collects structured tool-call deltas keyed by index.

    Arguments arrive as JSON string fragments (concatenated) or as a complete
    mapping; finish() returns the calls in index order.
    """

    def __init__(self, id_prefix: str = "call"):
        self.id_prefix = id_prefix
        self._calls: Dict[int, Dict[str, Any]] = {}

    def add(self, index: int = 0, call_id: Optional[str] = None, name: Optional[str] = None,
            arguments: Any = None) -> None:
        entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if call_id:
            entry["id"] = call_id
        if name:
            entry["name"] = name
        if isinstance(arguments, dict):
            entry["arguments"] = arguments
        elif arguments:
            if isinstance(entry["arguments"], dict):
                entry["arguments"] = ""
            entry["arguments"] += str(arguments)

    @property
    def has_calls(self) -> bool:
        return any(entry["name"] for entry in self._calls.values())

    def finish(self) -> List[ToolCallRequest]:
        calls = []
        for index in sorted(self._calls):
            entry = self._calls[index]
            if not entry["name"]:
                continue
            args = entry["arguments"]
            if not isinstance(args, dict):
                parsed = _load_object(args) if args.strip() else {}
                if parsed is None:
                    logger.warning(f"Unparseable arguments for {entry['name']}: {args[:200]!r}")
                    parsed = {}
                args = parsed
            calls.append(ToolCallRequest(
                name=entry["name"],
                arguments=args,
                call_id=entry["id"] or make_call_id(self.id_prefix),
            ))
        self._calls = {}
        return calls
