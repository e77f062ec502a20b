"""
Wire framing decoders for streamed provider responses.

All decoders are incremental: feed() takes whatever text arrived and returns the
complete records found so far, keeping any partial record buffered. Records that
fail to parse are dropped silently because upstream backends occasionally split
a frame mid-token.
"""

import json
import logging
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)


def find_json_object_end(text: str, start: int) -> int:
    """Index one past the '}' closing the object that opens at text[start], or -1.

    Braces inside string values do not count and backslash escapes are honored.
    """
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


class SseDecoder:
    """Server-sent events: yields the payload of each `data:` line.

    `[DONE]` sentinels and comment/event lines are skipped.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[str]:
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [p for p in (self._payload(line) for line in lines) if p is not None]

    def flush(self) -> List[str]:
        rest, self._buffer = self._buffer, ""
        payload = self._payload(rest)
        return [payload] if payload is not None else []

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[5:].strip()
        if not data or data == "[DONE]":
            return None
        return data

    def feed_json(self, text: str) -> List[Dict[str, Any]]:
        return _parse_all(self.feed(text))

    def flush_json(self) -> List[Dict[str, Any]]:
        return _parse_all(self.flush())


class NdjsonDecoder:
    """Newline-delimited JSON objects."""

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[Dict[str, Any]]:
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return _parse_all(line for line in lines if line.strip())

    def flush(self) -> List[Dict[str, Any]]:
        rest, self._buffer = self._buffer, ""
        return _parse_all([rest] if rest.strip() else [])


class JsonObjectStreamDecoder:
    """Top-level JSON objects located by brace matching.

    Used for responses that stream a JSON array of objects (`[{...},\n{...}]`)
    where array punctuation between objects is ignored.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[Dict[str, Any]]:
        self._buffer += text
        items: List[Dict[str, Any]] = []
        start = self._buffer.find("{")
        while start != -1:
            end = find_json_object_end(self._buffer, start)
            if end == -1:
                break
            raw = self._buffer[start:end]
            self._buffer = self._buffer[end:]
            items.extend(_parse_all([raw]))
            start = self._buffer.find("{")
        if start == -1:
            self._buffer = ""
        else:
            self._buffer = self._buffer[start:]
        return items


def _parse_all(raw_items) -> List[Dict[str, Any]]:
    parsed = []
    for raw in raw_items:
        try:
            item = json.loads(raw)
        except (ValueError, TypeError):
            logger.debug(f"Dropping malformed stream frame: {str(raw)[:120]!r}")
            continue
        if isinstance(item, dict):
            parsed.append(item)
    return parsed
