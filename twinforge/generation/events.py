# -*- coding: utf-8 -*-
"""Incremental decoder for the generation service's event stream.

The service writes Server-Sent-Events records::

    event: recipe
    data: {"title": "..."}

or, without an ``event:`` line, a JSON body carrying its own ``type``::

    data: {"type": "day", "data": {"date": "2025-01-06", ...}}

A blank line ends a record. Chunks may split a record (or a UTF-8 sequence)
anywhere; incomplete input stays buffered until the next ``feed``.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import pydantic

from .models import stream_event_adapter

logger = logging.getLogger(__name__)

KeyExtractor = Callable[[Dict[str, Any]], Optional[str]]

_TYPE_ALIASES: Dict[str, str] = {
    "skeletonCount": "skeletonCount",
    "skeleton_count": "skeletonCount",
    "skeleton": "skeletonCount",
    "unit": "unit",
    "day": "unit",
    "recipe": "unit",
    "category": "unit",
    "complete": "complete",
    "done": "complete",
    "error": "error",
}

_TOTAL_FIELDS = ("total", "recipe_count", "count", "day_count", "category_count")


def _first(data: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return None


class StreamEventParser:
    """Turn raw byte chunks into typed stream events, in arrival order."""

    def __init__(self, key_for: KeyExtractor | None = None) -> None:
        self._key_for = key_for
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event_name: Optional[str] = None
        self._data_lines: List[str] = []
        self.skipped = 0

    def feed(self, chunk: bytes) -> List[Any]:
        if not chunk:
            return []
        self._buffer += self._decoder.decode(chunk)
        events: List[Any] = []
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            event = self._consume_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[Any]:
        """Parse whatever is left once the stream has ended."""
        tail = self._decoder.decode(b"", final=True)
        self._buffer += tail
        events: List[Any] = []
        if self._buffer:
            for line in self._buffer.split("\n"):
                event = self._consume_line(line.rstrip("\r"))
                if event is not None:
                    events.append(event)
            self._buffer = ""
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    # ---------- framing ----------

    def _consume_line(self, line: str) -> Any:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event_name = value.strip()
        elif field == "data":
            self._data_lines.append(value)
        return None

    def _dispatch(self) -> Any:
        event_name = self._event_name
        data = "\n".join(self._data_lines)
        self._event_name = None
        self._data_lines = []
        if not data.strip() or data.strip() == "[DONE]":
            return None
        return self._decode(event_name, data)

    # ---------- decoding ----------

    def _decode(self, event_name: Optional[str], data: str) -> Any:
        try:
            body = json.loads(data)
        except json.JSONDecodeError as exc:
            self.skipped += 1
            logger.warning("Skipping malformed stream record (%s): %.200s", exc, data)
            return None
        if not isinstance(body, dict):
            self.skipped += 1
            logger.warning("Skipping non-object stream record: %.200s", data)
            return None

        raw_type = event_name or body.get("type")
        inner = body
        if not event_name and isinstance(body.get("data"), dict):
            inner = body["data"]
        event_type = _TYPE_ALIASES.get(str(raw_type or ""))
        if event_type is None:
            self.skipped += 1
            logger.info("Ignoring stream record with unknown type %r", raw_type)
            return None

        candidate = self._normalize(event_type, inner)
        try:
            return stream_event_adapter.validate_python(candidate)
        except pydantic.ValidationError as exc:
            self.skipped += 1
            logger.warning("Skipping invalid %s record: %s", event_type, exc.errors()[:1])
            return None

    def _normalize(self, event_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if event_type == "skeletonCount":
            return {"type": event_type, "total": _first(body, *_TOTAL_FIELDS)}
        if event_type == "unit":
            payload = body.get("payload") if isinstance(body.get("payload"), dict) else body
            key = body.get("key")
            if key is None and self._key_for is not None:
                key = self._key_for(payload)
            return {"type": event_type, "key": None if key is None else str(key), "payload": payload}
        if event_type == "complete":
            summary = body.get("summary") if isinstance(body.get("summary"), dict) else {
                k: v for k, v in body.items() if k not in {"type", "artifactId", "artifact_id", "id"}
            }
            artifact_id = _first(body, "artifactId", "artifact_id", "id")
            return {
                "type": event_type,
                "artifact_id": None if artifact_id is None else str(artifact_id),
                "summary": summary,
            }
        message = body.get("message") or body.get("error") or "Generation failed"
        return {"type": event_type, "message": str(message)}
