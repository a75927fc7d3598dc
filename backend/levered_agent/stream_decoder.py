"""Decoder for the agent's line-delimited JSON output.

The agent is run with ``--output-format stream-json`` and prints one JSON
record per line on stdout. Pipes deliver that output in chunks that can cut
a record anywhere, so the decoder keeps the unterminated tail of each chunk
and only decodes complete lines.

Record shapes handled (everything else is dropped):

    {"type": "assistant", "message": {"content": [<block>, ...]}}
        thinking block  -> ThinkingEvent
        text block      -> MessageEvent
        tool_use block  -> ToolUseEvent
    {"type": "user", "message": {"content": [{"type": "tool_result", ...}]}}
                        -> ToolResultEvent
    {"type": "error", "error": ...}                 -> ErrorEvent

A ``result`` record produces no event, failed or not. The exit code decides
how the job ends, and ``extract_failure_detail`` hands the agent's own account
of a failure to the supervisor for the terminal error.

This module is the only place that knows the agent's output schema.
"""

import json
import logging
from typing import Any

from levered_agent.events import (
    ErrorEvent,
    Event,
    MessageEvent,
    ThinkingEvent,
    ToolResultEvent,
    ToolUseEvent,
)

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\n"


class StreamDecoder:
    """Stateful chunk-to-event decoder for one job's stdout."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Buffered text that has not yet been terminated by a newline."""
        return self._buffer

    def feed(self, chunk: str) -> list[Event]:
        """Buffer ``chunk`` and return the events of every completed line."""
        events: list[Event] = []
        for record in self.records(chunk):
            events.extend(self.events_for(record))
        return events

    def records(self, chunk: str) -> list[dict[str, Any]]:
        """Buffer ``chunk`` and return the JSON objects of every completed line."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(RECORD_SEPARATOR)
        return [record for record in map(self._decode_line, lines) if record is not None]

    def flush(self) -> list[dict[str, Any]]:
        """Decode the buffered tail as a final line and empty the buffer."""
        tail, self._buffer = self._buffer, ""
        record = self._decode_line(tail)
        return [record] if record is not None else []

    def reset(self) -> None:
        """Drop buffered state left over from a previous job."""
        self._buffer = ""

    def _decode_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON output line: {line[:200]}")
            return None
        if not isinstance(record, dict):
            logger.debug(f"Skipping non-object JSON record: {line[:200]}")
            return None
        return record

    def events_for(self, record: dict[str, Any]) -> list[Event]:
        """Map one decoded record to zero or more events."""
        record_type = record.get("type")

        if record_type == "assistant":
            return [
                event
                for event in map(self._assistant_block_to_event, _content_blocks(record))
                if event is not None
            ]

        if record_type == "user":
            return [
                ToolResultEvent(content=block.get("content", ""), is_error=block.get("is_error"))
                for block in _content_blocks(record)
                if block.get("type") == "tool_result"
            ]

        error = _error_from_record(record)
        if error is not None:
            return [error]

        return []

    @staticmethod
    def _assistant_block_to_event(block: dict[str, Any]) -> Event | None:
        block_type = block.get("type")
        if block_type == "thinking":
            return ThinkingEvent(content=block.get("thinking") or "")
        if block_type == "text":
            return MessageEvent(content=block.get("text") or "")
        if block_type == "tool_use":
            tool_input = block.get("input")
            return ToolUseEvent(
                name=block.get("name") or "",
                input=tool_input if isinstance(tool_input, dict) else {},
            )
        return None


def extract_continuation_token(record: dict[str, Any]) -> str | None:
    """Return the session id the agent reported in ``record``, if any."""
    token = record.get("session_id") or record.get("sessionId")
    if isinstance(token, str) and token:
        return token
    return None


def extract_failure_detail(record: dict[str, Any]) -> str | None:
    """Return the reason given by a failed ``result`` record, if ``record`` is one."""
    if record.get("type") != "result" or record.get("is_error") is not True:
        return None
    detail = record.get("result") or record.get("subtype") or "Agent reported an error"
    return str(detail)


def _content_blocks(record: dict[str, Any]) -> list[dict[str, Any]]:
    message = record.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _error_from_record(record: dict[str, Any]) -> ErrorEvent | None:
    record_type = record.get("type")

    if record_type == "error":
        error = record.get("error")
        if isinstance(error, dict):
            detail = _optional_str(error.get("type"))
            error = error.get("message") or detail
        else:
            detail = None
        message = error or record.get("message") or "Unknown agent error"
        return ErrorEvent(error=str(message), detail=detail)

    return None


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None
