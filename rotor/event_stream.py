"""
Stream-json decoding for agent output

The agent writes one JSON object per line, but the stream is untrusted:
objects occasionally span lines, non-JSON noise is interleaved (stderr is
merged into the same pipe) and lines can be truncated. The decoder buffers
across lines and never raises; malformed input is dropped and logged.
"""
import json
import logging
from typing import Any, List, Optional

from .constants import StreamDefaults

logger = logging.getLogger(__name__)

_MISSING = object()


def get_field(obj: Any, *path: Any, default: Any = None) -> Any:
    """
    Partial-decode accessor for nested event fields.

    Walks dict keys / list indexes and returns ``default`` as soon as any
    step is missing or has the wrong shape.

    Example:
        get_field(event, "tool_call", "shellToolCall", "args", "command", default="")
    """
    current = obj
    for key in path:
        if isinstance(current, dict):
            current = current.get(key, _MISSING)
        elif isinstance(current, list) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else _MISSING
        else:
            return default
        if current is _MISSING or current is None:
            return default
    return current


def get_int(obj: Any, *path: Any, default: int = 0) -> int:
    """Integer field accessor tolerant of strings and floats"""
    value = get_field(obj, *path, default=default)
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_str(obj: Any, *path: Any, default: str = "") -> str:
    """String field accessor; non-strings fall back to default"""
    value = get_field(obj, *path, default=default)
    return value if isinstance(value, str) else default


class StreamDecoder:
    """
    Line-oriented JSON event decoder.

    Feed each raw line to ``feed()``; it returns the events completed by
    that line (usually zero or one).
    """

    def __init__(self,
                 max_line_length: int = StreamDefaults.MAX_LINE_LENGTH,
                 max_buffer_lines: int = StreamDefaults.MAX_BUFFER_LINES):
        self.max_line_length = max_line_length
        self.max_buffer_lines = max_buffer_lines
        self.buffer: List[str] = []
        self.decoder = json.JSONDecoder()
        self.skipped = 0

    @property
    def in_json(self) -> bool:
        return bool(self.buffer)

    def feed(self, line: str) -> List[dict]:
        """
        Process a line and return any complete event objects.

        Args:
            line: A line of text from the agent's stdout

        Returns:
            List of decoded event dicts (possibly empty)
        """
        line = line.strip()
        if not line:
            return []

        if len(line) > self.max_line_length:
            logger.warning(f"Dropping oversize stream line ({len(line)} > {self.max_line_length} chars)")
            self._drop()
            return []

        if not self.buffer:
            start_index = line.find('{')
            if start_index == -1:
                logger.debug(f"Skipping non-JSON output: {line[:80]}")
                self.skipped += 1
                return []
            self.buffer = [line[start_index:]]
        else:
            if line.startswith('{'):
                # Events are one per line; a complete line supersedes a truncated buffer
                standalone = self._decode_line(line)
                if standalone is not None:
                    logger.debug("Discarding truncated JSON object before a complete line")
                    self._drop()
                    return standalone
            if len(self.buffer) >= self.max_buffer_lines:
                logger.warning(f"Stream buffer exceeded {self.max_buffer_lines} lines, discarding partial object")
                self._drop()
                return self.feed(line)
            self.buffer.append(line)

        return self._drain()

    def _drain(self) -> List[dict]:
        events = []
        text = '\n'.join(self.buffer)
        while text:
            try:
                result, end_idx = self.decoder.raw_decode(text)
            except json.JSONDecodeError as e:
                newest = self.buffer[-1]
                if e.pos <= len(text) - len(newest):
                    # Broken before the newest line: the earlier object was truncated
                    logger.debug(f"Discarding malformed JSON object: {e}")
                    self.skipped += 1
                    self.buffer = []
                    if newest.startswith('{') and newest != text:
                        self.buffer = [newest]
                        return events + self._drain()
                    return events
                # Incomplete so far, keep buffering
                if events:
                    self.buffer = [text]
                return events

            if isinstance(result, dict):
                events.append(result)
            else:
                logger.debug(f"Ignoring non-object JSON value: {type(result).__name__}")
                self.skipped += 1

            trailing = text[end_idx:].strip()
            next_start = trailing.find('{')
            text = trailing[next_start:] if next_start != -1 else ""

        self.buffer = []
        return events

    def _decode_line(self, line: str) -> Optional[List[dict]]:
        """Objects on a line that decodes completely by itself, else None"""
        values = []
        text = line
        while text:
            try:
                value, end_idx = self.decoder.raw_decode(text)
            except json.JSONDecodeError:
                return None
            values.append(value)
            text = text[end_idx:].strip()
            if text and not text.startswith('{'):
                return None

        events = [value for value in values if isinstance(value, dict)]
        self.skipped += len(values) - len(events)
        return events

    def _drop(self) -> None:
        if self.buffer:
            self.skipped += 1
        self.buffer = []

    def flush(self) -> None:
        """Discard any incomplete object at end of stream"""
        if self.buffer:
            logger.debug("Discarding incomplete JSON at end of stream")
        self._drop()

    def reset(self) -> None:
        """Reset the buffer and counters"""
        self.buffer = []
        self.skipped = 0
