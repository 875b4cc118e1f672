"""
Event classifier for the agent's stream-json output

Each decoded event becomes zero or more ActivityRecords plus, where a policy
fires, control signals. The classifier is the only owner of the iteration's
TokenBudget and GutterDetector; nothing else mutates them.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .activity import ActivityKind, ActivityRecord
from .constants import AgentSignals, TokenDefaults
from .detectors import GutterDetector, GutterReason
from .event_stream import get_field, get_int, get_str
from .signals import ControlSignal
from .token_budget import (
    Thresholds,
    TokenBudget,
    estimate_tokens,
    health_indicator,
)
from .utils import format_kb

logger = logging.getLogger(__name__)

# stdout of `git commit`: "[main 1a2b3c4] subject"
COMMIT_SUBJECT_RE = re.compile(r"\[[^\]]*\] (.+)")
COMMIT_MESSAGE_ARG_RES = [
    re.compile(r'(?:-m|--message)(?:\s+|=)"([^"]+)"'),
    re.compile(r"(?:-m|--message)(?:\s+|=)'([^']+)'"),
]

# Output above this size is called out on the SHELL line
LARGE_OUTPUT_CHARS = 1024

EDIT_TOOLS = ("strReplaceToolCall", "editToolCall")


@dataclass
class Classification:
    """Everything one event produced"""
    records: List[ActivityRecord] = field(default_factory=list)
    signals: List[ControlSignal] = field(default_factory=list)
    # Free-form activity.log lines (threshold crossings, sentinels)
    notes: List[str] = field(default_factory=list)
    # errors.log lines
    failures: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.records or self.signals or self.notes or self.failures)


@dataclass
class IterationState:
    """Per-iteration mutable state owned by one classifier"""
    budget: TokenBudget
    detector: GutterDetector
    limits: Thresholds
    warn_sent: bool = False
    halted_by: Optional[ControlSignal] = None
    session_id: Optional[str] = None
    reported_model: Optional[str] = None

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.budget)


class EventClassifier:
    """
    Turns decoded agent events into activity records and control signals.

    After the first terminal signal (ROTATE, GUTTER or COMPLETE) the
    classifier halts and ignores every later event of the iteration.
    """

    def __init__(self, state: IterationState,
                 tracker_command: str = "bd",
                 bytes_per_line: int = TokenDefaults.BYTES_PER_LINE,
                 clock: Callable[[], datetime] = datetime.now):
        self.state = state
        self.tracker_command = tracker_command
        self.bytes_per_line = bytes_per_line
        self.clock = clock

    @property
    def halted(self) -> bool:
        return self.state.halted_by is not None

    def classify(self, event: dict) -> Classification:
        """Classify one event; never raises on malformed input"""
        result = Classification()
        if self.halted or not isinstance(event, dict):
            return result

        event_type = get_str(event, "type")
        subtype = get_str(event, "subtype")

        if event_type == "system" and subtype == "init":
            self._on_session_start(event, result)
        elif event_type == "assistant":
            self._on_assistant(event, result)
        elif event_type == "tool_call":
            if subtype == "started":
                self.state.budget.tool_calls += 1
            elif subtype == "completed":
                self._on_tool_completed(event, result)
                self._check_thresholds(result)
        elif event_type == "result":
            duration = get_int(event, "duration_ms")
            self._record(result, ActivityKind.SESSION_END,
                         f"{duration}ms, ~{self.state.tokens} tokens used")
        else:
            logger.debug(f"Ignoring event type '{event_type}'")

        return result

    # -- event handlers -------------------------------------------------

    def _on_session_start(self, event: dict, result: Classification) -> None:
        model = get_str(event, "model", default="unknown")
        session_id = get_str(event, "session_id")
        self.state.reported_model = model
        if session_id:
            self.state.session_id = session_id
        self._record(result, ActivityKind.SESSION_START, f"model={model}")

    def _on_assistant(self, event: dict, result: Classification) -> None:
        content = get_field(event, "message", "content", default=[])
        if not isinstance(content, list):
            return
        text = "".join(get_str(item, "text") for item in content)
        if not text:
            return
        self.state.budget.add_assistant(len(text))

        # Sentinels bypass token thresholds
        if AgentSignals.COMPLETE_SENTINEL in text:
            self._record(result, ActivityKind.ASSISTANT_TEXT, "✅ Agent signaled COMPLETE")
            self._halt(result, ControlSignal.COMPLETE)
        elif AgentSignals.GUTTER_SENTINEL in text:
            self._record(result, ActivityKind.ASSISTANT_TEXT, "🚨 Agent signaled GUTTER (stuck)")
            result.failures.append("⚠️ GUTTER: agent reported it is stuck")
            self._halt(result, ControlSignal.GUTTER)

    def _on_tool_completed(self, event: dict, result: Classification) -> None:
        tool_call = get_field(event, "tool_call", default={})
        if not isinstance(tool_call, dict):
            return

        if "readToolCall" in tool_call:
            self._on_read(tool_call["readToolCall"], result)
        elif "writeToolCall" in tool_call:
            self._on_write(tool_call["writeToolCall"], result)
        elif any(name in tool_call for name in EDIT_TOOLS):
            name = next(name for name in EDIT_TOOLS if name in tool_call)
            self._on_edit(tool_call[name], result)
        elif "deleteToolCall" in tool_call:
            self._on_delete(tool_call["deleteToolCall"], result)
        elif "shellToolCall" in tool_call:
            self._on_shell(tool_call["shellToolCall"], result)
        else:
            logger.debug(f"Unrecognized tool call: {list(tool_call)[:3]}")

    def _on_read(self, call: dict, result: Classification) -> None:
        path = get_str(call, "args", "path", default="unknown")
        success = get_field(call, "result", "success")
        if success is None:
            self._tool_failed(result, ActivityKind.READ, path, call)
            return
        lines = get_int(success, "totalLines")
        size = get_int(success, "contentSize")
        num_bytes = size if size > 0 else lines * self.bytes_per_line
        self.state.budget.add_read(num_bytes)
        self._record(result, ActivityKind.READ, path, num_bytes,
                     detail=f"({lines} lines, ~{format_kb(num_bytes)})")

    def _on_write(self, call: dict, result: Classification) -> None:
        path = get_str(call, "args", "path", default="unknown")
        success = get_field(call, "result", "success")
        if success is None:
            self._tool_failed(result, ActivityKind.WRITE, path, call)
            return
        lines = get_int(success, "linesCreated")
        num_bytes = get_int(success, "fileSize")
        self.state.budget.add_write(num_bytes)
        self._record(result, ActivityKind.WRITE, path, num_bytes,
                     detail=f"({lines} lines, {format_kb(num_bytes)})")
        self._track_write(path, result)

    def _on_edit(self, call: dict, result: Classification) -> None:
        path = get_str(call, "args", "path", default="unknown")
        if get_field(call, "result", "success") is None:
            self._tool_failed(result, ActivityKind.EDIT, path, call)
            return
        old_text = get_str(call, "args", "old_string")
        new_text = get_str(call, "args", "new_string")
        num_bytes = len(old_text) + len(new_text)
        self.state.budget.add_write(num_bytes)
        changed = len(old_text.splitlines()) + len(new_text.splitlines())
        self._record(result, ActivityKind.EDIT, path, num_bytes,
                     detail=f"(~{changed} lines changed)")
        self._track_write(path, result)

    def _on_delete(self, call: dict, result: Classification) -> None:
        path = get_str(call, "args", "path", default="unknown")
        if get_field(call, "result", "success") is None:
            self._tool_failed(result, ActivityKind.DELETE, path, call)
            return
        self._record(result, ActivityKind.DELETE, path)

    def _on_shell(self, call: dict, result: Classification) -> None:
        outcome = get_field(call, "result")
        if not isinstance(outcome, dict):
            return
        command = get_str(call, "args", "command", default="unknown")
        exit_code = get_int(outcome, "exitCode")
        stdout = get_str(outcome, "stdout")
        stderr = get_str(outcome, "stderr")
        output_chars = len(stdout) + len(stderr)
        self.state.budget.add_shell(output_chars)

        if exit_code == 0:
            # Sub-extractions are logged ahead of the SHELL line itself
            self._extract_tracker_operation(command, stdout, result)
            self._extract_commit(command, stdout, result)
            detail = "→ exit 0"
            if output_chars > LARGE_OUTPUT_CHARS:
                detail = f"→ exit 0 ({output_chars} chars output)"
            self._record(result, ActivityKind.SHELL, command, output_chars, detail=detail)
            return

        self._record(result, ActivityKind.SHELL, command, output_chars,
                     detail=f"→ exit {exit_code}", succeeded=False)
        count = self.state.detector.failures.count(command) + 1
        result.failures.append(f"SHELL FAIL: {command} → exit {exit_code} (attempt {count})")
        self._check_gutter(self.state.detector.record_failure(command), result)

    # -- sub-extractions ------------------------------------------------

    def _extract_tracker_operation(self, command: str, stdout: str, result: Classification) -> None:
        if "--json" not in command:
            return
        if f"{self.tracker_command} update" in command and "--status in_progress" in command:
            kind = ActivityKind.TASK_START
        elif f"{self.tracker_command} close" in command:
            kind = ActivityKind.TASK_FINISH
        else:
            return

        item_id, title = parse_tracker_item(stdout)
        if not item_id:
            return
        subject = f"{item_id} - {title}" if title else item_id
        self._record(result, kind, subject)

    def _extract_commit(self, command: str, stdout: str, result: Classification) -> None:
        if "git commit" not in command:
            return
        subject = parse_commit_subject(command, stdout)
        if subject:
            self._record(result, ActivityKind.GIT_COMMIT, subject)

    # -- policy ---------------------------------------------------------

    def _tool_failed(self, result: Classification, kind: ActivityKind, path: str, call: dict) -> None:
        error = get_str(call, "result", "error", "message") or get_str(call, "result", "error")
        detail = f"failed: {error}" if error else "failed"
        self._record(result, kind, path, detail=detail, succeeded=False)
        key = f"{kind.value} {path}"
        result.failures.append(f"{kind.value} FAIL: {path}" + (f" ({error})" if error else ""))
        self._check_gutter(self.state.detector.record_failure(key), result)

    def _track_write(self, path: str, result: Classification) -> None:
        self._check_gutter(self.state.detector.record_write(path), result)

    def _check_gutter(self, reason: Optional[GutterReason], result: Classification) -> None:
        if reason is None or self.halted:
            return
        result.failures.append(reason.describe())
        self._halt(result, ControlSignal.GUTTER)

    def _check_thresholds(self, result: Classification) -> None:
        if self.halted:
            return
        tokens = self.state.tokens
        limits = self.state.limits
        if tokens >= limits.rotate:
            result.notes.append(f"ROTATE: Token threshold reached ({tokens} >= {limits.rotate})")
            self._halt(result, ControlSignal.ROTATE)
        elif tokens >= limits.warn and not self.state.warn_sent:
            self.state.warn_sent = True
            result.notes.append(f"WARN: Approaching token limit ({tokens} >= {limits.warn})")
            result.signals.append(ControlSignal.WARN)

    def _halt(self, result: Classification, signal: ControlSignal) -> None:
        self.state.halted_by = signal
        result.signals.append(signal)

    def _record(self, result: Classification, kind: ActivityKind, subject: str,
                size_bytes: int = 0, detail: str = "", succeeded: bool = True) -> None:
        health = health_indicator(self.state.tokens, self.state.limits)
        result.records.append(ActivityRecord(
            timestamp=self.clock(),
            kind=kind,
            subject=subject,
            size_bytes=size_bytes,
            health=health,
            detail=detail,
            succeeded=succeeded,
        ))


def parse_tracker_item(stdout: str):
    """Pull (id, title) out of the tracker's --json output, either may be empty"""
    try:
        data = json.loads(stdout)
    except (json.JSONDecodeError, TypeError):
        return "", ""
    item = data[0] if isinstance(data, list) and data else data
    return get_str(item, "id"), get_str(item, "title")


def parse_commit_subject(command: str, stdout: str) -> str:
    """
    Commit subject from `git commit` output, else from its -m argument.

    Examples:
        "[main 1a2b3c4] Add parser"          -> "Add parser"
        'git commit -m "Fix tests"' (no out) -> "Fix tests"
    """
    match = COMMIT_SUBJECT_RE.search(stdout or "")
    if match:
        return match.group(1).strip()
    for pattern in COMMIT_MESSAGE_ARG_RES:
        match = pattern.search(command)
        if match:
            return match.group(1)
    return ""
