"""
Activity records and the per-run append-only logs

activity.log holds one human-readable line per classified agent event.
errors.log holds only failures and stuck-pattern notes and is fed back into
the next iteration's prompt. Both are opened in append mode for every write
so an external `tail -f` always sees complete lines.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .constants import FileNames

logger = logging.getLogger(__name__)
activity_logger = logging.getLogger("rotor.activity")


class ActivityKind(Enum):
    """Kinds of observations derived from agent events"""
    READ = "READ"
    WRITE = "WRITE"
    EDIT = "EDIT"
    DELETE = "DELETE"
    SHELL = "SHELL"
    ASSISTANT_TEXT = "ASSISTANT"
    SESSION_START = "SESSION START"
    SESSION_END = "SESSION END"
    TASK_START = "TASK START"
    TASK_FINISH = "TASK FINISH"
    GIT_COMMIT = "GIT COMMIT"


_KIND_PREFIX = {
    ActivityKind.TASK_START: "🎯 ",
    ActivityKind.TASK_FINISH: "✅ ",
}

_TOOL_KINDS = {
    ActivityKind.READ,
    ActivityKind.WRITE,
    ActivityKind.EDIT,
    ActivityKind.DELETE,
    ActivityKind.SHELL,
}


@dataclass(frozen=True)
class ActivityRecord:
    """One observation derived from a single agent event"""
    timestamp: datetime
    kind: ActivityKind
    subject: str
    size_bytes: int = 0
    health: str = ""
    detail: str = ""
    succeeded: bool = True

    def format(self) -> str:
        """Render as an activity.log line"""
        if self.kind in _TOOL_KINDS:
            message = f"{self.kind.value} {self.subject}"
        else:
            message = f"{_KIND_PREFIX.get(self.kind, '')}{self.kind.value}: {self.subject}"
        if self.detail:
            message = f"{message} {self.detail}"
        return format_line(self.timestamp, self.health, message)


def format_line(timestamp: datetime, health: str, message: str) -> str:
    prefix = f"[{timestamp.strftime('%H:%M:%S')}]"
    if health:
        prefix = f"{prefix} {health}"
    return f"{prefix} {message}"


def _append(path: Path, text: str) -> None:
    try:
        with open(path, 'a', encoding='utf-8') as f:
            f.write(text)
    except OSError as e:
        logger.warning(f"Failed to append to {path}: {e}")


class ActivityLog:
    """Append-only log of activity records, echoed to the console"""

    HEADER = "# Activity Log\n\n> Real-time tool call logging from the stream parser.\n\n"

    def __init__(self, path: Path, echo: bool = True):
        self.path = Path(path)
        self.echo = echo

    def ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            _append(self.path, self.HEADER)

    def append(self, record: ActivityRecord) -> None:
        self._write(record.format())

    def note(self, message: str, health: str = "", timestamp: Optional[datetime] = None) -> None:
        """Write a free-form line (threshold crossings, token status)"""
        self._write(format_line(timestamp or datetime.now(), health, message))

    def banner(self, lines: List[str]) -> None:
        rule = "═" * 63
        block = ["", rule, *lines, rule]
        _append(self.path, "\n".join(block) + "\n")
        if self.echo:
            for line in block:
                activity_logger.info(line)

    def _write(self, line: str) -> None:
        _append(self.path, line + "\n")
        if self.echo:
            activity_logger.info(line)


class FailureLog:
    """Append-only log of failures and stuck patterns"""

    HEADER = "# Error Log\n\n> Failures detected by the stream parser. Use to update guardrails.\n\n"

    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            _append(self.path, self.HEADER)

    def record(self, message: str, timestamp: Optional[datetime] = None) -> None:
        stamp = (timestamp or datetime.now()).strftime('%H:%M:%S')
        _append(self.path, f"[{stamp}] {message}\n")
        logger.warning(message)

    def record_block(self, title: str, fields: List[tuple]) -> None:
        """Structured markdown note, e.g. for a killed blocking process"""
        lines = ["", f"## {title}"]
        lines.extend(f"- **{name}**: {value}" for name, value in fields)
        lines.append("")
        _append(self.path, "\n".join(lines) + "\n")
        logger.warning(f"{title}: " + "; ".join(f"{name}={value}" for name, value in fields))

    def tail(self, num_lines: int) -> str:
        """Last lines of the log, for prompt injection"""
        try:
            lines = self.path.read_text(encoding='utf-8').splitlines()
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.warning(f"Failed to read {self.path}: {e}")
            return ""
        return "\n".join(lines[-num_lines:])


class ProgressLog:
    """Markdown session history written by the loop, not the agent"""

    HEADER = "# Progress Log\n\n> Updated by the agent after significant work.\n\n---\n\n## Session History\n\n"

    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            _append(self.path, self.HEADER)

    def log(self, message: str) -> None:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        _append(self.path, f"\n### {timestamp}\n{message}\n")


@dataclass
class RunPaths:
    """Locations of the per-run state files"""
    workspace: Path
    run_id: str
    state_dir_name: str = FileNames.STATE_DIR

    @property
    def state_dir(self) -> Path:
        return self.workspace / self.state_dir_name

    @property
    def run_dir(self) -> Path:
        return self.state_dir / FileNames.RUNS_DIR / self.run_id

    @property
    def activity_log(self) -> Path:
        return self.run_dir / FileNames.ACTIVITY_LOG

    @property
    def errors_log(self) -> Path:
        return self.run_dir / FileNames.ERRORS_LOG

    @property
    def progress_file(self) -> Path:
        return self.run_dir / FileNames.PROGRESS_FILE

    @property
    def state_file(self) -> Path:
        return self.run_dir / FileNames.STATE_FILE

    @property
    def guardrails_file(self) -> Path:
        return self.state_dir / FileNames.GUARDRAILS_FILE

    def init(self) -> None:
        """Create the run directory and seed log headers"""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        ActivityLog(self.activity_log, echo=False).ensure_exists()
        FailureLog(self.errors_log).ensure_exists()
        ProgressLog(self.progress_file).ensure_exists()
