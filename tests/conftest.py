# tests/conftest.py

import json
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add the project root to the Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rotor.activity import RunPaths  # noqa: E402
from rotor.config import RotorConfig  # noqa: E402


@pytest.fixture
def rotor_config() -> RotorConfig:
    """Default config with the cosmetic and slow bits turned off"""
    config = RotorConfig()
    config.logging.show_spinner = False
    config.orchestration.iteration_pause_seconds = 0
    config.watchdog.interval_seconds = 0.05
    config.watchdog.terminate_grace_seconds = 1.0
    return config


@pytest.fixture
def run_paths(tmp_path) -> RunPaths:
    """Initialized per-run state directory under a temp workspace"""
    paths = RunPaths(tmp_path, "test-run")
    paths.init()
    return paths


@pytest.fixture
def fixed_clock():
    """datetime.now replacement returning a constant timestamp"""
    moment = datetime(2024, 1, 3, 14, 30, 22)
    return lambda: moment


# -- event builders shared by classifier and iteration tests -------------

def init_event(model="opus-4.5-thinking", session_id="sess-123"):
    return {"type": "system", "subtype": "init", "model": model, "session_id": session_id}


def assistant_event(text):
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


def read_event(path, total_lines=10, content_size=0):
    success = {"totalLines": total_lines}
    if content_size:
        success["contentSize"] = content_size
    return {"type": "tool_call", "subtype": "completed",
            "tool_call": {"readToolCall": {"args": {"path": path}, "result": {"success": success}}}}


def write_event(path, lines=5, size=400):
    return {"type": "tool_call", "subtype": "completed",
            "tool_call": {"writeToolCall": {"args": {"path": path},
                                            "result": {"success": {"linesCreated": lines, "fileSize": size}}}}}


def edit_event(path, old="a", new="b"):
    return {"type": "tool_call", "subtype": "completed",
            "tool_call": {"strReplaceToolCall": {"args": {"path": path, "old_string": old, "new_string": new},
                                                 "result": {"success": {}}}}}


def delete_event(path):
    return {"type": "tool_call", "subtype": "completed",
            "tool_call": {"deleteToolCall": {"args": {"path": path}, "result": {"success": {}}}}}


def shell_event(command, exit_code=0, stdout="", stderr=""):
    return {"type": "tool_call", "subtype": "completed",
            "tool_call": {"shellToolCall": {"args": {"command": command},
                                            "result": {"exitCode": exit_code, "stdout": stdout, "stderr": stderr}}}}


def started_event():
    return {"type": "tool_call", "subtype": "started", "tool_call": {}}


def result_event(duration_ms=1200):
    return {"type": "result", "duration_ms": duration_ms}


def as_lines(*events) -> str:
    """Render events as the agent's line-delimited stream"""
    return "".join(json.dumps(event) + "\n" for event in events)
