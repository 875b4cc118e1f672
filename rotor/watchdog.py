"""
Blocking-process watchdog

The agent runs shell commands in a pseudo-non-interactive environment, but
some commands still open a prompt and wait forever: `npm init` without -y,
`git commit` without a message, a bare `python` or `node` REPL. Nothing in
the event stream reveals a silently blocked descendant, so the watchdog
walks the agent's process tree on a timer and kills the first match.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

import psutil

from .activity import ActivityLog, FailureLog
from .constants import WatchdogDefaults
from .signals import ControlSignal, SignalWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockingPattern:
    """One known-blocking command shape"""
    name: str
    pattern: re.Pattern
    reason: str
    fix: str
    # Presence of this pattern makes the command non-interactive
    exempt: Optional[re.Pattern] = None

    def matches(self, cmdline: str) -> bool:
        if not self.pattern.search(cmdline):
            return False
        return not (self.exempt and self.exempt.search(cmdline))


# Evaluated in order; first match wins
BLOCKING_PATTERNS: List[BlockingPattern] = [
    BlockingPattern(
        name="npm-init",
        pattern=re.compile(r"(?:^|\s)(?:\S*/)?npm\s+init\b"),
        exempt=re.compile(r"(?:^|\s)(?:-y|--yes)\b"),
        reason="npm init waiting for interactive answers",
        fix="use `npm init -y`",
    ),
    BlockingPattern(
        name="git-commit-no-message",
        pattern=re.compile(r"(?:^|\s)(?:\S*/)?git\s+commit\b"),
        exempt=re.compile(r"(?:^|\s)(?:-m|--message|-F|--file|--no-edit)(?:\s|=|$)|(?:^|\s)-[a-zA-Z]*m\S*"),
        reason="git commit waiting for an editor",
        fix='use `git commit -m "message"`',
    ),
    BlockingPattern(
        name="bare-node",
        pattern=re.compile(r"(?:^|\s)(?:\S*/)?node\s*$"),
        reason="node REPL waiting for input",
        fix="run node with a script file or -e",
    ),
    BlockingPattern(
        name="bare-python",
        pattern=re.compile(r"(?:^|\s)(?:\S*/)?python[0-9.]*\s*$"),
        reason="python REPL waiting for input",
        fix="run python with a script file or -c",
    ),
]


def match_blocking(cmdline: str,
                   patterns: Sequence[BlockingPattern] = BLOCKING_PATTERNS) -> Optional[BlockingPattern]:
    """Return the first blocking pattern matching an invocation, if any"""
    cmdline = cmdline.strip()
    if not cmdline:
        return None
    for blocking in patterns:
        if blocking.matches(cmdline):
            return blocking
    return None


def list_descendants(pid: int) -> List[psutil.Process]:
    """
    All descendants of pid, breadth-first.

    Uses an explicit worklist over Process.children() so deep trees never
    hit the recursion limit. Processes that vanish mid-walk are skipped.
    """
    try:
        root = psutil.Process(pid)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []

    descendants: List[psutil.Process] = []
    seen = {pid}
    worklist = [root]
    while worklist:
        proc = worklist.pop(0)
        try:
            children = proc.children()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        for child in children:
            if child.pid in seen:
                continue
            seen.add(child.pid)
            descendants.append(child)
            worklist.append(child)
    return descendants


def kill_process_tree(pid: int, grace_seconds: float = WatchdogDefaults.TERMINATE_GRACE_SECONDS) -> int:
    """
    Terminate pid and every descendant; idempotent.

    Descendants are collected before anything is signalled so orphans
    re-parented to init are not missed. SIGTERM first, SIGKILL for
    whatever survives the grace period.

    Returns:
        Number of processes that were still alive when signalled
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return 0

    procs = list_descendants(pid) + [root]
    alive = []
    for proc in procs:
        try:
            proc.terminate()
            alive.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            logger.warning(f"Cannot terminate pid {proc.pid}: {e}")

    if not alive:
        return 0

    _, survivors = psutil.wait_procs(alive, timeout=grace_seconds)
    for proc in survivors:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            logger.warning(f"Cannot kill pid {proc.pid}: {e}")
    if survivors:
        psutil.wait_procs(survivors, timeout=grace_seconds)
    logger.debug(f"Killed process tree of {pid} ({len(alive)} processes, {len(survivors)} forced)")
    return len(alive)


def _cmdline(proc: psutil.Process) -> str:
    try:
        return " ".join(proc.cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return ""


class Watchdog:
    """
    Periodic scanner of one agent subprocess tree.

    One-shot: after the first kill it emits GUTTER and stops, since the loop
    controller tears the whole iteration down on GUTTER anyway.
    """

    def __init__(self, pid: int, writer: SignalWriter,
                 activity_log: ActivityLog, failure_log: FailureLog,
                 interval: float = WatchdogDefaults.INTERVAL_SECONDS,
                 patterns: Sequence[BlockingPattern] = BLOCKING_PATTERNS):
        self.pid = pid
        self.writer = writer
        self.activity_log = activity_log
        self.failure_log = failure_log
        self.interval = interval
        self.patterns = patterns
        self.triggered: Optional[BlockingPattern] = None

    def scan(self) -> Optional[tuple]:
        """One pass over the tree; returns (process, cmdline, pattern) on match"""
        for proc in list_descendants(self.pid):
            cmdline = _cmdline(proc)
            blocking = match_blocking(cmdline, self.patterns)
            if blocking:
                return proc, cmdline, blocking
        return None

    def _root_alive(self) -> bool:
        try:
            proc = psutil.Process(self.pid)
            return proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    async def run(self) -> Optional[BlockingPattern]:
        """Scan until a blocking process is found or the agent exits"""
        loop = asyncio.get_event_loop()
        try:
            while self._root_alive():
                await asyncio.sleep(self.interval)
                # psutil walks /proc synchronously
                found = await loop.run_in_executor(None, self.scan)
                if found:
                    await self._intervene(*found)
                    return self.triggered
            return None
        finally:
            await self.writer.close()

    async def _intervene(self, proc: psutil.Process, cmdline: str, blocking: BlockingPattern) -> None:
        self.triggered = blocking
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            logger.debug(f"Blocking process {proc.pid} exited before kill")
        except psutil.AccessDenied as e:
            logger.warning(f"Cannot kill blocking process {proc.pid}: {e}")

        logger.warning(f"WATCHDOG: killed pid {proc.pid} ({blocking.reason}): {cmdline}")
        self.activity_log.note(f"⚠️ WATCHDOG: killed blocking command: {cmdline}",
                               timestamp=datetime.now())
        self.failure_log.record_block("BLOCKED: Interactive Command", [
            ("Command", f"`{cmdline}`"),
            ("Reason", blocking.reason),
            ("Action", f"killed pid {proc.pid}, GUTTER raised"),
            ("Fix", blocking.fix),
        ])
        await self.writer.send(ControlSignal.GUTTER)
