"""
One iteration: a single agent subprocess and the tasks supervising it

For the lifetime of the process three tasks run next to the signal reader:

- the parser pipeline (stdout -> decoder -> classifier -> logs + channel)
- the blocking-process watchdog
- a liveness spinner, purely cosmetic

The reader acts on the first terminal signal by killing the whole process
tree, then everything is torn down before the outcome is returned.
"""

import asyncio
import itertools
import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .activity import ActivityLog, FailureLog, RunPaths
from .classifier import Classification, EventClassifier, IterationState
from .config import RotorConfig
from .detectors import GutterDetector
from .errors import AgentLaunchError
from .event_stream import StreamDecoder
from .log_utils import Colors
from .signals import ControlSignal, SignalChannel, SignalWriter
from .token_budget import (
    Thresholds,
    TokenBudget,
    estimate_tokens,
    health_indicator,
    thresholds_from_config,
    token_status_line,
)
from .watchdog import Watchdog, kill_process_tree

logger = logging.getLogger(__name__)

SPINNER_FRAMES = '⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏'
SPINNER_INTERVAL = 0.1
# Time allowed for the parser to drain after the tree is killed
DRAIN_TIMEOUT = 5.0

SIGNAL_MESSAGES = {
    ControlSignal.ROTATE: "🔄 Context rotation triggered - stopping agent...",
    ControlSignal.GUTTER: "🚨 Gutter detected - killing stuck agent...",
    ControlSignal.COMPLETE: "✅ Agent signaled completion!",
}


@dataclass
class IterationOutcome:
    """What the loop controller needs to know about a finished iteration"""
    iteration: int
    signal: Optional[ControlSignal] = None
    signal_source: Optional[str] = None
    session_id: Optional[str] = None
    tokens: int = 0
    warned: bool = False
    exit_code: Optional[int] = None
    duration: float = 0.0


class IterationRunner:
    """
    Runs one agent subprocess per call to run().

    Every call builds fresh per-iteration state (token budget, detectors,
    classifier, signal channel) and starts a cold agent session; nothing
    carries over from the previous call.
    """

    def __init__(self, config: RotorConfig, paths: RunPaths, model: Optional[str] = None):
        self.config = config
        self.paths = paths
        self.model = model or config.agent.model
        self.activity_log = ActivityLog(paths.activity_log)
        self.failure_log = FailureLog(paths.errors_log)
        self._spinner_active = False

    @property
    def limits(self) -> Thresholds:
        return thresholds_from_config(self.model, self.config.token_budget)

    def build_command(self, prompt: str) -> List[str]:
        agent = self.config.agent
        cmd = list(agent.command)
        if self.model:
            cmd += ["--model", self.model]
        cmd += list(agent.extra_flags)
        cmd.append(prompt)
        return cmd

    def build_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update({key: str(value) for key, value in self.config.agent.environment.items()})
        env['PYTHONUNBUFFERED'] = '1'
        return env

    def new_state(self) -> IterationState:
        budget_config = self.config.token_budget
        return IterationState(
            budget=TokenBudget(
                prompt_bytes=budget_config.prompt_bytes,
                bytes_per_token=budget_config.bytes_per_token,
            ),
            detector=GutterDetector.from_config(self.config.detectors),
            limits=self.limits,
        )

    async def run(self, iteration: int, prompt: str) -> IterationOutcome:
        """
        Launch the agent and supervise it until it exits or is stopped.

        Raises:
            AgentLaunchError: If the agent command cannot be executed
        """
        started = time.monotonic()
        state = self.new_state()
        classifier = EventClassifier(
            state,
            tracker_command=self.config.tracker.command,
            bytes_per_line=self.config.token_budget.bytes_per_line,
        )
        channel = SignalChannel()
        parser_out = channel.open_writer("parser")
        watchdog_out = channel.open_writer("watchdog") if self.config.watchdog.enabled else None

        cmd = self.build_command(prompt)
        logger.debug(f"Agent command: {' '.join(cmd[:-1])} <prompt: {len(prompt)} chars>")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self.paths.workspace),
                env=self.build_env(),
                start_new_session=True,
                limit=self.config.agent.stream_limit,
            )
        except (FileNotFoundError, PermissionError) as e:
            await parser_out.close()
            if watchdog_out:
                await watchdog_out.close()
            raise AgentLaunchError(f"Cannot start agent '{cmd[0]}': {e}", command=cmd) from e

        logger.info(f"Agent started (pid {process.pid})")
        outcome = IterationOutcome(iteration=iteration)

        pump_task = asyncio.ensure_future(self._pump(process, classifier, parser_out))
        tasks = [pump_task]
        if watchdog_out:
            watchdog = Watchdog(
                process.pid, watchdog_out, self.activity_log, self.failure_log,
                interval=self.config.watchdog.interval_seconds,
            )
            watchdog_task = asyncio.ensure_future(watchdog.run())
            # The watchdog has nothing left to watch once the stream ends
            pump_task.add_done_callback(lambda _: watchdog_task.cancel())
            tasks.append(watchdog_task)
        if self._spinner_enabled():
            tasks.append(asyncio.ensure_future(self._spin()))

        try:
            async for source, signal in channel.receive():
                self._clear_spinner()
                if signal is ControlSignal.WARN:
                    outcome.warned = True
                    logger.warning("⚠️  WARN: context warning - agent should wrap up soon...")
                    continue
                outcome.signal = signal
                outcome.signal_source = source
                logger.warning(SIGNAL_MESSAGES[signal])
                await self._kill(process.pid)
                break
            await asyncio.wait([pump_task], timeout=DRAIN_TIMEOUT)
        finally:
            await self._teardown(process, tasks)

        outcome.exit_code = process.returncode
        outcome.tokens = estimate_tokens(state.budget)
        outcome.session_id = state.session_id
        outcome.duration = time.monotonic() - started
        logger.info(f"Agent exited (code {process.returncode}) after {outcome.duration:.0f}s, "
                    f"~{outcome.tokens} tokens")
        return outcome

    async def _pump(self, process, classifier: EventClassifier, writer: SignalWriter) -> None:
        """Parser pipeline: one line at a time, in arrival order"""
        state = classifier.state
        limits = state.limits
        decoder = StreamDecoder(max_line_length=self.config.agent.stream_limit)
        status_interval = self.config.token_budget.status_interval
        last_status = time.monotonic()

        self.activity_log.banner([
            f"Rotor Session Started: {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}",
            f"Model: {self.model} | Token limit: {limits.rotate} (warn: {limits.warn})",
        ])
        try:
            while True:
                try:
                    line = await process.stdout.readline()
                except ValueError as e:
                    # Line longer than the stream limit; the reader has skipped it
                    logger.warning(f"Dropping oversize agent output line: {e}")
                    continue
                if not line:
                    break

                for event in decoder.feed(line.decode('utf-8', errors='replace')):
                    result = classifier.classify(event)
                    self._publish(result, state)
                    for signal in result.signals:
                        await writer.send(signal)

                now = time.monotonic()
                if now - last_status >= status_interval:
                    self._log_token_status(state)
                    last_status = now

            decoder.flush()
            self._log_token_status(state)
            await process.wait()
        finally:
            await writer.close()

    def _publish(self, result: Classification, state: IterationState) -> None:
        for record in result.records:
            self.activity_log.append(record)
        if result.notes:
            health = health_indicator(state.tokens, state.limits)
            for note in result.notes:
                self.activity_log.note(note, health)
        for failure in result.failures:
            self.failure_log.record(failure)

    def _log_token_status(self, state: IterationState) -> None:
        health = health_indicator(state.tokens, state.limits)
        self.activity_log.note(token_status_line(state.budget, state.limits), health)

    async def _kill(self, pid: int) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None, kill_process_tree, pid, self.config.watchdog.terminate_grace_seconds
        )

    async def _teardown(self, process, tasks: List[asyncio.Future]) -> None:
        if process.returncode is None:
            await self._kill(process.pid)
        for task in tasks:
            if not task.done():
                task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Iteration task failed: {result!r}")
        await process.wait()
        self._clear_spinner()

    def _spinner_enabled(self) -> bool:
        return self.config.logging.show_spinner and sys.stderr.isatty()

    async def _spin(self) -> None:
        watch = f"tail -f {self.paths.activity_log.relative_to(self.paths.workspace)}"
        self._spinner_active = True
        try:
            for frame in itertools.cycle(SPINNER_FRAMES):
                sys.stderr.write(f"{Colors.CLEAR_LINE}  🔄 Agent working... {frame}  (watch: {watch})")
                sys.stderr.flush()
                await asyncio.sleep(SPINNER_INTERVAL)
        finally:
            self._clear_spinner()
            self._spinner_active = False

    def _clear_spinner(self) -> None:
        if self._spinner_active:
            sys.stderr.write(Colors.CLEAR_LINE)
            sys.stderr.flush()
