"""
Iteration loop controller

Starts one agent per iteration and decides, after each one is torn down,
whether the run is complete, stuck, out of iterations, or should continue.
The tracker is the authority on "done": an agent claiming completion while
work remains is logged and the loop continues.

Every iteration starts a cold agent session. The only state that crosses
iterations is the iteration counter and whatever the agent committed to git.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .activity import ProgressLog, RunPaths
from .config import RotorConfig
from .iteration import IterationOutcome, IterationRunner
from .loop_state import LoopContext, LoopState, LoopStateMachine
from .prompts import PromptContext, PromptGenerator
from .signals import ControlSignal
from .tracker import create_tracker
from .vcs import GitRepository

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """How a run ended"""
    COMPLETED = "completed"
    GUTTERED = "guttered"
    EXHAUSTED = "exhausted"


@dataclass
class RunResult:
    """Final report of a run"""
    status: RunStatus
    iterations: int
    last_signal: Optional[ControlSignal] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED


class LoopController:
    """
    Drives iterations until the tracker reports no outstanding work, the
    agent gets stuck, or the iteration budget runs out.

    The runner, tracker and repository are injectable so the decision logic
    can be exercised without a real agent, `bd` or git.
    """

    def __init__(self, config: RotorConfig, workspace: Path, run_id: str,
                 model: Optional[str] = None,
                 task_file: Optional[str] = None,
                 runner: Optional[IterationRunner] = None,
                 tracker=None,
                 vcs: Optional[GitRepository] = None,
                 prompts: Optional[PromptGenerator] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config
        self.workspace = Path(workspace)
        self.run_id = run_id
        self.model = model or config.agent.model
        self.task_file = task_file
        self.paths = RunPaths(self.workspace, run_id, config.orchestration.state_dir)
        self.runner = runner or IterationRunner(config, self.paths, self.model)
        self.tracker = tracker or create_tracker(
            config.tracker, self.workspace,
            Path(task_file) if task_file else None,
        )
        self.vcs = vcs or GitRepository(self.workspace)
        self.prompts = prompts or PromptGenerator()
        self.progress = ProgressLog(self.paths.progress_file)
        self.label = self.tracker.label_for(run_id)
        self.state = LoopStateMachine(
            LoopContext(run_id=run_id, model=self.model),
            persistence_path=self.paths.state_file,
        )
        self._sleep = sleep

    def outstanding(self) -> Optional[int]:
        """Outstanding tracker items for this run, None if unknown"""
        return self.tracker.outstanding(self.label)

    def prepare(self) -> None:
        """Create the run directory and seed guardrails"""
        self.paths.init()
        self.prompts.init_guardrails(self.paths.guardrails_file)

    async def run(self) -> RunResult:
        """
        Run iterations to a terminal state.

        Raises:
            AgentLaunchError: If the agent can't be started at all
        """
        orchestration = self.config.orchestration
        self.prepare()

        if self.vcs.checkpoint(orchestration.initial_checkpoint_message):
            logger.info("📦 Committed uncommitted changes before starting")
        if orchestration.branch:
            logger.info(f"🌿 Using branch: {orchestration.branch}")
            self.vcs.create_branch(orchestration.branch)

        logger.info(f"🚀 Starting loop for run {self.run_id} (label: {self.label}, "
                    f"max {orchestration.max_iterations} iterations)")

        iteration = 1
        while True:
            self.state.update_context(iteration=iteration)
            self.state.transition_to(LoopState.RUNNING, "launch")
            outcome = await self._run_iteration(iteration)
            signal = outcome.signal
            self.state.update_context(last_signal=signal.value if signal else None,
                                      session_id=outcome.session_id)

            result = self._decide(outcome)
            if result is not None:
                return result

            self._checkpoint(iteration)
            self.state.transition_to(LoopState.ROTATING, signal.value if signal else "exit")

            if iteration >= orchestration.max_iterations:
                return self._finish_exhausted(iteration, signal)

            await self._sleep(orchestration.iteration_pause_seconds)
            self.state.transition_to(LoopState.STARTING, "next iteration")
            iteration += 1

    async def _run_iteration(self, iteration: int) -> IterationOutcome:
        logger.info("=" * 67)
        logger.info(f"ITERATION {iteration} (model: {self.model})")
        logger.info("=" * 67)
        logger.info(f"Monitor: tail -f {self.paths.activity_log}")
        self.progress.log(f"**Session {iteration} started** (model: {self.model})")

        prompt = self.prompts.iteration_prompt(PromptContext(
            iteration=iteration,
            paths=self.paths,
            task_file=self.task_file,
            tracker_label=self.label if self.config.tracker.backend == "beads" else None,
            tracker_command=self.config.tracker.command,
            recent_error_lines=self.config.orchestration.recent_error_lines,
        ))
        return await self.runner.run(iteration, prompt)

    def _decide(self, outcome: IterationOutcome) -> Optional[RunResult]:
        """Terminal result for this iteration, or None to keep going"""
        iteration = outcome.iteration
        signal = outcome.signal
        remaining = self.outstanding()

        if remaining == 0:
            suffix = " (agent signaled)" if signal is ControlSignal.COMPLETE else ""
            self.progress.log(f"**Session {iteration} ended** - ✅ TASK COMPLETE{suffix}")
            if signal is not ControlSignal.GUTTER:
                self._checkpoint(iteration)
            self.state.transition_to(LoopState.COMPLETED, "tracker")
            if self.config.orchestration.open_pr:
                self._open_pull_request()
            return self._result(RunStatus.COMPLETED, iteration, signal, (
                f"🎉 COMPLETE! All tracked work for {self.label} is done.\n"
                f"Completed in {iteration} iteration(s). Check git log for detailed history."
            ))

        if signal is ControlSignal.GUTTER:
            self.progress.log(f"**Session {iteration} ended** - 🚨 GUTTER (agent stuck)")
            self.state.transition_to(LoopState.GUTTERED, "GUTTER",
                                     {"source": outcome.signal_source})
            return self._result(RunStatus.GUTTERED, iteration, signal, (
                f"🚨 GUTTER detected in iteration {iteration}. "
                f"Check {self.paths.errors_log} for details.\n"
                f"   The agent may be stuck. Consider:\n"
                f"   1. Check {self.paths.guardrails_file} for lessons\n"
                f"   2. Manually fix the blocking issue (see git log for the last good state)\n"
                f"   3. Re-run the loop"
            ))

        remaining_text = "unknown" if remaining is None else str(remaining)
        if signal is ControlSignal.COMPLETE:
            logger.warning(f"⚠️  Agent signaled COMPLETE but {remaining_text} item(s) remain. "
                           "Continuing with next iteration...")
            self.progress.log(f"**Session {iteration} ended** - Agent signaled complete but work remains")
        elif signal is ControlSignal.ROTATE:
            logger.info("🔄 Rotating to fresh context...")
            self.progress.log(f"**Session {iteration} ended** - 🔄 Context rotation (token limit reached)")
        else:
            logger.info(f"📋 Agent finished but {remaining_text} item(s) remaining.")
            self.progress.log(f"**Session {iteration} ended** - Agent finished naturally "
                              f"({remaining_text} remaining)")
        return None

    def _finish_exhausted(self, iteration: int, signal: Optional[ControlSignal]) -> RunResult:
        max_iterations = self.config.orchestration.max_iterations
        self.state.transition_to(LoopState.EXHAUSTED, "max iterations")
        self.progress.log(f"**Loop ended** - ⚠️ Max iterations ({max_iterations}) reached")
        return self._result(RunStatus.EXHAUSTED, iteration, signal, (
            f"⚠️  EXHAUSTED: Max iterations ({max_iterations}) reached. Task may not be complete.\n"
            f"   Check {self.paths.errors_log} and git log for progress."
        ))

    def _result(self, status: RunStatus, iteration: int,
                signal: Optional[ControlSignal], message: str) -> RunResult:
        logger.info(f"Run {self.run_id} ended: {status.value.upper()} after {iteration} iteration(s)")
        return RunResult(status=status, iterations=iteration, last_signal=signal, message=message)

    def _checkpoint(self, iteration: int) -> None:
        message = self.config.orchestration.iteration_checkpoint_message.format(iteration=iteration)
        self.vcs.checkpoint(message)

    def _open_pull_request(self) -> None:
        branch = self.config.orchestration.branch
        if not branch:
            logger.warning("open_pr is set but no branch was configured; skipping pull request")
            return
        logger.info("📝 Opening pull request...")
        if self.vcs.push(branch):
            self.vcs.open_pull_request()
