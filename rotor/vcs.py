"""
Version-control boundary (git and the GitHub CLI)

Everything here is best effort: a failed git call is logged as a warning and
reported as False, never raised, because the next checkpoint can still
catch up.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60


class GitRepository:
    """Thin wrapper around the git and gh command-line tools"""

    def __init__(self, workspace: Path, timeout: int = GIT_TIMEOUT):
        self.workspace = Path(workspace)
        self.timeout = timeout

    def _run(self, args: List[str]) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                cwd=self.workspace,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.warning(f"Command not found: {args[0]}")
        except subprocess.TimeoutExpired as e:
            logger.warning(f"`{' '.join(args)}` timed out after {e.timeout}s")
        return None

    def _git(self, *args: str) -> Optional[subprocess.CompletedProcess]:
        return self._run(["git", *args])

    def _ok(self, result: Optional[subprocess.CompletedProcess], action: str) -> bool:
        if result is None:
            return False
        if result.returncode != 0:
            logger.warning(f"git {action} failed (exit {result.returncode}): {result.stderr.strip()}")
            return False
        return True

    def is_repository(self) -> bool:
        result = self._git("rev-parse", "--git-dir")
        return result is not None and result.returncode == 0

    def has_changes(self) -> bool:
        result = self._git("status", "--porcelain")
        return result is not None and result.returncode == 0 and bool(result.stdout.strip())

    def checkpoint(self, message: str) -> bool:
        """
        Commit all working-tree changes if there are any.

        Returns:
            True if a commit was made
        """
        if not self.has_changes():
            logger.debug("Working tree clean, nothing to checkpoint")
            return False
        if not self._ok(self._git("add", "-A"), "add"):
            return False
        if not self._ok(self._git("commit", "-m", message), "commit"):
            return False
        logger.info(f"Checkpoint committed: {message}")
        return True

    def last_commit_subject(self) -> str:
        result = self._git("log", "-1", "--pretty=%s")
        if result is None or result.returncode != 0:
            return ""
        return result.stdout.strip()

    def create_branch(self, branch: str) -> bool:
        """Create and switch to branch, or switch if it already exists"""
        result = self._git("checkout", "-b", branch)
        if result is not None and result.returncode == 0:
            logger.info(f"Created branch {branch}")
            return True
        return self._ok(self._git("checkout", branch), "checkout")

    def push(self, branch: Optional[str] = None) -> bool:
        if branch:
            result = self._git("push", "-u", "origin", branch)
            if result is not None and result.returncode == 0:
                return True
        return self._ok(self._git("push"), "push")

    def open_pull_request(self) -> bool:
        """Open a PR for the current branch with `gh pr create --fill`"""
        result = self._run(["gh", "pr", "create", "--fill"])
        if result is None:
            logger.warning("gh CLI not available. Push complete, create PR manually.")
            return False
        if result.returncode != 0:
            logger.warning(f"Could not create PR automatically: {result.stderr.strip()}")
            return False
        logger.info(f"Opened pull request: {result.stdout.strip()}")
        return True
