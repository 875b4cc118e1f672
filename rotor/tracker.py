"""
Task tracker boundary

The tracker, not the agent, decides whether a run is done. Two backends:

- BeadsTracker shells out to the Beads `bd` CLI and counts open items
  carrying the run's label
- ChecklistTracker counts unchecked markdown checkboxes in the task file,
  for runs without a tracker

Both return None when the answer is unknown; the caller treats that as
"work remains".
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import TrackerConfig

logger = logging.getLogger(__name__)

# "- [ ] item", "* [x] item", "1. [ ] item"; not brackets in prose
CHECKBOX_RE = re.compile(r'^\s*(?:[-*]|\d+\.)\s+\[( |x|X)\]', re.MULTILINE)


@dataclass
class TrackedItem:
    """One issue as reported by the tracker"""
    id: str
    title: str = ""
    status: str = "open"
    labels: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'TrackedItem':
        """Create a TrackedItem from tracker JSON output"""
        labels = data.get('labels') or []
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title', '') or '',
            status=data.get('status', 'open') or 'open',
            labels=[str(label) for label in labels] if isinstance(labels, list) else [],
        )

    def is_closed(self, closed_statuses: List[str]) -> bool:
        return self.status.lower() in {s.lower() for s in closed_statuses}


class BeadsTracker:
    """Queries the Beads CLI for outstanding work under a label"""

    def __init__(self, config: Optional[TrackerConfig] = None, cwd: Optional[Path] = None):
        self.config = config or TrackerConfig()
        self.cwd = Path(cwd) if cwd else None

    def label_for(self, run_id: str) -> str:
        return self.config.label_template.format(run_id=run_id)

    def list_items(self, label: str) -> Optional[List[TrackedItem]]:
        """
        List items carrying a label.

        Returns:
            Items reported by the tracker, or None if the CLI failed
        """
        cmd = [self.config.command, "list", "--label", label, "--json"]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.config.timeout,
            )
        except FileNotFoundError:
            logger.warning(f"Tracker command not found: {self.config.command}")
            return None
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Tracker query timed out after {e.timeout}s")
            return None

        if result.returncode != 0:
            logger.warning(f"Tracker query failed (exit {result.returncode}): {result.stderr.strip()}")
            return None

        output = result.stdout.strip()
        if not output:
            return []
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse tracker output: {e}")
            return None

        if isinstance(data, dict):
            data = data.get('issues', [data])
        if not isinstance(data, list):
            logger.warning(f"Unexpected tracker output type: {type(data).__name__}")
            return None
        return [TrackedItem.from_dict(item) for item in data if isinstance(item, dict)]

    def outstanding(self, label: str) -> Optional[int]:
        """Number of items under the label that aren't closed, None if unknown"""
        items = self.list_items(label)
        if items is None:
            return None
        remaining = [item for item in items if not item.is_closed(self.config.closed_statuses)]
        logger.debug(f"Tracker: {len(remaining)}/{len(items)} items outstanding for {label}")
        return len(remaining)


class ChecklistTracker:
    """Counts unchecked `- [ ]` criteria in a markdown task file"""

    def __init__(self, task_file: Path):
        self.task_file = Path(task_file)

    def label_for(self, run_id: str) -> str:
        return str(self.task_file)

    def counts(self) -> Optional[tuple]:
        """(done, total) checkbox counts, None if the file can't be read"""
        try:
            text = self.task_file.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.warning(f"Task file not found: {self.task_file}")
            return None
        except OSError as e:
            logger.warning(f"Could not read task file {self.task_file}: {e}")
            return None
        marks = CHECKBOX_RE.findall(text)
        done = sum(1 for mark in marks if mark.lower() == 'x')
        return done, len(marks)

    def outstanding(self, label: str = "") -> Optional[int]:
        counts = self.counts()
        if counts is None:
            return None
        done, total = counts
        return total - done


def create_tracker(config: TrackerConfig, workspace: Path, task_file: Optional[Path] = None):
    """Build the tracker backend named in config"""
    if config.backend == "checklist":
        path = Path(task_file or config.task_file)
        if not path.is_absolute():
            path = Path(workspace) / path
        return ChecklistTracker(path)
    if config.backend != "beads":
        logger.warning(f"Unknown tracker backend '{config.backend}', using beads")
    return BeadsTracker(config, cwd=workspace)
