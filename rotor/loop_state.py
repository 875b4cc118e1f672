"""
Loop state machine for a Rotor run

Tracks the run through STARTING → RUNNING → {ROTATING, GUTTERED, COMPLETED,
EXHAUSTED}, with ROTATING looping back to STARTING for the next iteration.
Every transition is recorded and the whole state is persisted to the run
directory so an interrupted run can be inspected afterwards.
"""

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .errors import StateTransitionError

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """States of the iteration loop"""
    STARTING = "starting"
    RUNNING = "running"
    ROTATING = "rotating"
    GUTTERED = "guttered"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]


VALID_TRANSITIONS: Dict[LoopState, Set[LoopState]] = {
    LoopState.STARTING: {LoopState.RUNNING},
    LoopState.RUNNING: {
        LoopState.ROTATING,
        LoopState.GUTTERED,
        LoopState.COMPLETED,
        LoopState.EXHAUSTED,
    },
    LoopState.ROTATING: {LoopState.STARTING, LoopState.EXHAUSTED},
    LoopState.GUTTERED: set(),  # Terminal: needs a human
    LoopState.COMPLETED: set(),
    LoopState.EXHAUSTED: set(),
}


@dataclass
class StateTransition:
    """Represents a state transition event"""
    from_state: LoopState
    to_state: LoopState
    timestamp: datetime
    trigger: str
    iteration: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoopContext:
    """Run facts that survive across iterations"""
    run_id: str = ""
    model: str = ""
    iteration: int = 0
    session_id: Optional[str] = None
    last_signal: Optional[str] = None
    started_at: Optional[str] = None


class LoopStateMachine:
    """
    State machine for one run of the iteration loop.

    Invalid transitions raise StateTransitionError; each valid one is
    appended to a bounded history and persisted when a path is set.
    """

    VALID_TRANSITIONS = VALID_TRANSITIONS

    def __init__(self, context: Optional[LoopContext] = None,
                 persistence_path: Optional[Path] = None,
                 max_history_size: int = 1000):
        self._current_state = LoopState.STARTING
        self.context = context or LoopContext()
        self._persistence_path = Path(persistence_path) if persistence_path else None
        self._transition_history: deque = deque(maxlen=max_history_size)
        if self.context.started_at is None:
            self.context.started_at = datetime.now().isoformat()

    @property
    def current_state(self) -> LoopState:
        return self._current_state

    @property
    def transition_history(self) -> List[StateTransition]:
        return list(self._transition_history)

    def can_transition_to(self, target_state: LoopState) -> bool:
        return target_state in self.VALID_TRANSITIONS.get(self._current_state, set())

    def transition_to(self, target_state: LoopState, trigger: str,
                      metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Move to target_state.

        Args:
            target_state: State to transition to
            trigger: What caused the transition (signal name, "tracker", ...)
            metadata: Extra details kept with the history entry

        Raises:
            StateTransitionError: If the transition isn't allowed
        """
        if not self.can_transition_to(target_state):
            error_msg = (f"Invalid transition from {self._current_state.value} "
                         f"to {target_state.value}")
            logger.error(error_msg)
            raise StateTransitionError(error_msg)

        transition = StateTransition(
            from_state=self._current_state,
            to_state=target_state,
            timestamp=datetime.now(),
            trigger=trigger,
            iteration=self.context.iteration,
            metadata=metadata or {},
        )
        old_state = self._current_state
        self._current_state = target_state
        if target_state is LoopState.STARTING:
            # The next agent starts cold
            self.context.session_id = None
        self._transition_history.append(transition)
        logger.debug(f"Loop state: {old_state.value} → {target_state.value} (trigger: {trigger})")
        self.persist()

    def update_context(self, **kwargs) -> None:
        for key, value in kwargs.items():
            if not hasattr(self.context, key):
                raise AttributeError(f"Unknown loop context field: {key}")
            setattr(self.context, key, value)
        self.persist()

    def get_state_summary(self) -> Dict[str, Any]:
        return {
            "current_state": self._current_state.value,
            "context": asdict(self.context),
            "transition_history": [
                {
                    "from_state": t.from_state.value,
                    "to_state": t.to_state.value,
                    "timestamp": t.timestamp.isoformat(),
                    "trigger": t.trigger,
                    "iteration": t.iteration,
                    "metadata": t.metadata,
                }
                for t in self._transition_history
            ],
        }

    def persist(self) -> None:
        """Write state.json atomically; failures are logged, not raised"""
        if not self._persistence_path:
            return
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._persistence_path.with_suffix('.tmp')
            with open(temp_path, 'w') as f:
                json.dump(self.get_state_summary(), f, indent=2, default=str)
            temp_path.replace(self._persistence_path)
        except OSError as e:
            logger.error(f"Failed to persist loop state: {e}")

    @classmethod
    def load(cls, path: Path) -> Optional[Dict[str, Any]]:
        """Read a persisted state summary, None if missing or unreadable"""
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load loop state from {path}: {e}")
            return None
        if not isinstance(data, dict) or "current_state" not in data:
            logger.warning(f"Ignoring malformed loop state in {path}")
            return None
        return data
