"""
Rotor - context-rotating supervision for coding agents

Runs a coding agent in a loop of fresh subprocesses, watching its event
stream for token budget, stuck patterns and interactive commands that would
block forever.
"""

from .config import ConfigLoader, RotorConfig
from .orchestrator import LoopController, RunResult, RunStatus
from .signals import ControlSignal
from .token_budget import Thresholds, TokenBudget, estimate_tokens, thresholds

__version__ = "0.1.0"

__all__ = [
    "ConfigLoader",
    "RotorConfig",
    "LoopController",
    "RunResult",
    "RunStatus",
    "ControlSignal",
    "Thresholds",
    "TokenBudget",
    "estimate_tokens",
    "thresholds",
]
