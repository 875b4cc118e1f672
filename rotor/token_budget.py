"""
Token budget model for agent context rotation

The estimator here is intentionally crude: total observed bytes divided by a
fixed bytes-per-token ratio. It is a backpressure heuristic used to decide
when an agent should be rotated, not a billing-accurate token count. Both
the ratio and the per-model thresholds are empirical and live in config.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .config import TokenBudgetConfig
from .constants import TokenDefaults
from .utils import format_kb

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    """Immutable (warn, rotate) pair for one model tier"""
    warn: int
    rotate: int
    tier: str = "default"

    def __post_init__(self):
        if self.warn >= self.rotate:
            raise ValueError(f"warn ({self.warn}) must be below rotate ({self.rotate})")


def thresholds(model_id: Optional[str],
               table: Optional[Iterable[Dict[str, Any]]] = None,
               default: Optional[Thresholds] = None) -> Thresholds:
    """
    Look up the (warn, rotate) thresholds for a model identifier.

    Entries are matched in order with shell-style globs against the
    lowercased model id. Unknown or empty identifiers never fail; they
    resolve to the conservative default tier.

    Args:
        model_id: Model name as passed to the agent (e.g. "gpt-5.2-high")
        table: Ordered threshold entries ({"patterns", "warn", "rotate"})
        default: Tier used when nothing matches

    Returns:
        Thresholds for the first matching tier
    """
    budget_defaults = TokenBudgetConfig()
    if table is None:
        table = budget_defaults.model_thresholds
    if default is None:
        default = Thresholds(budget_defaults.default_warn, budget_defaults.default_rotate)

    model = (model_id or "").lower()
    if not model:
        return default

    for entry in table:
        for pattern in entry.get("patterns", []):
            if fnmatch.fnmatchcase(model, pattern.lower()):
                return Thresholds(int(entry["warn"]), int(entry["rotate"]), tier=pattern)

    logger.debug(f"No threshold tier for model '{model_id}', using conservative default")
    return default


def thresholds_from_config(model_id: Optional[str], config: TokenBudgetConfig) -> Thresholds:
    """Resolve thresholds using the configured table and default tier"""
    return thresholds(
        model_id,
        table=config.model_thresholds,
        default=Thresholds(config.default_warn, config.default_rotate),
    )


@dataclass
class TokenBudget:
    """
    Per-iteration byte counters.

    Owned by a single classifier for the life of one agent subprocess and
    thrown away when the iteration ends.
    """
    prompt_bytes: int = TokenDefaults.PROMPT_BYTES
    bytes_per_token: int = TokenDefaults.BYTES_PER_TOKEN
    read_bytes: int = 0
    write_bytes: int = 0
    shell_bytes: int = 0
    assistant_bytes: int = 0
    tool_calls: int = 0

    @property
    def total_bytes(self) -> int:
        return (self.prompt_bytes + self.read_bytes + self.write_bytes
                + self.shell_bytes + self.assistant_bytes)

    def add_read(self, num_bytes: int) -> None:
        self.read_bytes += max(0, num_bytes)

    def add_write(self, num_bytes: int) -> None:
        self.write_bytes += max(0, num_bytes)

    def add_shell(self, num_bytes: int) -> None:
        self.shell_bytes += max(0, num_bytes)

    def add_assistant(self, num_bytes: int) -> None:
        self.assistant_bytes += max(0, num_bytes)

    def breakdown(self) -> str:
        return (f"[read:{format_kb(self.read_bytes)} write:{format_kb(self.write_bytes)} "
                f"assist:{format_kb(self.assistant_bytes)} shell:{format_kb(self.shell_bytes)}]")


def estimate_tokens(budget: TokenBudget) -> int:
    """Approximate token count: total bytes / bytes-per-token."""
    return budget.total_bytes // budget.bytes_per_token


def usage_percent(tokens: int, limits: Thresholds) -> int:
    """Integer percentage of the rotate threshold"""
    return tokens * 100 // limits.rotate


def health_indicator(tokens: int, limits: Thresholds) -> str:
    """Cosmetic context-health marker for activity lines."""
    pct = usage_percent(tokens, limits)
    if pct < TokenDefaults.HEALTH_WARNING_PCT:
        return "🟢"
    if pct < TokenDefaults.HEALTH_CRITICAL_PCT:
        return "🟡"
    return "🔴"


def token_status_line(budget: TokenBudget, limits: Thresholds) -> str:
    """Build the periodic TOKENS status message"""
    tokens = estimate_tokens(budget)
    pct = usage_percent(tokens, limits)
    status = f"TOKENS: {tokens} / {limits.rotate} ({pct}%)"
    if pct >= TokenDefaults.IMMINENT_PCT:
        status += " - rotation imminent"
    elif pct >= TokenDefaults.APPROACHING_PCT:
        status += " - approaching limit"
    return f"{status} {budget.breakdown()}"


def describe_table(table: List[Dict[str, Any]]) -> List[str]:
    """Human-readable rows for `rotor thresholds`"""
    rows = []
    for entry in table:
        patterns = ", ".join(entry.get("patterns", []))
        rows.append(f"{patterns}: warn={entry['warn']} rotate={entry['rotate']}")
    return rows
