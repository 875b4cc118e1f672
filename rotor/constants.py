"""
Constants for the Rotor supervisor

This module contains the default values and magic numbers used throughout
the system. Most of them can be overridden from rotor.yaml.
"""


class TokenDefaults:
    """Defaults for the token budget model"""
    # Crude heuristic, not a billing-accurate count
    BYTES_PER_TOKEN = 4
    # Charged once at iteration start (prompt is ~2KB + file references)
    PROMPT_BYTES = 3000
    # Fallback read size estimate when the agent doesn't report contentSize
    BYTES_PER_LINE = 100
    # Seconds between TOKENS status lines in the activity log
    STATUS_INTERVAL = 30

    # Health indicator buckets (percent of rotate threshold)
    HEALTH_WARNING_PCT = 60
    HEALTH_CRITICAL_PCT = 80
    APPROACHING_PCT = 72
    IMMINENT_PCT = 90


class DetectorDefaults:
    """Defaults for gutter detection"""
    FAILURE_THRESHOLD = 3  # same command failed this many times
    THRASH_THRESHOLD = 5  # writes to one file within the window
    THRASH_WINDOW_SECONDS = 600  # 10 minutes


class WatchdogDefaults:
    """Defaults for the blocking-process watchdog"""
    INTERVAL_SECONDS = 3.0
    TERMINATE_GRACE_SECONDS = 3.0


class AgentSignals:
    """Literal sentinels the agent prints to talk to the supervisor"""
    COMPLETE_SENTINEL = "<ralph>COMPLETE</ralph>"
    GUTTER_SENTINEL = "<ralph>GUTTER</ralph>"


class LoopDefaults:
    """Defaults for the iteration loop"""
    MAX_ITERATIONS = 20
    ITERATION_PAUSE_SECONDS = 2.0
    DEFAULT_MODEL = "opus-4.5-thinking"
    INITIAL_CHECKPOINT_MESSAGE = "rotor: initial commit before loop"
    ITERATION_CHECKPOINT_MESSAGE = "rotor: checkpoint after iteration {iteration}"
    SIGNAL_QUEUE_SIZE = 16
    RECENT_ERROR_LINES = 30


class StreamDefaults:
    """Limits for reading the agent's stream-json output"""
    MAX_LINE_LENGTH = 16 * 1024 * 1024  # 16MB - large tool results arrive on one line
    MAX_BUFFER_LINES = 5000


class FileNames:
    """File naming patterns inside the state directory"""
    STATE_DIR = ".rotor"
    RUNS_DIR = "runs"
    ACTIVITY_LOG = "activity.log"
    ERRORS_LOG = "errors.log"
    PROGRESS_FILE = "progress.md"
    GUARDRAILS_FILE = "guardrails.md"
    STATE_FILE = "state.json"
    SUPERVISOR_LOG = "supervisor.log"
