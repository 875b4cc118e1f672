"""
Configuration management for Rotor
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict, is_dataclass

from .constants import (
    TokenDefaults,
    DetectorDefaults,
    WatchdogDefaults,
    LoopDefaults,
    StreamDefaults,
    FileNames,
)

logger = logging.getLogger(__name__)


def _default_threshold_table() -> List[Dict[str, Any]]:
    # Ordered: first matching pattern wins. ~80% of published context windows.
    return [
        {"patterns": ["*sonnet*4.5*thinking*", "*sonnet*thinking*4.5*"], "warn": 700000, "rotate": 800000},
        {"patterns": ["*gemini*3*pro*", "*gemini-3-pro*"], "warn": 700000, "rotate": 800000},
        {"patterns": ["*gpt-5*", "*gpt5*"], "warn": 190000, "rotate": 217600},
        {"patterns": ["*opus*4.5*thinking*", "*opus*thinking*4.5*", "*opus-4.5*"], "warn": 140000, "rotate": 160000},
        {"patterns": ["*composer*"], "warn": 140000, "rotate": 160000},
        {"patterns": ["*sonnet*4*", "*claude*sonnet*"], "warn": 140000, "rotate": 160000},
        {"patterns": ["*opus*", "*claude*opus*"], "warn": 140000, "rotate": 160000},
    ]


@dataclass
class AgentConfig:
    """Agent subprocess configuration"""
    command: List[str] = field(default_factory=lambda: [
        "cursor-agent", "-p", "--force", "--output-format", "stream-json"
    ])
    model: str = LoopDefaults.DEFAULT_MODEL
    extra_flags: List[str] = field(default_factory=list)
    # Keeps package managers and git from waiting on a terminal
    environment: Dict[str, str] = field(default_factory=lambda: {
        "CI": "1",
        "npm_config_yes": "true",
        "npm_config_audit": "false",
        "npm_config_fund": "false",
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_EDITOR": ":",
        "EDITOR": ":",
        "PAGER": "cat",
    })
    stream_limit: int = StreamDefaults.MAX_LINE_LENGTH


@dataclass
class TokenBudgetConfig:
    """Token estimation configuration (empirical, expect drift)"""
    bytes_per_token: int = TokenDefaults.BYTES_PER_TOKEN
    prompt_bytes: int = TokenDefaults.PROMPT_BYTES
    bytes_per_line: int = TokenDefaults.BYTES_PER_LINE
    status_interval: float = TokenDefaults.STATUS_INTERVAL
    default_warn: int = 70000
    default_rotate: int = 80000
    model_thresholds: List[Dict[str, Any]] = field(default_factory=_default_threshold_table)


@dataclass
class DetectorConfig:
    """Gutter detection configuration"""
    failure_threshold: int = DetectorDefaults.FAILURE_THRESHOLD
    thrash_threshold: int = DetectorDefaults.THRASH_THRESHOLD
    thrash_window_seconds: float = DetectorDefaults.THRASH_WINDOW_SECONDS


@dataclass
class WatchdogConfig:
    """Blocking-process watchdog configuration"""
    enabled: bool = True
    interval_seconds: float = WatchdogDefaults.INTERVAL_SECONDS
    terminate_grace_seconds: float = WatchdogDefaults.TERMINATE_GRACE_SECONDS


@dataclass
class OrchestrationConfig:
    """Loop configuration"""
    max_iterations: int = LoopDefaults.MAX_ITERATIONS
    iteration_pause_seconds: float = LoopDefaults.ITERATION_PAUSE_SECONDS
    state_dir: str = FileNames.STATE_DIR
    initial_checkpoint_message: str = LoopDefaults.INITIAL_CHECKPOINT_MESSAGE
    iteration_checkpoint_message: str = LoopDefaults.ITERATION_CHECKPOINT_MESSAGE
    branch: Optional[str] = None
    open_pr: bool = False
    recent_error_lines: int = LoopDefaults.RECENT_ERROR_LINES


@dataclass
class TrackerConfig:
    """Task tracker configuration"""
    # "beads" (bd CLI, by label) or "checklist" (unchecked boxes in task_file)
    backend: str = "beads"
    task_file: str = "TASK.md"
    command: str = "bd"
    label_template: str = "rotor:{run_id}"
    timeout: int = 30
    closed_statuses: List[str] = field(default_factory=lambda: ["closed", "done"])


@dataclass
class LoggingConfig:
    """Console and file logging configuration"""
    log_level: str = "INFO"
    file_log_level: str = "DEBUG"
    show_spinner: bool = True
    color: bool = True


@dataclass
class RotorConfig:
    """Complete Rotor configuration"""
    project: Dict[str, Any] = field(default_factory=lambda: {
        "root_directory": os.getcwd(),
        "task_file": None
    })
    agent: AgentConfig = field(default_factory=AgentConfig)
    token_budget: TokenBudgetConfig = field(default_factory=TokenBudgetConfig)
    detectors: DetectorConfig = field(default_factory=DetectorConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigLoader:
    """Loads and manages Rotor configuration"""

    CONFIG_FILE_NAMES = ["rotor.yaml", f"{FileNames.STATE_DIR}/config.yaml"]

    DATACLASS_SECTIONS = {
        'agent': AgentConfig,
        'token_budget': TokenBudgetConfig,
        'detectors': DetectorConfig,
        'watchdog': WatchdogConfig,
        'orchestration': OrchestrationConfig,
        'tracker': TrackerConfig,
        'logging': LoggingConfig,
    }

    # Allowed dotted override keys and their types
    ALLOWED_OVERRIDES = {
        'agent.model': str,
        'orchestration.max_iterations': int,
        'orchestration.branch': str,
        'orchestration.open_pr': bool,
        'orchestration.iteration_pause_seconds': float,
        'watchdog.enabled': bool,
        'watchdog.interval_seconds': float,
        'token_budget.bytes_per_token': int,
        'tracker.command': str,
        'tracker.backend': str,
        'logging.log_level': str,
        'logging.show_spinner': bool,
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader

        Args:
            config_path: Optional path to config file. If not provided,
                        searches default locations.
        """
        self.config_path = self._find_config_file(config_path)
        self.config = self._load_config()

    @classmethod
    def default_config_paths(cls) -> List[Path]:
        """Search locations, resolved against the current directory at call time"""
        paths = [Path.cwd() / name for name in cls.CONFIG_FILE_NAMES]
        paths.append(Path.home() / ".config" / "rotor" / "config.yaml")
        return paths

    def _find_config_file(self, config_path: Optional[str]) -> Optional[Path]:
        """Find configuration file"""
        if config_path:
            path = Path(config_path)
            if path.exists():
                return path
            raise FileNotFoundError(f"Config file not found: {config_path}")

        env_path = os.environ.get("ROTOR_CONFIG")
        if env_path:
            path = Path(env_path)
            if path.exists():
                return path

        for path in self.default_config_paths():
            if path.exists():
                return path

        return None

    def _deep_merge_dict(self, base: dict, override: dict) -> dict:
        """Deep merge override dictionary into base dictionary"""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge_dict(result[key], value)
            else:
                result[key] = value
        return result

    def _load_config(self) -> RotorConfig:
        """
        Load configuration from YAML file if it exists, otherwise use defaults.

        Returns:
            RotorConfig with loaded or default values
        """
        if not self.config_path or not self.config_path.exists():
            logger.debug("No config file found, using defaults")
            return RotorConfig()

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {self.config_path}: {e}")
            logger.warning("Using default configuration")
            return RotorConfig()

        if not isinstance(data, dict):
            logger.warning(f"Config file {self.config_path} is not a mapping, using defaults")
            return RotorConfig()

        config = RotorConfig()
        if isinstance(data.get('project'), dict):
            config.project = self._deep_merge_dict(config.project, data['project'])

        for key, config_class in self.DATACLASS_SECTIONS.items():
            if key in data:
                self._update_single_dataclass(config, key, config_class, data[key])

        return config

    def _update_single_dataclass(self, config: RotorConfig, attr_name: str,
                                 config_class: type, data: Any) -> None:
        """Update a single dataclass configuration with error handling"""
        if not isinstance(data, dict):
            logger.warning(f"Invalid {attr_name} config: expected a mapping. Using defaults.")
            return
        try:
            # Merge on top of defaults so partial sections keep the rest
            merged = self._deep_merge_dict(asdict(config_class()), data)
            section = config_class(**merged)
            if attr_name == 'token_budget':
                validate_threshold_table(section)
            setattr(config, attr_name, section)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid {attr_name} config: {e}. Using defaults.")
            setattr(config, attr_name, config_class())

    def _dataclass_to_dict(self, obj) -> dict:
        """Convert a dataclass to dictionary using Python's built-in asdict()"""
        if is_dataclass(obj):
            return asdict(obj)
        return obj

    def save(self, path: Optional[str] = None):
        """Save current configuration to file"""
        save_path = Path(path) if path else self.config_path
        if not save_path:
            save_path = Path.cwd() / "rotor.yaml"

        data = {"project": self.config.project}
        for key in self.DATACLASS_SECTIONS:
            data[key] = self._dataclass_to_dict(getattr(self.config, key))

        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def override_from_args(self, **kwargs):
        """Override config values from command line arguments with validation"""
        for key, value in kwargs.items():
            if value is None:
                continue

            if key not in self.ALLOWED_OVERRIDES:
                logger.warning(f"Ignoring unknown config override: {key}")
                continue

            expected_type = self.ALLOWED_OVERRIDES[key]
            try:
                if expected_type == bool:
                    if isinstance(value, str):
                        value = value.lower() in ('true', '1', 'yes', 'on')
                    else:
                        value = bool(value)
                else:
                    value = expected_type(value)
            except (ValueError, TypeError):
                logger.error(f"Invalid value for {key}: {value} (expected {expected_type.__name__})")
                continue

            section_name, attr = key.split('.', 1)
            section = getattr(self.config, section_name)
            setattr(section, attr, value)
            logger.info(f"Config override: {key} = {value}")


def validate_threshold_table(budget: TokenBudgetConfig) -> None:
    """Reject threshold pairs where warn would never fire before rotate."""
    if budget.bytes_per_token <= 0:
        raise ValueError("bytes_per_token must be positive")
    if budget.default_warn >= budget.default_rotate:
        raise ValueError("default_warn must be below default_rotate")
    for entry in budget.model_thresholds:
        if not isinstance(entry, dict) or not entry.get("patterns"):
            raise ValueError(f"Threshold entry needs patterns: {entry!r}")
        if "warn" not in entry or "rotate" not in entry:
            raise ValueError(f"Threshold entry needs warn and rotate: {entry!r}")
        if int(entry["warn"]) >= int(entry["rotate"]):
            raise ValueError(f"warn must be below rotate for {entry['patterns']}")
