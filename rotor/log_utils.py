"""
Logging utilities for Rotor with color support
"""

import logging
import sys
from pathlib import Path
from typing import Optional


# ANSI color codes
class Colors:
    RESET = '\033[0m'

    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'
    WHITE = '\033[37m'

    BOLD = '\033[1m'
    BOLD_RED = '\033[1;31m'
    BOLD_GREEN = '\033[1;32m'
    BOLD_YELLOW = '\033[1;33m'
    BOLD_BLUE = '\033[1;34m'
    BOLD_MAGENTA = '\033[1;35m'
    BOLD_CYAN = '\033[1;36m'
    BOLD_WHITE = '\033[1;37m'

    CLEAR_LINE = '\r\033[2K'


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log messages"""

    LEVEL_COLORS = {
        'DEBUG': Colors.CYAN,
        'INFO': Colors.GREEN,
        'WARNING': Colors.YELLOW,
        'ERROR': Colors.RED,
        'CRITICAL': Colors.BOLD_RED
    }

    # Control tokens and loop milestones stand out in the console
    KEYWORD_COLORS = {
        'ITERATION': Colors.BOLD_CYAN,
        'ROTATE': Colors.BOLD_BLUE,
        'GUTTER': Colors.BOLD_RED,
        'WARN:': Colors.BOLD_YELLOW,
        'COMPLETE': Colors.BOLD_GREEN,
        'EXHAUSTED': Colors.BOLD_YELLOW,
        'WATCHDOG': Colors.BOLD_MAGENTA,
        '===': Colors.BOLD_WHITE,
    }

    def __init__(self, *args, use_color=True, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record):
        msg = super().format(record)

        if not self.use_color:
            return msg

        levelname = record.levelname
        if levelname in self.LEVEL_COLORS:
            level_color = self.LEVEL_COLORS[levelname]
            msg = msg.replace(f' - {levelname} - ', f' - {level_color}{levelname}{Colors.RESET} - ')

        for keyword, color in self.KEYWORD_COLORS.items():
            if keyword not in msg:
                continue
            if keyword == '===':
                lines = msg.split('\n')
                for i, line in enumerate(lines):
                    if line.strip() and all(c in '=' for c in line.strip()):
                        lines[i] = f"{color}{line}{Colors.RESET}"
                msg = '\n'.join(lines)
            else:
                msg = msg.replace(keyword, f"{color}{keyword}{Colors.RESET}")

        return msg


def setup_colored_logging(level=logging.INFO, use_color: bool = True):
    """Set up colored logging for the application"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    formatter = ColoredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        use_color=use_color
    )
    console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)

    # Activity lines already carry their own timestamp
    activity_logger = logging.getLogger("rotor.activity")
    if not activity_logger.handlers:
        activity_handler = logging.StreamHandler(sys.stderr)
        activity_handler.setLevel(logging.INFO)
        activity_handler.setFormatter(ColoredFormatter('%(message)s', use_color=use_color))
        activity_logger.addHandler(activity_handler)
        activity_logger.propagate = False

    return root_logger


def setup_file_logging(run_id: str, component_type: str, log_dir: Path,
                       level=logging.DEBUG) -> Optional[logging.Logger]:
    """Attach a plain file handler to the rotor logger.

    Args:
        run_id: The run ID for organizing logs
        component_type: The component type, used as the file stem
        log_dir: The base log directory
        level: The logging level (default: DEBUG)

    Returns:
        The configured logger, or None if setup failed
    """
    try:
        run_dir = log_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        log_file = run_dir / f"{component_type}.log"
        logger = logging.getLogger("rotor")

        # Avoid duplicate handlers when called twice
        if any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_file.resolve())
               for h in logger.handlers):
            return logger

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            "%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
        # Console handler keeps its own level; records still propagate to it
        logger.setLevel(level)
        return logger

    except (OSError, PermissionError) as e:
        console_logger = logging.getLogger("rotor")
        console_logger.warning(f"Failed to set up file logging for {component_type}: {e}")
        console_logger.warning("Continuing with console logging only")
        return None
