"""
General utility functions for Rotor

This module contains shared utility functions used across the system.
"""

import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


def generate_run_id() -> str:
    """
    Generate a unique run ID with timestamp and UUID.

    Format: YYYYMMDD_HHMMSS_[8-char-uuid]
    Example: 20240103_143022_a1b2c3d4

    Returns:
        str: A unique run identifier
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    unique_id = str(uuid.uuid4())[:8]
    return f"{timestamp}_{unique_id}"


def derive_run_id(task_file: Optional[Union[str, Path]]) -> str:
    """
    Derive a stable run ID from the task file name.

    Parallel runs against different task files get isolated state
    without the user picking IDs by hand.

    Examples:
        plans/API Server.md -> api-server
        RALPH_TASK.md       -> ralph-task
    """
    if not task_file:
        return generate_run_id()
    slug = re.sub(r'[^a-z0-9]+', '-', Path(task_file).stem.lower()).strip('-')
    return slug or generate_run_id()


def format_kb(num_bytes: int) -> str:
    """Format a byte count as KB with one decimal"""
    return f"{num_bytes / 1024:.1f}KB"
