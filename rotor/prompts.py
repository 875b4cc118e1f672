"""
Prompt management for Rotor

Every iteration starts a fresh agent with no memory of the previous one, so
the prompt carries the guardrails and the tail of the failure log forward.
Templates live in prompts.yaml and are rendered with Jinja2.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jinja2 import Template

from .activity import FailureLog, RunPaths
from .constants import AgentSignals, LoopDefaults

logger = logging.getLogger(__name__)


class PromptLoader:
    """Loads prompt templates from YAML and renders them with Jinja2"""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize with YAML config file"""
        if config_path is None:
            # Default to prompts.yaml in same directory
            config_path = Path(__file__).parent / "prompts.yaml"
        else:
            config_path = Path(config_path)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise IOError(f"Prompt configuration file not found at: {config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing YAML file {config_path}: {e}")

    def get_template(self, path: str) -> str:
        """Get a template by dot-separated path"""
        value: Any = self.config
        for part in path.split('.'):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return ""
        return str(value) if value is not None else ""

    def format_template(self, template: str, context: Dict[str, Any]) -> str:
        return Template(template, trim_blocks=True, lstrip_blocks=True).render(**context)

    def build_prompt_from_sections(self, sections: List[str], context: Dict[str, Any]) -> str:
        """Render sections in order, dropping any that come out blank"""
        rendered = []
        for section in sections:
            text = self.format_template(section, context).strip()
            if text:
                rendered.append(text)
        return "\n\n".join(rendered) + "\n"


@dataclass
class PromptContext:
    """Inputs for one iteration prompt"""
    iteration: int
    paths: RunPaths
    task_file: Optional[str] = None
    tracker_label: Optional[str] = None
    tracker_command: str = "bd"
    recent_error_lines: int = LoopDefaults.RECENT_ERROR_LINES


class PromptGenerator:
    """Builds iteration prompts and seeds the guardrails file"""

    def __init__(self, loader: Optional[PromptLoader] = None):
        self.loader = loader or PromptLoader()

    def init_guardrails(self, path: Path) -> bool:
        """Write the starter guardrails file if it doesn't exist yet"""
        path = Path(path)
        if path.exists():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.loader.get_template('guardrails_seed'), encoding='utf-8')
        logger.debug(f"Seeded guardrails at {path}")
        return True

    def _read_guardrails(self, path: Path) -> str:
        try:
            return Path(path).read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.warning(f"Could not read guardrails {path}: {e}")
            return ""

    def _relative(self, path: Path, workspace: Path) -> str:
        try:
            return str(Path(path).relative_to(workspace))
        except ValueError:
            return str(path)

    def iteration_prompt(self, context: PromptContext) -> str:
        paths = context.paths
        workspace = paths.workspace
        recent_errors = FailureLog(paths.errors_log).tail(context.recent_error_lines)
        # Header-only log has nothing worth repeating
        if recent_errors.strip() == FailureLog.HEADER.strip():
            recent_errors = ""

        template_context = {
            'iteration': context.iteration,
            'task_file': context.task_file,
            'tracker_label': context.tracker_label,
            'tracker_command': context.tracker_command,
            'guardrails': self._read_guardrails(paths.guardrails_file),
            'recent_errors': recent_errors,
            'progress_file': self._relative(paths.progress_file, workspace),
            'errors_file': self._relative(paths.errors_log, workspace),
            'guardrails_file': self._relative(paths.guardrails_file, workspace),
            'complete_sentinel': AgentSignals.COMPLETE_SENTINEL,
            'gutter_sentinel': AgentSignals.GUTTER_SENTINEL,
        }
        sections = self.loader.config.get('iteration_prompt', {}).get('sections', [])
        return self.loader.build_prompt_from_sections(sections, template_context)
