"""
Unit tests for prompt templates and the iteration prompt
"""

import pytest

from rotor.activity import FailureLog
from rotor.prompts import PromptContext, PromptGenerator, PromptLoader


@pytest.fixture
def generator():
    return PromptGenerator()


class TestPromptLoader:
    """YAML template loading and Jinja2 rendering"""

    def test_bundled_templates_load(self):
        loader = PromptLoader()
        assert "Guardrails" in loader.get_template("guardrails_seed")
        assert loader.config["iteration_prompt"]["sections"]

    def test_missing_template_path(self):
        assert PromptLoader().get_template("nope.nothing") == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(IOError):
            PromptLoader(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("a: [unclosed\n")
        with pytest.raises(ValueError):
            PromptLoader(path)

    def test_blank_sections_dropped(self, tmp_path):
        path = tmp_path / "p.yaml"
        path.write_text("x: 1\n")
        loader = PromptLoader(path)
        prompt = loader.build_prompt_from_sections(
            ["Hello {{ name }}", "{% if missing %}gone{% endif %}", "Bye"], {"name": "agent"}
        )
        assert prompt == "Hello agent\n\nBye\n"


class TestPromptGenerator:
    """Guardrails seeding and iteration prompts"""

    def test_init_guardrails_once(self, generator, tmp_path):
        path = tmp_path / ".rotor" / "guardrails.md"
        assert generator.init_guardrails(path)
        path.write_text("custom")
        assert not generator.init_guardrails(path)
        assert path.read_text() == "custom"

    def test_iteration_prompt_with_tracker(self, generator, run_paths):
        prompt = generator.iteration_prompt(PromptContext(
            iteration=4, paths=run_paths, task_file="TASK.md", tracker_label="rotor:demo",
        ))
        assert prompt.startswith("# Rotor Iteration 4")
        assert "**YOUR FIRST ACTION MUST BE: Read TASK.md**" in prompt
        assert "bd list --label rotor:demo --json" in prompt
        assert "bd close <id> --json" in prompt
        assert "<ralph>COMPLETE</ralph>" in prompt
        assert "<ralph>GUTTER</ralph>" in prompt
        assert ".rotor/runs/test-run/progress.md" in prompt
        assert "Recent Errors" not in prompt

    def test_iteration_prompt_checklist(self, generator, run_paths):
        prompt = generator.iteration_prompt(PromptContext(iteration=1, paths=run_paths, task_file="TASK.md"))
        assert "change `[ ]` to `[x]` in TASK.md" in prompt
        assert "bd list" not in prompt

    def test_guardrails_included(self, generator, run_paths):
        run_paths.guardrails_file.write_text("# Guardrails\n- never run npm init")
        prompt = generator.iteration_prompt(PromptContext(iteration=1, paths=run_paths))
        assert "- never run npm init" in prompt

    def test_recent_errors_carried_forward(self, generator, run_paths):
        failures = FailureLog(run_paths.errors_log)
        for i in range(5):
            failures.record(f"SHELL FAIL: cmd{i} → exit 1 (attempt 1)")
        prompt = generator.iteration_prompt(PromptContext(iteration=2, paths=run_paths, recent_error_lines=2))
        assert "## Recent Errors (From Previous Iterations)" in prompt
        assert "cmd4" in prompt
        assert "cmd3" in prompt
        assert "cmd2" not in prompt
