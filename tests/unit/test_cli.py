"""
Unit tests for the rotor command-line interface
"""

from unittest.mock import MagicMock, patch

import pytest

from rotor.orchestrator import RunResult, RunStatus
from rotor.supervisor_cli import EXIT_FAILED, EXIT_OK, build_parser, main


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep main() from replacing the root logging handlers during tests"""
    with patch("rotor.supervisor_cli.setup_colored_logging"), \
         patch("rotor.supervisor_cli.setup_file_logging"):
        yield


@pytest.fixture
def no_config(monkeypatch, tmp_path):
    monkeypatch.delenv("ROTOR_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


class TestParser:
    """Argument parsing"""

    def test_run_defaults(self):
        args = build_parser().parse_args(["run"])
        assert args.workspace == "."
        assert args.iterations is None
        assert args.pr is None

    def test_shared_options_after_subcommand(self):
        args = build_parser().parse_args(["run", "ws", "-n", "5", "-m", "gpt-5", "--pr",
                                          "--verbose", "--config", "c.yaml"])
        assert (args.workspace, args.iterations, args.model) == ("ws", 5, "gpt-5")
        assert args.pr is True
        assert args.verbose
        assert args.config == "c.yaml"


class TestMain:
    """Entry point behaviour"""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_FAILED
        assert "usage: rotor" in capsys.readouterr().out

    def test_thresholds_for_model(self, capsys, no_config):
        assert main(["thresholds", "gpt-5.2-high"]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "gpt-5.2-high: warn=190000 rotate=217600 (tier: *gpt-5*)"

    def test_thresholds_table(self, capsys, no_config):
        assert main(["thresholds"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "*composer*: warn=140000 rotate=160000" in out
        assert out.strip().endswith("(default): warn=70000 rotate=80000")

    def test_missing_config_file(self, no_config):
        assert main(["thresholds", "--config", "missing.yaml"]) == EXIT_FAILED

    def test_run_outside_git_repository(self, no_config, tmp_path):
        with patch("rotor.supervisor_cli.GitRepository") as repo_cls:
            repo_cls.return_value.is_repository.return_value = False
            assert main(["run", str(tmp_path)]) == EXIT_FAILED

    def test_run_missing_workspace(self, no_config, tmp_path):
        assert main(["run", str(tmp_path / "nowhere")]) == EXIT_FAILED

    def test_run_already_complete(self, no_config, tmp_path, capsys):
        with patch("rotor.supervisor_cli.GitRepository"), \
             patch("rotor.supervisor_cli.LoopController") as controller_cls:
            controller_cls.return_value.outstanding.return_value = 0
            controller_cls.return_value.label = "rotor:x"
            assert main(["run", str(tmp_path), "-r", "x"]) == EXIT_OK
        assert "Already complete" in capsys.readouterr().out
        controller_cls.return_value.run.assert_not_called()

    @pytest.mark.parametrize("status,code", [
        (RunStatus.COMPLETED, EXIT_OK),
        (RunStatus.GUTTERED, EXIT_FAILED),
        (RunStatus.EXHAUSTED, EXIT_FAILED),
    ])
    def test_run_exit_codes(self, no_config, tmp_path, capsys, status, code):
        async def fake_run():
            return RunResult(status=status, iterations=1, message=f"done: {status.value}")

        with patch("rotor.supervisor_cli.GitRepository"), \
             patch("rotor.supervisor_cli.LoopController") as controller_cls:
            controller = controller_cls.return_value
            controller.outstanding.return_value = 2
            controller.run = MagicMock(side_effect=fake_run)
            assert main(["run", str(tmp_path), "-f", "plans/API Server.md", "-n", "3"]) == code

        args, kwargs = controller_cls.call_args
        assert args[2] == "api-server"
        assert kwargs["task_file"] == "plans/API Server.md"
        assert args[0].orchestration.max_iterations == 3
        assert f"done: {status.value}" in capsys.readouterr().out
