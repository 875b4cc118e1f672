"""
Unit tests for the blocking-process watchdog
"""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import psutil
import pytest

from rotor.activity import ActivityLog, FailureLog
from rotor.signals import ControlSignal, SignalChannel
from rotor.watchdog import (
    Watchdog,
    kill_process_tree,
    list_descendants,
    match_blocking,
)


def fake_process(pid, children=(), cmdline=(), terminate_error=None):
    proc = MagicMock(spec=psutil.Process)
    proc.pid = pid
    proc.children.return_value = list(children)
    proc.cmdline.return_value = list(cmdline)
    proc.status.return_value = psutil.STATUS_RUNNING
    if terminate_error:
        proc.terminate.side_effect = terminate_error
    return proc


class TestBlockingPatterns:
    """Command lines known to wait forever on a prompt"""

    @pytest.mark.parametrize("cmdline,name", [
        ("npm init", "npm-init"),
        ("/usr/local/bin/npm init", "npm-init"),
        ("git commit", "git-commit-no-message"),
        ("git commit --amend", "git-commit-no-message"),
        ("node", "bare-node"),
        ("/usr/bin/node ", "bare-node"),
        ("python", "bare-python"),
        ("python3", "bare-python"),
        ("/usr/bin/python3.12", "bare-python"),
    ])
    def test_blocking_commands(self, cmdline, name):
        assert match_blocking(cmdline).name == name

    @pytest.mark.parametrize("cmdline", [
        "npm init -y",
        "npm init --yes",
        'git commit -m "msg"',
        "git commit --message=msg",
        "git commit -am wip",
        "git commit -F msg.txt",
        "git commit --amend --no-edit",
        "node server.js",
        "node -e 1",
        "python script.py",
        "python3 -c pass",
        "pytest -x",
        "",
    ])
    def test_non_blocking_commands(self, cmdline):
        assert match_blocking(cmdline) is None


class TestProcessTree:
    """Descendant walk and tree kill over psutil"""

    def test_list_descendants_is_breadth_first(self):
        grandchild = fake_process(30)
        child_a = fake_process(20, children=[grandchild])
        child_b = fake_process(21)
        root = fake_process(10, children=[child_a, child_b])

        with patch("rotor.watchdog.psutil.Process", return_value=root):
            assert [p.pid for p in list_descendants(10)] == [20, 21, 30]

    def test_list_descendants_skips_vanished(self):
        gone = fake_process(20)
        gone.children.side_effect = psutil.NoSuchProcess(20)
        root = fake_process(10, children=[gone])

        with patch("rotor.watchdog.psutil.Process", return_value=root):
            assert [p.pid for p in list_descendants(10)] == [20]

    def test_list_descendants_of_missing_root(self):
        with patch("rotor.watchdog.psutil.Process", side_effect=psutil.NoSuchProcess(99)):
            assert list_descendants(99) == []

    def test_kill_tree_terminates_then_kills_survivors(self):
        child = fake_process(20)
        root = fake_process(10, children=[child])

        with patch("rotor.watchdog.psutil.Process", return_value=root), \
             patch("rotor.watchdog.psutil.wait_procs", return_value=([root], [child])) as wait_procs:
            assert kill_process_tree(10, grace_seconds=0.1) == 2

        root.terminate.assert_called_once()
        child.terminate.assert_called_once()
        child.kill.assert_called_once()
        root.kill.assert_not_called()
        assert wait_procs.call_count == 2

    def test_kill_tree_is_idempotent(self):
        with patch("rotor.watchdog.psutil.Process", side_effect=psutil.NoSuchProcess(10)):
            assert kill_process_tree(10) == 0

    def test_kill_tree_tolerates_exited_members(self):
        child = fake_process(20, terminate_error=psutil.NoSuchProcess(20))
        root = fake_process(10, children=[child])

        with patch("rotor.watchdog.psutil.Process", return_value=root), \
             patch("rotor.watchdog.psutil.wait_procs", return_value=([root], [])):
            assert kill_process_tree(10) == 1


class TestWatchdog:
    """Periodic scan, one-shot kill and GUTTER"""

    def make_watchdog(self, tmp_path, channel):
        activity = ActivityLog(tmp_path / "activity.log", echo=False)
        failures = FailureLog(tmp_path / "errors.log")
        writer = channel.open_writer("watchdog")
        return Watchdog(4242, writer, activity, failures, interval=0)

    def test_scan_finds_first_blocking_descendant(self, tmp_path):
        channel = SignalChannel()
        watchdog = self.make_watchdog(tmp_path, channel)
        benign = fake_process(20, cmdline=["pytest", "-x"])
        blocked = fake_process(21, cmdline=["npm", "init"])

        with patch("rotor.watchdog.list_descendants", return_value=[benign, blocked]):
            proc, cmdline, pattern = watchdog.scan()
        assert proc is blocked
        assert cmdline == "npm init"
        assert pattern.name == "npm-init"

    def test_kills_blocking_process_and_guts_once(self, tmp_path):
        blocked = fake_process(21, cmdline=["git", "commit"])
        root = fake_process(4242)

        async def scenario():
            channel = SignalChannel()
            watchdog = self.make_watchdog(tmp_path, channel)
            with patch("rotor.watchdog.psutil.Process", return_value=root), \
                 patch("rotor.watchdog.list_descendants", return_value=[blocked]):
                triggered = await watchdog.run()
            signals = [item async for item in channel.receive()]
            return triggered, signals

        triggered, signals = asyncio.run(scenario())
        assert triggered.name == "git-commit-no-message"
        assert signals == [("watchdog", ControlSignal.GUTTER)]
        blocked.kill.assert_called_once()

        errors = (tmp_path / "errors.log").read_text()
        assert "## BLOCKED: Interactive Command" in errors
        assert "`git commit`" in errors
        assert 'git commit -m "message"' in errors
        activity = (tmp_path / "activity.log").read_text()
        assert "⚠️ WATCHDOG: killed blocking command: git commit" in activity

    def test_scan_runs_off_the_event_loop(self, tmp_path):
        root = fake_process(4242)
        blocked = fake_process(21, cmdline=["npm", "init"])
        scan_threads = []

        def descendants(pid):
            scan_threads.append(threading.get_ident())
            return [blocked]

        async def scenario():
            channel = SignalChannel()
            watchdog = self.make_watchdog(tmp_path, channel)
            with patch("rotor.watchdog.psutil.Process", return_value=root), \
                 patch("rotor.watchdog.list_descendants", side_effect=descendants):
                await watchdog.run()
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        assert scan_threads
        assert loop_thread not in scan_threads

    def test_stops_when_agent_exits(self, tmp_path):
        async def scenario():
            channel = SignalChannel()
            watchdog = self.make_watchdog(tmp_path, channel)
            with patch("rotor.watchdog.psutil.Process", side_effect=psutil.NoSuchProcess(4242)):
                triggered = await watchdog.run()
            return triggered, [item async for item in channel.receive()]

        assert asyncio.run(scenario()) == (None, [])

    def test_zombie_root_counts_as_exited(self, tmp_path):
        root = fake_process(4242)
        root.status.return_value = psutil.STATUS_ZOMBIE

        async def scenario():
            channel = SignalChannel()
            watchdog = self.make_watchdog(tmp_path, channel)
            with patch("rotor.watchdog.psutil.Process", return_value=root), \
                 patch("rotor.watchdog.list_descendants") as descendants:
                result = await watchdog.run()
            return result, descendants.called, channel.open_writer_count

        assert asyncio.run(scenario()) == (None, False, 0)
