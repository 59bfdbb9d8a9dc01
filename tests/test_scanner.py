"""Tests for the ProcessScanner class against the live process table."""

import os
import shutil
import subprocess
import sys

import psutil
import pytest

from emergewatch.errors import ScanError
from emergewatch.models import ProcessInfo, ProcessSnapshot
from emergewatch.scanner import ProcessScanner


@pytest.fixture
def child():
    """A sleeping child process of the test runner."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        yield proc
    finally:
        proc.terminate()
        proc.wait(timeout=5.0)


class TestRefresh:
    """Tests for ProcessScanner.refresh."""

    def test_refresh_returns_snapshot(self):
        """Test a snapshot of the host contains this process."""
        snapshot = ProcessScanner().refresh()

        assert isinstance(snapshot, ProcessSnapshot)
        assert os.getpid() in snapshot
        assert snapshot.uptime > 0
        info = snapshot.processes[os.getpid()]
        assert isinstance(info, ProcessInfo)
        assert info.ppid == os.getppid()
        assert len(info.cmdline) > 0

    def test_processes_have_command_lines(self):
        """Test processes without a command line are left out."""
        snapshot = ProcessScanner().refresh()

        assert len(snapshot.processes) > 0
        for pid, info in snapshot.processes.items():
            assert info.pid == pid
            assert info.cmdline
            assert info.started >= -1.0

    def test_creation_time_is_wall_clock(self, child):
        """Test the converted creation time matches what psutil reports."""
        snapshot = ProcessScanner().refresh()

        expected = psutil.Process(child.pid).create_time()
        assert abs(snapshot.created_at(child.pid) - expected) <= 1

    def test_enumeration_failure(self, monkeypatch):
        """Test a broken process table raises ScanError."""

        def broken(*args, **kwargs):
            raise OSError("/proc is gone")

        monkeypatch.setattr(psutil, "process_iter", broken)

        with pytest.raises(ScanError):
            ProcessScanner().refresh()


class TestAncestors:
    """Tests for ProcessScanner.ancestors_of."""

    def test_walk_starts_at_parent(self, child):
        """Test the first ancestor of a child is this process."""
        scanner = ProcessScanner()
        scanner.refresh()

        ancestors = list(scanner.ancestors_of(child.pid))

        assert ancestors[0].pid == os.getpid()
        assert ancestors[0].cmdline == tuple(psutil.Process().cmdline())

    def test_walk_is_finite(self):
        """Test the walk ends at the root of the tree."""
        pids = [info.pid for info in ProcessScanner().ancestors_of(os.getpid())]

        assert os.getpid() not in pids
        assert len(pids) == len(set(pids))

    def test_walk_without_refresh(self, child):
        """Test walking works before the first scan."""
        ancestors = ProcessScanner().ancestors_of(child.pid)

        assert next(ancestors).pid == os.getpid()

    def test_walk_of_exited_process(self):
        """Test a process that is already gone has no ancestors."""
        true = shutil.which("true") or "/bin/true"
        proc = subprocess.Popen([true])
        proc.wait(timeout=5.0)

        if psutil.pid_exists(proc.pid):
            pytest.skip("pid was recycled")
        assert list(ProcessScanner().ancestors_of(proc.pid)) == []

    def test_walk_skips_unreadable_ancestor(self, child, monkeypatch):
        """Test an ancestor whose command line cannot be read is stepped over."""
        cmdline = psutil.Process.cmdline

        def guarded_cmdline(proc):
            if proc.pid == os.getpid():
                raise psutil.AccessDenied(proc.pid)
            return cmdline(proc)

        monkeypatch.setattr(psutil.Process, "cmdline", guarded_cmdline)

        pids = [info.pid for info in ProcessScanner().ancestors_of(child.pid)]

        assert os.getpid() not in pids
        assert pids[0] == os.getppid()

    def test_walk_checks_creation_time(self, child):
        """Test a pid whose creation time changed since the scan is not walked."""
        scanner = ProcessScanner()
        snapshot = scanner.refresh()
        started = snapshot.processes[child.pid].started

        assert next(scanner.ancestors_of(child.pid, started)).pid == os.getpid()
        assert list(scanner.ancestors_of(child.pid, started + 5.0)) == []
