import os
import shutil
import subprocess
import sys
from typing import Dict, List, Optional

import pytest

from uring_detector import kernel_probe
from uring_detector.procfs import ProcFS

WORKLOAD = os.path.join(os.path.dirname(__file__), "io_uring_workload.py")

IO_URING_MAPS = (
    "7f2a1c000000-7f2a1c001000 rw-s 00000000 00:0e 2051   anon_inode:[io_uring]\n"
    "7f2a1c001000-7f2a1c002000 rw-s 10000000 00:0e 2051   anon_inode:[io_uring]\n"
)

PLAIN_MAPS = (
    "55d1c4a00000-55d1c4a21000 r--p 00000000 08:01 1311   /usr/bin/cat\n"
    "7ffd5b1e0000-7ffd5b201000 rw-p 00000000 00:00 0      [stack]\n"
    "7ffd5b3f2000-7ffd5b3f6000 r--p 00000000 00:00 0      [vvar]\n"
)


def status_text(name: str, vm_size: Optional[int] = 10240, vm_rss: Optional[int] = 2048) -> str:
    lines = [f"Name:\t{name}", "State:\tS (sleeping)"]
    if vm_size is not None:
        lines.append(f"VmSize:\t   {vm_size} kB")
    if vm_rss is not None:
        lines.append(f"VmRSS:\t    {vm_rss} kB")
    return "\n".join(lines) + "\n"


class FakeProc:
    """Builds a /proc lookalike under a temporary directory."""

    def __init__(self, root):
        self.root = str(root)
        os.makedirs(self.root, exist_ok=True)
        # non-PID entries that must be ignored
        os.makedirs(os.path.join(self.root, "sys", "kernel"), exist_ok=True)
        os.makedirs(os.path.join(self.root, "self"), exist_ok=True)
        with open(os.path.join(self.root, "meminfo"), "w") as f:
            f.write("MemTotal: 1 kB\n")

    @property
    def procfs(self) -> ProcFS:
        return ProcFS(self.root)

    def add_process(
        self,
        pid: int,
        name: str = "worker",
        exe: Optional[str] = "/usr/bin/true",
        cmdline: bytes = b"worker\0--flag\0",
        status: Optional[str] = None,
        fds: Optional[Dict[int, str]] = None,
        maps: Optional[str] = PLAIN_MAPS,
        root_files: Optional[List[str]] = None,
    ) -> str:
        pid_dir = os.path.join(self.root, str(pid))
        os.makedirs(os.path.join(pid_dir, "fd"))
        with open(os.path.join(pid_dir, "comm"), "w") as f:
            f.write(name + "\n")
        with open(os.path.join(pid_dir, "cmdline"), "wb") as f:
            f.write(cmdline)
        with open(os.path.join(pid_dir, "status"), "w") as f:
            f.write(status if status is not None else status_text(name))
        if maps is not None:
            with open(os.path.join(pid_dir, "maps"), "w") as f:
                f.write(maps)
        if exe is not None:
            os.symlink(exe, os.path.join(pid_dir, "exe"))
        for fd, target in (fds or {}).items():
            os.symlink(target, os.path.join(pid_dir, "fd", str(fd)))
        if root_files is not None:
            # the process's own filesystem view, as seen through /proc/<pid>/root
            os.makedirs(os.path.join(pid_dir, "root"))
            for rel in root_files:
                path = os.path.join(pid_dir, "root", rel)
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "wb") as f:
                    f.write(b"\x7fELF")
        return pid_dir

    def remove_process(self, pid: int):
        shutil.rmtree(os.path.join(self.root, str(pid)))

    def set_sysctl(self, value: int):
        with open(os.path.join(self.root, "sys", "kernel", "io_uring_disabled"), "w") as f:
            f.write(f"{value}\n")


@pytest.fixture
def fake_proc(tmp_path):
    return FakeProc(tmp_path / "proc")


@pytest.fixture(scope="session")
def io_uring_capabilities():
    caps = kernel_probe.probe()
    if not caps.supported:
        pytest.skip(f"io_uring unavailable on this host (errno={caps.errno}).")
    return caps


def _spawn(mode: str):
    proc = subprocess.Popen(
        [sys.executable, WORKLOAD, mode],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    line = proc.stdout.readline()
    if line.strip() != "ready":
        proc.kill()
        _, err = proc.communicate()
        pytest.skip(f"io_uring workload '{mode}' failed to start: {err.strip()}")
    return proc


def _stop(proc):
    proc.stdin.close()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


@pytest.fixture
def spawn_workload(io_uring_capabilities):
    """
    Start io_uring_workload.py in the requested mode; stopped at teardown.
    Requires a kernel that lets this process create rings.
    """
    started = []

    def factory(mode: str) -> subprocess.Popen:
        proc = _spawn(mode)
        started.append(proc)
        return proc

    yield factory
    for proc in started:
        _stop(proc)


@pytest.fixture
def plain_workload():
    """A process that never touches io_uring; needs no kernel support."""
    proc = _spawn("none")
    yield proc
    _stop(proc)
