import logging
import os
from typing import Any, Dict, List

from uring_detector.response import ErrorCode, TaskType, make_error_response

logger = logging.getLogger(__name__)

PROC_ROOT = "/proc"


class EnumerationError(RuntimeError):
    """The process filesystem itself could not be listed."""

    def __init__(self, root: str, cause: OSError):
        self.root = root
        self.cause = cause
        self.response: Dict[str, Any] = make_error_response(
            TaskType.STATE,
            "PROCESS_ENUMERATION",
            ErrorCode.ENUMERATION_FAILURE,
            f"Unable to list {root}: {cause}",
        )
        super().__init__(self.response["error"]["message"])


class ProcFS:
    """
    Read-only view over a process filesystem rooted at `root`.

    Every per-PID accessor raises OSError (FileNotFoundError when the
    process is gone, PermissionError when it belongs to someone else);
    callers decide how soft to fail.
    """

    def __init__(self, root: str = PROC_ROOT):
        self.root = root

    def __repr__(self) -> str:
        return f"ProcFS(root={self.root!r})"

    def pid_path(self, pid: int, *parts: str) -> str:
        return os.path.join(self.root, str(pid), *parts)

    def list_pids(self) -> List[int]:
        """
        List the numeric entries of the proc root.

        Order is whatever the kernel returns. A process exiting while we
        list simply shows up (or not) and fails later per PID.
        """
        try:
            entries = os.listdir(self.root)
        except OSError as e:
            logger.error("Cannot enumerate processes under %s: %s", self.root, e)
            raise EnumerationError(self.root, e) from e
        return [int(entry) for entry in entries if entry.isdigit()]

    def list_fds(self, pid: int) -> List[int]:
        return [int(fd) for fd in os.listdir(self.pid_path(pid, "fd")) if fd.isdigit()]

    def read_link(self, pid: int, *parts: str) -> str:
        return os.readlink(self.pid_path(pid, *parts))

    def read_bytes(self, pid: int, name: str) -> bytes:
        with open(self.pid_path(pid, name), "rb") as f:
            return f.read()

    def read_text(self, pid: int, name: str) -> str:
        with open(self.pid_path(pid, name), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def exe_exists(self, pid: int, target: str) -> bool:
        """
        Look an absolute path up inside the process's own root (its mount
        namespace or chroot). Falls back to our root when /proc/<pid>/root
        cannot be entered.
        """
        root = self.pid_path(pid, "root")
        try:
            os.stat(root)
        except OSError:
            return self.path_exists(target)
        return os.path.exists(os.path.join(root, target.lstrip("/")))

    def read_root_text(self, *parts: str) -> str:
        """Read a host-wide entry such as sys/kernel/io_uring_disabled."""
        with open(os.path.join(self.root, *parts), "r") as f:
            return f.read()
