import logging
from typing import Dict, Optional, Tuple

from uring_detector.models import BackingState, ProcessRecord, UsageEvidence
from uring_detector.procfs import ProcFS

logger = logging.getLogger(__name__)

DELETED_MARKER = " (deleted)"
# Link targets that never name a file on a mounted filesystem.
MEMORY_PSEUDO_PREFIXES = ("/memfd:", "memfd:", "anon_inode:")


def classify_executable(
    target: Optional[str],
    procfs: Optional[ProcFS] = None,
    pid: Optional[int] = None,
) -> BackingState:
    """
    Classify the target of /proc/<pid>/exe.

    None means the link could not be read. With a pid the path is resolved
    inside that process's root, so containerised binaries count as on disk.
    A readable absolute path found nowhere is ambiguous, not fileless.
    """
    if target is None:
        return BackingState.UNKNOWN
    if target.endswith(DELETED_MARKER) or target.startswith(MEMORY_PSEUDO_PREFIXES):
        return BackingState.IN_MEMORY
    if not target.startswith("/"):
        return BackingState.IN_MEMORY
    procfs = procfs or ProcFS()
    exists = procfs.exe_exists(pid, target) if pid is not None else procfs.path_exists(target)
    if exists:
        return BackingState.ON_DISK
    return BackingState.UNKNOWN


def parse_cmdline(raw: bytes) -> Tuple[str, ...]:
    """Split a NUL separated /proc/<pid>/cmdline record into arguments."""
    if not raw:
        return ()
    args = raw.decode("utf-8", errors="replace").split("\0")
    if args and args[-1] == "":
        args.pop()
    return tuple(args)


def parse_status(status_text: str) -> Dict[str, str]:
    fields = {}
    for line in status_text.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields[key.strip()] = value.strip()
    return fields


def _kb(fields: Dict[str, str], key: str) -> int:
    # "VmRSS:	    1234 kB"
    value = fields.get(key, "").split()
    try:
        return int(value[0]) if value else 0
    except ValueError:
        return 0


def classify(
    pid: int,
    procfs: Optional[ProcFS] = None,
    evidence: Optional[UsageEvidence] = None,
) -> ProcessRecord:
    """
    Build the ProcessRecord for a process already known to use io_uring.

    Never raises for a missing or unreadable proc entry; the affected
    field falls back to its default instead.
    """
    procfs = procfs or ProcFS()

    status: Dict[str, str] = {}
    try:
        status = parse_status(procfs.read_text(pid, "status"))
    except OSError as e:
        logger.debug("pid %d: status unreadable: %s", pid, e)

    name = None
    try:
        name = procfs.read_text(pid, "comm").strip() or None
    except OSError as e:
        logger.debug("pid %d: comm unreadable: %s", pid, e)
    name = name or status.get("Name") or "<unknown>"

    exe_path = None
    try:
        exe_path = procfs.read_link(pid, "exe")
    except OSError as e:
        logger.debug("pid %d: exe link unreadable: %s", pid, e)

    command_line: Tuple[str, ...] = ()
    try:
        command_line = parse_cmdline(procfs.read_bytes(pid, "cmdline"))
    except OSError as e:
        logger.debug("pid %d: cmdline unreadable: %s", pid, e)

    return ProcessRecord(
        pid=pid,
        name=name,
        executable_path=exe_path,
        command_line=command_line,
        backing_state=classify_executable(exe_path, procfs, pid),
        virtual_memory_kb=_kb(status, "VmSize"),
        resident_memory_kb=_kb(status, "VmRSS"),
        io_uring_fds=evidence.fds if evidence else (),
        mapping_count=evidence.mappings if evidence else 0,
    )
