import logging
from typing import Iterable, List, Optional, Tuple

from uring_detector.models import UsageEvidence
from uring_detector.procfs import ProcFS

logger = logging.getLogger(__name__)

# Name the kernel gives the anonymous inode behind every io_uring instance.
IO_URING_ANON_INODE = "anon_inode:[io_uring]"
IO_URING_LABEL = "[io_uring]"


def is_io_uring_target(target: str) -> bool:
    """True if an fd link target names an io_uring anonymous inode."""
    return IO_URING_ANON_INODE in target


def fd_evidence(links: Iterable[Tuple[int, str]]) -> List[int]:
    """
    Return the descriptors whose link target is an io_uring instance.

    `links` are (fd, readlink target) pairs as found in /proc/<pid>/fd.
    """
    return sorted(fd for fd, target in links if is_io_uring_target(target))


def _mapping_label(line: str) -> Optional[str]:
    # address perms offset dev inode [pathname]
    parts = line.split(None, 5)
    if len(parts) < 6:
        return None
    return parts[5].strip()


def mapping_evidence(maps_text: str) -> int:
    """
    Count the regions of a /proc/<pid>/maps listing backed by io_uring.

    The SQ/CQ rings and SQE array stay mapped after the descriptor is
    closed, so this still finds rings whose fd is gone.
    """
    count = 0
    for line in maps_text.splitlines():
        label = _mapping_label(line)
        if not label:
            continue
        if label.endswith(" (deleted)"):
            label = label[: -len(" (deleted)")]
        if label in (IO_URING_ANON_INODE, IO_URING_LABEL, "/" + IO_URING_LABEL):
            count += 1
    return count


def _read_fd_links(pid: int, procfs: ProcFS) -> List[Tuple[int, str]]:
    links = []
    try:
        fds = procfs.list_fds(pid)
    except OSError as e:
        logger.debug("pid %d: fd directory unreadable: %s", pid, e)
        return links
    for fd in fds:
        try:
            links.append((fd, procfs.read_link(pid, "fd", str(fd))))
        except OSError:
            # Closed between listdir and readlink.
            continue
    return links


def inspect(pid: int, procfs: Optional[ProcFS] = None) -> UsageEvidence:
    """
    Collect io_uring evidence for one process.

    Both sources are always consulted; an unreadable source contributes
    nothing instead of failing the whole lookup.
    """
    procfs = procfs or ProcFS()
    fds = fd_evidence(_read_fd_links(pid, procfs))

    mappings = 0
    try:
        mappings = mapping_evidence(procfs.read_text(pid, "maps"))
    except OSError as e:
        logger.debug("pid %d: maps unreadable: %s", pid, e)

    return UsageEvidence(pid=pid, fds=tuple(fds), mappings=mappings)


def detect(pid: int, procfs: Optional[ProcFS] = None) -> bool:
    """True if the process currently holds an io_uring descriptor or mapping."""
    return inspect(pid, procfs).matched
