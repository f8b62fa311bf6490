import ctypes
import errno as errno_codes
import logging
import os
import platform
import re
from typing import Callable, Optional

from uring_detector.models import KernelCapabilities, SystemInfo, decode_features
from uring_detector.procfs import ProcFS

logger = logging.getLogger(__name__)

# io_uring first shipped in Linux 5.1.
MIN_KERNEL = (5, 1)

# Ring depth for the probe; the smallest the kernel accepts.
PROBE_ENTRIES = 1

# __NR_io_uring_setup. Every architecture on the unified syscall table uses
# 425; only the ones that diverge are listed.
IO_URING_SETUP_DEFAULT_NR = 425
IO_URING_SETUP_NR = {
    "alpha": 535,
    "mips": 4425,
    "mips64": 5425,
}


class IoSqringOffsets(ctypes.Structure):
    _fields_ = [
        ("head", ctypes.c_uint32),
        ("tail", ctypes.c_uint32),
        ("ring_mask", ctypes.c_uint32),
        ("ring_entries", ctypes.c_uint32),
        ("flags", ctypes.c_uint32),
        ("dropped", ctypes.c_uint32),
        ("array", ctypes.c_uint32),
        ("resv1", ctypes.c_uint32),
        ("user_addr", ctypes.c_uint64),
    ]


class IoCqringOffsets(ctypes.Structure):
    _fields_ = [
        ("head", ctypes.c_uint32),
        ("tail", ctypes.c_uint32),
        ("ring_mask", ctypes.c_uint32),
        ("ring_entries", ctypes.c_uint32),
        ("overflow", ctypes.c_uint32),
        ("cqes", ctypes.c_uint32),
        ("flags", ctypes.c_uint32),
        ("resv1", ctypes.c_uint32),
        ("user_addr", ctypes.c_uint64),
    ]


class IoUringParams(ctypes.Structure):
    """struct io_uring_params (120 bytes)."""

    _fields_ = [
        ("sq_entries", ctypes.c_uint32),
        ("cq_entries", ctypes.c_uint32),
        ("flags", ctypes.c_uint32),
        ("sq_thread_cpu", ctypes.c_uint32),
        ("sq_thread_idle", ctypes.c_uint32),
        ("features", ctypes.c_uint32),
        ("wq_fd", ctypes.c_uint32),
        ("resv", ctypes.c_uint32 * 3),
        ("sq_off", IoSqringOffsets),
        ("cq_off", IoCqringOffsets),
    ]


SetupFunc = Callable[[int, IoUringParams], int]


def io_uring_setup_nr(machine: Optional[str] = None) -> int:
    machine = machine if machine is not None else platform.machine()
    return IO_URING_SETUP_NR.get(machine, IO_URING_SETUP_DEFAULT_NR)


def io_uring_setup(entries: int, params: IoUringParams) -> int:
    """
    Call io_uring_setup(2) through libc's syscall(2) wrapper.

    Returns the new ring descriptor; raises OSError with the kernel's errno,
    or ENOSYS when libc or its syscall() entry point is unavailable.
    """
    try:
        libc = ctypes.CDLL(None, use_errno=True)
        syscall = libc.syscall
    except (OSError, AttributeError) as e:
        raise OSError(errno_codes.ENOSYS, f"libc syscall() unavailable: {e}") from e
    syscall.restype = ctypes.c_long
    ret = syscall(
        ctypes.c_long(io_uring_setup_nr()),
        ctypes.c_uint(entries),
        ctypes.byref(params),
    )
    if ret < 0:
        err = ctypes.get_errno()
        raise OSError(err, os.strerror(err))
    return int(ret)


def read_disabled_sysctl(procfs: Optional[ProcFS] = None) -> Optional[int]:
    """Value of kernel.io_uring_disabled, None where the knob does not exist."""
    procfs = procfs or ProcFS()
    try:
        return int(procfs.read_root_text("sys", "kernel", "io_uring_disabled").strip())
    except (OSError, ValueError):
        return None


def probe(
    setup: Optional[SetupFunc] = None, procfs: Optional[ProcFS] = None
) -> KernelCapabilities:
    """
    Ask the kernel for a one-entry ring and report what it advertises.

    The ring is closed before returning. Any refusal (ENOSYS on kernels
    without io_uring, EINVAL, EPERM from io_uring_disabled or seccomp, ...)
    means unsupported; nothing is retried.
    """
    setup = setup or io_uring_setup
    disabled = read_disabled_sysctl(procfs)
    params = IoUringParams()

    try:
        fd = setup(PROBE_ENTRIES, params)
    except OSError as e:
        code = e.errno if e.errno is not None else errno_codes.ENOSYS
        logger.info(
            "io_uring_setup refused (%s): %s",
            errno_codes.errorcode.get(code, code),
            e.strerror or e,
        )
        return KernelCapabilities(
            supported=False, errno=code, disabled_sysctl=disabled
        )

    try:
        raw = int(params.features)
    finally:
        os.close(fd)

    return KernelCapabilities(
        supported=True,
        feature_flags=decode_features(raw),
        raw_features=raw,
        disabled_sysctl=disabled,
    )


def parse_release(release: str) -> Optional[tuple]:
    match = re.match(r"(\d+)\.(\d+)", release)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def system_info() -> SystemInfo:
    uts = os.uname()
    version = parse_release(uts.release)
    return SystemInfo(
        architecture=uts.machine,
        system_name=uts.sysname,
        release=uts.release,
        node_name=uts.nodename,
        version=uts.version,
        min_kernel_met=version is not None and version >= MIN_KERNEL,
    )
