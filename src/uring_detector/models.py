"""Data model shared by the probe, the detector and the scanner."""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple


class FeatureFlag(enum.IntFlag):
    """IORING_FEAT_* bits reported in io_uring_params.features."""

    IORING_FEAT_SINGLE_MMAP = 1 << 0
    IORING_FEAT_NODROP = 1 << 1
    IORING_FEAT_SUBMIT_STABLE = 1 << 2
    IORING_FEAT_RW_CUR_POS = 1 << 3
    IORING_FEAT_CUR_PERSONALITY = 1 << 4
    IORING_FEAT_FAST_POLL = 1 << 5
    IORING_FEAT_POLL_32BITS = 1 << 6
    IORING_FEAT_SQPOLL_NONFIXED = 1 << 7
    IORING_FEAT_EXT_ARG = 1 << 8
    IORING_FEAT_NATIVE_WORKERS = 1 << 9
    IORING_FEAT_RSRC_TAGS = 1 << 10
    IORING_FEAT_CQE_SKIP = 1 << 11
    IORING_FEAT_LINKED_FILE = 1 << 12
    IORING_FEAT_REG_REG_RING = 1 << 13
    IORING_FEAT_RECVSEND_BUNDLE = 1 << 14
    IORING_FEAT_MIN_TIMEOUT = 1 << 15
    IORING_FEAT_RW_ATTR = 1 << 16
    IORING_FEAT_NO_IOWAIT = 1 << 17


# Kernel release that first reported each bit (include/uapi/linux/io_uring.h).
FEATURE_INTRODUCED_IN: Dict[FeatureFlag, str] = {
    FeatureFlag.IORING_FEAT_SINGLE_MMAP: "5.4",
    FeatureFlag.IORING_FEAT_NODROP: "5.5",
    FeatureFlag.IORING_FEAT_SUBMIT_STABLE: "5.5",
    FeatureFlag.IORING_FEAT_RW_CUR_POS: "5.6",
    FeatureFlag.IORING_FEAT_CUR_PERSONALITY: "5.6",
    FeatureFlag.IORING_FEAT_FAST_POLL: "5.7",
    FeatureFlag.IORING_FEAT_POLL_32BITS: "5.9",
    FeatureFlag.IORING_FEAT_SQPOLL_NONFIXED: "5.11",
    FeatureFlag.IORING_FEAT_EXT_ARG: "5.11",
    FeatureFlag.IORING_FEAT_NATIVE_WORKERS: "5.12",
    FeatureFlag.IORING_FEAT_RSRC_TAGS: "5.13",
    FeatureFlag.IORING_FEAT_CQE_SKIP: "5.17",
    FeatureFlag.IORING_FEAT_LINKED_FILE: "5.18",
    FeatureFlag.IORING_FEAT_REG_REG_RING: "6.3",
    FeatureFlag.IORING_FEAT_RECVSEND_BUNDLE: "6.10",
    FeatureFlag.IORING_FEAT_MIN_TIMEOUT: "6.12",
    FeatureFlag.IORING_FEAT_RW_ATTR: "6.13",
    FeatureFlag.IORING_FEAT_NO_IOWAIT: "6.15",
}


def decode_features(raw: int) -> FrozenSet[FeatureFlag]:
    """
    Map a raw features bitmask to the known FeatureFlag members.

    Bits without a table entry (newer kernels) are dropped, not rejected.
    """
    return frozenset(flag for flag in FEATURE_INTRODUCED_IN if raw & flag)


class BackingState(str, enum.Enum):
    """Where the executable image of a process lives."""

    ON_DISK = "ON_DISK"
    IN_MEMORY = "IN_MEMORY"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class KernelCapabilities:
    """Immutable result of one io_uring_setup probe."""

    supported: bool
    feature_flags: FrozenSet[FeatureFlag] = frozenset()
    raw_features: int = 0
    errno: Optional[int] = None  # set when io_uring_setup failed
    disabled_sysctl: Optional[int] = None  # kernel.io_uring_disabled

    def sorted_flags(self) -> Tuple[FeatureFlag, ...]:
        return tuple(sorted(self.feature_flags, key=int))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supported": self.supported,
            "feature_flags": [flag.name for flag in self.sorted_flags()],
            "raw_features": self.raw_features,
            "errno": self.errno,
            "io_uring_disabled": self.disabled_sysctl,
        }


@dataclass(frozen=True)
class SystemInfo:
    """Host identification printed in the report header."""

    architecture: str
    system_name: str
    release: str
    node_name: str
    version: str
    min_kernel_met: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "architecture": self.architecture,
            "kernel_version": f"{self.system_name} {self.release}",
            "node_name": self.node_name,
            "version": self.version,
            "min_kernel_met": self.min_kernel_met,
        }


@dataclass(frozen=True)
class UsageEvidence:
    """io_uring traces found in one process's descriptors and mappings."""

    pid: int
    fds: Tuple[int, ...] = ()
    mappings: int = 0

    @property
    def matched(self) -> bool:
        return bool(self.fds) or self.mappings > 0


@dataclass(frozen=True)
class ProcessRecord:
    """A process confirmed to hold io_uring resources."""

    pid: int
    name: str
    executable_path: Optional[str]
    command_line: Tuple[str, ...]
    backing_state: BackingState
    virtual_memory_kb: int = 0
    resident_memory_kb: int = 0
    io_uring_fds: Tuple[int, ...] = ()
    mapping_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "executable_path": self.executable_path,
            "command_line": list(self.command_line),
            "backing_state": self.backing_state.value,
            "virtual_memory_kb": self.virtual_memory_kb,
            "resident_memory_kb": self.resident_memory_kb,
            "io_uring_fds": list(self.io_uring_fds),
            "mapping_count": self.mapping_count,
        }


@dataclass(frozen=True)
class ScanResult:
    """Everything one scan produced, matches ordered by ascending PID."""

    capabilities: KernelCapabilities
    system: Optional[SystemInfo] = None
    matches: Tuple[ProcessRecord, ...] = field(default_factory=tuple)
    scanned: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system": self.system.to_dict() if self.system else None,
            "capabilities": self.capabilities.to_dict(),
            "scanned_processes": self.scanned,
            "total_matches": len(self.matches),
            "matches": [record.to_dict() for record in self.matches],
        }
