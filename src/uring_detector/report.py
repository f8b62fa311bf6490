import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from uring_detector.models import BackingState, ProcessRecord, ScanResult
from uring_detector.response import TaskType, make_success_response

logger = logging.getLogger(__name__)

SUBTYPE = "IO_URING_SCAN"

STATUS_TEXT = {
    BackingState.IN_MEMORY: "Running in memory",
    BackingState.ON_DISK: "Running from disk",
    BackingState.UNKNOWN: "Status unknown",
}


def _system_lines(result: ScanResult) -> List[str]:
    lines = ["Checking system information..."]
    system = result.system
    if system is None:
        lines.append("  (unavailable)")
        return lines
    lines += [
        f"  Architecture: {system.architecture}",
        f"  Kernel Version: {system.system_name} {system.release}",
        f"  Node Name: {system.node_name}",
        f"  Version: {system.version}",
    ]
    if not system.min_kernel_met:
        lines += [
            "",
            "Warning: Kernel version is below 5.1, which is required for io_uring support",
        ]
    return lines


def _capability_lines(result: ScanResult) -> List[str]:
    caps = result.capabilities
    if not caps.supported:
        lines = [
            "io_uring is not supported on this system.",
            "This could be due to:",
            "  - Kernel version being too old (requires 5.1+)",
            "  - io_uring being disabled (sysctl kernel.io_uring_disabled)",
            "  - A seccomp or LSM policy refusing io_uring_setup",
        ]
        if caps.disabled_sysctl:
            lines.append(f"kernel.io_uring_disabled = {caps.disabled_sysctl}")
        return lines

    lines = ["io_uring is supported on this system!", "Reported io_uring feature flags:"]
    flags = caps.sorted_flags()
    if flags:
        lines += [f"  - {flag.name}" for flag in flags]
    else:
        lines.append("  (no features reported)")
    return lines


def _record_lines(record: ProcessRecord) -> List[str]:
    lines = [
        "Process using io_uring:",
        f"  PID: {record.pid}",
        f"  Name: {record.name}",
        f"  Executable: {record.executable_path or 'unknown'}",
        f"  Command line: {' '.join(record.command_line)}",
        f"  Status: {STATUS_TEXT[record.backing_state]}",
        f"  Virtual Memory: {record.virtual_memory_kb} kB",
        f"  Resident Memory: {record.resident_memory_kb} kB",
    ]
    if record.io_uring_fds:
        lines.append(f"  io_uring FD: {', '.join(str(fd) for fd in record.io_uring_fds)}")
    return lines


def render_text(result: ScanResult) -> str:
    """Human readable report, one block per matching process."""
    lines = _system_lines(result)
    lines.append("")
    lines += _capability_lines(result)
    lines += ["", "Checking for processes using io_uring..."]
    if not result.matches:
        lines.append("No processes using io_uring were found.")
    for i, record in enumerate(result.matches):
        if i:
            lines.append("")
        lines += _record_lines(record)
    return "\n".join(lines) + "\n"


def to_response(result: ScanResult) -> Dict[str, Any]:
    return make_success_response(TaskType.STATE, SUBTYPE, result.to_dict())


def write_snapshot(response: Dict[str, Any], output_dir: str) -> str:
    """
    Save a response envelope as JSON to:
    output_dir / io_uring_scan_<timestamp>.json

    Returns the written path.
    """
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    filepath = os.path.join(output_dir, f"io_uring_scan_{timestamp}.json")
    with open(filepath, "w") as f:
        json.dump(response, f, indent=2, default=str)
    logger.info("Wrote scan snapshot to %s", filepath)
    return filepath
