import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional

from uring_detector import kernel_probe, process_classifier, usage_detector
from uring_detector.models import KernelCapabilities, ProcessRecord, ScanResult
from uring_detector.procfs import ProcFS
from uring_detector.response import ErrorCode, TaskType, make_error_response

logger = logging.getLogger(__name__)

Prober = Callable[[], KernelCapabilities]


def scan_pid(pid: int, procfs: ProcFS) -> Optional[ProcessRecord]:
    """
    Inspect one PID; classify it only when io_uring evidence was found.

    A process that exits mid-inspection yields None or a record with
    defaulted fields, never an exception.
    """
    evidence = usage_detector.inspect(pid, procfs)
    if not evidence.matched:
        return None
    logger.debug(
        "pid %d: io_uring fds=%s mappings=%d", pid, evidence.fds, evidence.mappings
    )
    return process_classifier.classify(pid, procfs, evidence)


def _scan_pids(pids: Iterable[int], procfs: ProcFS, workers: int) -> List[ProcessRecord]:
    if workers == 1:
        results = [scan_pid(pid, procfs) for pid in pids]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda pid: scan_pid(pid, procfs), pids))
    records = [record for record in results if record is not None]
    return sorted(records, key=lambda record: record.pid)


def run_scan(
    procfs: Optional[ProcFS] = None,
    prober: Optional[Prober] = None,
    workers: int = 1,
) -> ScanResult:
    """
    Take one point-in-time snapshot of io_uring usage on the host.

    Processes started after enumeration are not seen; processes that exit
    after being recorded keep what was collected. Raises EnumerationError
    when the proc root cannot be listed, which is the only fatal case.
    """
    if workers <= 0:
        err = make_error_response(
            TaskType.STATE,
            "IO_URING_SCAN",
            ErrorCode.INVALID_ARGUMENTS,
            f"Invalid workers: {workers} (must be > 0)",
        )
        raise ValueError(json.dumps(err))

    procfs = procfs or ProcFS()
    prober = prober or (lambda: kernel_probe.probe(procfs=procfs))

    capabilities = prober()
    system = kernel_probe.system_info()

    pids = sorted(procfs.list_pids())
    logger.info("Scanning %d processes under %s", len(pids), procfs.root)

    matches = _scan_pids(pids, procfs, workers)
    logger.info("%d processes hold io_uring resources", len(matches))

    return ScanResult(
        capabilities=capabilities,
        system=system,
        matches=tuple(matches),
        scanned=len(pids),
    )
