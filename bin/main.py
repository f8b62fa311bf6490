import argparse
import json
import logging
import os
import sys

# Add src/ to path for imports
sys.path.insert(
    0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
)

from uring_detector import report, scanner
from uring_detector.procfs import PROC_ROOT, EnumerationError, ProcFS
from uring_detector.response import ErrorCode, TaskType, make_error_response

EXIT_OK = 0
EXIT_ENUMERATION_FAILURE = 2


def get_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Point-in-time scan for processes using io_uring."
    )
    parser.add_argument(
        "--proc-root",
        type=str,
        default=PROC_ROOT,
        help="Process filesystem to scan (default: /proc).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Inspect processes with this many threads (default: 1).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the JSON response instead of the text report.",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Also save the JSON response under this directory.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity on stderr (default: WARNING).",
    )
    args = parser.parse_args(argv)
    if args.workers <= 0:
        parser.error(f"--workers must be > 0, got {args.workers}")
    return args


def main(argv=None) -> int:
    args = get_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        result = scanner.run_scan(procfs=ProcFS(args.proc_root), workers=args.workers)
    except EnumerationError as e:
        if args.json:
            print(json.dumps(e.response, indent=2))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return EXIT_ENUMERATION_FAILURE

    response = report.to_response(result)
    if args.json:
        print(json.dumps(response, indent=2, default=str))
    else:
        sys.stdout.write(report.render_text(result))

    if args.output_dir:
        try:
            report.write_snapshot(response, args.output_dir)
        except OSError as e:
            io_err = make_error_response(
                TaskType.STATE,
                "IO_URING_SCAN_WRITE",
                ErrorCode.IO_FAILURE,
                f"Failed to write snapshot under {args.output_dir}: {e}",
            )
            print(json.dumps(io_err), file=sys.stderr)

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
