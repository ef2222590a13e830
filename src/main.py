"""
Main entry point for running the Drive reconciler.
"""

import faulthandler
import os
import sys
import traceback
import threading
from datetime import datetime
from pathlib import Path

from orchestrator.main import main
from utils.flags import is_truthy
from utils.instance_guard import InstanceLockError, acquire_instance_lock


def _enable_crash_diagnostics() -> None:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    crash_log = logs_dir / f"crash_traceback_{datetime.utcnow().strftime('%Y%m%d')}.log"
    crash_stream = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=crash_stream, all_threads=True)

    def _hook(exc_type, exc, tb):
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write("\n")
            handle.write(datetime.utcnow().isoformat() + " Unhandled exception\n")
            traceback.print_exception(exc_type, exc, tb, file=handle)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook
    if hasattr(threading, "excepthook"):
        def _thread_hook(args):
            _hook(args.exc_type, args.exc_value, args.exc_traceback)
        threading.excepthook = _thread_hook


if __name__ == "__main__":
    _enable_crash_diagnostics()
    _lock = None
    if not is_truthy(os.environ.get("DRIVE_RECONCILER_ALLOW_MULTI_INSTANCE")):
        try:
            _lock = acquire_instance_lock(Path("data") / "drive_reconciler.lock")
        except InstanceLockError as exc:
            message = (
                f"ERROR: {exc}.\n"
                "Concurrent runs would interleave writes to the same rollback sessions. "
                "Close the other process or set DRIVE_RECONCILER_ALLOW_MULTI_INSTANCE=1 to override.\n"
            )
            print(message, file=sys.stderr)
            raise SystemExit(2) from exc
    try:
        exit_code = main()
    finally:
        if _lock is not None:
            _lock.release()
    raise SystemExit(exit_code)
