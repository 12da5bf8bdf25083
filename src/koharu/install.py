# src/koharu/install.py: Dependency reinstallation.
# This module runs the project's package-manager install command after a
# successful integration. Output is streamed line by line to an optional
# observer for live progress; the result is always returned, never raised.
# start_install() runs the same work on a worker thread and supports
# cancellation, so a session that has moved on never receives a stale result.

import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .util.log import get_logger

logger = get_logger(__name__)

OutputObserver = Callable[[str], None]


@dataclass(frozen=True)
class InstallResult:
    success: bool
    error: Optional[str] = None


def install_deps(cwd: Path, command: List[str], on_output: Optional[OutputObserver] = None) -> InstallResult:
    """Runs `command` in `cwd`, forwarding output lines to `on_output`."""
    logger.info(f"Installing dependencies: {' '.join(command)}")
    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        logger.error(f"Could not start '{command[0]}': {e}")
        return InstallResult(success=False, error=str(e))

    stderr_lines: List[str] = []

    def pump_stderr():
        observer = on_output
        for line in process.stderr:
            stderr_lines.append(line)
            if observer:
                try:
                    observer(line)
                except Exception as e:
                    # Keep draining so the child never blocks on a full pipe.
                    logger.warning(f"Output observer failed, no longer forwarding stderr: {e}", exc_info=True)
                    observer = None

    # stderr is drained on its own thread so neither pipe can fill up and block.
    stderr_thread = threading.Thread(target=pump_stderr, daemon=True)
    stderr_thread.start()
    try:
        for line in process.stdout:
            if on_output:
                on_output(line)
    except BaseException:
        process.kill()
        raise
    finally:
        returncode = process.wait()
        stderr_thread.join()

    if returncode == 0:
        return InstallResult(success=True)
    stderr = "".join(stderr_lines).strip()
    return InstallResult(success=False, error=stderr or f"Exit code: {returncode}")


class InstallHandle:
    """A background install whose completion callback can be suppressed."""

    def __init__(self, thread: threading.Thread):
        self._thread = thread
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)


def start_install(
    cwd: Path,
    command: List[str],
    on_done: Callable[[InstallResult], None],
    on_output: Optional[OutputObserver] = None,
) -> InstallHandle:
    """
    Runs install_deps on a worker thread.

    `on_done` is called with the result unless the handle was cancelled first.
    """
    handle: Optional[InstallHandle] = None

    def worker():
        try:
            result = install_deps(cwd, command, on_output)
        except Exception as e:
            logger.error(f"Dependency install crashed: {e}", exc_info=True)
            result = InstallResult(success=False, error=str(e))
        if handle.cancelled:
            logger.info("Install finished after cancellation; result discarded.")
            return
        on_done(result)

    thread = threading.Thread(target=worker, name="koharu-install", daemon=True)
    handle = InstallHandle(thread)
    thread.start()
    return handle
