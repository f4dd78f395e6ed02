# deploy_engine/process/executor.py
"""Process executor - starts external tools and collects their output."""

import logging
import os
import signal
import subprocess
import threading
import time
from datetime import datetime, timezone
from typing import IO, List, Optional, Sequence

from deploy_engine.process.models import (
    ExecutionMode,
    ProcessExecutionOptions,
    ProcessExecutionResult,
    ProcessLaunchResult,
    ProcessOutputStream,
)

logger = logging.getLogger(__name__)

_IS_WINDOWS = os.name == "nt"


class ProcessExecutor:
    """
    Runs external executables in one of three modes.

    - fire_and_forget: start and return the pid immediately
    - execute_and_capture: wait for exit, buffer stdout/stderr
    - execute_with_realtime_output: as capture, but publish each line
      to a callback and optionally to the logger

    Process-level failures never raise; they come back as results with
    ``started=False`` and the error text in ``standard_error``.
    """

    def __init__(self, poll_interval: float = 0.05, kill_wait_seconds: float = 5.0):
        self.poll_interval = poll_interval
        self.kill_wait_seconds = kill_wait_seconds

    # ============================================
    # PUBLIC API
    # ============================================

    def execute(
        self,
        program: str,
        arguments: Sequence[str],
        wait_for_exit: bool,
        working_directory: Optional[str] = None,
        show_output: bool = False,
        suppress_errors: bool = False,
    ) -> str:
        """
        Compatibility API.

        Returns joined stdout/stderr for blocking execution and an empty
        string for fire-and-forget.
        """
        options = ProcessExecutionOptions(
            program=program,
            arguments=list(arguments),
            working_directory=working_directory,
            mirror_output_to_logger=show_output,
            suppress_errors=suppress_errors,
        )

        if not wait_for_exit:
            self.fire_and_forget(options)
            return ""

        if show_output:
            result = self.execute_with_realtime_output(options)
        else:
            result = self.execute_and_capture(options)

        return _join_outputs(result.standard_output, result.standard_error)

    def fire_and_forget(self, options: ProcessExecutionOptions) -> ProcessLaunchResult:
        """Start a process without waiting for it."""
        _validate_options(options)
        started_at = _utcnow()

        try:
            process = subprocess.Popen(
                self._command(options),
                cwd=options.working_directory,
                env=_build_environment(options),
                **_detached_kwargs(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.debug(f"[process] failed to launch {options.program}: {e}")
            return ProcessLaunchResult(
                started=False,
                started_at=started_at,
                error_message=str(e),
            )

        logger.debug(f"[process] launched {options.program} (pid={process.pid})")
        return ProcessLaunchResult(
            started=True,
            started_at=started_at,
            process_id=process.pid,
        )

    def execute_and_capture(self, options: ProcessExecutionOptions) -> ProcessExecutionResult:
        """Start a process, wait for it, and return the captured output."""
        return self.run(options, ExecutionMode.CAPTURE)

    def execute_with_realtime_output(self, options: ProcessExecutionOptions) -> ProcessExecutionResult:
        """Start a process, stream each line as it arrives, and return the captured output."""
        return self.run(options, ExecutionMode.REALTIME)

    # ============================================
    # EXECUTION
    # ============================================

    def run(self, options: ProcessExecutionOptions, mode: ExecutionMode) -> ProcessExecutionResult:
        """
        Execute in the given mode.

        Two reader threads drain stdout and stderr while this thread waits
        for exit, timeout, or cancellation. All three finish before the
        result is built.
        """
        _validate_options(options)
        started_at = _utcnow()

        try:
            process = subprocess.Popen(
                self._command(options),
                cwd=options.working_directory,
                env=_build_environment(options),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                **_detached_kwargs(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            return ProcessExecutionResult(
                started=False,
                started_at=started_at,
                finished_at=_utcnow(),
                standard_error=str(e),
            )

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        publish_lock = threading.Lock()
        realtime = mode is ExecutionMode.REALTIME

        readers = [
            threading.Thread(
                target=self._read_stream,
                args=(process.stdout, ProcessOutputStream.STDOUT, stdout_lines,
                      options, realtime, publish_lock),
                daemon=True,
            ),
            threading.Thread(
                target=self._read_stream,
                args=(process.stderr, ProcessOutputStream.STDERR, stderr_lines,
                      options, realtime, publish_lock),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        canceled, timed_out = self._wait_for_exit(process, options)

        if canceled or timed_out:
            self._kill_process_tree(process)
            reason = "canceled" if canceled else f"timed out after {options.timeout}s"
            logger.warning(f"[process] {options.program} (pid={process.pid}) {reason}")

        for reader in readers:
            reader.join(self.kill_wait_seconds if (canceled or timed_out) else None)

        return ProcessExecutionResult(
            started=True,
            started_at=started_at,
            finished_at=_utcnow(),
            process_id=process.pid,
            exit_code=process.poll(),
            timed_out=timed_out,
            canceled=canceled,
            standard_output="\n".join(stdout_lines),
            standard_error="\n".join(stderr_lines),
        )

    def _wait_for_exit(self, process: subprocess.Popen, options: ProcessExecutionOptions):
        """
        Wait for exit under the linked cancellation signal.

        Returns (canceled, timed_out). External cancellation wins when
        both apply.
        """
        deadline = None
        if options.timeout is not None and options.timeout > 0:
            deadline = time.monotonic() + options.timeout

        while process.poll() is None:
            if options.cancellation is not None and options.cancellation.is_set():
                return True, False
            if deadline is not None and time.monotonic() >= deadline:
                return False, True
            try:
                process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                continue

        return False, False

    def _read_stream(
        self,
        stream: IO[str],
        source: ProcessOutputStream,
        target: List[str],
        options: ProcessExecutionOptions,
        realtime: bool,
        publish_lock: threading.Lock,
    ) -> None:
        try:
            for raw_line in iter(stream.readline, ""):
                line = raw_line.rstrip("\r\n")
                target.append(line)
                if realtime:
                    with publish_lock:
                        self._publish_line(line, source, options)
        except (OSError, ValueError) as e:
            # Pipe closed underneath us after a kill
            logger.debug(f"[process] {source.value} reader stopped: {e}")
        finally:
            stream.close()

    def _publish_line(
        self,
        line: str,
        source: ProcessOutputStream,
        options: ProcessExecutionOptions,
    ) -> None:
        if options.on_output is not None:
            try:
                options.on_output(line, source)
            except Exception as e:
                logger.error(f"Process output callback failed: {e}")

        if not options.mirror_output_to_logger:
            return

        if source is ProcessOutputStream.STDERR:
            if not options.suppress_errors:
                logger.error(line)
            return

        logger.info(line)

    def _kill_process_tree(self, process: subprocess.Popen) -> None:
        """Terminate the process and its children; failures leave a partial result."""
        if process.poll() is not None:
            return
        try:
            if _IS_WINDOWS:
                subprocess.run(
                    ["taskkill", "/F", "/T", "/PID", str(process.pid)],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    check=False,
                )
            else:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"[process] could not kill process tree {process.pid}: {e}")
            process.kill()

        try:
            process.wait(timeout=self.kill_wait_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(f"[process] pid {process.pid} did not exit after kill")

    @staticmethod
    def _command(options: ProcessExecutionOptions) -> List[str]:
        return [options.program, *options.arguments]


# ============================================
# HELPERS
# ============================================

def _validate_options(options: ProcessExecutionOptions) -> None:
    if options is None:
        raise ValueError("options are required")
    if not options.program or not options.program.strip():
        raise ValueError("program is required")


def _build_environment(options: ProcessExecutionOptions):
    if not options.environment:
        return None
    env = os.environ.copy()
    env.update(options.environment)
    return env


def _detached_kwargs():
    """Put the child in its own process group so the whole tree can be killed."""
    if _IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _join_outputs(stdout: str, stderr: str) -> str:
    if not stdout:
        return stderr or ""
    if not stderr:
        return stdout
    return f"{stdout}{os.linesep}{stderr}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
