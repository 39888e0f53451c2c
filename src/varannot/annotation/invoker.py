"""External annotation engine invocation.

Runs the engine (Ensembl VEP or any executable with the same contract) as a
child process, feeds it the annotation input, waits for it with an optional
wall-clock timeout, and checks that it left a complete gzip stream behind.

Two wiring modes are supported on each side:

    input  path   -> the input file path is substituted into the argv
           stdin  -> the decompressed input is streamed to the child's stdin
    output file   -> the engine writes the output file itself
           stdout -> the child's stdout is gzip-compressed into the output path

Lifecycle is an explicit state machine:

    NOT_STARTED -> RUNNING -> COMPLETED | TIMED_OUT | KILLED

An invoker instance runs exactly one process.
"""

from __future__ import annotations

import collections
import enum
import gzip
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
import zlib
from pathlib import Path
from typing import IO

from pydantic import BaseModel

from varannot.config import VepConfig
from varannot.exceptions import (
    ConfigError,
    ExternalProcessError,
    ExternalProcessTimeout,
    OutputValidationError,
)
from varannot.models import InvocationResult, ProcessState

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16

_TRANSITIONS: dict[ProcessState, set[ProcessState]] = {
    ProcessState.NOT_STARTED: {ProcessState.RUNNING},
    ProcessState.RUNNING: {ProcessState.COMPLETED, ProcessState.TIMED_OUT, ProcessState.KILLED},
    ProcessState.COMPLETED: set(),
    ProcessState.TIMED_OUT: set(),
    ProcessState.KILLED: set(),
}


class InputMode(enum.StrEnum):
    PATH = "path"
    STDIN = "stdin"


class OutputMode(enum.StrEnum):
    FILE = "file"
    STDOUT = "stdout"


class AnnotatorCommand(BaseModel):
    """argv template for the engine; ``{input}``/``{output}`` are substituted."""
    argv: list[str]
    input_mode: InputMode = InputMode.PATH
    output_mode: OutputMode = OutputMode.FILE

    def render(self, input_path: str | Path, output_path: str | Path) -> list[str]:
        return [
            arg.replace("{input}", str(input_path)).replace("{output}", str(output_path))
            for arg in self.argv
        ]


def build_vep_command(vep: VepConfig) -> AnnotatorCommand:
    """Build the VEP command line used by the annotation step.

    VEP reads the gzip input by path and writes annotations to STDOUT,
    which is compressed into the output file.
    """
    if not vep.script_path:
        raise ConfigError("VEP_PATH is not set; cannot build the VEP command")

    argv = [
        vep.perl_path, vep.script_path,
        "-i", "{input}",
        "-o", "STDOUT",
        "--force_overwrite",
        "--offline",
        "--everything",
        "--species", vep.species,
        "--fork", str(vep.forks),
    ]
    if vep.cache_dir:
        argv += ["--cache", "--dir", vep.cache_dir]
    if vep.cache_version:
        argv += ["--cache_version", vep.cache_version]
    if vep.fasta:
        argv += ["--fasta", vep.fasta]

    return AnnotatorCommand(argv=argv, input_mode=InputMode.PATH, output_mode=OutputMode.STDOUT)


def validate_gzip_output(path: str | Path) -> int:
    """Decompress the whole file and return its line count.

    Raises OutputValidationError when the file is missing, empty, not gzip,
    corrupt, or truncated before the gzip trailer.
    """
    path = Path(path)
    if not path.is_file():
        raise OutputValidationError(f"Annotation output not found: {path}", path=str(path))
    if path.stat().st_size == 0:
        raise OutputValidationError(
            f"Annotation output is empty, not a gzip stream: {path}", path=str(path),
        )

    lines = 0
    last = b""
    try:
        with gzip.open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                lines += chunk.count(b"\n")
                last = chunk[-1:]
    except (OSError, EOFError, zlib.error) as e:
        raise OutputValidationError(
            f"Annotation output is not a valid gzip stream: {path}: {e}", path=str(path),
        ) from e

    if last and last != b"\n":
        lines += 1
    return lines


def _log_engine_line(line: str) -> None:
    """Forward one line of engine diagnostics at a level matching its content."""
    lowered = line.lower()
    if any(k in lowered for k in ("error", "warn", "failed", "cannot", "invalid")):
        logger.warning("engine: %s", line)
    else:
        logger.debug("engine: %s", line)


class ExternalAnnotatorInvoker:
    """Run the annotation engine once and validate what it produced."""

    def __init__(
        self,
        command: AnnotatorCommand,
        timeout: float | None = None,
        stderr_tail_lines: int = 200,
        kill_grace_seconds: float = 5.0,
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.kill_grace_seconds = kill_grace_seconds
        self._state = ProcessState.NOT_STARTED
        self._lock = threading.Lock()
        self._process: subprocess.Popen | None = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=stderr_tail_lines)
        self._pump_errors: dict[str, BaseException] = {}
        self._cancel_requested = False

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def _transition(self, new_state: ProcessState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal process transition {self._state} -> {new_state}")
        logger.debug("Annotation process %s -> %s", self._state, new_state)
        self._state = new_state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, input_path: str | Path, output_path: str | Path) -> InvocationResult:
        """Run the engine on ``input_path`` and validate ``output_path``."""
        if self._state != ProcessState.NOT_STARTED:
            raise RuntimeError("An invoker runs exactly one process")
        input_path = Path(input_path)
        output_path = Path(output_path)
        argv = self.command.render(input_path, output_path)
        with self._lock:
            self._raise_if_cancelled(argv)

        if not input_path.is_file():
            raise ExternalProcessError(
                f"Annotation input not found: {input_path}",
                command=argv, stage="prepare",
            )
        # A stale file from a previous run must not pass validation
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.unlink(missing_ok=True)

        started = time.monotonic()
        self._start(argv)
        threads = self._start_pumps(input_path, output_path)

        try:
            returncode = self._process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._stop(ProcessState.TIMED_OUT, force=True)
            self._join(threads)
            logger.error("Annotation engine timed out after %ss: %s", self.timeout, " ".join(argv))
            raise ExternalProcessTimeout(
                f"Annotation engine did not finish within {self.timeout} seconds",
                timeout=self.timeout, command=argv, stderr=self.stderr_tail,
            )
        except BaseException:
            self._stop(ProcessState.KILLED, force=False)
            self._join(threads)
            raise

        self._join(threads)
        duration = time.monotonic() - started

        with self._lock:
            cancelled = self._state == ProcessState.KILLED
            if not cancelled:
                self._transition(ProcessState.COMPLETED)

        if cancelled:
            raise ExternalProcessError(
                f"Annotation engine was cancelled (exit status {returncode})",
                returncode=returncode, command=argv, stderr=self.stderr_tail, cancelled=True,
            )
        if returncode != 0:
            raise ExternalProcessError(
                f"Annotation engine failed: {_describe_exit(returncode)}",
                returncode=returncode, command=argv, stderr=self.stderr_tail,
            )
        if "stdin" in self._pump_errors:
            raise ExternalProcessError(
                f"Failed to stream {input_path} to the annotation engine: "
                f"{self._pump_errors['stdin']}",
                returncode=returncode, command=argv, stderr=self.stderr_tail, stage="feed_input",
            )
        if "stdout" in self._pump_errors:
            raise OutputValidationError(
                f"Failed to capture engine output into {output_path}: "
                f"{self._pump_errors['stdout']}",
                path=str(output_path),
            )

        output_lines = validate_gzip_output(output_path)
        logger.info(
            "Annotation engine finished in %.2fs; %d lines in %s",
            duration, output_lines, output_path,
        )
        return InvocationResult(
            command=argv,
            returncode=returncode,
            state=self._state,
            duration_seconds=duration,
            output_path=str(output_path),
            output_lines=output_lines,
            stderr_tail=self.stderr_tail,
        )

    def cancel(self) -> None:
        """Terminate the engine; ``run`` then fails as cancelled.

        Before the engine has started, the cancel is remembered and ``run``
        fails without spawning it.
        """
        with self._lock:
            if self._state == ProcessState.NOT_STARTED:
                logger.info("Annotation engine cancelled before start")
                self._cancel_requested = True
                return
        self._stop(ProcessState.KILLED, force=False)

    # ------------------------------------------------------------------
    # Process handling
    # ------------------------------------------------------------------

    def _start(self, argv: list[str]) -> None:
        with self._lock:
            self._raise_if_cancelled(argv)
            logger.info("Starting annotation engine: %s", " ".join(argv))
            try:
                self._process = subprocess.Popen(
                    argv,
                    stdin=subprocess.PIPE if self.command.input_mode == InputMode.STDIN
                    else subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    # Own process group so the whole tree can be killed
                    start_new_session=os.name == "posix",
                )
            except OSError as e:
                returncode = 126 if isinstance(e, PermissionError) else 127
                raise ExternalProcessError(
                    f"Cannot start annotation engine {argv[0]!r}: {e}",
                    returncode=returncode, command=argv, stage="start",
                ) from e
            self._transition(ProcessState.RUNNING)

    def _raise_if_cancelled(self, argv: list[str]) -> None:
        if self._cancel_requested:
            raise ExternalProcessError(
                "Annotation engine was cancelled before it started",
                command=argv, stage="start", cancelled=True,
            )

    def _stop(self, state: ProcessState, force: bool) -> None:
        with self._lock:
            if self._state != ProcessState.RUNNING:
                return
            self._transition(state)
            proc = self._process

        if proc.poll() is not None:
            return
        if force:
            self._signal(proc, signal.SIGKILL if os.name == "posix" else None)
            proc.wait()
            return

        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Annotation engine ignored SIGTERM, killing pid %d", proc.pid)
            self._signal(proc, signal.SIGKILL if os.name == "posix" else None)
            proc.wait()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: signal.Signals | None) -> None:
        try:
            if os.name == "posix" and sig is not None:
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except ProcessLookupError:
            pass

    # ------------------------------------------------------------------
    # Pipe pumps
    # ------------------------------------------------------------------

    def _start_pumps(self, input_path: Path, output_path: Path) -> list[threading.Thread]:
        proc = self._process
        targets = [("stderr", self._drain_stderr, (proc.stderr,))]
        if self.command.output_mode == OutputMode.STDOUT:
            targets.append(("stdout", self._capture_stdout, (proc.stdout, output_path)))
        else:
            targets.append(("stdout", self._drain_stdout, (proc.stdout,)))
        if self.command.input_mode == InputMode.STDIN:
            targets.append(("stdin", self._feed_stdin, (proc.stdin, input_path)))

        threads = []
        for name, target, args in targets:
            thread = threading.Thread(
                target=self._guard, args=(name, target, *args),
                name=f"annotator-{name}", daemon=True,
            )
            thread.start()
            threads.append(thread)
        return threads

    def _join(self, threads: list[threading.Thread]) -> None:
        for thread in threads:
            thread.join(timeout=self.kill_grace_seconds)
            if thread.is_alive():
                logger.warning("Pipe thread %s did not finish", thread.name)

    def _guard(self, name: str, target, *args) -> None:
        try:
            target(*args)
        except Exception as e:  # reported by run() once the process has exited
            logger.debug("Pipe thread %s failed: %s", name, e)
            self._pump_errors[name] = e

    def _drain_stderr(self, stream: IO[bytes]) -> None:
        with stream:
            for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                self._stderr_tail.append(line)
                _log_engine_line(line)

    @staticmethod
    def _drain_stdout(stream: IO[bytes]) -> None:
        with stream:
            for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.debug("engine stdout: %s", line)

    @staticmethod
    def _capture_stdout(stream: IO[bytes], output_path: Path) -> None:
        with stream, gzip.open(output_path, "wb") as out:
            shutil.copyfileobj(stream, out, _CHUNK_SIZE)

    @staticmethod
    def _feed_stdin(stream: IO[bytes], input_path: Path) -> None:
        try:
            with gzip.open(input_path, "rb") as src:
                shutil.copyfileobj(src, stream, _CHUNK_SIZE)
        except BrokenPipeError:
            # Engine stopped reading; run() checks its exit status
            logger.debug("Annotation engine closed stdin early")
        finally:
            try:
                stream.close()
            except BrokenPipeError:
                pass


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"killed by signal {signal.Signals(-returncode).name}"
        except ValueError:
            return f"killed by signal {-returncode}"
    return f"exit status {returncode}"
