"""Tests for the external annotation engine invoker."""

import gzip
import os
import sys
import threading
import time

import pytest

from varannot.annotation.input_writer import VariantAnnotationInputWriter
from varannot.annotation.invoker import (
    AnnotatorCommand,
    ExternalAnnotatorInvoker,
    InputMode,
    OutputMode,
    build_vep_command,
    validate_gzip_output,
)
from varannot.config import VepConfig
from varannot.exceptions import (
    ConfigError,
    ExternalProcessError,
    ExternalProcessTimeout,
    OutputValidationError,
)
from varannot.models import ProcessState


@pytest.fixture()
def vep_input(tmp_path, variant):
    path = tmp_path / "vep_input.txt.gz"
    VariantAnnotationInputWriter(path).write([variant])
    return path


# ----------------------------------------------------------------------
# Successful runs
# ----------------------------------------------------------------------

def test_engine_writes_output_file(tmp_path, vep_input, mock_engine):
    output = tmp_path / "vep_output.txt.gz"
    invoker = ExternalAnnotatorInvoker(mock_engine("--lines", "537"))

    result = invoker.run(vep_input, output)

    assert output.exists()
    assert result.returncode == 0
    assert result.output_lines == 537
    assert result.state == ProcessState.COMPLETED
    assert invoker.state == ProcessState.COMPLETED


def test_stdout_is_compressed_into_output(tmp_path, vep_input, mock_engine, read_gzip_lines):
    output = tmp_path / "out.gz"
    command = mock_engine("--lines", "3", output_mode=OutputMode.STDOUT)

    result = ExternalAnnotatorInvoker(command).run(vep_input, output)

    lines = read_gzip_lines(output)
    assert result.output_lines == 3
    assert len(lines) == 3
    assert lines[0].startswith("20_60343_G/A\t20:60343\tA")


def test_input_piped_to_stdin(tmp_path, vep_input, mock_engine, read_gzip_lines):
    output = tmp_path / "out.gz"
    command = mock_engine(
        "--lines", "2", input_mode=InputMode.STDIN, output_mode=OutputMode.STDOUT,
    )

    result = ExternalAnnotatorInvoker(command).run(vep_input, output)

    assert result.output_lines == 2
    assert all(line.startswith("20_60343") for line in read_gzip_lines(output))


def test_empty_input_still_runs(tmp_path, mock_engine):
    empty = tmp_path / "empty.gz"
    VariantAnnotationInputWriter(empty).write([])
    output = tmp_path / "out.gz"

    result = ExternalAnnotatorInvoker(mock_engine("--lines", "5")).run(empty, output)

    assert result.output_lines == 0
    assert output.exists()


def test_stderr_is_captured(tmp_path, vep_input, mock_engine, caplog):
    output = tmp_path / "out.gz"
    command = mock_engine("--stderr", "WARNING: 1 variant skipped")

    with caplog.at_level("DEBUG", logger="varannot.annotation.invoker"):
        result = ExternalAnnotatorInvoker(command).run(vep_input, output)

    assert "1 variant skipped" in result.stderr_tail
    assert any("1 variant skipped" in r.getMessage() for r in caplog.records)


def test_placeholders_are_substituted():
    command = AnnotatorCommand(argv=["engine", "-i", "{input}", "--out={output}"])
    assert command.render("in.gz", "out.gz") == ["engine", "-i", "in.gz", "--out=out.gz"]


# ----------------------------------------------------------------------
# Failures
# ----------------------------------------------------------------------

def test_non_zero_exit(tmp_path, vep_input, mock_engine):
    command = mock_engine("--exit", "2", "--stderr", "ERROR: cache not found")

    with pytest.raises(ExternalProcessError) as exc_info:
        ExternalAnnotatorInvoker(command).run(vep_input, tmp_path / "out.gz")

    err = exc_info.value
    assert not isinstance(err, ExternalProcessTimeout)
    assert err.returncode == 2
    assert "cache not found" in err.stderr
    assert err.command[0] == sys.executable
    assert "exit status 2" in str(err)


def test_missing_executable(tmp_path, vep_input):
    command = AnnotatorCommand(argv=[str(tmp_path / "no-such-engine"), "{input}"])

    with pytest.raises(ExternalProcessError) as exc_info:
        ExternalAnnotatorInvoker(command).run(vep_input, tmp_path / "out.gz")

    assert exc_info.value.returncode == 127
    assert exc_info.value.stage == "start"


def test_missing_input(tmp_path, mock_engine):
    with pytest.raises(ExternalProcessError, match="input not found"):
        ExternalAnnotatorInvoker(mock_engine()).run(tmp_path / "nope.gz", tmp_path / "out.gz")


@pytest.mark.parametrize("broken", ["plain", "truncated", "missing"])
def test_zero_exit_with_bad_output(tmp_path, vep_input, mock_engine, broken):
    output = tmp_path / "out.gz"
    with pytest.raises(OutputValidationError) as exc_info:
        ExternalAnnotatorInvoker(mock_engine("--broken", broken)).run(vep_input, output)
    assert exc_info.value.path == str(output)


def test_stale_output_does_not_count(tmp_path, vep_input, mock_engine):
    output = tmp_path / "out.gz"
    output.write_bytes(gzip.compress(b"old annotation\n"))

    with pytest.raises(OutputValidationError, match="not found"):
        ExternalAnnotatorInvoker(mock_engine("--broken", "missing")).run(vep_input, output)


@pytest.mark.skipif(os.name != "posix", reason="process liveness check uses POSIX signals")
def test_timeout_kills_engine(tmp_path, vep_input, mock_engine):
    invoker = ExternalAnnotatorInvoker(mock_engine("--sleep", "30"), timeout=1)

    started = time.monotonic()
    with pytest.raises(ExternalProcessTimeout) as exc_info:
        invoker.run(vep_input, tmp_path / "out.gz")

    assert time.monotonic() - started < 20
    assert exc_info.value.timeout == 1
    assert invoker.state == ProcessState.TIMED_OUT
    # The child has been reaped: nothing left running under that pid
    with pytest.raises(ProcessLookupError):
        os.kill(invoker.pid, 0)


def test_cancel_terminates_engine(tmp_path, vep_input, mock_engine):
    invoker = ExternalAnnotatorInvoker(mock_engine("--sleep", "30"), kill_grace_seconds=2)
    errors = []

    def _run():
        try:
            invoker.run(vep_input, tmp_path / "out.gz")
        except ExternalProcessError as e:
            errors.append(e)

    thread = threading.Thread(target=_run)
    thread.start()
    deadline = time.monotonic() + 10
    while invoker.state != ProcessState.RUNNING and time.monotonic() < deadline:
        time.sleep(0.05)

    invoker.cancel()
    thread.join(timeout=15)

    assert not thread.is_alive()
    assert invoker.state == ProcessState.KILLED
    assert len(errors) == 1
    assert errors[0].cancelled


def test_cancel_before_run_never_starts_engine(tmp_path, vep_input, mock_engine):
    output = tmp_path / "out.gz"
    invoker = ExternalAnnotatorInvoker(mock_engine("--lines", "3"))

    invoker.cancel()
    with pytest.raises(ExternalProcessError) as exc_info:
        invoker.run(vep_input, output)

    assert exc_info.value.cancelled
    assert exc_info.value.stage == "start"
    assert invoker.pid is None
    assert invoker.state == ProcessState.NOT_STARTED
    assert not output.exists()


def test_invoker_runs_once(tmp_path, vep_input, mock_engine):
    invoker = ExternalAnnotatorInvoker(mock_engine())
    invoker.run(vep_input, tmp_path / "out.gz")
    with pytest.raises(RuntimeError, match="exactly one"):
        invoker.run(vep_input, tmp_path / "out2.gz")


# ----------------------------------------------------------------------
# Output validation and VEP command
# ----------------------------------------------------------------------

def test_validate_gzip_output_counts_lines(tmp_path):
    path = tmp_path / "a.gz"
    path.write_bytes(gzip.compress(b"a\nb\nc"))
    assert validate_gzip_output(path) == 3


def test_validate_gzip_output_empty_stream(tmp_path):
    path = tmp_path / "a.gz"
    path.write_bytes(gzip.compress(b""))
    assert validate_gzip_output(path) == 0


def test_validate_gzip_output_rejects_zero_bytes(tmp_path):
    path = tmp_path / "a.gz"
    path.write_bytes(b"")
    with pytest.raises(OutputValidationError, match="empty"):
        validate_gzip_output(path)


def test_build_vep_command():
    command = build_vep_command(VepConfig(
        script_path="/opt/vep/vep", cache_dir="/data/vep", cache_version="90", fasta="/ref.fa",
    ))
    assert command.argv[:2] == ["perl", "/opt/vep/vep"]
    assert command.argv[command.argv.index("-i") + 1] == "{input}"
    assert command.argv[command.argv.index("-o") + 1] == "STDOUT"
    assert command.argv[command.argv.index("--dir") + 1] == "/data/vep"
    assert command.argv[command.argv.index("--cache_version") + 1] == "90"
    assert "--offline" in command.argv
    assert command.output_mode == OutputMode.STDOUT


def test_build_vep_command_requires_script():
    with pytest.raises(ConfigError, match="VEP_PATH"):
        build_vep_command(VepConfig())
