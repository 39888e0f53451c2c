"""CLI entry point.

Usage:
    varannot generate-input vep_input.txt.gz
    varannot annotate vep_input.txt.gz vep_output.txt.gz --timeout 3600
    varannot annotate in.gz out.gz -- my-engine -i {input} -o {output}
    varannot estimate-lines sample.vcf.gz
    varannot run --input vep_input.txt.gz --output vep_output.txt.gz
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from varannot.config import config
from varannot.exceptions import VarAnnotError

app = typer.Typer(
    name="varannot",
    help="Variant annotation: input generation, engine run and line estimation",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(config.log_level, "--log-level", help="Logging level"),
) -> None:
    from varannot.logging_config import setup_logging

    setup_logging(log_level)


def _resolve_command(engine: Optional[list[str]], input_mode: str, output_mode: str):
    from varannot.annotation.invoker import (
        AnnotatorCommand, InputMode, OutputMode, build_vep_command,
    )

    if not engine:
        return build_vep_command(config.vep)
    try:
        return AnnotatorCommand(
            argv=engine, input_mode=InputMode(input_mode), output_mode=OutputMode(output_mode),
        )
    except ValueError:
        console.print(
            f"[red]Error: invalid mode {input_mode!r}/{output_mode!r}. "
            "Use path|stdin and file|stdout.[/red]"
        )
        raise typer.Exit(1)


def _sql_source(database_url: Optional[str]):
    from varannot.db.engine import get_session_factory
    from varannot.sources import SqlVariantSource

    return SqlVariantSource(get_session_factory(database_url))


@app.command("generate-input")
def generate_input(
    output: str = typer.Argument(config.vep.input_path, help="Annotation input file (gzip)"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Variant database URL"),
) -> None:
    """Write variants without annotation to the engine input file."""
    from varannot.annotation.input_writer import VariantAnnotationInputWriter

    try:
        count = VariantAnnotationInputWriter(output).write(_sql_source(database_url))
    except VarAnnotError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Wrote {count} variants to {output}[/green]")


@app.command("annotate")
def annotate(
    input_path: str = typer.Argument(help="Annotation input file (gzip)"),
    output_path: str = typer.Argument(help="Annotation output file (gzip)"),
    engine: Optional[list[str]] = typer.Argument(
        None, help="Engine argv after '--'; {input}/{output} are substituted. Defaults to VEP.",
    ),
    timeout: Optional[float] = typer.Option(
        config.vep.timeout_seconds, "--timeout", help="Wall-clock timeout in seconds",
    ),
    input_mode: str = typer.Option("path", "--input-mode", help="path or stdin"),
    output_mode: str = typer.Option("file", "--output-mode", help="file or stdout"),
) -> None:
    """Run the annotation engine and validate its gzip output."""
    from varannot.annotation.invoker import ExternalAnnotatorInvoker

    try:
        command = _resolve_command(engine, input_mode, output_mode)
        result = ExternalAnnotatorInvoker(command, timeout=timeout).run(input_path, output_path)
    except VarAnnotError as e:
        console.print(f"[red]Error: {e}[/red]")
        stderr = getattr(e, "stderr", "")
        if stderr:
            console.print(stderr, style="dim", markup=False)
        raise typer.Exit(1)

    console.print(
        f"[green]Annotation complete:[/green] {result.output_lines} lines in "
        f"{result.output_path} ({result.duration_seconds:.1f}s)"
    )


@app.command("estimate-lines")
def estimate_lines(
    path: str = typer.Argument(help="gzip text file, e.g. a VCF"),
    sample_size: int = typer.Option(
        config.estimator.sample_size, "--sample-size", help="Data lines to sample",
    ),
    marker: str = typer.Option(config.estimator.header_marker, "--marker", help="Header line prefix"),
) -> None:
    """Estimate the number of data lines without decompressing the whole file."""
    from varannot.estimation.line_estimator import LineCountEstimator

    try:
        estimate = LineCountEstimator(sample_size, marker).estimate(path)
    except VarAnnotError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if estimate == 0:
        console.print(f"No estimate: fewer than {sample_size} data lines to sample")
    else:
        console.print(f"Estimated data lines: {estimate}")


@app.command("run")
def run(
    input_path: str = typer.Option(config.vep.input_path, "--input", help="Annotation input file"),
    output_path: str = typer.Option(config.vep.output_path, "--output", help="Annotation output file"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Variant database URL"),
    timeout: Optional[float] = typer.Option(
        config.vep.timeout_seconds, "--timeout", help="Wall-clock timeout in seconds",
    ),
) -> None:
    """Generate the input from the database and annotate it with VEP."""
    from varannot.annotation.invoker import build_vep_command
    from varannot.pipeline.flow import run_annotation_flow

    try:
        executions = run_annotation_flow(
            _sql_source(database_url),
            Path(input_path),
            Path(output_path),
            build_vep_command(config.vep),
            timeout=timeout,
            sample_size=config.estimator.sample_size,
        )
    except VarAnnotError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    for execution in executions:
        console.print(
            f"  {execution.step_name:28s} {execution.status.value:10s} "
            f"read={execution.read_count} write={execution.write_count}"
        )


if __name__ == "__main__":
    app()
