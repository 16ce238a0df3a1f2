#!/usr/bin/env python3
"""Regent CLI - Command-line interface for executing implementation plans.

Usage:
    regent execute spec/001-product/plan.yaml
    regent validate spec/001-product/plan.yaml
    regent score --failure --layer domain --error-type lint
    regent metrics
"""

import json
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .core.config import ExecuteConfig
from .core.context import RunStatus
from .core.errors import ConfigError, MetricsError, PlanLoadError, SchemaValidationError
from .core.executor import StepExecutor
from .core.logger import ExecutionLogger
from .core.metrics import RLHFMetricsStore
from .core.paths import LOG_FILE_NAME, resolve_log_dir, resolve_metrics_file
from .core.plan_loader import load_plan_document
from .core.scoring import ERROR_PENALTIES, RLHFScorer, StepOutcome
from .core.validator import load_plan, validate_plan

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2
EXIT_ABORTED = 130

_EXIT_CODES = {
    RunStatus.SUCCESS: EXIT_SUCCESS,
    RunStatus.FAILED: EXIT_FAILURE,
    RunStatus.ABORTED: EXIT_ABORTED,
}


class AbortFlag:
    """SIGINT handler that asks the executor to stop between steps.

    A second SIGINT interrupts immediately.
    """

    def __init__(self):
        self.requested = False
        self._previous = None

    def __call__(self) -> bool:
        return self.requested

    def _handle(self, signum, frame):
        if self.requested:
            raise KeyboardInterrupt
        self.requested = True
        click.echo(
            click.style("Abort requested; stopping after the current step (Ctrl-C again to force)", fg="yellow"),
            err=True,
        )

    def __enter__(self) -> "AbortFlag":
        self._previous = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc_info) -> None:
        signal.signal(signal.SIGINT, self._previous)


def _fail(message: str, code: int = EXIT_INVALID) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(code)


def _resolve_under(work_dir: Path, value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else work_dir / path


@click.group()
@click.version_option(version=__version__, prog_name="regent")
def main():
    """Regent - Execute implementation plans against a git repository.

    A plan is an ordered list of typed steps (branch, folder, create_file,
    refactor_file, delete_file, validation, test, pull_request). Each file
    step is gated by lint/test/build checks and committed; failures are
    retried, rolled back or reported according to the step's policy.

    \b
    Quick start:
        regent validate spec/001-product/plan.yaml
        regent execute spec/001-product/plan.yaml
    """
    pass


@main.command()
@click.argument("plan_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--work-dir",
    "-C",
    type=click.Path(file_okay=False, exists=True, path_type=Path),
    default=".",
    show_default=True,
    help="Repository working tree the plan runs against.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file. Defaults to .regent/config/execute.yml in the work dir.",
)
@click.option("--allow-dirty", is_flag=True, help="Run even with uncommitted changes.")
@click.option("--no-commit", is_flag=True, help="Do not commit file steps.")
@click.option("--no-metrics", is_flag=True, help="Do not append scores to the RLHF metrics file.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--no-color", is_flag=True, help="Disable colored output.")
def execute(
    plan_file: Path,
    work_dir: Path,
    config_file: Optional[Path],
    allow_dirty: bool,
    no_commit: bool,
    no_metrics: bool,
    verbose: bool,
    quiet: bool,
    no_color: bool,
):
    """Execute PLAN_FILE step by step.

    \b
    Exit codes:
        0   all steps succeeded
        1   a step failed
        2   invalid plan or configuration
        130 aborted
    """
    work_dir = work_dir.resolve()
    try:
        config = ExecuteConfig.load(work_dir, config_file)
    except ConfigError as e:
        _fail(str(e))

    try:
        plan = load_plan(plan_file)
    except (PlanLoadError, SchemaValidationError) as e:
        _fail(str(e))

    log_dir = _resolve_under(work_dir, config.logging.log_dir) or resolve_log_dir(plan_file.resolve())
    metrics_file = _resolve_under(work_dir, config.metrics_file) or resolve_metrics_file(plan_file.resolve())

    logger = ExecutionLogger(
        log_file=log_dir / LOG_FILE_NAME,
        verbose=verbose or config.logging.verbose,
        quiet=quiet or config.logging.quiet,
        color=config.logging.color and not no_color,
        route_package_logs=True,
    )
    try:
        with AbortFlag() as abort_flag:
            executor = StepExecutor(
                plan,
                work_dir,
                config=config,
                logger=logger,
                metrics=None if no_metrics else RLHFMetricsStore(metrics_file),
                should_abort=abort_flag,
                allow_dirty=allow_dirty,
                commit=not no_commit,
            )
            context = executor.run()
    except ConfigError as e:
        logger.error(str(e), kind=e.kind)
        sys.exit(EXIT_INVALID)
    finally:
        logger.close()

    sys.exit(_EXIT_CODES.get(context.status, EXIT_FAILURE))


@main.command()
@click.argument("plan_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output issues as JSON.")
def validate(plan_file: Path, as_json: bool):
    """Validate PLAN_FILE without executing it."""
    try:
        data = load_plan_document(plan_file)
    except PlanLoadError as e:
        _fail(str(e))

    result = validate_plan(data, source=str(plan_file))

    if as_json:
        click.echo(json.dumps({
            "valid": result.valid,
            "issues": [
                {"path": i.path, "message": i.message, "code": i.code} for i in result.issues
            ],
        }, indent=2))
    elif result.valid:
        click.echo(click.style(
            f"Plan is valid ({len(result.plan.steps)} steps)", fg="green"
        ))
    else:
        click.echo(click.style(f"Plan is invalid ({len(result.issues)} issue(s)):", fg="red"), err=True)
        for issue in result.issues:
            click.echo(f"  - {issue} [{issue.code}]", err=True)

    sys.exit(EXIT_SUCCESS if result.valid else EXIT_INVALID)


@main.command()
@click.option("--failure", is_flag=True, help="Score a failed step (default: success).")
@click.option("--layer", default="", help="Architectural layer of the step.")
@click.option(
    "--error-type",
    type=click.Choice(sorted(ERROR_PENALTIES)),
    default=None,
    help="Error type of a failed step.",
)
@click.option("--raw", is_flag=True, help="Also show the unrounded score.")
def score(failure: bool, layer: str, error_type: Optional[str], raw: bool):
    """Compute the RLHF score of a step outcome."""
    if error_type and not failure:
        raise click.UsageError("--error-type only applies with --failure")

    scorer = RLHFScorer()
    outcome = StepOutcome(success=not failure, layer=layer, error_type=error_type)
    value = scorer.score(outcome)
    if raw:
        click.echo(f"{value} (raw {scorer.raw_score(outcome):.2f})")
    else:
        click.echo(str(value))


@main.command()
@click.option(
    "--plan",
    "plan_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Plan whose metrics file to read (spec folders keep their own).",
)
@click.option(
    "--file",
    "metrics_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Explicit metrics file.",
)
@click.option("--layer", default=None, help="Only report this layer.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def metrics(plan_file: Optional[Path], metrics_file: Optional[Path], layer: Optional[str], as_json: bool):
    """Report over the RLHF metrics file."""
    path = metrics_file or resolve_metrics_file(plan_file.resolve() if plan_file else None)
    try:
        report = RLHFMetricsStore(path).report(layer=layer)
    except MetricsError as e:
        _fail(str(e), code=EXIT_FAILURE)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    click.echo(click.style("RLHF Metrics", bold=True))
    click.echo(f"File: {path}")
    if layer:
        click.echo(f"Layer: {layer}")
    if not report.total:
        click.echo("No scores recorded yet.")
        return

    click.echo(f"Executions: {report.total}")
    click.echo(f"Success rate: {report.success_rate * 100:.1f}%")
    click.echo(f"Mean score: {report.mean_score:.2f}")
    click.echo("Scores: " + " ".join(f"{k:+d}:{v}" for k, v in sorted(report.histogram.items())))

    if report.top_patterns:
        click.echo()
        click.echo(click.style("Patterns", bold=True))
        for pattern in report.top_patterns:
            rate = click.style(
                f"{pattern.success_rate * 100:.0f}%",
                fg="green" if pattern.success_rate >= 0.5 else "red",
            )
            click.echo(f"  {pattern.pattern}: {pattern.occurrences} runs, {rate} success")
            if pattern.suggested_fix:
                click.echo(f"    fix: {pattern.suggested_fix}")


if __name__ == "__main__":
    main()
