"""
Invoice Memory CLI

Command-line interface for running the memory decision core against a
scenario file.

Scenario file (YAML or JSON):

    escalation_threshold: 0.75      # optional, seeds the threshold store
    memories:
      - id: mem-acme-vendor
        type: vendor
        ...
    invoice:
      invoice_id: INV-2024-001
      vendor_id: acme-gmbh
      invoice_amount: 1250.0
    validation_issues:
      - severity: WARNING
        issue_type: SUSPICIOUS_VALUE
        affected_field: total
        description: Total is unusually high for this vendor

Examples:

    invoice-memory decide scenario.yaml
    invoice-memory --json decide scenario.yaml
    invoice-memory --config core.yaml recall scenario.yaml
    invoice-memory reliability scenario.yaml --as-of 2024-06-01T00:00:00Z
"""

import json
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import click
import yaml
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import ConfigLoader, CoreConfig
from .confidence.confidence_manager import ConfidenceManager
from .errors import MemoryCoreError
from .memory.store import ESCALATION_THRESHOLD_KEY, InMemoryMemoryStore, load_memories
from .memory.types import parse_timestamp, utc_now
from .memory.variants import get_description
from .pipeline import InvoiceAssessment, MemoryDecisionPipeline
from .recall.recall_engine import InvoiceProcessingContext
from .validation.issues import ValidationIssue


# Configure logging
def setup_logging(verbose: bool = False, log_file: Optional[Path] = None, quiet: bool = False):
    """Configure loguru logging."""
    # Remove default handler
    logger.remove()

    # Console logging
    if verbose:
        log_level = "DEBUG"
    elif quiet:
        log_level = "WARNING"
    else:
        log_level = "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=log_level,
        colorize=True
    )

    # File logging
    if log_file:
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
            level="DEBUG",
            rotation="10 MB"
        )


@dataclass
class Scenario:
    """A memory store, one invoice and its validation issues."""

    store: InMemoryMemoryStore
    invoice: InvoiceProcessingContext
    validation_issues: List[ValidationIssue]


def load_scenario(path: Path) -> Scenario:
    """
    Load a scenario file.

    Raises:
        MemoryCoreError: file unreadable or records malformed
    """
    logger.info(f"Loading scenario: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise MemoryCoreError(f"Cannot read scenario {path}: {e}") from e

    if not isinstance(data, dict):
        raise MemoryCoreError(f"Scenario {path} must be a mapping")
    if not isinstance(data.get('invoice'), dict):
        raise MemoryCoreError(f"Scenario {path} needs an 'invoice' section")

    config = {}
    if data.get('escalation_threshold') is not None:
        config[ESCALATION_THRESHOLD_KEY] = data['escalation_threshold']

    return Scenario(
        store=InMemoryMemoryStore(load_memories(data.get('memories') or []), config=config),
        invoice=InvoiceProcessingContext.from_dict(data['invoice']),
        validation_issues=[ValidationIssue.from_dict(i) for i in data.get('validation_issues') or []],
    )


def _clock(as_of: Optional[str]) -> Callable[[], datetime]:
    if not as_of:
        return utc_now
    fixed = parse_timestamp(as_of, 'as_of')
    return lambda: fixed


def _fail(console: Console, error: Exception, verbose: bool) -> None:
    console.print(f"[bold red]Error: {error}[/]")
    if verbose:
        logger.exception("Full traceback:")
    raise SystemExit(1)


as_of_option = click.option(
    '--as-of',
    default=None,
    help='Evaluate as of this ISO-8601 timestamp instead of now'
)


# CLI Interface
@click.group()
@click.option(
    '--config', '-c',
    'config_path',
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help='Path to core configuration YAML'
)
@click.option(
    '--verbose', '-v',
    is_flag=True,
    help='Enable verbose logging'
)
@click.option(
    '--log-file',
    type=click.Path(path_type=Path),
    default=None,
    help='Write logs to file'
)
@click.option(
    '--json', 'json_output',
    is_flag=True,
    help='Print machine-readable JSON instead of tables'
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], verbose: bool, log_file: Optional[Path], json_output: bool):
    """
    Invoice Memory - decide how to process invoices from learned memories.
    """
    setup_logging(verbose=verbose, log_file=log_file, quiet=json_output)

    console = Console()
    try:
        config = ConfigLoader(config_path).config if config_path else CoreConfig()
    except MemoryCoreError as e:
        _fail(console, e, verbose)

    ctx.obj = {
        'config': config,
        'verbose': verbose,
        'json': json_output,
        'console': console,
    }


@main.command()
@click.argument('scenario_path', type=click.Path(exists=True, path_type=Path))
@as_of_option
@click.pass_context
def decide(ctx: click.Context, scenario_path: Path, as_of: Optional[str]):
    """Recall, score and decide on the scenario's invoice."""
    console: Console = ctx.obj['console']

    try:
        scenario = load_scenario(scenario_path)
        pipeline = MemoryDecisionPipeline(scenario.store, ctx.obj['config'], clock=_clock(as_of))
        assessment = pipeline.process(scenario.invoice, scenario.validation_issues)
    except (MemoryCoreError, ValueError) as e:
        _fail(console, e, ctx.obj['verbose'])

    if ctx.obj['json']:
        click.echo(json.dumps(assessment.to_dict(), indent=2, default=str))
        return

    _print_assessment(assessment, console)


@main.command()
@click.argument('scenario_path', type=click.Path(exists=True, path_type=Path))
@as_of_option
@click.pass_context
def recall(ctx: click.Context, scenario_path: Path, as_of: Optional[str]):
    """Show which memories are recalled for the scenario's invoice."""
    console: Console = ctx.obj['console']

    try:
        scenario = load_scenario(scenario_path)
        pipeline = MemoryDecisionPipeline(scenario.store, ctx.obj['config'], clock=_clock(as_of))
        result = pipeline.recall_engine.recall_memories(scenario.invoice)
    except (MemoryCoreError, ValueError) as e:
        _fail(console, e, ctx.obj['verbose'])

    if ctx.obj['json']:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    table = Table(title=f"Recalled Memories for {scenario.invoice.invoice_id}")
    table.add_column("Memory", style="cyan")
    table.add_column("Type")
    table.add_column("Score", justify="right")
    table.add_column("Relevance", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason")

    for ranked in result.memories:
        table.add_row(
            ranked.memory.id,
            ranked.memory.type.value,
            f"{ranked.ranking_score:.3f}",
            f"{ranked.relevance_score:.0%}",
            f"{ranked.confidence_score:.0%}",
            ranked.selection_reason,
        )

    console.print(table)
    for conflict in result.conflicts_resolved:
        console.print(f"[yellow]Conflict:[/] {conflict.resolution_reasoning} -> {conflict.resolved_memory.id}")
    console.print()
    console.print(result.reasoning)


@main.command()
@click.argument('scenario_path', type=click.Path(exists=True, path_type=Path))
@as_of_option
@click.pass_context
def reliability(ctx: click.Context, scenario_path: Path, as_of: Optional[str]):
    """Score how dependable each memory in the scenario has been."""
    console: Console = ctx.obj['console']

    try:
        scenario = load_scenario(scenario_path)
        manager = ConfidenceManager(scenario.store, ctx.obj['config'].confidence, clock=_clock(as_of))
    except (MemoryCoreError, ValueError) as e:
        _fail(console, e, ctx.obj['verbose'])

    scores = [(m, manager.evaluate_memory_reliability(m)) for m in scenario.store.get_all_memories()]

    if ctx.obj['json']:
        click.echo(json.dumps(
            [{'memory_id': m.id, **score.to_dict()} for m, score in scores],
            indent=2,
        ))
        return

    table = Table(title="Memory Reliability")
    table.add_column("Memory", style="cyan")
    table.add_column("Description")
    table.add_column("Score", justify="right")
    table.add_column("Class", style="bold")
    table.add_column("Recommendations")

    for memory, score in scores:
        table.add_row(
            memory.id,
            get_description(memory),
            f"{score.score:.2f}",
            score.classification.value,
            "\n".join(score.recommendations) or "-",
        )

    console.print(table)


@main.command('show-config')
@click.pass_context
def show_config(ctx: click.Context):
    """Print the effective core configuration."""
    data = ctx.obj['config'].to_dict()
    if ctx.obj['json']:
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, sort_keys=False))


def _print_assessment(assessment: InvoiceAssessment, console: Console) -> None:
    """Print a decision panel, its actions and risk factors."""
    decision = assessment.decision
    if decision.decision_type.is_automated:
        color = "green"
    elif decision.decision_type.needs_human:
        color = "yellow"
    else:
        color = "red"

    console.print(Panel(
        decision.reasoning,
        title=f"[bold {color}]{decision.decision_type.display_name}[/] - {assessment.invoice_id}",
        subtitle=(
            f"decision confidence {decision.confidence:.0%} | "
            f"processing confidence {assessment.confidence.final_confidence:.0%} | "
            f"risk {decision.risk_assessment.risk_level.value}"
        ),
    ))

    actions = Table(title="Recommended Actions")
    actions.add_column("Priority", style="bold")
    actions.add_column("Action", style="cyan")
    actions.add_column("Description")
    for action in decision.recommended_actions:
        actions.add_row(action.priority.value, action.action_type.value, action.description)
    console.print(actions)

    if decision.risk_assessment.risk_factors:
        risks = Table(title="Risk Factors")
        risks.add_column("Type", style="cyan")
        risks.add_column("Severity", justify="right")
        risks.add_column("Description")
        for factor in decision.risk_assessment.risk_factors:
            risks.add_row(factor.risk_type.value, f"{factor.severity:.2f}", factor.description)
        console.print(risks)

    console.print()
    console.print(f"[bold]Memories recalled:[/] {len(assessment.recall.memories)}")
    console.print(f"[bold]Audit steps:[/] {len(assessment.audit_trail)}")
    console.print(f"[bold]Time:[/] {assessment.processing_time_ms:.1f} ms")


if __name__ == "__main__":
    main()
