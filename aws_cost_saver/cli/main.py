"""
Main CLI entry point for AWS Cost Saver.

Provides the ``aws-cost-saver conserve`` and ``aws-cost-saver restore`` commands.
"""

import logging
import sys
from typing import Callable, Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.logging import RichHandler
from rich.prompt import Confirm

from aws_cost_saver import __version__
from aws_cost_saver.auth.session import ClientFactory, create_session
from aws_cost_saver.cli.output import ProgressPrinter, render_banner, render_summary
from aws_cost_saver.core.config import DEFAULT_STATE_FILE, RunSettings, TrickOptions, parse_tag_flags
from aws_cost_saver.core.exceptions import (
    AbortedByUser, AWSCostSaverError, ConfigurationError, ConservePartialFailure,
    RestorePartialFailure, RunFailure, StateError, StorageError,
)
from aws_cost_saver.services.models import RunReport
from aws_cost_saver.services.operations import CostSaverOperations, raise_for_outcome
from aws_cost_saver.services.tasks import ProgressChannel
from aws_cost_saver.state.storage import StorageResolver
from aws_cost_saver.tricks.registry import TrickRegistry


console = Console()

# Exit codes for different error types
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL_FAILURE = 3
EXIT_STATE_ERROR = 4
EXIT_USER_CANCELLED = 130


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # botocore is very chatty at debug level
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_client_factory(settings: RunSettings) -> ClientFactory:
    return ClientFactory(create_session(settings.profile, settings.region))


def confirm(question: str) -> bool:
    return Confirm.ask(f"[yellow]{question}[/yellow]", console=console, default=False)


def common_options(func: Callable) -> Callable:
    """Options shared by conserve and restore."""
    options = [
        click.option("--tag", "-t", "tags", multiple=True, metavar="KEY[=VALUE]",
                     help="Only act on resources with this tag (repeatable)"),
        click.option("--state-file", "-s", default=DEFAULT_STATE_FILE, show_default=True,
                     help="Where to store the state, a local path or s3://bucket/key"),
        click.option("--no-state-file", "-n", is_flag=True,
                     help="Do not write the state file (conserve cannot be restored later)"),
        click.option("--dry-run", "-d", is_flag=True,
                     help="Only list what would change, without making any change"),
        click.option("--region", "-r", help="AWS region (defaults to the configured region)"),
        click.option("--profile", "-p", help="AWS shared credentials profile"),
        click.option("--use-trick", "-u", "use_tricks", multiple=True, metavar="NAME",
                     help="Enable a trick (repeatable)"),
        click.option("--ignore-trick", "ignore_tricks", multiple=True, metavar="NAME",
                     help="Disable a trick (repeatable)"),
        click.option("--no-default-tricks", is_flag=True,
                     help="Only run the tricks passed with --use-trick"),
        click.option("--overwrite-state-file", is_flag=True,
                     help="Overwrite an existing state file without asking"),
        click.option("--only-summary", is_flag=True,
                     help="Hide progress, only print the final summary"),
        click.option("--verbose", "-v", is_flag=True, help="Show debug logs"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """
    💰 AWS Cost Saver

    Conserve AWS resources you are not using (stop, scale to zero, suspend,
    snapshot and delete) and restore them exactly as they were.
    """


def run_action(
    action: str,
    tags: Tuple[str, ...],
    dry_run: bool,
    verbose: bool,
    **settings_kwargs,
) -> None:
    """Run conserve or restore and exit with the matching code."""
    setup_logging(verbose)

    try:
        try:
            settings = RunSettings(**settings_kwargs)
        except ValidationError as e:
            raise ConfigurationError(
                "; ".join(error["msg"] for error in e.errors()), details=str(e)
            )
        options = TrickOptions(dry_run=dry_run, tags=parse_tag_flags(tags))

        client_factory = build_client_factory(settings)
        render_banner(console, action, settings, options, client_factory.region)

        channel = ProgressChannel()
        operations = CostSaverOperations(
            settings=settings,
            options=options,
            registry=TrickRegistry.initialize(client_factory),
            storage=StorageResolver.initialize(client_factory),
            channel=channel,
            confirm=confirm,
        )

        report: Optional[RunReport] = None
        try:
            with ProgressPrinter(console, channel, quiet=settings.only_summary):
                report = operations.conserve() if action == "conserve" else operations.restore()
        finally:
            if report is not None:
                render_summary(console, report)

        raise_for_outcome(report)

    except (KeyboardInterrupt, AbortedByUser) as e:
        message = e.message if isinstance(e, AbortedByUser) else "Operation cancelled by user"
        console.print(f"\n⚠️  [yellow]{message}[/yellow]")
        sys.exit(EXIT_USER_CANCELLED)
    except ConfigurationError as e:
        console.print(f"❌ [red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)
    except (ConservePartialFailure, RestorePartialFailure) as e:
        _print_run_failure(e)
        sys.exit(EXIT_PARTIAL_FAILURE)
    except RunFailure as e:
        _print_run_failure(e)
        sys.exit(EXIT_GENERAL_ERROR)
    except (StorageError, StateError) as e:
        console.print(f"❌ [red]State file error: {escape(str(e))}[/red]")
        sys.exit(EXIT_STATE_ERROR)
    except AWSCostSaverError as e:
        console.print(f"❌ [red]{escape(str(e))}[/red]")
        sys.exit(EXIT_GENERAL_ERROR)
    except Exception as e:
        console.print(f"💥 [red]Unexpected error: {escape(str(e))}[/red]")
        console.print("[dim]Please report this issue with the full error message.[/dim]")
        sys.exit(EXIT_GENERAL_ERROR)

    sys.exit(EXIT_SUCCESS)


def _print_run_failure(error: RunFailure) -> None:
    console.print(f"❌ [red]{escape(str(error))}[/red]")
    for message in error.errors:
        console.print(f"   [dim]- {escape(message)}[/dim]", highlight=False)


@cli.command()
@common_options
def conserve(**kwargs) -> None:
    """Stop, scale down or remove resources and record how to restore them."""
    run_action("conserve", **kwargs)


@cli.command()
@common_options
def restore(**kwargs) -> None:
    """Restore resources recorded by a previous conserve."""
    run_action("restore", **kwargs)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
