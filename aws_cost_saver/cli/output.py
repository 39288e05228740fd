"""Terminal rendering: banner, live progress and the run summary."""

import threading
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.tree import Tree

from aws_cost_saver.core.config import RunSettings, TrickOptions
from aws_cost_saver.services.models import (
    ProgressEvent, RunOutcome, RunReport, TaskResult, TaskStatus,
)
from aws_cost_saver.services.tasks import ProgressChannel


STATUS_STYLES = {
    TaskStatus.PENDING: ("·", "dim"),
    TaskStatus.RUNNING: ("›", "cyan"),
    TaskStatus.SUCCEEDED: ("✔", "green"),
    TaskStatus.SKIPPED: ("↓", "yellow"),
    TaskStatus.FAILED: ("✖", "red"),
}


def render_banner(console: Console, action: str, settings: RunSettings, options: TrickOptions, region: Optional[str]) -> None:
    lines = [
        f"[bold]Action:[/bold] {action}",
        f"[bold]Region:[/bold] {region or '-'}",
        f"[bold]Profile:[/bold] {settings.profile or 'default'}",
        f"[bold]State file:[/bold] {'(none)' if settings.no_state_file else settings.state_file}",
        f"[bold]Dry run:[/bold] {'yes' if options.dry_run else 'no'}",
    ]
    if options.tags:
        tags = ", ".join(
            f"{t.key}={'|'.join(t.values)}" if t.values else t.key for t in options.tags
        )
        lines.append(f"[bold]Tags:[/bold] {tags}")

    console.print(Panel("\n".join(lines), title="💰 AWS Cost Saver", border_style="blue"))


def format_event(event: ProgressEvent) -> str:
    symbol, style = STATUS_STYLES[event.status]
    path = escape(" › ".join(event.path))
    message = f" [dim]{escape(event.message)}[/dim]" if event.message else ""
    return f"[{style}]{symbol}[/{style}] {path}{message}"


class ProgressPrinter:
    """Single reader of a progress channel, printing each event as a line."""

    def __init__(self, console: Console, channel: ProgressChannel, quiet: bool = False):
        self.console = console
        self.channel = channel
        self.quiet = quiet
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> 'ProgressPrinter':
        self._thread = threading.Thread(target=self._consume, name="progress-printer", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.channel.close()
        if self._thread is not None:
            self._thread.join()

    def _consume(self) -> None:
        for event in self.channel:
            if self.quiet or event.status == TaskStatus.PENDING:
                continue
            self.console.print(format_event(event), highlight=False)


def _add_result(tree: Tree, result: TaskResult) -> None:
    symbol, style = STATUS_STYLES[result.status]
    label = f"[{style}]{symbol}[/{style}] {escape(result.title)}"
    if result.message:
        label += f" [dim]{escape(result.message)}[/dim]"
    branch = tree.add(label)
    for child in result.children:
        _add_result(branch, child)


def render_summary(console: Console, report: RunReport) -> None:
    tree = Tree(f"[bold]{report.action.capitalize()} summary[/bold]")
    for trick_result in report.trick_results:
        _add_result(tree, trick_result.result)
    console.print(tree)

    counts = report.summary()
    console.print(
        f"[green]{counts['succeeded']} succeeded[/green], "
        f"[yellow]{counts['skipped']} skipped[/yellow], "
        f"[red]{counts['failed']} failed[/red]"
    )

    outcome = report.outcome
    if outcome == RunOutcome.SUCCEEDED:
        console.print(f"✅ [bold green]{report.action.capitalize()} finished successfully[/bold green]")
    elif outcome == RunOutcome.PARTIALLY_FAILED:
        console.print(f"⚠️  [bold yellow]{report.action.capitalize()} partially failed[/bold yellow]")
    else:
        console.print(f"❌ [bold red]{report.action.capitalize()} failed[/bold red]")
