"""
Conserve and restore pipelines driving every selected trick concurrently.
"""
from datetime import datetime
from typing import List, Optional, Sequence
import logging

from .models import RunReport, TaskResult, TrickResult
from .tasks import ProgressChannel, Task, TaskHandle, TaskList, TaskRunner
from ..core.config import TrickOptions
from ..state.document import StateDocument
from ..tricks.base import StateCollector, Trick


logger = logging.getLogger(__name__)


class TrickOrchestrator:
    """Runs tricks as independent units and aggregates what they did.

    One unit per trick runs concurrently with the others, without a bound.
    A failure inside a unit is recorded in its results and never stops the
    other units.
    """

    def __init__(self, channel: Optional[ProgressChannel] = None):
        """
        Args:
            channel: Optional progress channel receiving events of every unit
        """
        self.runner = TaskRunner(channel)

    def conserve(self, tricks: Sequence[Trick], options: TrickOptions) -> RunReport:
        """Run prepare tags, capture and conserve for every trick.

        Whatever a trick captured is kept in the returned document, even
        when its conserve step failed.

        Args:
            tricks: Tricks to run
            options: Run-wide options

        Returns:
            RunReport holding the per-trick results and the state document
        """
        started_at = datetime.now()
        collectors = {trick.get_machine_name(): StateCollector() for trick in tricks}

        units = TaskList([
            Task(
                title=trick.conserve_title,
                run=lambda task, trick=trick: self._conserve_unit(
                    trick, collectors[trick.get_machine_name()], options
                ),
            )
            for trick in tricks
        ])

        logger.info(f"Conserving with {len(tricks)} tricks (dry run: {options.dry_run})")
        results = self.runner.run(units)

        document = StateDocument()
        for trick in tricks:
            document.set(trick.get_machine_name(), collectors[trick.get_machine_name()].records())

        report = RunReport(
            action='conserve',
            trick_results=self._trick_results(tricks, results),
            started_at=started_at,
            finished_at=datetime.now(),
            document=document,
        )
        self._log_report(report)
        return report

    def restore(self, tricks: Sequence[Trick], document: StateDocument, options: TrickOptions) -> RunReport:
        """Restore every trick from its slice of a state document.

        Args:
            tricks: Tricks to run
            document: Document written by a previous conserve run
            options: Run-wide options

        Returns:
            RunReport holding the per-trick results
        """
        started_at = datetime.now()

        selected = {trick.get_machine_name() for trick in tricks}
        for machine_name in document.machine_names():
            if machine_name not in selected:
                logger.warning(
                    f"State of {machine_name} is not restored, the trick is not selected for this run"
                )

        units = TaskList([
            Task(
                title=trick.restore_title,
                run=lambda task, trick=trick: self._restore_unit(task, trick, document, options),
            )
            for trick in tricks
        ])

        logger.info(f"Restoring with {len(tricks)} tricks (dry run: {options.dry_run})")
        results = self.runner.run(units)

        report = RunReport(
            action='restore',
            trick_results=self._trick_results(tricks, results),
            started_at=started_at,
            finished_at=datetime.now(),
        )
        self._log_report(report)
        return report

    def _conserve_unit(self, trick: Trick, collector: StateCollector, options: TrickOptions) -> TaskList:
        context = trick.new_context()

        # A failed tag lookup must never turn into an unfiltered run
        return TaskList(
            [
                Task('Prepare tags', lambda task: trick.prepare_tags(task, context, options)),
                Task('Fetch current state', lambda task: trick.get_current_state(task, context, collector, options)),
                Task('Conserve resources', lambda task: trick.conserve(task, collector.records(), options)),
            ],
            concurrency=1,
            exit_on_error=True,
        )

    def _restore_unit(
        self,
        task: TaskHandle,
        trick: Trick,
        document: StateDocument,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        records = document.get(trick.get_machine_name())
        if records is None:
            task.skip('Nothing was conserved previously.')

        state, invalid = trick.parse_state(records)
        if not invalid:
            return trick.restore(task, state, options)

        logger.warning(f"{len(invalid)} records of {trick.get_machine_name()} cannot be loaded")
        task_list = trick.restore(task, state, options) if state else None
        return (task_list or TaskList()).add(*invalid)

    @staticmethod
    def _trick_results(tricks: Sequence[Trick], results: List[TaskResult]) -> List[TrickResult]:
        return [
            TrickResult(machine_name=trick.get_machine_name(), result=result)
            for trick, result in zip(tricks, results)
        ]

    @staticmethod
    def _log_report(report: RunReport) -> None:
        summary = report.summary()
        logger.info(
            f"{report.action.capitalize()} finished: {summary['succeeded']} succeeded, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        for error in report.errors():
            logger.debug(f"  - {error}")
