"""
High-level conserve and restore operations.
"""
from typing import Callable, Optional
import logging

from .models import RunOutcome, RunReport
from .orchestrator import TrickOrchestrator
from .tasks import ProgressChannel
from ..core.config import RunSettings, TrickOptions
from ..core.exceptions import (
    AbortedByUser,
    ConfigurationError,
    ConserveFailure,
    ConservePartialFailure,
    RestoreFailure,
    RestorePartialFailure,
    StorageError,
)
from ..state.document import StateDocument
from ..state.storage import StorageResolver
from ..tricks.registry import TrickRegistry


logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]


class CostSaverOperations:
    """Conserve and restore for one invocation."""

    def __init__(
        self,
        settings: RunSettings,
        options: TrickOptions,
        registry: TrickRegistry,
        storage: StorageResolver,
        channel: Optional[ProgressChannel] = None,
        confirm: Optional[ConfirmCallback] = None,
    ):
        """
        Args:
            settings: Settings of this invocation
            options: Options handed to every trick
            registry: Registry to select tricks from
            storage: Resolver for the state file location
            channel: Optional progress channel
            confirm: Asks the user a yes/no question, None means always decline
        """
        self.settings = settings
        self.options = options
        self.registry = registry
        self.storage = storage
        self.orchestrator = TrickOrchestrator(channel)
        self.confirm = confirm

    def select_tricks(self):
        return self.registry.select(
            use=self.settings.use_tricks,
            ignore=self.settings.ignore_tricks,
            no_default_tricks=self.settings.no_default_tricks,
        )

    def conserve(self) -> RunReport:
        """Conserve resources and write the state document.

        The document is written for failed and partially failed runs too,
        whatever was captured is still worth restoring. Dry runs and
        ``--no-state-file`` write nothing.

        Returns:
            RunReport of the run

        Raises:
            TrickNotFound: If the trick selection names an unknown trick
            AbortedByUser: If the user declines to overwrite the state file
            StorageError: If the state file cannot be checked or written
        """
        tricks = self.select_tricks()
        write_state = not self.settings.no_state_file and not self.options.dry_run

        if write_state:
            self.guard_overwrite()

        report = self.orchestrator.conserve(tricks, self.options)

        if write_state:
            backend = self.storage.resolve_by_uri(self.settings.state_file)
            logger.info(f"Writing state of {len(report.document)} tricks to {self.settings.state_file}")
            backend.write(self.settings.state_file, report.document.to_json())
        else:
            logger.info("State file is not written")

        return report

    def restore(self) -> RunReport:
        """Restore resources from the state document.

        Returns:
            RunReport of the run

        Raises:
            TrickNotFound: If the trick selection names an unknown trick
            ConfigurationError: If ``--no-state-file`` was given
            StorageError: If the state file does not exist or cannot be read
            StateError: If the state file is not a valid state document
        """
        if self.settings.no_state_file:
            raise ConfigurationError("Cannot restore without a state file, remove --no-state-file")

        tricks = self.select_tricks()
        document = self.load_document()

        return self.orchestrator.restore(tricks, document, self.options)

    def guard_overwrite(self) -> None:
        """Ask before replacing an existing state file.

        Raises:
            AbortedByUser: If the user declines
        """
        if self.settings.overwrite_state_file:
            return

        uri = self.settings.state_file
        backend = self.storage.resolve_by_uri(uri)
        if not backend.exists(uri):
            return

        question = f"State file {uri} already exists, do you want to overwrite it?"
        if self.confirm is None or not self.confirm(question):
            raise AbortedByUser()

        logger.info(f"Overwriting existing state file {uri}")

    def load_document(self) -> StateDocument:
        uri = self.settings.state_file
        backend = self.storage.resolve_by_uri(uri)

        if not backend.exists(uri):
            raise StorageError(f"State file not found: {uri}")

        logger.info(f"Reading state from {uri}")
        return StateDocument.from_json(backend.read(uri))


def raise_for_outcome(report: RunReport) -> None:
    """Raise the run-level failure matching a report, if any.

    Raises:
        ConserveFailure / RestoreFailure: If every trick failed
        ConservePartialFailure / RestorePartialFailure: If some tricks failed
    """
    outcome = report.outcome
    if outcome == RunOutcome.SUCCEEDED:
        return

    failed = report.failed_tricks()
    errors = report.errors()

    if report.action == 'conserve':
        if outcome == RunOutcome.FAILED:
            raise ConserveFailure("Conserve failed, every trick failed", errors)
        raise ConservePartialFailure(
            f"Conserve partially failed, failed tricks: {', '.join(failed)}", errors
        )

    if outcome == RunOutcome.FAILED:
        raise RestoreFailure("Restore failed, every trick failed", errors)
    raise RestorePartialFailure(
        f"Restore partially failed, failed tricks: {', '.join(failed)}", errors
    )
