"""Tests for the conserve and restore pipelines and their operations."""

import json
from typing import Optional, Sequence

import pytest

from aws_cost_saver.core.config import RunSettings, TrickOptions
from aws_cost_saver.core.exceptions import (
    AbortedByUser, ConfigurationError, ConserveFailure, ConservePartialFailure,
    RestorePartialFailure, StorageError,
)
from aws_cost_saver.services.models import RunOutcome, TaskStatus
from aws_cost_saver.services.operations import CostSaverOperations, raise_for_outcome
from aws_cost_saver.services.orchestrator import TrickOrchestrator
from aws_cost_saver.services.tasks import Task, TaskHandle, TaskList
from aws_cost_saver.state.document import StateDocument
from aws_cost_saver.state.storage import LocalStorage, StorageResolver
from aws_cost_saver.tricks.base import ResourceState, StateCollector, Trick, TrickContext
from aws_cost_saver.tricks.registry import TrickRegistry

from helpers import child


class StubState(ResourceState):
    id: str


class StubTrick(Trick[StubState]):
    """Trick over an in-memory list of resource ids."""

    state_type = StubState

    def __init__(self, machine_name: str, resources=(), fail_on: Optional[str] = None):
        super().__init__(client_factory=None)
        self.machine_name = machine_name
        self.conserve_title = f"Conserve {machine_name}"
        self.restore_title = f"Restore {machine_name}"
        self.resources = list(resources)
        self.fail_on = fail_on
        self.conserved = []
        self.restored = []

    def get_current_state(self, task: TaskHandle, context: TrickContext, state: StateCollector,
                          options: TrickOptions) -> Optional[TaskList]:
        if self.fail_on == 'fetch':
            raise RuntimeError('Access denied')
        for resource in self.resources:
            state.append(StubState(id=resource))
        return None

    def conserve(self, task: TaskHandle, state: Sequence[StubState], options: TrickOptions):
        return self._record_tasks(
            task, state,
            title=lambda record: record.id,
            action=lambda t, record: self._mutate(t, record, options, self.conserved),
            concurrency=2,
            empty_message='Nothing to conserve',
        )

    def restore(self, task: TaskHandle, state: Sequence[StubState], options: TrickOptions):
        return self._record_tasks(
            task, state,
            title=lambda record: record.id,
            action=lambda t, record: self._mutate(t, record, options, self.restored),
            concurrency=2,
            empty_message='Nothing to restore',
        )

    def _mutate(self, task, record, options, calls):
        if record.id == self.fail_on:
            raise RuntimeError(f'{record.id} is broken')
        if options.dry_run:
            task.skip('Skipped, would change the resource')
        calls.append(record.id)


def make_operations(tricks, temp_state_file, confirm=None, options=None, **settings):
    return CostSaverOperations(
        settings=RunSettings(state_file=temp_state_file, **settings),
        options=options or TrickOptions(),
        registry=TrickRegistry(tricks),
        storage=StorageResolver([LocalStorage()]),
        confirm=confirm,
    )


def read_state(path):
    with open(path) as f:
        return json.load(f)


class TestOrchestratorConserve:

    def test_one_trick_failing_entirely_is_a_partial_failure(self):
        broken = StubTrick('broken', fail_on='fetch')
        healthy = StubTrick('healthy', resources=['r-1'])

        report = TrickOrchestrator().conserve([broken, healthy], TrickOptions())

        assert report.outcome == RunOutcome.PARTIALLY_FAILED
        assert report.failed_tricks() == ['broken']
        assert report.document.get('healthy') == [{'id': 'r-1'}]
        assert report.document.get('broken') == []
        assert healthy.conserved == ['r-1']

        with pytest.raises(ConservePartialFailure) as exc_info:
            raise_for_outcome(report)
        assert exc_info.value.errors == ['[broken] Fetch current state: Access denied']

    def test_failed_fetch_stops_the_trick_unit(self):
        broken = StubTrick('broken', fail_on='fetch')

        report = TrickOrchestrator().conserve([broken], TrickOptions())
        unit = report.trick_results[0].result

        assert child(unit, 'Prepare tags').status == TaskStatus.SKIPPED
        assert child(unit, 'Fetch current state').status == TaskStatus.FAILED
        assert child(unit, 'Conserve resources').status == TaskStatus.SKIPPED

    def test_every_trick_failing_is_a_failure(self):
        report = TrickOrchestrator().conserve(
            [StubTrick('a', fail_on='fetch'), StubTrick('b', fail_on='fetch')], TrickOptions(),
        )

        assert report.outcome == RunOutcome.FAILED
        with pytest.raises(ConserveFailure):
            raise_for_outcome(report)

    def test_captured_records_survive_a_failed_conserve(self):
        trick = StubTrick('flaky', resources=['r-1', 'r-2'], fail_on='r-2')

        report = TrickOrchestrator().conserve([trick], TrickOptions())

        assert report.outcome == RunOutcome.FAILED
        assert report.document.get('flaky') == [{'id': 'r-1'}, {'id': 'r-2'}]
        assert trick.conserved == ['r-1']

    def test_skips_are_not_failures(self):
        report = TrickOrchestrator().conserve([StubTrick('empty')], TrickOptions())

        assert report.outcome == RunOutcome.SUCCEEDED
        assert report.document.get('empty') == []
        raise_for_outcome(report)

    def test_no_tricks_succeeds(self):
        report = TrickOrchestrator().conserve([], TrickOptions())

        assert report.outcome == RunOutcome.SUCCEEDED
        assert len(report.document) == 0


class TestOrchestratorRestore:

    def test_missing_key_is_skipped(self):
        trick = StubTrick('never-conserved')

        report = TrickOrchestrator().restore([trick], StateDocument(), TrickOptions())
        unit = report.trick_results[0].result

        assert unit.status == TaskStatus.SKIPPED
        assert unit.message == 'Nothing was conserved previously.'
        assert report.outcome == RunOutcome.SUCCEEDED

    def test_restores_records_of_each_trick(self):
        first, second = StubTrick('first'), StubTrick('second')
        document = StateDocument({'first': [{'id': 'a'}], 'second': [{'id': 'b'}, {'id': 'c'}]})

        TrickOrchestrator().restore([first, second], document, TrickOptions())

        assert first.restored == ['a']
        assert sorted(second.restored) == ['b', 'c']

    def test_unselected_state_is_left_alone(self, caplog):
        trick = StubTrick('selected')
        document = StateDocument({'selected': [], 'other': [{'id': 'x'}]})

        TrickOrchestrator().restore([trick], document, TrickOptions())

        assert 'State of other is not restored' in caplog.text

    def test_invalid_records_fail_on_their_own(self):
        trick = StubTrick('stub')
        document = StateDocument({'stub': [{'id': 'a'}, {'name': 'legacy'}]})

        report = TrickOrchestrator().restore([trick], document, TrickOptions())
        unit = report.trick_results[0].result

        assert trick.restored == ['a']
        assert child(unit, 'a').succeeded
        assert child(unit, 'legacy').status == TaskStatus.FAILED
        assert 'Invalid record in state file: id: Field required' in child(unit, 'legacy').message

    def test_only_invalid_records_are_still_reported(self):
        trick = StubTrick('stub')

        report = TrickOrchestrator().restore([trick], StateDocument({'stub': [{}]}), TrickOptions())

        assert trick.restored == []
        assert report.outcome == RunOutcome.FAILED
        assert report.trick_results[0].result.children[0].title == '<invalid record>'

    def test_partial_restore_failure(self):
        report = TrickOrchestrator().restore(
            [StubTrick('ok'), StubTrick('bad', fail_on='x')],
            StateDocument({'ok': [{'id': 'a'}], 'bad': [{'id': 'x'}]}),
            TrickOptions(),
        )

        with pytest.raises(RestorePartialFailure):
            raise_for_outcome(report)


class TestCostSaverOperations:

    def test_conserve_writes_the_state_file(self, temp_state_file):
        operations = make_operations([StubTrick('stub', resources=['r-1'])], temp_state_file)

        operations.conserve()

        assert read_state(temp_state_file) == {'stub': [{'id': 'r-1'}]}

    def test_conserve_writes_state_of_partially_failed_runs(self, temp_state_file):
        operations = make_operations(
            [StubTrick('broken', fail_on='fetch'), StubTrick('healthy', resources=['r-1'])],
            temp_state_file,
        )

        report = operations.conserve()

        assert report.outcome == RunOutcome.PARTIALLY_FAILED
        assert read_state(temp_state_file) == {'broken': [], 'healthy': [{'id': 'r-1'}]}

    def test_dry_run_writes_nothing_and_mutates_nothing(self, temp_state_file, tmp_path):
        trick = StubTrick('stub', resources=['r-1'])
        operations = make_operations([trick], temp_state_file, options=TrickOptions(dry_run=True))

        report = operations.conserve()

        assert trick.conserved == []
        assert report.outcome == RunOutcome.SUCCEEDED
        assert not (tmp_path / 'state').exists()

    def test_no_state_file_writes_nothing(self, temp_state_file, tmp_path):
        trick = StubTrick('stub', resources=['r-1'])
        operations = make_operations([trick], temp_state_file, no_state_file=True)

        operations.conserve()

        assert trick.conserved == ['r-1']
        assert not (tmp_path / 'state').exists()

    def test_declined_overwrite_aborts_before_any_trick_runs(self, temp_state_file):
        LocalStorage().write(temp_state_file, '{"stub": []}')
        trick = StubTrick('stub', resources=['r-1'])
        questions = []

        def decline(question):
            questions.append(question)
            return False

        with pytest.raises(AbortedByUser):
            make_operations([trick], temp_state_file, confirm=decline).conserve()

        assert len(questions) == 1
        assert trick.conserved == []
        assert read_state(temp_state_file) == {'stub': []}

    def test_accepted_overwrite_replaces_the_file(self, temp_state_file):
        LocalStorage().write(temp_state_file, '{"stub": []}')

        make_operations(
            [StubTrick('stub', resources=['r-1'])], temp_state_file, confirm=lambda question: True,
        ).conserve()

        assert read_state(temp_state_file) == {'stub': [{'id': 'r-1'}]}

    def test_overwrite_flag_skips_the_question(self, temp_state_file):
        LocalStorage().write(temp_state_file, '{}')

        make_operations(
            [StubTrick('stub', resources=['r-1'])], temp_state_file, overwrite_state_file=True,
        ).conserve()

        assert read_state(temp_state_file) == {'stub': [{'id': 'r-1'}]}

    def test_restore_reads_the_state_file(self, temp_state_file):
        LocalStorage().write(temp_state_file, '{"stub": [{"id": "r-1"}]}')
        trick = StubTrick('stub')

        report = make_operations([trick], temp_state_file).restore()

        assert report.outcome == RunOutcome.SUCCEEDED
        assert trick.restored == ['r-1']

    def test_restore_without_state_file_fails(self, temp_state_file):
        with pytest.raises(StorageError, match='State file not found'):
            make_operations([StubTrick('stub')], temp_state_file).restore()

    def test_restore_with_no_state_file_flag_is_a_configuration_error(self, temp_state_file):
        with pytest.raises(ConfigurationError):
            make_operations([StubTrick('stub')], temp_state_file, no_state_file=True).restore()

    def test_selection_uses_the_registry(self, temp_state_file):
        first, second = StubTrick('first', resources=['a']), StubTrick('second', resources=['b'])

        make_operations([first, second], temp_state_file, ignore_tricks=('second',)).conserve()

        assert first.conserved == ['a']
        assert second.conserved == []
        assert read_state(temp_state_file) == {'first': [{'id': 'a'}]}
