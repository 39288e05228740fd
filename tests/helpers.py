"""
Test doubles and task tree helpers shared by the test modules.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from aws_cost_saver.core.config import TrickOptions
from aws_cost_saver.services.models import RunReport, TaskResult, TaskStatus
from aws_cost_saver.services.orchestrator import TrickOrchestrator
from aws_cost_saver.state.document import StateDocument


class FakeClientFactory:
    """Hands out one MagicMock client per service.

    Paginated operations return the pages registered with ``set_pages``
    (a single empty page by default).
    """

    region = "us-east-1"
    profile = None

    def __init__(self):
        self.clients: Dict[str, MagicMock] = {}

    def client(self, service_name: str) -> MagicMock:
        if service_name not in self.clients:
            self.clients[service_name] = make_client(service_name)
        return self.clients[service_name]


def make_client(service_name: str) -> MagicMock:
    client = MagicMock(name=service_name)
    client.pages = {}
    client.paginators = {}

    def get_paginator(operation: str) -> MagicMock:
        if operation not in client.paginators:
            paginator = MagicMock(name=f"{service_name}.{operation}")
            paginator.paginate.side_effect = lambda **kwargs: iter(client.pages.get(operation, [{}]))
            client.paginators[operation] = paginator
        return client.paginators[operation]

    client.get_paginator.side_effect = get_paginator
    return client


def set_pages(client: MagicMock, operation: str, *pages: Dict[str, Any]) -> None:
    client.pages[operation] = list(pages)


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def run_conserve(trick, options: Optional[TrickOptions] = None) -> RunReport:
    return TrickOrchestrator().conserve([trick], options or TrickOptions())


def run_restore(trick, records: List[Any], options: Optional[TrickOptions] = None) -> RunReport:
    document = StateDocument()
    document.set(trick.get_machine_name(), records)
    return TrickOrchestrator().restore([trick], document, options or TrickOptions())


def child(result: TaskResult, *titles: str) -> TaskResult:
    """Walk down the result tree by titles."""
    for title in titles:
        matches = [c for c in result.children if c.title == title]
        assert matches, f"No task {title!r} under {result.title!r}: {[c.title for c in result.children]}"
        result = matches[0]
    return result


def leaves(result: TaskResult) -> List[TaskResult]:
    if not result.children:
        return [result]
    found = []
    for c in result.children:
        found.extend(leaves(c))
    return found


def statuses(result: TaskResult) -> List[TaskStatus]:
    return [leaf.status for leaf in leaves(result)]


def trick_result(report: RunReport) -> TaskResult:
    assert len(report.trick_results) == 1
    return report.trick_results[0].result


def conserved_records(report: RunReport, machine_name: str) -> List[Dict[str, Any]]:
    return report.document.get(machine_name)
