"""Tests for the hierarchical task runner."""

import threading

from aws_cost_saver.services.models import TaskStatus
from aws_cost_saver.services.tasks import ProgressChannel, Task, TaskList, TaskRunner


def raising(message):
    def run(task):
        raise RuntimeError(message)
    return run


def test_results_keep_list_order_and_statuses():
    def succeed(task):
        task.output("done")

    def skip(task):
        task.skip("nothing to do")

    def fail(task):
        raise RuntimeError("boom")

    results = TaskRunner().run(TaskList([
        Task("a", succeed),
        Task("b", skip),
        Task("c", fail),
    ]))

    assert [r.title for r in results] == ["a", "b", "c"]
    assert [r.status for r in results] == [TaskStatus.SUCCEEDED, TaskStatus.SKIPPED, TaskStatus.FAILED]
    assert results[0].message == "done"
    assert results[1].message == "nothing to do"
    assert results[2].message == "boom"


def test_failure_never_cancels_siblings():
    ran = []

    def fail(task):
        raise ValueError("first failed")

    def record(task):
        ran.append(task.title)

    results = TaskRunner().run(TaskList(
        [Task("fail", fail)] + [Task(f"ok-{i}", record) for i in range(5)],
        concurrency=2,
    ))

    assert sorted(ran) == [f"ok-{i}" for i in range(5)]
    assert results[0].status == TaskStatus.FAILED
    assert all(r.status == TaskStatus.SUCCEEDED for r in results[1:])


def test_nested_lists_are_run_and_failures_bubble_up():
    def parent(task):
        return TaskList([
            Task("leaf-ok", lambda t: None),
            Task("leaf-fail", raising("leaf broke")),
        ])

    result = TaskRunner().run_task(Task("parent", parent))

    assert result.status == TaskStatus.SUCCEEDED
    assert result.has_failed()
    assert result.errors() == ["leaf-fail: leaf broke"]
    assert result.count(TaskStatus.SUCCEEDED) == 1
    assert result.count(TaskStatus.FAILED) == 1


def test_exit_on_error_skips_remaining_sequential_steps():
    calls = []

    def step(name, fail=False):
        def run(task):
            calls.append(name)
            if fail:
                raise RuntimeError(f"{name} failed")
        return run

    results = TaskRunner().run(TaskList(
        [Task("one", step("one")), Task("two", step("two", fail=True)), Task("three", step("three"))],
        concurrency=1,
        exit_on_error=True,
    ))

    assert calls == ["one", "two"]
    assert results[2].status == TaskStatus.SKIPPED
    assert results[2].message == "Skipped, a previous step failed"


def test_exit_on_error_ignores_failures_below_a_step():
    def with_failing_child(task):
        return TaskList([Task("child", raising("child broke"))])

    results = TaskRunner().run(TaskList(
        [Task("one", with_failing_child), Task("two", lambda t: None)],
        concurrency=1,
        exit_on_error=True,
    ))

    assert results[1].status == TaskStatus.SUCCEEDED


def test_skipped_step_does_not_stop_sequential_list():
    results = TaskRunner().run(TaskList(
        [Task("one", lambda t: t.skip("no-op")), Task("two", lambda t: None)],
        concurrency=1,
        exit_on_error=True,
    ))

    assert [r.status for r in results] == [TaskStatus.SKIPPED, TaskStatus.SUCCEEDED]


def test_concurrency_is_bounded():
    lock = threading.Lock()
    running = {"now": 0, "max": 0}
    barrier = threading.Event()

    def work(task):
        with lock:
            running["now"] += 1
            running["max"] = max(running["max"], running["now"])
        barrier.wait(0.05)
        with lock:
            running["now"] -= 1

    TaskRunner().run(TaskList([Task(str(i), work) for i in range(12)], concurrency=3))

    assert 1 <= running["max"] <= 3


def test_progress_events_reach_the_single_reader():
    channel = ProgressChannel()
    runner = TaskRunner(channel)

    def work(task):
        task.output("halfway")

    runner.run(TaskList([Task("unit", lambda t: TaskList([Task("leaf", work)]))]))
    channel.close()

    events = list(channel)
    leaf_events = [e for e in events if e.path == ("unit", "leaf")]

    assert [e.status for e in leaf_events] == [TaskStatus.RUNNING, TaskStatus.RUNNING, TaskStatus.SUCCEEDED]
    assert leaf_events[1].message == "halfway"
    assert events[-1].path == ("unit",)
    assert events[-1].status == TaskStatus.SUCCEEDED


def test_empty_list_returns_no_results():
    assert TaskRunner().run(TaskList()) == []
    assert TaskRunner().run(None) == []
