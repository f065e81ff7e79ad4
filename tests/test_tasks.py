"""Tests for the deferred task queue."""

from __future__ import annotations

from focuspact.tasks import TaskQueue

from helpers import SignalCollector


class TestTaskQueue:

    def test_fifo_with_kwargs(self, queue):
        seen = []
        queue.enqueue("a", lambda n: seen.append(("a", n)), n=1)
        queue.enqueue("b", lambda n: seen.append(("b", n)), n=2)
        assert queue.pending_names == ["a", "b"]
        assert queue.run_pending() == 2
        assert seen == [("a", 1), ("b", 2)]
        assert len(queue) == 0

    def test_failure_is_logged_and_dropped(self, queue, caplog):
        seen = []
        failed = SignalCollector()
        queue.task_failed.connect(failed)

        def boom():
            raise RuntimeError("nope")

        queue.enqueue("boom", boom)
        queue.enqueue("after", lambda: seen.append("after"))
        assert queue.run_pending() == 2
        assert seen == ["after"]
        assert failed[0][0] == "boom"
        assert isinstance(failed[0][1], RuntimeError)
        assert "deferred task boom dropped" in caplog.text
        assert len(queue) == 0

    def test_limit(self, queue):
        for i in range(3):
            queue.enqueue(f"t{i}", lambda: None)
        assert queue.run_pending(limit=2) == 2
        assert queue.pending_names == ["t2"]

    def test_tasks_enqueued_while_running_are_drained(self, queue):
        seen = []
        queue.enqueue("outer", lambda: queue.enqueue("inner", lambda: seen.append("inner")))
        assert queue.run_pending() == 2
        assert seen == ["inner"]

    def test_enqueue_signal(self, queue):
        collector = SignalCollector()
        queue.task_enqueued.connect(collector)
        queue.enqueue("x", lambda: None)
        assert collector.items == ["x"]

    def test_clear(self, queue):
        queue.enqueue("x", lambda: None)
        queue.clear()
        assert queue.run_pending() == 0

    def test_timer_start_stop(self, qapp):
        q = TaskQueue(parent=None)
        q.start(10)
        assert q._qt_timer.isActive()
        assert q._qt_timer.interval() == 10
        q.stop()
        assert not q._qt_timer.isActive()
