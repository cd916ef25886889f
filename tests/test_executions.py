"""
Tests for ExecutionTracker and ProviderRegistry bookkeeping.
"""

import pytest

from tool_broker.executions import ExecutionTracker
from tool_broker.registry import ProviderRegistry
from tool_broker.schema import (
    ExecutionStatus,
    InvocationResult,
    ProviderConfig,
    ProviderStatus,
    ToolExecutionContext,
)


@pytest.fixture
def tracker():
    return ExecutionTracker()


class TestExecutionLifecycle:
    def test_begin_creates_pending_record(self, tracker):
        ctx = ToolExecutionContext(agent_name="planner")
        eid = tracker.begin("search", "web_search", {"query": "x"}, ctx)

        record = tracker.get(eid)
        assert eid.startswith("exec_")
        assert record.status == ExecutionStatus.PENDING
        assert record.args == {"query": "x"}
        assert record.ended_at is None
        assert record.context is ctx

    def test_running_then_completed(self, tracker):
        eid = tracker.begin("search", "web_search", {})
        assert tracker.mark_running(eid, 8000) is True
        assert tracker.complete(eid, InvocationResult(success=True, data=[1], execution_time_ms=4)) is True

        record = tracker.get(eid)
        assert record.status == ExecutionStatus.COMPLETED
        assert record.timeout_ms == 8000
        assert record.result.data == [1]
        assert record.ended_at >= record.started_at

    def test_unsuccessful_result_marks_failed(self, tracker):
        eid = tracker.begin("github", "create_issue", {})
        tracker.mark_running(eid, 8000)
        tracker.complete(eid, InvocationResult(success=False, error="nope"))

        record = tracker.get(eid)
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "nope"

    def test_pending_can_fail_directly(self, tracker):
        eid = tracker.begin("ghost", "web_search", {})
        assert tracker.fail(eid, "Server ghost not found") is True
        assert tracker.get(eid).status == ExecutionStatus.FAILED

    def test_terminal_status_never_changes(self, tracker):
        eid = tracker.begin("search", "web_search", {})
        tracker.mark_running(eid, 50)
        assert tracker.timeout(eid) is True

        assert tracker.complete(eid, InvocationResult(success=True, data="late")) is False
        assert tracker.fail(eid, "late failure") is False
        assert tracker.mark_running(eid, 50) is False

        record = tracker.get(eid)
        assert record.status == ExecutionStatus.TIMEOUT
        assert record.abandoned is True
        assert record.result is None
        assert record.error == "Timed out after 50ms"

    def test_cannot_complete_before_running(self, tracker):
        eid = tracker.begin("search", "web_search", {})
        assert tracker.complete(eid, InvocationResult(success=True)) is False
        assert tracker.timeout(eid) is False
        assert tracker.get(eid).status == ExecutionStatus.PENDING

    def test_late_result_is_logged_not_applied(self, tracker, caplog):
        eid = tracker.begin("search", "web_search", {})
        tracker.mark_running(eid, 50)
        tracker.timeout(eid)

        tracker.abandon_late_result(eid, InvocationResult(success=True, data="late"))

        assert tracker.get(eid).status == ExecutionStatus.TIMEOUT
        assert "Discarding late completion" in caplog.text

    def test_unknown_id_is_ignored(self, tracker):
        assert tracker.mark_running("exec_missing") is False
        assert tracker.get("exec_missing") is None


class TestExecutionHistory:
    def test_newest_first_with_limit(self, tracker):
        ids = [tracker.begin("search", f"tool_{i}", {}) for i in range(5)]

        history = tracker.history()
        assert [r.id for r in history] == list(reversed(ids))
        assert [r.id for r in tracker.history(limit=2)] == [ids[4], ids[3]]
        assert tracker.history(limit=0) == []
        assert tracker.history(limit=-3) == []
        assert len(tracker) == 5

    def test_stats(self, tracker):
        a = tracker.begin("search", "web_search", {})
        b = tracker.begin("search", "deep_research", {})
        tracker.begin("search", "web_search", {})
        tracker.mark_running(a, 10)
        tracker.complete(a, InvocationResult(success=True))
        tracker.mark_running(b, 10)
        tracker.timeout(b)

        stats = tracker.stats()
        assert stats["completed"] == 1
        assert stats["timeout"] == 1
        assert stats["pending"] == 1
        assert stats["total"] == 3

    def test_record_serialization(self, tracker):
        eid = tracker.begin("search", "web_search", {"query": "x"}, ToolExecutionContext(agent_name="cli"))
        tracker.mark_running(eid, 8000)
        tracker.complete(eid, InvocationResult(success=True, data={"n": 1}, execution_time_ms=7))

        out = tracker.get(eid).to_dict()
        assert out["server"] == "search"
        assert out["tool"] == "web_search"
        assert out["status"] == "completed"
        assert out["result"] == {"success": True, "executionTime": 7, "data": {"n": 1}}
        assert out["agent"] == "cli"
        assert out["endTime"] is not None


class TestProviderRegistry:
    def test_register_starts_disconnected(self):
        registry = ProviderRegistry()
        provider = registry.register(ProviderConfig(name="search", url="python server.py", type="stdio"))

        assert provider.status == ProviderStatus.DISCONNECTED
        assert "search" in registry
        assert len(registry) == 1

    def test_status_transitions(self):
        registry = ProviderRegistry()
        registry.register(ProviderConfig(name="gh", url="http://x/mcp", type="http"))

        registry.mark_error("gh", "refused")
        assert registry.get("gh").status == ProviderStatus.ERROR
        assert registry.get("gh").error == "refused"

        registry.mark_connected("gh")
        provider = registry.get("gh")
        assert provider.status == ProviderStatus.CONNECTED
        assert provider.error is None
        assert provider.last_connected is not None

        registry.note_error("gh", "Discovery failed: boom")
        assert provider.status == ProviderStatus.CONNECTED
        assert provider.error == "Discovery failed: boom"

        registry.mark_disconnected("gh")
        assert provider.status == ProviderStatus.DISCONNECTED
        assert provider.to_dict()["status"] == "disconnected"

    def test_remove(self):
        registry = ProviderRegistry()
        registry.register(ProviderConfig(name="gh", url="http://x/mcp", type="http"))

        assert registry.remove("gh").name == "gh"
        assert registry.remove("gh") is None
        assert registry.all() == []
