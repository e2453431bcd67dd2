"""Tests for the ExecutionPool."""

import threading

import pytest

from nodeflow.core.exceptions import ExecutionEngineError
from nodeflow.core.execution_pool import ExecutionPool
from nodeflow.core.orchestrator import Orchestrator
from nodeflow.models.core import ExecutionStatus, NodeResult

from conftest import make_graph


@pytest.fixture
def pool(orchestrator):
    """Two-worker pool around the test orchestrator."""
    pool = ExecutionPool(orchestrator, max_concurrent_executions=2)
    yield pool
    pool.shutdown(wait=True)


class TestExecutionPool:
    """Running executions on worker threads."""

    def test_submit_returns_terminal_record(self, pool, memory_store):
        graph = make_graph([("A", "manual-trigger"), ("B", "step")], [("A", "B")])

        execution = pool.submit(graph, {"n": 1}).result(timeout=10)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.workflow_id == "wf-test"

    def test_failed_execution_resolves_to_error_record(self, pool):
        """Engine failures come back as the stored ERROR execution, not as an exception."""
        graph = make_graph([("A", "manual-trigger"), ("B", "fail")], [("A", "B")])

        execution = pool.submit(graph, {}).result(timeout=10)

        assert execution.status == ExecutionStatus.ERROR
        assert execution.error == "handler reported failure"

    def test_missing_start_node(self, pool):
        graph = make_graph([("A", "step")])

        execution = pool.submit(graph, {}).result(timeout=10)

        assert execution.status == ExecutionStatus.ERROR
        assert execution.error == "No starting nodes found in workflow"

    def test_executions_run_concurrently(self, registry, memory_store):
        """Two executions meet at a barrier only if they run at the same time."""
        barrier = threading.Barrier(2, timeout=5)

        def rendezvous(node_id, parameters, input_data):
            barrier.wait()
            return NodeResult(node_id=node_id, status=ExecutionStatus.SUCCESS, output=input_data)

        registry.register("rendezvous", rendezvous)
        pool = ExecutionPool(Orchestrator(registry, memory_store), max_concurrent_executions=2)
        try:
            graph = make_graph([("A", "manual-trigger"), ("B", "rendezvous")], [("A", "B")])
            futures = [pool.submit(graph, {"run": i}) for i in range(2)]
            results = [future.result(timeout=10) for future in futures]
        finally:
            pool.shutdown(wait=True)

        assert [r.status for r in results] == [ExecutionStatus.SUCCESS, ExecutionStatus.SUCCESS]
        assert results[0].id != results[1].id

    def test_events_reach_shared_sink(self, pool, recording_sink):
        graph = make_graph([("A", "manual-trigger")])

        execution = pool.submit(graph, {}).result(timeout=10)

        assert {update["execution_id"] for update in recording_sink.updates} == {execution.id}
        assert recording_sink.updates[-1]["status"] == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_submit_async(self, pool):
        graph = make_graph([("A", "webhook-trigger")])

        execution = await pool.submit_async(graph, {"x": 1})

        assert execution.status == ExecutionStatus.SUCCESS

    def test_queue_status(self, pool):
        status = pool.get_queue_status()

        assert status["active_executions"] == 0
        assert status["max_concurrent_executions"] == 2
        assert status["available_slots"] == 2
        assert status["is_shutdown"] is False
        assert pool.active_count() == 0

    def test_rejects_work_after_shutdown(self, orchestrator):
        pool = ExecutionPool(orchestrator, max_concurrent_executions=1)
        pool.shutdown()

        with pytest.raises(ExecutionEngineError):
            pool.submit(make_graph([("A", "manual-trigger")]))
        assert pool.get_queue_status()["is_shutdown"] is True

    def test_invalid_size(self, orchestrator):
        with pytest.raises(ValueError):
            ExecutionPool(orchestrator, max_concurrent_executions=0)
