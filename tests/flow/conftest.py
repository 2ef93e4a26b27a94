"""Fixtures for conversational flow tests driven through the message router."""

import asyncio

import pytest

from domain.vocabulary import WorkflowId
from workflows.io.run_store import InMemoryRunStore
from workflows.io.thread_memory import InMemoryThreadStore, ThreadMemory
from workflows.runtime.context import LOCALE, RunContext
from workflows.runtime.engine import WorkflowExecutor
from workflows.runtime.router import route_message, workflow_thread_id


class RouterHarness:
    """Sends messages through ``route_message`` with in-memory stores.

    ``registry=None`` uses the real workflow registry.
    """

    def __init__(self, registry=None, agent=None, services=None, workflow_id=WorkflowId.SALES):
        self.registry = registry
        self.agent = agent
        self.services = services
        self.workflow_id = workflow_id
        self.executor = WorkflowExecutor(InMemoryRunStore())
        self.threads = InMemoryThreadStore()

    def send(self, message, workflow_id=None, thread_id="t1", locale="de-DE"):
        run_context = RunContext(
            {LOCALE: locale},
            extractor=self.agent,
            classifier=self.agent,
            services=self.services,
        )
        return asyncio.run(
            route_message(
                workflow_id or self.workflow_id,
                message,
                thread_id,
                "r1",
                run_context=run_context,
                executor=self.executor,
                thread_store=self.threads,
                registry=self.registry,
            )
        )

    def memory(self, thread_id="t1"):
        return ThreadMemory(workflow_thread_id(thread_id), "r1", self.threads)

    def metadata(self, thread_id="t1"):
        return self.memory(thread_id).metadata()

    def active_run(self, thread_id="t1"):
        active = self.metadata(thread_id).get("activeWorkflow")
        return self.executor.get_run(active["runId"]) if active else None


@pytest.fixture
def harness_factory():
    return RouterHarness
