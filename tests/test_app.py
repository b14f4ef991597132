"""Tests for orchestrator wiring."""

import asyncio

import pytest

from switchboard.app import Orchestrator
from switchboard.tasks.context import DelegationContext


class EchoExecutor:
    async def execute(self, input: str, context: str | None, session_id: str) -> str:
        return f"done: {input}"


class IdleAgent:
    async def invoke(self, prompt, session_context) -> str:
        return "ok"

    def current_session_id(self) -> str | None:
        return None


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, db, make_adapter):
        telegram = make_adapter("telegram")
        orchestrator = Orchestrator(agent=IdleAgent(), executors={"apoc": EchoExecutor()}, db=db)
        orchestrator.register_channel(telegram)

        await orchestrator.start()
        await orchestrator.start()
        assert orchestrator.running
        assert orchestrator.task_manager is not None
        assert orchestrator.chronos is not None

        await orchestrator.shutdown()
        assert not orchestrator.running
        assert telegram.disconnected

    @pytest.mark.asyncio
    async def test_chronos_interval_hot_reload(self, db):
        orchestrator = Orchestrator(agent=IdleAgent(), db=db)
        await orchestrator.start()
        try:
            assert orchestrator.apply_chronos_interval(120)
            assert not orchestrator.apply_chronos_interval(10)
        finally:
            await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_without_agent_chronos_does_not_fire(self, db):
        orchestrator = Orchestrator(db=db)
        await orchestrator.start()
        try:
            assert orchestrator.apply_chronos_interval(120) is False
        finally:
            await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_delegated_ui_task_reaches_history(self, db):
        orchestrator = Orchestrator(executors={"apoc": EchoExecutor()}, db=db)
        await orchestrator.start()
        try:
            ctx = DelegationContext(origin_channel="ui", session_id="S1")
            reply = await DelegationContext.run(ctx, lambda: orchestrator.delegator.delegate("apoc", "check disk"))
            assert "queued for apoc" in reply

            async def wait_for_history():
                while not db.history.get_messages("S1"):
                    await asyncio.sleep(0.05)

            await asyncio.wait_for(wait_for_history(), timeout=10)
            [message] = db.history.get_messages("S1")
            assert "done: check disk" in message.content
        finally:
            await orchestrator.shutdown()
