"""Orchestrator class: composes services and owns the worker loops."""

from __future__ import annotations

from switchboard.agents.types import ConversationalAgent, SubagentExecutor
from switchboard.approvals.gate import ApprovalGate
from switchboard.chronos.service import ChronosService
from switchboard.chronos.worker import ChronosWorker
from switchboard.infrastructure.database import AppDatabase
from switchboard.infrastructure.logger import logger
from switchboard.messaging.channel_registry import ChannelRegistry
from switchboard.messaging.types import ChannelAdapter
from switchboard.tasks.delegation import Delegator
from switchboard.tasks.dispatcher import TaskDispatcher
from switchboard.tasks.notifier import TaskNotifier
from switchboard.tasks.service import TaskManager
from switchboard.tasks.worker import TaskWorker


class Orchestrator:
    """Composes all services and manages the application lifecycle.

    Workers are plain instances owned here. Code that needs to signal one (for
    example a config reload changing the Chronos period) goes through this
    object instead of a process-wide singleton.

    The conversational agent and the subagent executors are optional. Without
    an agent Chronos jobs can still be managed but nothing fires them; without
    executors tasks stay ``pending`` for an external worker.
    """

    def __init__(
        self,
        agent: ConversationalAgent | None = None,
        executors: dict[str, SubagentExecutor] | None = None,
        db: AppDatabase | None = None,
    ) -> None:
        self._db = db or AppDatabase()
        self._agent = agent
        self._executors = executors or {}
        self.channel_registry = ChannelRegistry()
        self.task_manager: TaskManager | None = None
        self.delegator: Delegator | None = None
        self.approval_gate: ApprovalGate | None = None
        self.chronos: ChronosService | None = None
        self._notifier: TaskNotifier | None = None
        self._task_worker: TaskWorker | None = None
        self._chronos_worker: ChronosWorker | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register_channel(self, adapter: ChannelAdapter) -> None:
        self.channel_registry.register(adapter)

    async def start(self) -> None:
        """Initialize all services and start the worker loops. Calling it twice is harmless."""
        if self._running:
            return
        logger.info("Starting switchboard...")

        if not self._db.initialized:
            self._db.init()

        self.task_manager = TaskManager(self._db.task_repo)
        self.delegator = Delegator(self.task_manager, self._executors)
        self.approval_gate = ApprovalGate(self._db.permission_repo)
        self.chronos = ChronosService(self._db.chronos_repo)

        dispatcher = TaskDispatcher(self.channel_registry, self._db.history, self._db.webhook_repo)
        self._notifier = TaskNotifier(self._db.task_repo, dispatcher)
        self._notifier.start()

        if self._executors:
            self._task_worker = TaskWorker(self._db.task_repo, self._executors, self.approval_gate)
            self._task_worker.start()
        else:
            logger.info("No subagent executors configured; task execution left to an external worker")

        if self._agent is not None:
            self._chronos_worker = ChronosWorker(self._db.chronos_repo, self._agent, self.channel_registry)
            self._chronos_worker.start()
        else:
            logger.warning("No conversational agent configured; Chronos jobs will not fire")

        self._running = True
        logger.info("switchboard started successfully")

    def apply_chronos_interval(self, seconds: float) -> bool:
        """Hot-reload the Chronos poll period without restarting."""
        if self._chronos_worker is None:
            return False
        return self._chronos_worker.update_interval(seconds)

    async def shutdown(self) -> None:
        """Gracefully shut down all services."""
        logger.info("Shutting down switchboard...")
        self._running = False

        # In-flight work settles before the store closes underneath it.
        if self._chronos_worker:
            await self._chronos_worker.shutdown()
        if self._task_worker:
            await self._task_worker.shutdown()
        if self._notifier:
            await self._notifier.shutdown()

        await self.channel_registry.disconnect_all()
        self._db.close()

        logger.info("switchboard shut down complete")
