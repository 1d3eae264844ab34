"""Temporal worker for durable workflow execution.

Uses class-based activities sharing the process's database and node executor
(Temporal's recommended dependency injection pattern for activities).

The worker polls the task queue and executes:
- WorkflowOrchestration: durable shell, one orchestration activity per run
- WorkflowCoordinationActivities: the DAG walk and completion recording

Multiple workers can be started on different machines for horizontal scaling.

References:
- https://docs.temporal.io/develop/python/python-sdk-sync-vs-async
- https://docs.temporal.io/develop/worker-performance
"""

import asyncio
from typing import Optional

from temporalio.client import Client
from temporalio.worker import Worker

from core.logging import get_logger
from .activities import WorkflowCoordinationActivities
from .workflow import WorkflowOrchestration

logger = get_logger(__name__)


def create_worker(
    client: Client,
    activities: WorkflowCoordinationActivities,
    task_queue: str = "workflows.default",
    max_concurrent_activities: int = 50,
) -> Worker:
    """Create a worker instance (not started).

    Args:
        client: Connected Temporal client
        activities: Activity instance holding shared resources
        task_queue: Task queue name
        max_concurrent_activities: Concurrent orchestration activities per worker

    Returns:
        Configured Worker instance
    """
    return Worker(
        client,
        task_queue=task_queue,
        workflows=[WorkflowOrchestration],
        # Class-based activities are passed as bound methods
        activities=[
            activities.execute_workflow_with_coordinator,
            activities.record_completion,
        ],
        max_concurrent_activities=max_concurrent_activities,
        max_concurrent_workflow_tasks=10,
    )


class TemporalWorkerManager:
    """Manages the Temporal worker lifecycle inside the API process."""

    def __init__(
        self,
        client: Client,
        activities: WorkflowCoordinationActivities,
        task_queue: str = "workflows.default",
        pool_size: int = 50,
    ):
        """Initialize the worker manager.

        Args:
            client: Connected Temporal client
            activities: Activity instance holding shared resources
            task_queue: Task queue name to poll
            pool_size: Max concurrent activities
        """
        self.client = client
        self.activities = activities
        self.task_queue = task_queue
        self.pool_size = pool_size
        self._worker: Optional[Worker] = None
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._worker_task is not None and not self._worker_task.done()

    async def start(self) -> None:
        """Start the Temporal worker in the background."""
        if self.is_running:
            logger.warning("Temporal worker already running")
            return

        self._worker = create_worker(
            self.client,
            self.activities,
            task_queue=self.task_queue,
            max_concurrent_activities=self.pool_size,
        )

        logger.info(
            "Starting Temporal worker",
            task_queue=self.task_queue,
            pool_size=self.pool_size,
        )

        self._worker_task = asyncio.create_task(
            self._run_worker(),
            name="temporal-worker",
        )

    async def _run_worker(self) -> None:
        """Run the worker (background task)."""
        try:
            await self._worker.run()
        except asyncio.CancelledError:
            logger.info("Temporal worker cancelled")
        except Exception as e:
            logger.error("Temporal worker error", error=str(e))
            raise

    async def stop(self) -> None:
        """Stop the Temporal worker."""
        if not self.is_running:
            return

        logger.info("Stopping Temporal worker")

        if self._worker is not None:
            await self._worker.shutdown()
        if self._worker_task:
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        self._worker = None
        logger.info("Temporal worker stopped")


async def run_standalone_worker() -> None:
    """Run the Temporal worker as a standalone process.

    Runs workers separately from the API server for horizontal scaling.
    Connection details and pool size come from Settings.

    Example:
        python -m services.temporal.worker
    """
    from core.container import container
    from core.logging import configure_logging

    settings = container.settings()
    configure_logging(settings)

    database = container.database()
    await database.startup()
    client_wrapper = container.temporal_client()
    client = await client_wrapper.connect()

    logger.info(
        "Starting standalone Temporal worker",
        server_address=settings.temporal_server_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
        pool_size=settings.temporal_max_concurrent_activities,
    )

    try:
        worker = create_worker(
            client,
            container.workflow_activities(),
            task_queue=settings.temporal_task_queue,
            max_concurrent_activities=settings.temporal_max_concurrent_activities,
        )
        logger.info("Worker running. Press Ctrl+C to stop.")
        await worker.run()
    finally:
        await container.http_client().aclose()
        await client_wrapper.disconnect()
        await database.shutdown()


if __name__ == "__main__":
    asyncio.run(run_standalone_worker())
