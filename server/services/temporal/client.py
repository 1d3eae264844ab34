"""Temporal client wrapper.

Manages the Temporal client connection lifecycle.
"""

from typing import Optional
from temporalio.client import Client
from temporalio.runtime import Runtime, TelemetryConfig

from core.logging import get_logger

logger = get_logger(__name__)


def create_runtime() -> Runtime:
    """Temporal runtime with worker heartbeating disabled.

    Older Temporal servers warn when the runtime-level heartbeat is on.
    """
    return Runtime(
        telemetry=TelemetryConfig(),
        worker_heartbeat_interval=None,
    )


class TemporalClientWrapper:
    """Wrapper around Temporal client for lifecycle management."""

    def __init__(self, server_address: str, namespace: str = "default"):
        """Initialize the client wrapper.

        Args:
            server_address: Temporal server address (e.g., "localhost:7233")
            namespace: Temporal namespace to use
        """
        self.server_address = server_address
        self.namespace = namespace
        self._client: Optional[Client] = None
        self._runtime: Optional[Runtime] = None

    @property
    def client(self) -> Optional[Client]:
        """Get the underlying Temporal client."""
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> Client:
        """Connect to the Temporal server, reusing an existing connection."""
        if self._client is not None:
            return self._client

        logger.info(
            "Connecting to Temporal server",
            server_address=self.server_address,
            namespace=self.namespace,
        )

        self._runtime = create_runtime()
        self._client = await Client.connect(
            self.server_address,
            namespace=self.namespace,
            runtime=self._runtime,
        )

        logger.info("Connected to Temporal server")
        return self._client

    async def disconnect(self) -> None:
        """Drop the client reference; the SDK has no explicit close."""
        if self._client is not None:
            self._client = None
            logger.info("Disconnected from Temporal server")
