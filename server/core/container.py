"""Dependency injection container for the application."""

import httpx
from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from services.entity import EntityService
from services.entity_context import EntityContextService
from services.execution.dispatcher import ExecutionDispatcher
from services.execution.lease import LeaseManager
from services.execution.queue import ExecutionQueueService
from services.expression import ExpressionEvaluator, ExpressionParser
from services.node_executor import NodeExecutor, NodeServiceProvider
from services.parameter_resolver import ParameterResolver
from services.temporal.activities import WorkflowCoordinationActivities
from services.temporal.client import TemporalClientWrapper
from services.temporal.executor import TemporalExecutor


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Shared HTTP client for HTTP request nodes (closed in lifespan)
    http_client = providers.Singleton(
        httpx.AsyncClient,
        timeout=settings.provided.http_request_timeout,
        follow_redirects=True,
    )

    # Expression and context layer
    expression_parser = providers.Singleton(ExpressionParser)
    expression_evaluator = providers.Singleton(ExpressionEvaluator)
    parameter_resolver = providers.Singleton(ParameterResolver)

    entity_service = providers.Singleton(
        EntityService,
        database=database
    )

    entity_context_service = providers.Singleton(
        EntityContextService,
        entity_service=entity_service
    )

    # Node execution
    node_services = providers.Singleton(
        NodeServiceProvider,
        entity_service,
        entity_context_service,
        expression_parser,
        expression_evaluator,
        http_client,
    )

    node_executor = providers.Singleton(
        NodeExecutor,
        services=node_services,
        resolver=parameter_resolver,
        settings=settings
    )

    # Execution queue
    lease_manager = providers.Singleton(
        LeaseManager,
        database=database
    )

    execution_queue = providers.Singleton(
        ExecutionQueueService,
        database=database
    )

    # Temporal
    temporal_client = providers.Singleton(
        TemporalClientWrapper,
        server_address=settings.provided.temporal_server_address,
        namespace=settings.provided.temporal_namespace,
    )

    temporal_executor = providers.Singleton(
        TemporalExecutor,
        client_wrapper=temporal_client,
        task_queue=settings.provided.temporal_task_queue,
    )

    workflow_activities = providers.Singleton(
        WorkflowCoordinationActivities,
        database=database,
        node_executor=node_executor
    )

    dispatcher = providers.Singleton(
        ExecutionDispatcher,
        database=database,
        queue=execution_queue,
        lease_manager=lease_manager,
        starter=temporal_executor,
        settings=settings
    )


# Global container instance
container = Container()
