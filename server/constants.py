"""Centralized constants for node config types, HTTP handling and scheduled tasks.

This module provides a single source of truth for the string identifiers that
appear in stored node configs and in lease rows.
"""

import re
from typing import FrozenSet

# =============================================================================
# NODE CONFIG TYPES (value of the "config_type" discriminator)
# =============================================================================

TRIGGER_CONFIG_TYPES: FrozenSet[str] = frozenset([
    'workflow_entity_event_trigger',
    'workflow_schedule_trigger',
    'workflow_webhook_trigger',
    'workflow_function_trigger',
])

CONTROL_CONFIG_TYPES: FrozenSet[str] = frozenset([
    'workflow_condition_control',
])

ENTITY_ACTION_CONFIG_TYPES: FrozenSet[str] = frozenset([
    'workflow_create_entity_action',
    'workflow_update_entity_action',
    'workflow_delete_entity_action',
    'workflow_query_entity_action',
    'workflow_bulk_update_entity_action',
])

ACTION_CONFIG_TYPES: FrozenSet[str] = ENTITY_ACTION_CONFIG_TYPES | frozenset([
    'workflow_http_request_action',
    'workflow_set_variable_action',
])

FUNCTION_CONFIG_TYPES: FrozenSet[str] = frozenset([
    'workflow_expression_function',
])

UTILITY_CONFIG_TYPES: FrozenSet[str] = frozenset([
    'workflow_map_data_utility',
])

ALL_CONFIG_TYPES: FrozenSet[str] = (
    TRIGGER_CONFIG_TYPES |
    CONTROL_CONFIG_TYPES |
    ACTION_CONFIG_TYPES |
    FUNCTION_CONFIG_TYPES |
    UTILITY_CONFIG_TYPES
)

# =============================================================================
# HTTP REQUEST ACTION
# =============================================================================

HTTP_METHODS: FrozenSet[str] = frozenset([
    'GET',
    'POST',
    'PUT',
    'DELETE',
    'PATCH',
])

# Header values replaced by MASKED_HEADER_VALUE in node outputs and traces
SENSITIVE_HEADERS: FrozenSet[str] = frozenset([
    'authorization',
    'x-api-key',
    'api-key',
    'cookie',
    'set-cookie',
])

MASKED_HEADER_VALUE = '***'

# =============================================================================
# CONDITION BRANCHES
# =============================================================================

BRANCH_TRUE = 'true'
BRANCH_FALSE = 'false'

# =============================================================================
# TEMPLATE ROOTS
# =============================================================================

TEMPLATE_ROOTS: FrozenSet[str] = frozenset([
    'steps',
    'trigger',
    'variables',
])

# {{steps.fetch.output.body}}, {{ trigger.entity_id }}, {{variables.total}}
TEMPLATE_PATTERN = re.compile(r'\{\{\s*([a-zA-Z0-9_.\-]+)\s*\}\}')

# =============================================================================
# SCHEDULED TASK LEASES
# =============================================================================

PROCESS_QUEUE_LOCK = 'processExecutionQueue'
RECOVER_STALE_LOCK = 'recoverStaleQueueItems'

# (lock_at_most_seconds, lock_at_least_seconds)
LEASE_DURATIONS = {
    PROCESS_QUEUE_LOCK: (240, 10),
    RECOVER_STALE_LOCK: (120, 30),
}

# =============================================================================
# TEMPORAL IDENTIFIERS
# =============================================================================

EXECUTION_WORKFLOW_PREFIX = 'execution-'
WORKFLOW_TYPE_NAME = 'WorkflowOrchestration'
COORDINATOR_ACTIVITY_NAME = 'execute_workflow_with_coordinator'
RECORD_COMPLETION_ACTIVITY_NAME = 'record_completion'


def execution_workflow_id(execution_id) -> str:
    """Temporal workflow id for an execution record."""
    return f"{EXECUTION_WORKFLOW_PREFIX}{execution_id}"


def execution_id_from_workflow_id(workflow_id: str) -> str:
    """Inverse of execution_workflow_id. Raises ValueError on foreign ids."""
    if not workflow_id.startswith(EXECUTION_WORKFLOW_PREFIX):
        raise ValueError(f"Workflow id '{workflow_id}' is not an execution workflow id")
    return workflow_id[len(EXECUTION_WORKFLOW_PREFIX):]
