"""Node handlers package.

This package contains all node execution handlers organized by category:
- triggers.py: Trigger nodes (entity event, schedule, webhook, function)
- control.py: Condition
- entity.py: Create, Update, Delete, Query and Bulk Update entity actions
- http.py: HTTP Request action
- utility.py: Set Variable, Expression function, Map Data utility
"""

# Trigger handlers
from .triggers import (
    handle_trigger,
)

# Control-flow handlers
from .control import (
    handle_condition,
)

# Entity handlers
from .entity import (
    handle_create_entity,
    handle_update_entity,
    handle_delete_entity,
    handle_query_entity,
    handle_bulk_update_entity,
)

# HTTP handlers
from .http import (
    handle_http_request,
)

# Utility handlers
from .utility import (
    handle_set_variable,
    restore_set_variable,
    handle_expression,
    handle_map_data,
)

__all__ = [
    'handle_trigger',
    'handle_condition',
    'handle_create_entity',
    'handle_update_entity',
    'handle_delete_entity',
    'handle_query_entity',
    'handle_bulk_update_entity',
    'handle_http_request',
    'handle_set_variable',
    'restore_set_variable',
    'handle_expression',
    'handle_map_data',
]
