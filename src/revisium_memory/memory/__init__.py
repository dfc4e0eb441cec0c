"""Memory module for the Revisium memory server.

This module provides the result types and the operations behind each MCP
tool: row storage and search, config entries, commits and diffs, projects,
branches and table schemas.
"""

from revisium_memory.memory.operations import (
    build_where,
    memory_branch,
    memory_branches,
    memory_commit,
    memory_config,
    memory_create_project,
    memory_delete,
    memory_diff,
    memory_get_schema,
    memory_history,
    memory_projects,
    memory_recall,
    memory_rollback,
    memory_search,
    memory_status,
    memory_store,
    memory_switch_branch,
    memory_switch_project,
    memory_update_schema,
)
from revisium_memory.memory.types import (
    CommitResult,
    ConfigAction,
    CreateProjectResult,
    DeleteResult,
    SchemaAction,
    SearchHit,
    StoreResult,
)

__all__ = [
    "CommitResult",
    "ConfigAction",
    "CreateProjectResult",
    "DeleteResult",
    "SchemaAction",
    "SearchHit",
    "StoreResult",
    "build_where",
    "memory_branch",
    "memory_branches",
    "memory_commit",
    "memory_config",
    "memory_create_project",
    "memory_delete",
    "memory_diff",
    "memory_get_schema",
    "memory_history",
    "memory_projects",
    "memory_recall",
    "memory_rollback",
    "memory_search",
    "memory_status",
    "memory_store",
    "memory_switch_branch",
    "memory_switch_project",
    "memory_update_schema",
]
