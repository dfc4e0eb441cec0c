"""Data types for memory operations.

This module defines the structures returned by the memory operations:
- ConfigAction / SchemaAction: Enums for the multi-action tools
- StoreResult / DeleteResult: Row mutations in the draft revision
- SearchHit: One row found by a search
- CommitResult: A newly committed revision
- CreateProjectResult: A newly created and seeded project
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Tables searched when no table is given, in order
DEFAULT_SEARCH_TABLES = ("facts", "episodes", "config")

CONFIG_TABLE = "config"


class ConfigAction(Enum):
    """Actions supported by the config tool."""
    GET = "get"
    SET = "set"
    LIST = "list"


class SchemaAction(Enum):
    """Schema changes supported by the update-schema tool.

    - ADD_TABLE: Create a table from a full JSON Schema
    - UPDATE_TABLE: Apply JSON Patch (RFC 6902) operations to a table schema
    - RENAME_TABLE: Rename a table
    - DELETE_TABLE: Remove a table and all of its rows
    """
    ADD_TABLE = "add_table"
    UPDATE_TABLE = "update_table"
    RENAME_TABLE = "rename_table"
    DELETE_TABLE = "delete_table"


@dataclass
class StoreResult:
    """Result of storing a row.

    Attributes:
        table: Table the row was written to
        id: Row id
        operation: "created" or "updated"
        committed: Whether the change was auto-committed
    """
    table: str
    id: str
    operation: str
    committed: bool = False


@dataclass
class DeleteResult:
    """Result of deleting a row."""
    table: str
    id: str
    committed: bool = False


@dataclass
class SearchHit:
    """A row matched by a search."""
    table: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class CommitResult:
    """A committed revision.

    Attributes:
        revision_id: Id of the new head revision
        created_at: Creation timestamp reported by the backend
        total_changes: Number of changes included in the commit
    """
    revision_id: str
    created_at: Optional[str]
    total_changes: int


@dataclass
class CreateProjectResult:
    """A project created by memory_create_project.

    Attributes:
        name: Project name
        label: What the project was seeded from (template or custom schema)
        tables: Table ids created, in creation order
    """
    name: str
    label: str
    tables: list[str] = field(default_factory=list)
