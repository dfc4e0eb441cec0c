"""MCP server entry point for the Revisium memory system.

This module provides the main entry point for the MCP server with:
- CLI argument parsing for flexible configuration
- Pydantic Settings for environment variable support
- Auto-start of a local Revisium standalone backend
- Tool registration for all memory operations
- Comprehensive logging to stderr (CRITICAL for MCP stdio)

Usage:
    python -m revisium_memory [options]

    Options:
        --url URL               Revisium base URL (default: http://localhost:9222)
        --org ORG               Organization (default: resolved from the user)
        --project NAME          Active project (default: memory)
        --branch NAME           Active branch (default: master)
        --auto-commit           Commit after every store/delete
        --no-auto-start         Never launch a local standalone backend
        --log-level LEVEL       Logging level (default: INFO)

    Credentials are read from the environment only:
        REVISIUM_USERNAME / REVISIUM_PASSWORD, or REVISIUM_TOKEN
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional, Union

from mcp.server.fastmcp import FastMCP

from revisium_memory.client.revisium import RevisiumClient
from revisium_memory.config import MemorySettings
from revisium_memory.memory.operations import (
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
from revisium_memory.memory.types import ConfigAction, SchemaAction
from revisium_memory.session.session import Session, SessionConfig
from revisium_memory.standalone.supervisor import StandaloneError, StandaloneSupervisor
from revisium_memory.templates import TEMPLATE_NAMES

# Initialize FastMCP server
mcp = FastMCP("revisium-memory")

# Global session (initialized in main)
session: Optional[Session] = None

logger = logging.getLogger(__name__)


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr (never stdout for MCP servers).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Note:
        STDIO-based MCP servers must never write to stdout as it corrupts
        JSON-RPC messages. All logging goes to stderr.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,  # Critical: never use stdout in MCP servers
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    logger.info(f"Logging initialized at {log_level.upper()} level")


def parse_arguments(
    settings: MemorySettings, argv: Optional[list[str]] = None
) -> argparse.Namespace:
    """Parse CLI arguments with configuration defaults.

    Args:
        settings: Settings supplying the defaults
        argv: Argument list (default: sys.argv[1:])

    Returns:
        Parsed arguments namespace

    Configuration precedence:
        1. CLI arguments (highest priority)
        2. Environment variables (REVISIUM_ prefix)
        3. Defaults (lowest priority)
    """
    parser = argparse.ArgumentParser(
        description="Revisium memory MCP server: versioned memory for AI agents",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Connection
    parser.add_argument("--url", type=str, default=settings.url, help="Revisium base URL")
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=settings.request_timeout,
        help="Revisium API request timeout in seconds",
    )

    # Identity
    parser.add_argument(
        "--org",
        type=str,
        default=settings.org,
        help="Organization (default: resolved from the logged-in user)",
    )
    parser.add_argument("--project", type=str, default=settings.project, help="Active project")
    parser.add_argument("--branch", type=str, default=settings.branch, help="Active branch")
    parser.add_argument(
        "--auto-commit",
        action=argparse.BooleanOptionalAction,
        default=settings.auto_commit,
        help="Commit immediately after store/delete operations",
    )

    # Standalone backend
    parser.add_argument(
        "--auto-start",
        action=argparse.BooleanOptionalAction,
        default=settings.auto_start,
        help="Start a local Revisium standalone when the URL is loopback and nothing answers",
    )
    parser.add_argument(
        "--standalone-auth",
        action=argparse.BooleanOptionalAction,
        default=settings.standalone_auth,
        help="Enable authentication in the auto-started standalone",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=settings.standalone_data_dir,
        help="Data directory for the auto-started standalone",
    )
    parser.add_argument(
        "--pg-port",
        type=int,
        default=settings.standalone_pg_port,
        help="Embedded PostgreSQL port for the auto-started standalone",
    )

    # Logging configuration
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    return parser.parse_args(argv)


def create_session(args: argparse.Namespace, settings: MemorySettings) -> Session:
    """Build the Session from CLI arguments and credential settings."""
    config = SessionConfig(
        url=args.url,
        username=settings.username,
        password=settings.password,
        token=settings.token,
        org=args.org,
        project=args.project,
        branch=args.branch,
        auto_commit=args.auto_commit,
    )
    logger.info(
        f"Configuration: "
        f"url={config.url}, "
        f"org={config.org}, "
        f"project={config.project}, "
        f"branch={config.branch}, "
        f"auth={config.auth_type}"
    )
    return Session(config, client=RevisiumClient(config.url, timeout=args.request_timeout))


def create_supervisor(args: argparse.Namespace) -> Optional[StandaloneSupervisor]:
    """Build a standalone supervisor if auto-start applies to this URL."""
    if not args.auto_start:
        return None

    supervisor = StandaloneSupervisor.for_url(
        args.url,
        auth=args.standalone_auth,
        data_dir=args.data_dir,
        pg_port=args.pg_port,
    )
    if supervisor is None:
        logger.info(f"{args.url} is not a local address, not managing a standalone backend")
    return supervisor


def _not_initialized() -> dict[str, Any]:
    return {"success": False, "error": "Server not initialized"}


# =============================================================================
# MCP Tool Handlers - Rows
# =============================================================================


@mcp.tool(name="memory_store")
async def memory_store_tool(
    table: str,
    id: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    """Store a fact, episode, or config entry to memory.

    Creates or updates a row in the specified table. On first use, automatically
    creates the project and tables from the agent-memory template.

    Args:
        table: Table to store in (e.g. "facts", "episodes", "config")
        id: Unique row ID - use a descriptive slug (e.g. "project-uses-nestjs")
        data: Row data matching the table schema

    Returns:
        Result dictionary with success, operation ("created" or "updated"),
        committed flag and a message
    """
    if session is None:
        return _not_initialized()

    try:
        result = await memory_store(session, table=table, row_id=id, data=data)

        if result.committed:
            hint = "(auto-committed)"
        else:
            hint = "Use memory_commit to persist changes."

        return {
            "success": True,
            "table": result.table,
            "id": result.id,
            "operation": result.operation,
            "committed": result.committed,
            "message": f'Row "{result.id}" {result.operation} in table "{result.table}". {hint}',
        }

    except Exception as e:
        logger.error(f"memory_store_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_search")
async def memory_search_tool(
    table: Optional[str] = None,
    query: Optional[str] = None,
    field: Optional[str] = None,
    value: Optional[Union[str, float, bool]] = None,
    limit: int = 20,
) -> dict[str, Any]:
    """Search memory entries by table, with optional field filter and row ID text search.

    Args:
        table: Table to search (e.g. "facts", "episodes", "config").
            If omitted, searches facts, episodes and config.
        query: Text to search for in row IDs
        field: Field name to filter by (e.g. "topic", "category")
        value: Field value to match (strings match by substring)
        limit: Maximum results to return, 1-100 (default: 20)

    Returns:
        Dictionary with success, results (table, id, data) and total
    """
    if session is None:
        return _not_initialized()

    try:
        hits = await memory_search(
            session,
            table=table,
            query=query,
            field=field,
            value=value,
            limit=limit,
        )
        return {
            "success": True,
            "results": [{"table": hit.table, "id": hit.id, "data": hit.data} for hit in hits],
            "total": len(hits),
        }

    except ValueError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"memory_search_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_recall")
async def memory_recall_tool(table: str, id: str) -> dict[str, Any]:
    """Get a specific memory entry by table and ID. Returns the full row data.

    Args:
        table: Table to read from (e.g. "facts", "episodes", "config")
        id: Row ID to retrieve
    """
    if session is None:
        return _not_initialized()

    try:
        row = await memory_recall(session, table=table, row_id=id)
        return {"success": True, **row}

    except Exception as e:
        logger.error(f"memory_recall_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_delete")
async def memory_delete_tool(table: str, id: str) -> dict[str, Any]:
    """Delete a memory entry by table and ID. Use memory_commit to persist the deletion.

    Args:
        table: Table to delete from (e.g. "facts", "episodes", "config")
        id: Row ID to delete
    """
    if session is None:
        return _not_initialized()

    try:
        result = await memory_delete(session, table=table, row_id=id)
        message = f'Row "{result.id}" deleted from table "{result.table}".'
        if result.committed:
            message += " (auto-committed)"
        else:
            message += " Use memory_commit to persist changes."

        return {"success": True, "committed": result.committed, "message": message}

    except Exception as e:
        logger.error(f"memory_delete_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_config")
async def memory_config_tool(
    action: str,
    key: Optional[str] = None,
    value: Optional[str] = None,
    description: Optional[str] = None,
) -> dict[str, Any]:
    """Get or set agent configuration stored in the "config" table.

    Args:
        action: "get" to read an entry, "set" to write one, "list" to see all entries
        key: Config key (required for get/set)
        value: Config value (required for set)
        description: Description of the config entry (optional for set)
    """
    if session is None:
        return _not_initialized()

    try:
        try:
            config_action = ConfigAction(action)
        except ValueError:
            return {
                "success": False,
                "error": f"Invalid action: {action}. "
                f"Must be one of: {[a.value for a in ConfigAction]}",
            }

        result = await memory_config(
            session,
            action=config_action,
            key=key,
            value=value,
            description=description,
        )

        if config_action is ConfigAction.LIST:
            return {"success": True, "entries": result, "total": len(result)}
        if config_action is ConfigAction.GET:
            if result is None:
                return {"success": True, "found": False, "message": f'Config key "{key}" not found.'}
            return {"success": True, "found": True, "entry": result}
        return {
            "success": True,
            "entry": result,
            "message": f'Config "{key}" set to "{value}". Use memory_commit to persist.',
        }

    except ValueError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"memory_config_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# MCP Tool Handlers - Revisions
# =============================================================================


@mcp.tool(name="memory_commit")
async def memory_commit_tool(message: Optional[str] = None) -> dict[str, Any]:
    """Commit all pending changes to create a new immutable revision.

    Like git commit - saves your current draft state.

    Args:
        message: Commit message describing what changed (optional)
    """
    if session is None:
        return _not_initialized()

    try:
        result = await memory_commit(session, message=message)
        if result is None:
            return {"success": True, "committed": False, "message": "No pending changes to commit."}

        return {
            "success": True,
            "committed": True,
            "revision_id": result.revision_id,
            "created_at": result.created_at,
            "total_changes": result.total_changes,
            "message": f"Committed revision {result.revision_id} ({result.total_changes} changes).",
        }

    except Exception as e:
        logger.error(f"memory_commit_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_diff")
async def memory_diff_tool(table: Optional[str] = None, limit: int = 20) -> dict[str, Any]:
    """Show pending (uncommitted) changes - like git diff.

    Returns a summary of table and row changes, plus row-level details.

    Args:
        table: Filter row changes to a specific table
        limit: Maximum row changes to return, 1-100 (default: 20)
    """
    if session is None:
        return _not_initialized()

    try:
        diff = await memory_diff(session, table=table, limit=limit)
        if diff is None:
            return {"success": True, "totalChanges": 0, "message": "No pending changes."}
        return {"success": True, **diff}

    except ValueError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"memory_diff_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_rollback")
async def memory_rollback_tool() -> dict[str, Any]:
    """Discard all uncommitted changes, reverting the draft to the last committed state."""
    if session is None:
        return _not_initialized()

    try:
        await memory_rollback(session)
        return {"success": True, "message": "All uncommitted changes have been reverted."}

    except Exception as e:
        logger.error(f"memory_rollback_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_history")
async def memory_history_tool(limit: int = 10) -> dict[str, Any]:
    """Show revision history for the current branch. Like git log.

    Args:
        limit: Number of revisions to show, 1-50 (default: 10)
    """
    if session is None:
        return _not_initialized()

    try:
        revisions = await memory_history(session, limit=limit)
        return {"success": True, "revisions": revisions, "total": len(revisions)}

    except ValueError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"memory_history_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_status")
async def memory_status_tool() -> dict[str, Any]:
    """Show connection status, active project/branch, and number of pending uncommitted changes."""
    if session is None:
        return _not_initialized()

    try:
        status = await memory_status(session)
        return {"success": True, **status}

    except Exception as e:
        logger.error(f"memory_status_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# MCP Tool Handlers - Projects
# =============================================================================


@mcp.tool(name="memory_projects")
async def memory_projects_tool() -> dict[str, Any]:
    """List all memory projects in the organization. Shows which project is active."""
    if session is None:
        return _not_initialized()

    try:
        projects = await memory_projects(session)
        return {"success": True, "projects": projects, "total": len(projects)}

    except Exception as e:
        logger.error(f"memory_projects_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_create_project")
async def memory_create_project_tool(
    name: str,
    template: Optional[str] = None,
    tables: Optional[dict[str, dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Create a new memory project and switch to it.

    Use "template" for a preset (agent-memory, bookmarks, contacts, expenses,
    job-search, research, tasks) or "tables" for a custom schema.

    Args:
        name: Project name (e.g. "my-agent-memory")
        template: Preset template (default: agent-memory). Ignored if "tables" is provided.
        tables: Custom table schemas. Keys are table names, values are JSON Schema
            objects with type, properties, additionalProperties, required.
    """
    if session is None:
        return _not_initialized()

    try:
        result = await memory_create_project(session, name=name, template=template, tables=tables)
        return {
            "success": True,
            "project": result.name,
            "tables": result.tables,
            "message": f'Project "{result.name}" created with {result.label} '
            f"(tables: {', '.join(result.tables)}) and set as active.",
        }

    except ValueError as e:
        return {"success": False, "error": str(e), "templates": TEMPLATE_NAMES}
    except Exception as e:
        logger.error(f"memory_create_project_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_switch_project")
async def memory_switch_project_tool(name: str) -> dict[str, Any]:
    """Switch to a different memory project. Subsequent operations will use this project.

    Args:
        name: Project name to switch to
    """
    if session is None:
        return _not_initialized()

    try:
        await memory_switch_project(session, name=name)
        config = session.get_config()
        return {
            "success": True,
            "project": config.project,
            "branch": config.branch,
            "message": f'Switched to project "{config.project}" on branch "{config.branch}".',
        }

    except Exception as e:
        logger.error(f"memory_switch_project_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# MCP Tool Handlers - Branches
# =============================================================================


@mcp.tool(name="memory_branch")
async def memory_branch_tool(name: str) -> dict[str, Any]:
    """Create a new branch from the current branch head. Like git branch.

    Args:
        name: Branch name (e.g. "experiment-v2")
    """
    if session is None:
        return _not_initialized()

    try:
        branch = await memory_branch(session, name=name)
        branch_name = branch.get("name", name)
        return {
            "success": True,
            "branch": branch_name,
            "message": f'Branch "{branch_name}" created from head revision. '
            "Use memory_switch_branch to switch to it.",
        }

    except Exception as e:
        logger.error(f"memory_branch_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_switch_branch")
async def memory_switch_branch_tool(name: str) -> dict[str, Any]:
    """Switch to a different branch. Subsequent operations will use this branch.

    Args:
        name: Branch name to switch to (e.g. "master")
    """
    if session is None:
        return _not_initialized()

    try:
        await memory_switch_branch(session, name=name)
        return {"success": True, "branch": name, "message": f'Switched to branch "{name}".'}

    except Exception as e:
        logger.error(f"memory_switch_branch_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_branches")
async def memory_branches_tool() -> dict[str, Any]:
    """List all branches in the current project. Shows which branch is active."""
    if session is None:
        return _not_initialized()

    try:
        branches = await memory_branches(session)
        return {"success": True, "branches": branches, "total": len(branches)}

    except Exception as e:
        logger.error(f"memory_branches_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# MCP Tool Handlers - Schema
# =============================================================================


@mcp.tool(name="memory_get_schema")
async def memory_get_schema_tool(table: Optional[str] = None) -> dict[str, Any]:
    """Get table schema(s) for the current project.

    Use before memory_update_schema to understand the current structure.

    Args:
        table: Table name. If omitted, returns schemas for all tables.
    """
    if session is None:
        return _not_initialized()

    try:
        schemas = await memory_get_schema(session, table=table)
        return {"success": True, "schemas": schemas}

    except Exception as e:
        logger.error(f"memory_get_schema_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool(name="memory_update_schema")
async def memory_update_schema_tool(
    action: str,
    table: str,
    schema: Optional[dict[str, Any]] = None,
    patches: Optional[list[dict[str, Any]]] = None,
    new_name: Optional[str] = None,
) -> dict[str, Any]:
    """Modify table schemas: add, update, rename or delete tables.

    Actions:
    - "add_table": Create a new table with a full JSON Schema
    - "update_table": Apply JSON Patch (RFC 6902) to an existing table schema
    - "rename_table": Rename a table
    - "delete_table": Remove a table and all its data

    Schema rules: root is {"type": "object", "additionalProperties": false,
    "required": [all field names]}; string/number/boolean fields need a
    "default"; arrays, nested objects and {"$ref": "File"} must not have one.
    Always call memory_get_schema before patching.

    Args:
        action: One of add_table, update_table, rename_table, delete_table
        table: Table name
        schema: Full table schema (for add_table)
        patches: JSON Patch operations (for update_table)
        new_name: New table name (for rename_table)
    """
    if session is None:
        return _not_initialized()

    try:
        try:
            schema_action = SchemaAction(action)
        except ValueError:
            return {
                "success": False,
                "error": f"Invalid action: {action}. "
                f"Must be one of: {[a.value for a in SchemaAction]}",
            }

        message = await memory_update_schema(
            session,
            action=schema_action,
            table=table,
            schema=schema,
            patches=patches,
            new_name=new_name,
        )
        return {"success": True, "message": message}

    except ValueError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"memory_update_schema_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# Main Entry Point
# =============================================================================


async def run_server(args: argparse.Namespace, settings: MemorySettings) -> None:
    """Bring up the backend and session, then serve MCP over stdio.

    Everything shares one event loop, so the standalone child's output
    keeps being drained while the server runs.
    """
    global session

    session = create_session(args, settings)
    supervisor = create_supervisor(args)

    try:
        if supervisor is not None:
            await supervisor.ensure_running()

        await session.load_config()
        config = session.get_config()
        logger.info(
            f"Active identity: org={config.org}, project={config.project}, branch={config.branch}"
        )

        logger.info("MCP server ready, starting stdio transport...")
        await mcp.run_stdio_async()
    finally:
        if supervisor is not None:
            await supervisor.shutdown()
        await session.close()


def main() -> None:
    """Main entry point for MCP server.

    Workflow:
    1. Load settings and parse CLI arguments
    2. Setup logging
    3. Ensure a local standalone backend is running (loopback URLs only)
    4. Restore the persisted identity
    5. Run MCP server with stdio transport

    Note:
        Uses stdio transport for MCP communication. All logging
        goes to stderr to avoid corrupting JSON-RPC messages on stdout.
    """
    settings = MemorySettings()
    args = parse_arguments(settings)

    setup_logging(args.log_level)

    logger.info("Starting Revisium memory MCP server...")
    logger.debug(f"Arguments: {json.dumps(vars(args), default=str)}")

    try:
        asyncio.run(run_server(args, settings))
    except StandaloneError as e:
        logger.error(f"Revisium standalone failed to start: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.error(f"Server failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
