"""Memory operations for the Revisium memory server.

Each operation takes the Session, obtains the scope it needs (draft for
writes, head for reads, branch for history) and returns plain data. Invalid
arguments raise ValueError; backend failures propagate as RevisiumError.
"""

import logging
from typing import Any, Optional, Union

from revisium_memory.client.revisium import RevisiumError, nodes
from revisium_memory.memory.types import (
    CONFIG_TABLE,
    DEFAULT_SEARCH_TABLES,
    CommitResult,
    ConfigAction,
    CreateProjectResult,
    DeleteResult,
    SchemaAction,
    SearchHit,
    StoreResult,
)
from revisium_memory.session.session import (
    DEFAULT_BRANCH,
    Session,
    is_already_exists_error,
    is_not_found_error,
)
from revisium_memory.templates import DEFAULT_TEMPLATE, TEMPLATE_NAMES, get_template

logger = logging.getLogger(__name__)

SearchValue = Union[str, int, float, bool]


def _check_limit(limit: int, maximum: int) -> None:
    if not 1 <= limit <= maximum:
        raise ValueError(f"limit must be between 1 and {maximum}, got {limit}")


async def _upsert_row(draft: Any, table: str, row_id: str, data: dict[str, Any]) -> str:
    """Create a row, falling back to update if it already exists."""
    try:
        await draft.create_row(table, row_id, data)
        return "created"
    except RevisiumError as e:
        if not is_already_exists_error(e):
            raise
    await draft.update_row(table, row_id, data)
    return "updated"


# =============================================================================
# Rows
# =============================================================================


async def memory_store(
    session: Session,
    table: str,
    row_id: str,
    data: dict[str, Any],
) -> StoreResult:
    """Create or update a row in the draft revision.

    Args:
        session: Active Session
        table: Table to write to (e.g. "facts")
        row_id: Row id, a descriptive slug
        data: Row data matching the table schema

    Returns:
        StoreResult with operation "created" or "updated"
    """
    draft = await session.get_draft()
    operation = await _upsert_row(draft, table, row_id, data)

    committed = False
    if session.get_config().auto_commit:
        await draft.commit(f"Store {table}/{row_id}")
        committed = True

    return StoreResult(table=table, id=row_id, operation=operation, committed=committed)


def build_where(
    query: Optional[str],
    field: Optional[str],
    value: Optional[SearchValue],
) -> Optional[dict[str, Any]]:
    """Build a row filter from an id substring and/or a field match.

    String values match by substring, other values by equality.
    """
    where: dict[str, Any] = {}
    if query:
        where["id"] = {"contains": query}
    if field and value is not None:
        if isinstance(value, str):
            where["data"] = {"path": field, "string_contains": value}
        else:
            where["data"] = {"path": field, "equals": value}
    return where or None


async def memory_search(
    session: Session,
    table: Optional[str] = None,
    query: Optional[str] = None,
    field: Optional[str] = None,
    value: Optional[SearchValue] = None,
    limit: int = 20,
) -> list[SearchHit]:
    """Search committed rows by id substring and/or field value.

    Without a table, searches facts, episodes and config in that order,
    asking each table only for the results still missing. Tables that
    cannot be read are skipped.

    Args:
        session: Active Session
        table: Table to search (default: facts, episodes, config)
        query: Substring to look for in row ids
        field: Field name to filter on
        value: Field value to match
        limit: Maximum number of results, 1-100 (default: 20)

    Returns:
        Matching rows, at most limit
    """
    _check_limit(limit, 100)

    head = await session.get_head()
    tables = [table] if table else list(DEFAULT_SEARCH_TABLES)
    where = build_where(query, field, value)

    results: list[SearchHit] = []
    for table_name in tables:
        remaining = limit - len(results)
        if remaining <= 0:
            break

        try:
            page = await head.get_rows(table_name, first=remaining, where=where)
        except RevisiumError as e:
            logger.debug(f"Skipping table '{table_name}' in search: {e}")
            continue

        for row in nodes(page)[:remaining]:
            results.append(SearchHit(table=table_name, id=row["id"], data=row.get("data") or {}))

    return results


async def memory_recall(session: Session, table: str, row_id: str) -> dict[str, Any]:
    """Read one committed row."""
    head = await session.get_head()
    row = await head.get_row(table, row_id)
    return {"table": table, "id": row["id"], "data": row.get("data")}


async def memory_delete(session: Session, table: str, row_id: str) -> DeleteResult:
    """Delete a row from the draft revision, auto-committing if enabled."""
    draft = await session.get_draft()
    await draft.delete_row(table, row_id)

    committed = False
    if session.get_config().auto_commit:
        await draft.commit(f"Delete {table}/{row_id}")
        committed = True

    return DeleteResult(table=table, id=row_id, committed=committed)


# =============================================================================
# Config table
# =============================================================================


async def memory_config(
    session: Session,
    action: ConfigAction,
    key: Optional[str] = None,
    value: Optional[str] = None,
    description: Optional[str] = None,
) -> Any:
    """Get, set or list entries of the config table.

    Returns:
        LIST: list of entries ({key, value, description})
        GET: the entry, or None if the key does not exist
        SET: the entry written
    """
    if action is ConfigAction.LIST:
        head = await session.get_head()
        page = await head.get_rows(CONFIG_TABLE, first=100)
        return [{"key": row["id"], **(row.get("data") or {})} for row in nodes(page)]

    if not key:
        raise ValueError('"key" is required for get/set actions')

    if action is ConfigAction.GET:
        head = await session.get_head()
        try:
            row = await head.get_row(CONFIG_TABLE, key)
        except RevisiumError as e:
            if is_not_found_error(e):
                return None
            raise
        return {"key": key, **(row.get("data") or {})}

    if value is None:
        raise ValueError('"value" is required for set action')

    draft = await session.get_draft()
    entry = {"key": key, "value": value, "description": description or ""}
    await _upsert_row(draft, CONFIG_TABLE, key, entry)
    return entry


# =============================================================================
# Revisions
# =============================================================================


async def memory_commit(session: Session, message: Optional[str] = None) -> Optional[CommitResult]:
    """Commit pending draft changes.

    Returns:
        CommitResult, or None if there was nothing to commit
    """
    draft = await session.get_draft()
    changes = await draft.get_changes()
    total = changes.get("totalChanges", 0)
    if total == 0:
        return None

    revision = await draft.commit(message)
    logger.info(f"Committed revision {revision['id']} ({total} changes)")
    return CommitResult(
        revision_id=revision["id"],
        created_at=revision.get("createdAt"),
        total_changes=total,
    )


def _format_row_change(node: dict[str, Any]) -> dict[str, Any]:
    row = node.get("row") or node.get("fromRow") or {}
    change: dict[str, Any] = {
        "changeType": node.get("changeType"),
        "table": (node.get("table") or {}).get("id"),
        "row": row.get("id"),
    }

    field_changes = node.get("fieldChanges") or []
    if field_changes:
        fields = []
        for fc in field_changes:
            entry: dict[str, Any] = {"field": fc.get("fieldPath"), "changeType": fc.get("changeType")}
            if fc.get("oldValue") is not None:
                entry["old"] = fc["oldValue"]
            if fc.get("newValue") is not None:
                entry["new"] = fc["newValue"]
            fields.append(entry)
        change["fields"] = fields

    return change


async def memory_diff(
    session: Session,
    table: Optional[str] = None,
    limit: int = 20,
) -> Optional[dict[str, Any]]:
    """Describe pending (uncommitted) changes.

    Returns:
        Summary plus row-level changes, or None if there are no changes
    """
    _check_limit(limit, 100)

    draft = await session.get_draft()
    summary = await draft.get_changes()
    if summary.get("totalChanges", 0) == 0:
        return None

    row_changes = await draft.get_row_changes(first=limit, table_id=table)
    return {
        "totalChanges": summary["totalChanges"],
        "tables": summary.get("tablesSummary"),
        "rows": summary.get("rowsSummary"),
        "changes": [_format_row_change(node) for node in nodes(row_changes)],
    }


async def memory_rollback(session: Session) -> None:
    """Discard every uncommitted change in the draft."""
    draft = await session.get_draft()
    await draft.revert_changes()


async def memory_history(session: Session, limit: int = 10) -> list[dict[str, Any]]:
    """List revisions of the active branch, newest first."""
    _check_limit(limit, 50)

    branch = await session.get_branch_scope()
    page = await branch.get_revisions(first=limit)
    return [
        {
            "id": node["id"],
            "createdAt": node.get("createdAt"),
            "comment": node.get("comment"),
            "isDraft": node.get("isDraft", False),
            "isHead": node.get("isHead", False),
        }
        for node in nodes(page)
    ]


async def memory_status(session: Session) -> dict[str, Any]:
    """Connection, identity and pending-change status.

    Backend failures while counting changes are reported in the result
    rather than raised.
    """
    config = session.get_config()
    status: dict[str, Any] = {
        "url": config.url,
        "connected": session.is_connected(),
        "org": config.org or "(will be resolved on connect)",
        "project": config.project,
        "branch": config.branch,
        "auth": config.auth_type,
        "autoCommit": config.auto_commit,
    }

    try:
        draft = await session.get_draft()
        changes = await draft.get_changes()
        status["pendingChanges"] = changes.get("totalChanges", 0)
        tables = await draft.get_tables(first=100)
        status["tables"] = [node["id"] for node in nodes(tables)]
    except RevisiumError as e:
        logger.warning(f"Could not fetch pending changes: {e}")
        status["pendingChanges"] = "unable to fetch"

    # connect() may have resolved the org meanwhile
    status["connected"] = session.is_connected()
    status["org"] = session.get_config().org or status["org"]
    return status


# =============================================================================
# Projects and branches
# =============================================================================


async def memory_projects(session: Session) -> list[dict[str, Any]]:
    """List projects of the organization, marking the active one."""
    await session.connect()
    config = session.get_config()
    page = await session.get_client().org(config.org).get_projects(first=100)  # type: ignore[arg-type]
    return [
        {
            "name": node["name"],
            "active": node["name"] == config.project,
            "createdAt": node.get("createdAt"),
        }
        for node in nodes(page)
    ]


async def memory_create_project(
    session: Session,
    name: str,
    template: Optional[str] = None,
    tables: Optional[dict[str, dict[str, Any]]] = None,
) -> CreateProjectResult:
    """Create a project, seed its tables and make it the active project.

    Custom tables take precedence over a template.

    Raises:
        ValueError: If the template name is unknown
    """
    if tables:
        schemas = tables
        label = "custom schema"
    else:
        template_name = template or DEFAULT_TEMPLATE
        found = get_template(template_name)
        if found is None:
            raise ValueError(
                f'Unknown template "{template_name}". '
                f"Available templates: {', '.join(TEMPLATE_NAMES)}"
            )
        schemas = found.tables
        label = f'template "{template_name}"'

    await session.connect()
    config = session.get_config()
    client = session.get_client()

    await client.org(config.org).create_project(  # type: ignore[arg-type]
        project_name=name, branch_name=DEFAULT_BRANCH
    )
    draft = await client.revision(org=config.org, project=name, branch=DEFAULT_BRANCH)  # type: ignore[arg-type]
    for table_id, schema in schemas.items():
        await draft.create_table(table_id, schema)
    await draft.commit(f"Initialize with {label}")

    session.switch_project(name)
    await session.save_config()

    return CreateProjectResult(name=name, label=label, tables=list(schemas))


async def memory_switch_project(session: Session, name: str) -> None:
    """Make another project active and remember the choice."""
    session.switch_project(name)
    await session.save_config()


async def memory_branch(session: Session, name: str) -> dict[str, Any]:
    """Create a branch from the active branch's head revision."""
    branch = await session.get_branch_scope()
    config = session.get_config()
    project = session.get_client().org(config.org).project(config.project)  # type: ignore[arg-type]
    return await project.create_branch(name, branch.head_revision_id)  # type: ignore[arg-type]


async def memory_switch_branch(session: Session, name: str) -> None:
    """Make another branch active and remember the choice."""
    session.switch_branch(name)
    await session.save_config()


async def memory_branches(session: Session) -> list[dict[str, Any]]:
    """List branches of the active project, marking the active one."""
    await session.connect()
    config = session.get_config()
    project = session.get_client().org(config.org).project(config.project)  # type: ignore[arg-type]
    page = await project.get_branches(first=100)
    return [
        {
            "name": node["name"],
            "active": node["name"] == config.branch,
            "isRoot": node.get("isRoot", False),
            "createdAt": node.get("createdAt"),
        }
        for node in nodes(page)
    ]


# =============================================================================
# Schema
# =============================================================================


async def memory_get_schema(session: Session, table: Optional[str] = None) -> dict[str, Any]:
    """Return one table schema, or all table schemas keyed by table id."""
    head = await session.get_head()
    if table:
        return {"table": table, "schema": await head.get_table_schema(table)}

    page = await head.get_tables(first=100)
    schemas: dict[str, Any] = {}
    for node in nodes(page):
        schemas[node["id"]] = await head.get_table_schema(node["id"])
    return schemas


async def memory_update_schema(
    session: Session,
    action: SchemaAction,
    table: str,
    schema: Optional[dict[str, Any]] = None,
    patches: Optional[list[dict[str, Any]]] = None,
    new_name: Optional[str] = None,
) -> str:
    """Apply a schema change to the draft revision.

    Returns:
        Human-readable description of the change

    Raises:
        ValueError: If the argument the action needs is missing
    """
    if action is SchemaAction.ADD_TABLE and not schema:
        raise ValueError('"schema" is required for add_table action')
    if action is SchemaAction.UPDATE_TABLE and not patches:
        raise ValueError('"patches" is required for update_table action')
    if action is SchemaAction.RENAME_TABLE and not new_name:
        raise ValueError('"new_name" is required for rename_table action')

    draft = await session.get_draft()

    if action is SchemaAction.ADD_TABLE:
        await draft.create_table(table, schema)  # type: ignore[arg-type]
        field_count = len((schema or {}).get("properties", {}))
        return f'Table "{table}" created with {field_count} fields.'

    if action is SchemaAction.UPDATE_TABLE:
        await draft.update_table(table, patches)  # type: ignore[arg-type]
        return f'Table "{table}" schema updated ({len(patches or [])} patch operations applied).'

    if action is SchemaAction.RENAME_TABLE:
        await draft.rename_table(table, new_name)  # type: ignore[arg-type]
        return f'Table "{table}" renamed to "{new_name}".'

    await draft.delete_table(table)
    return f'Table "{table}" deleted.'
