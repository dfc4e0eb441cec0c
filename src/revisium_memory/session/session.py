"""Connection and scope state for the memory server.

The Session owns everything the tool handlers need to reach Revisium:
- Login (token or credentials) and organization resolution
- A single-flight "project exists" guarantee, seeding new projects from a template
- Cached branch/draft/head scopes, invalidated on project or branch switch
- Persistence of the active identity (org, project, branch)

Tool handlers borrow scopes from the session but never dispose them; disposal
happens only in switch_project/switch_branch.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from revisium_memory.client.revisium import (
    BranchScope,
    RevisionScope,
    RevisiumClient,
    RevisiumError,
)
from revisium_memory.session.persistence import (
    CONFIG_FILE,
    PersistedIdentity,
    load_identity,
    save_identity,
)
from revisium_memory.templates import DEFAULT_TEMPLATE, get_template

logger = logging.getLogger(__name__)

DEFAULT_PROJECT = "memory"
DEFAULT_BRANCH = "master"


def is_not_found_error(error: BaseException) -> bool:
    """Loose check for "project does not exist" style errors."""
    if isinstance(error, RevisiumError) and error.status_code == 404:
        return True
    message = str(error).lower()
    return "not found" in message or "does not exist" in message


def is_already_exists_error(error: BaseException) -> bool:
    """Loose check for "row already exists" style errors."""
    message = str(error).lower()
    return "already exist" in message or "duplicate" in message


@dataclass(frozen=True)
class SessionConfig:
    """Connection settings and active identity.

    Frozen: updates replace the whole object, so a reader never sees a
    half-applied switch.
    """

    url: str
    project: str = DEFAULT_PROJECT
    branch: str = DEFAULT_BRANCH
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    org: Optional[str] = None
    auto_commit: bool = False

    @property
    def auth_type(self) -> str:
        if self.token:
            return "token"
        if self.username:
            return "credentials"
        return "none"


class Session:
    """Lazily connected session against one Revisium server.

    Args:
        config: Initial SessionConfig
        client: RevisiumClient to use (default: a new client for config.url)
        config_path: Identity file location (default: ~/.revisium-memory/config.json)

    Example:
        >>> session = Session(SessionConfig(url="http://localhost:9222"))
        >>> await session.load_config()
        >>> draft = await session.get_draft()
        >>> await draft.create_row("facts", "uses-python", {"topic": "stack"})
    """

    def __init__(
        self,
        config: SessionConfig,
        client: Optional[RevisiumClient] = None,
        config_path: Path = CONFIG_FILE,
    ):
        self._config = config
        self._client = client if client is not None else RevisiumClient(config.url)
        self._config_path = config_path

        self._connected = False
        self._connect_lock = asyncio.Lock()

        self._project_ensured = False
        self._ensure_task: Optional[asyncio.Task[None]] = None

        self._branch_scope: Optional[BranchScope] = None
        self._draft_scope: Optional[RevisionScope] = None
        self._head_scope: Optional[RevisionScope] = None

    def get_config(self) -> SessionConfig:
        return self._config

    def get_client(self) -> RevisiumClient:
        return self._client

    def is_connected(self) -> bool:
        return self._connected

    @property
    def project_ensured(self) -> bool:
        return self._project_ensured

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        """Authenticate and resolve the organization, once.

        Token auth takes precedence over credentials. If no org is configured
        it is resolved from the logged-in user (username, else id). On failure
        the session stays disconnected so the next call retries.

        Raises:
            RevisiumError: If login or identity lookup fails
        """
        if self._connected:
            return

        async with self._connect_lock:
            if self._connected:
                return

            config = self._config
            if config.token:
                self._client.login_with_token(config.token)
            elif config.username and config.password:
                await self._client.login(config.username, config.password)

            if not config.org:
                me = await self._client.me()
                org = me.get("username") or me["id"]
                self._config = dataclasses.replace(self._config, org=org)
                logger.info(f"Resolved organization: {org}")

            self._connected = True
            logger.info(f"Connected to {config.url}")

    # =========================================================================
    # Project initialization
    # =========================================================================

    async def ensure_project(self, template_name: Optional[str] = None) -> None:
        """Make sure the active project exists, creating and seeding it if not.

        Concurrent callers share a single in-flight attempt, so the project
        is created at most once. A caller that is cancelled stops waiting
        without cancelling the shared attempt. A failed attempt is cleared so
        the next call can retry, and an attempt overtaken by a project switch
        is followed by one for the new project.

        Args:
            template_name: Template to seed a new project with
                (default: agent-memory)

        Raises:
            RevisiumError: For any project lookup error other than not-found,
                or if creation/seeding fails
        """
        while not self._project_ensured:
            task = self._ensure_task
            if task is None or task.done():
                task = asyncio.ensure_future(self._ensure_project(template_name))
                task.add_done_callback(self._forget_ensure_task)
                self._ensure_task = task
            await asyncio.shield(task)

    def _forget_ensure_task(self, task: "asyncio.Future[None]") -> None:
        if self._ensure_task is task:
            self._ensure_task = None

    def _is_current(self, config: SessionConfig) -> bool:
        return (self._config.org, self._config.project) == (config.org, config.project)

    async def _ensure_project(self, template_name: Optional[str]) -> None:
        await self.connect()

        config = self._config
        org = self._client.org(config.org)  # type: ignore[arg-type]

        try:
            await org.project(config.project).get()
            if self._is_current(config):
                self._project_ensured = True
            return
        except RevisiumError as e:
            if not is_not_found_error(e):
                raise

        logger.info(f"Project '{config.project}' not found, creating it")
        await org.create_project(project_name=config.project, branch_name=config.branch)

        template = get_template(template_name or DEFAULT_TEMPLATE)
        if template is not None:
            draft = await self._client.revision(
                org=config.org,  # type: ignore[arg-type]
                project=config.project,
                branch=config.branch,
            )
            for table_id, schema in template.tables.items():
                await draft.create_table(table_id, schema)
            await draft.commit(f"Initialize from template: {template.name}")
            logger.info(
                f"Seeded project '{config.project}' from template '{template.name}' "
                f"({len(template.tables)} tables)"
            )

        if self._is_current(config):
            self._project_ensured = True

    # =========================================================================
    # Scopes
    # =========================================================================

    async def get_branch_scope(self) -> BranchScope:
        """Return the cached branch scope, resolving it on first use."""
        await self.connect()
        await self.ensure_project()

        if self._branch_scope is None or self._branch_scope.disposed:
            config = self._config
            scope = await self._client.branch(
                org=config.org,  # type: ignore[arg-type]
                project=config.project,
                branch=config.branch,
            )
            # A switch while resolving makes this scope stale; hand it back
            # to the caller but keep it out of the cache.
            if self._config is not config:
                return scope
            self._branch_scope = scope
        return self._branch_scope

    async def get_draft(self) -> RevisionScope:
        """Return the cached draft scope, rebuilding it if disposed."""
        await self.connect()
        await self.ensure_project()

        if self._draft_scope is None or self._draft_scope.disposed:
            branch = await self.get_branch_scope()
            self._draft_scope = branch.draft()
        return self._draft_scope

    async def get_head(self) -> RevisionScope:
        """Return the cached head scope, rebuilding it if disposed."""
        await self.connect()
        await self.ensure_project()

        if self._head_scope is None or self._head_scope.disposed:
            branch = await self.get_branch_scope()
            self._head_scope = branch.head()
        return self._head_scope

    def switch_project(self, project: str) -> None:
        """Point the session at another project on its default branch."""
        self._dispose_scopes()
        self._config = dataclasses.replace(self._config, project=project, branch=DEFAULT_BRANCH)
        self._project_ensured = False
        self._ensure_task = None
        logger.info(f"Switched to project '{project}'")

    def switch_branch(self, branch: str) -> None:
        """Point the session at another branch of the current project."""
        self._dispose_scopes()
        self._config = dataclasses.replace(self._config, branch=branch)
        logger.info(f"Switched to branch '{branch}'")

    def _dispose_scopes(self) -> None:
        for scope in (self._draft_scope, self._head_scope, self._branch_scope):
            if scope is not None and not scope.disposed:
                scope.dispose()
        self._draft_scope = None
        self._head_scope = None
        self._branch_scope = None

    # =========================================================================
    # Persistence
    # =========================================================================

    async def save_config(self) -> None:
        """Persist org, project and branch to the identity file."""
        config = self._config
        save_identity(
            PersistedIdentity(org=config.org, project=config.project, branch=config.branch),
            self._config_path,
        )

    async def load_config(self) -> None:
        """Restore org, project and branch from the identity file, if any."""
        identity = load_identity(self._config_path)
        if identity is None:
            return

        updates = {
            name: value
            for name, value in identity.model_dump().items()
            if value
        }
        if not updates:
            return

        previous = self._config
        self._dispose_scopes()
        self._config = dataclasses.replace(previous, **updates)
        if (self._config.org, self._config.project) != (previous.org, previous.project):
            self._project_ensured = False
            self._ensure_task = None
        logger.info(f"Restored identity: {updates}")
