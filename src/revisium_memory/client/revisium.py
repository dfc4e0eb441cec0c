"""Async Revisium REST client built on httpx.

This module provides the subset of the Revisium API the memory server needs:
- Authentication (username/password login or a pre-issued token)
- Organization, project and branch resolution
- Branch and revision scopes for table, row, change and commit operations

Scopes mirror the backend's model: a BranchScope tracks the branch's head and
draft revision ids, and RevisionScope handles derived from it read through to
the current ids, so a commit made through one scope is visible to the others.
Scopes carry a disposed flag; a disposed scope refuses further calls.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class RevisiumError(Exception):
    """Error returned by the Revisium API or raised while reaching it.

    Attributes:
        status_code: HTTP status of the failed response, None for transport errors
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def nodes(page: Optional[dict[str, Any]]) -> list[dict[str, Any]]:
    """Unwrap a paginated {edges: [{node: ...}]} response into its nodes."""
    if not page:
        return []
    return [edge["node"] for edge in page.get("edges", [])]


def _segment(value: str) -> str:
    return quote(value, safe="")


def _describe_error(response: httpx.Response) -> str:
    detail: Any = response.text
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        detail = body["message"]
        if isinstance(detail, list):
            detail = "; ".join(str(item) for item in detail)
    prefix = f"{response.status_code} {response.reason_phrase}"
    return f"{prefix}: {detail}" if detail else prefix


class RevisiumClient:
    """Async HTTP client for the Revisium REST API.

    Args:
        base_url: Revisium base URL (default: "http://localhost:9222")
        timeout: Request timeout in seconds (default: 30)

    Example:
        >>> async with RevisiumClient("http://localhost:9222") as client:
        ...     await client.login("admin", "admin")
        ...     branch = await client.branch("admin", "memory", "master")
        ...     draft = branch.draft()
        ...     await draft.create_row("facts", "uses-python", {"topic": "stack"})
    """

    def __init__(self, base_url: str = "http://localhost:9222", timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token: Optional[str] = None
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RevisiumClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send one API request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path below the /api prefix, starting with "/"
            json: Request body (optional)
            params: Query parameters (optional)

        Returns:
            Decoded JSON body, or None for an empty response

        Raises:
            RevisiumError: On a non-2xx status or a transport failure
        """
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}

        try:
            response = await client.request(
                method,
                f"{self.base_url}{API_PREFIX}{path}",
                json=json,
                params=params,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RevisiumError(
                _describe_error(e.response),
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise RevisiumError(f"Revisium request failed: {e}") from e

        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # Authentication
    # =========================================================================

    async def login(self, username: str, password: str) -> None:
        """Log in with credentials and keep the issued access token."""
        data = await self.request(
            "POST",
            "/auth/login",
            json={"emailOrUsername": username, "password": password},
        )
        token = (data or {}).get("accessToken")
        if not token:
            raise RevisiumError("Login response did not include an access token")
        self._token = token
        logger.debug(f"Logged in to {self.base_url} as {username}")

    def login_with_token(self, token: str) -> None:
        """Use a pre-issued access token for subsequent requests."""
        self._token = token

    async def me(self) -> dict[str, Any]:
        """Return the authenticated user (id and, when set, username)."""
        result: dict[str, Any] = await self.request("GET", "/me")
        return result

    # =========================================================================
    # Scopes
    # =========================================================================

    def org(self, name: str) -> "OrgScope":
        return OrgScope(self, name)

    async def branch(self, org: str, project: str, branch: str) -> "BranchScope":
        """Resolve a branch and its current head/draft revision ids."""
        scope = BranchScope(self, org, project, branch)
        await scope.refresh()
        return scope

    async def revision(
        self, org: str, project: str, branch: str = "master"
    ) -> "RevisionScope":
        """Resolve the editable draft revision of a branch."""
        scope = await self.branch(org, project, branch)
        return scope.draft()


class OrgScope:
    """Operations on one organization."""

    def __init__(self, client: RevisiumClient, name: str):
        self.client = client
        self.name = name

    @property
    def path(self) -> str:
        return f"/organization/{_segment(self.name)}"

    def project(self, name: str) -> "ProjectScope":
        return ProjectScope(self.client, self.name, name)

    async def create_project(
        self, project_name: str, branch_name: str = "master"
    ) -> dict[str, Any]:
        result: dict[str, Any] = await self.client.request(
            "POST",
            f"{self.path}/projects",
            json={"projectName": project_name, "branchName": branch_name},
        )
        return result

    async def get_projects(self, first: int = 100) -> dict[str, Any]:
        result: dict[str, Any] = await self.client.request(
            "GET", f"{self.path}/projects", params={"first": first}
        )
        return result


class ProjectScope:
    """Operations on one project."""

    def __init__(self, client: RevisiumClient, org: str, name: str):
        self.client = client
        self.org = org
        self.name = name

    @property
    def path(self) -> str:
        return f"/organization/{_segment(self.org)}/projects/{_segment(self.name)}"

    async def get(self) -> dict[str, Any]:
        result: dict[str, Any] = await self.client.request("GET", self.path)
        return result

    async def delete(self) -> None:
        await self.client.request("DELETE", self.path)

    async def get_branches(self, first: int = 100) -> dict[str, Any]:
        result: dict[str, Any] = await self.client.request(
            "GET", f"{self.path}/branches", params={"first": first}
        )
        return result

    async def create_branch(self, name: str, from_revision_id: str) -> dict[str, Any]:
        """Create a branch whose history starts at from_revision_id."""
        result: dict[str, Any] = await self.client.request(
            "POST",
            f"/revision/{_segment(from_revision_id)}/child-branches",
            json={"branchName": name},
        )
        return result


class BranchScope:
    """A resolved branch, tracking its head and draft revision ids."""

    def __init__(self, client: RevisiumClient, org: str, project: str, branch_name: str):
        self.client = client
        self.org = org
        self.project = project
        self.branch_name = branch_name
        self.head_revision_id: Optional[str] = None
        self.draft_revision_id: Optional[str] = None
        self.disposed = False

    @property
    def path(self) -> str:
        return (
            f"/organization/{_segment(self.org)}/projects/{_segment(self.project)}"
            f"/branches/{_segment(self.branch_name)}"
        )

    def dispose(self) -> None:
        self.disposed = True

    def _check_disposed(self) -> None:
        if self.disposed:
            raise RevisiumError(f"Branch scope '{self.branch_name}' has been disposed")

    async def refresh(self) -> None:
        """Reload head and draft revision ids from the backend."""
        self._check_disposed()
        head = await self.client.request("GET", f"{self.path}/head-revision")
        draft = await self.client.request("GET", f"{self.path}/draft-revision")
        self.head_revision_id = head["id"]
        self.draft_revision_id = draft["id"]

    def draft(self) -> "RevisionScope":
        self._check_disposed()
        return RevisionScope(self, is_draft=True)

    def head(self) -> "RevisionScope":
        self._check_disposed()
        return RevisionScope(self, is_draft=False)

    async def get_revisions(self, first: int = 10) -> dict[str, Any]:
        self._check_disposed()
        result: dict[str, Any] = await self.client.request(
            "GET", f"{self.path}/revisions", params={"first": first}
        )
        return result

    async def commit(self, comment: Optional[str] = None) -> dict[str, Any]:
        """Commit the draft into a new head revision."""
        self._check_disposed()
        body = {"comment": comment} if comment else {}
        revision: dict[str, Any] = await self.client.request(
            "POST", f"{self.path}/create-revision", json=body
        )
        await self.refresh()
        return revision

    async def revert_changes(self) -> None:
        """Discard every uncommitted change in the draft."""
        self._check_disposed()
        await self.client.request("POST", f"{self.path}/revert-changes")
        await self.refresh()


class RevisionScope:
    """Table, row and change operations against a draft or head revision.

    The revision id is read from the owning BranchScope on every call, so a
    draft scope keeps pointing at the branch's current draft after commits.
    """

    def __init__(self, branch: BranchScope, is_draft: bool):
        self.branch = branch
        self.is_draft = is_draft
        self.disposed = False

    @property
    def revision_id(self) -> str:
        revision_id = (
            self.branch.draft_revision_id if self.is_draft else self.branch.head_revision_id
        )
        if revision_id is None:
            raise RevisiumError(f"Branch '{self.branch.branch_name}' has not been resolved")
        return revision_id

    @property
    def path(self) -> str:
        return f"/revision/{_segment(self.revision_id)}"

    def dispose(self) -> None:
        self.disposed = True

    def _check_disposed(self) -> None:
        if self.disposed:
            kind = "draft" if self.is_draft else "head"
            raise RevisiumError(f"The {kind} revision scope has been disposed")

    def _require_draft(self) -> None:
        self._check_disposed()
        if not self.is_draft:
            raise RevisiumError("The head revision is read-only; use the draft revision")

    async def _request(self, method: str, subpath: str, **kwargs: Any) -> Any:
        return await self.branch.client.request(method, f"{self.path}{subpath}", **kwargs)

    def _table_path(self, table_id: str) -> str:
        return f"/tables/{_segment(table_id)}"

    def _row_path(self, table_id: str, row_id: str) -> str:
        return f"{self._table_path(table_id)}/rows/{_segment(row_id)}"

    # Tables

    async def get_tables(self, first: int = 100) -> dict[str, Any]:
        self._check_disposed()
        return await self._request("GET", "/tables", params={"first": first})

    async def get_table_schema(self, table_id: str) -> dict[str, Any]:
        self._check_disposed()
        return await self._request("GET", f"{self._table_path(table_id)}/schema")

    async def create_table(self, table_id: str, schema: dict[str, Any]) -> dict[str, Any]:
        self._require_draft()
        return await self._request(
            "POST", "/tables", json={"tableId": table_id, "schema": schema}
        )

    async def update_table(
        self, table_id: str, patches: list[dict[str, Any]]
    ) -> dict[str, Any]:
        self._require_draft()
        return await self._request(
            "PATCH", self._table_path(table_id), json={"patches": patches}
        )

    async def rename_table(self, table_id: str, next_table_id: str) -> dict[str, Any]:
        self._require_draft()
        return await self._request(
            "PATCH",
            f"{self._table_path(table_id)}/rename",
            json={"nextTableId": next_table_id},
        )

    async def delete_table(self, table_id: str) -> None:
        self._require_draft()
        await self._request("DELETE", self._table_path(table_id))

    # Rows

    async def get_rows(
        self,
        table_id: str,
        first: int = 100,
        where: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        self._check_disposed()
        body: dict[str, Any] = {"first": first}
        if where:
            body["where"] = where
        return await self._request("POST", f"{self._table_path(table_id)}/rows", json=body)

    async def get_row(self, table_id: str, row_id: str) -> dict[str, Any]:
        self._check_disposed()
        return await self._request("GET", self._row_path(table_id, row_id))

    async def create_row(
        self, table_id: str, row_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._require_draft()
        return await self._request(
            "POST",
            f"{self._table_path(table_id)}/create-row",
            json={"rowId": row_id, "data": data},
        )

    async def update_row(
        self, table_id: str, row_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._require_draft()
        return await self._request("PUT", self._row_path(table_id, row_id), json={"data": data})

    async def delete_row(self, table_id: str, row_id: str) -> None:
        self._require_draft()
        await self._request("DELETE", self._row_path(table_id, row_id))

    # Changes

    async def get_changes(self) -> dict[str, Any]:
        """Summary of uncommitted changes (totalChanges, tablesSummary, rowsSummary)."""
        self._check_disposed()
        return await self._request("GET", "/changes")

    async def get_row_changes(
        self, first: int = 20, table_id: Optional[str] = None
    ) -> dict[str, Any]:
        self._check_disposed()
        params: dict[str, Any] = {"first": first}
        if table_id:
            params["tableId"] = table_id
        return await self._request("GET", "/row-changes", params=params)

    async def commit(self, message: Optional[str] = None) -> dict[str, Any]:
        self._require_draft()
        return await self.branch.commit(message)

    async def revert_changes(self) -> None:
        self._require_draft()
        await self.branch.revert_changes()
