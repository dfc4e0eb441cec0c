"""Revisium API client layer for revisium_memory."""

from revisium_memory.client.revisium import (
    BranchScope,
    OrgScope,
    ProjectScope,
    RevisionScope,
    RevisiumClient,
    RevisiumError,
    nodes,
)

__all__ = [
    "BranchScope",
    "OrgScope",
    "ProjectScope",
    "RevisionScope",
    "RevisiumClient",
    "RevisiumError",
    "nodes",
]
