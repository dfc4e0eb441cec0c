"""Persisted identity (org, project, branch) for the memory session."""

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".revisium-memory"
CONFIG_FILE = CONFIG_DIR / "config.json"


class PersistedIdentity(BaseModel):
    """The identity fields restored on startup and saved on switch."""

    org: Optional[str] = None
    project: Optional[str] = None
    branch: Optional[str] = None


def load_identity(path: Path = CONFIG_FILE) -> Optional[PersistedIdentity]:
    """Read the identity file.

    A missing, unreadable or malformed file means there is no prior
    identity; it is not an error.

    Returns:
        PersistedIdentity, or None if nothing usable was found
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug(f"No persisted identity at {path}: {e}")
        return None

    try:
        return PersistedIdentity.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed identity file {path}: {e}")
        return None


def save_identity(identity: PersistedIdentity, path: Path = CONFIG_FILE) -> None:
    """Write the identity file, creating its directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(identity.model_dump_json(indent=2), encoding="utf-8")
    logger.debug(f"Saved identity to {path}")
