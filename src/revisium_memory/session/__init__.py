"""Session layer for revisium_memory."""

from revisium_memory.session.persistence import (
    CONFIG_FILE,
    PersistedIdentity,
    load_identity,
    save_identity,
)
from revisium_memory.session.session import (
    DEFAULT_BRANCH,
    DEFAULT_PROJECT,
    Session,
    SessionConfig,
    is_already_exists_error,
    is_not_found_error,
)

__all__ = [
    "CONFIG_FILE",
    "DEFAULT_BRANCH",
    "DEFAULT_PROJECT",
    "PersistedIdentity",
    "Session",
    "SessionConfig",
    "is_already_exists_error",
    "is_not_found_error",
    "load_identity",
    "save_identity",
]
