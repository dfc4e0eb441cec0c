"""Local standalone backend supervision for revisium_memory."""

from revisium_memory.standalone.health import is_healthy
from revisium_memory.standalone.supervisor import StandaloneError, StandaloneSupervisor

__all__ = ["StandaloneError", "StandaloneSupervisor", "is_healthy"]
