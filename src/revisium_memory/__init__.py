"""Revisium memory - versioned long-term memory for AI agents over MCP.

This package provides an MCP server that stores agent memory in Revisium, a
versioned database with branches, drafts and commits.

Main components:
- session: Connection, single-flight project setup and scope caching
- standalone: Supervision of a local Revisium standalone backend
- client: Async Revisium REST client
- memory.operations: Operations behind each MCP tool
- config: Pydantic Settings for configuration management

Usage:
    # Run as MCP server
    python -m revisium_memory

    # Or use the CLI
    revisium-memory --help
"""

__all__ = ["main"]
__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the Revisium memory MCP server."""
    from revisium_memory.__main__ import main as _main
    _main()
