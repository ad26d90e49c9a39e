"""Node-graph compiler front end.

Provides compile sessions owning a node type registry, logging setup, and
the developer CLI.
"""

from .session import CompileSession, SessionError

__version__ = "0.1.0"
__all__ = ["CompileSession", "SessionError"]
