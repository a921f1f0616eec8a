"""REST API for the sales workflow orchestrator."""

from .endpoints import router, init_dependencies

__all__ = ["router", "init_dependencies"]
