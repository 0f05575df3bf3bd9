from .auth import require_agent, require_role
from .logging import RequestLoggingMiddleware

__all__ = ["require_agent", "require_role", "RequestLoggingMiddleware"]
