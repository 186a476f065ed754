"""inbox-auth: Google sign-in and credential lifecycle for desktop clients."""

from inbox_auth.config import AuthSettings
from inbox_auth.context import AppContext, create_app_context

__version__ = "0.1.0"

__all__ = ["AuthSettings", "AppContext", "create_app_context", "__version__"]
