"""
HTTP surface for LinkStore.

- create_app: FastAPI application factory
- ApiSettings: pydantic settings for the HTTP layer
"""

from .app import create_app
from .settings import ApiSettings

__all__ = [
    "create_app",
    "ApiSettings",
]
