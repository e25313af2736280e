"""
Configuration for the LinkStore HTTP surface.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """HTTP surface configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8090)

    # Prefix of every persistence route
    api_prefix: str = Field(default="/api/v1")

    # Response header carrying the total before pagination
    total_count_header: str = Field(default="X-Total-Count")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:4200", "http://localhost:5173"],
    )

    model_config = {"env_prefix": "LINKSTORE_API_"}
