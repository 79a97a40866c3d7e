from typing import List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    """Process-wide configuration, resolved once at startup."""

    model_config = ConfigDict(frozen=True)

    db_url: str = "postgresql://localhost:5432"
    username: str = "postgres"
    password: str = "postgres"
    database: str = "agens"
    graphname: str = "gasnet"

    transport: Literal["rest", "stdio", "http", "sse"] = "rest"
    host: str = "127.0.0.1"
    port: int = 8080
    path: str = "/mcp/"
    allow_origins: List[str] = Field(default_factory=list)
    allowed_hosts: List[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    read_timeout: int = 30
    enable_writes: bool = True
    auth_required: bool = False
    api_keys: List[str] = Field(default_factory=list)
    max_hops: int = Field(100, ge=1, le=200)
    enrich_concurrency: int = Field(5, ge=1)

    namespace: str = ""
    token_limit: Optional[int] = None

    @property
    def connection_string(self) -> str:
        parsed = urlparse(self.db_url)
        port = parsed.port or 5432
        return f"postgresql://{self.username}:{self.password}@{parsed.hostname}:{port}/{self.database}"
