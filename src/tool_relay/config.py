# config.py
# Typed settings loaded from the environment (and a .env file, if present).
# Both the agent client and the capability host read the same variables;
# the host inherits the client's environment when it is spawned.

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-sonnet-4.5"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


class Settings(BaseModel):
    # Oracle
    openrouter_api_key: str = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    base_url: str = Field(default_factory=lambda: os.getenv("TOOL_RELAY_BASE_URL", OPENROUTER_BASE_URL))
    model: str = Field(default_factory=lambda: os.getenv("TOOL_RELAY_MODEL", DEFAULT_MODEL))
    max_tokens: int = Field(default_factory=lambda: _env_int("TOOL_RELAY_MAX_TOKENS", 4096))
    max_iterations: int = Field(default_factory=lambda: _env_int("TOOL_RELAY_MAX_ITERATIONS", 10))

    # Capability host
    workspace_dir: str = Field(default_factory=lambda: os.getenv("TOOL_RELAY_WORKSPACE", "./workspace"))
    db_path: str = Field(default_factory=lambda: os.getenv("TOOL_RELAY_DB_PATH", ""))
    brave_api_key: str = Field(default_factory=lambda: os.getenv("BRAVE_API_KEY", ""))
    python_executable: str = Field(default_factory=lambda: os.getenv("TOOL_RELAY_PYTHON", sys.executable))

    # Timeouts, in seconds
    code_timeout: float = Field(default_factory=lambda: _env_float("TOOL_RELAY_CODE_TIMEOUT", 10.0))
    http_timeout: float = Field(default_factory=lambda: _env_float("TOOL_RELAY_HTTP_TIMEOUT", 15.0))
    invoke_timeout: float = Field(default_factory=lambda: _env_float("TOOL_RELAY_INVOKE_TIMEOUT", 60.0))

    @property
    def resolved_workspace_dir(self) -> Path:
        return Path(self.workspace_dir).resolve()

    @property
    def resolved_db_path(self) -> str:
        if self.db_path:
            return self.db_path
        return str(self.resolved_workspace_dir / "data.db")

    def ensure_dirs(self) -> None:
        self.resolved_workspace_dir.mkdir(parents=True, exist_ok=True)
