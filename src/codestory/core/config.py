"""Application configuration using pydantic-settings."""
import shlex
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Code Story"
    app_version: str = "0.2.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 3001

    # Catalog
    stories_dir: Path = Path("stories")

    # Source tree the agent narrates when no external repo is given
    codebase_dir: Path = Path(".")

    # Agent
    agent_backend: str = "cli"  # cli | sdk
    agent_command: str = "claude"
    agent_allowed_tools: str = "Read,Grep,Glob,Write"
    agent_extra_args: list[str] = []
    agent_terminate_grace: float = 5.0
    poll_interval: float = 1.0
    stderr_excerpt_chars: int = 500

    # Authoring guidance override (plain text file)
    guidance_file: Path | None = None

    # GitHub
    github_token: str = ""
    github_clone_base: str = "https://github.com"
    github_raw_base: str = "https://raw.githubusercontent.com"
    clone_timeout: float = 60.0

    # Viewer
    viewer_timeout: float = 30.0

    @property
    def allowed_tools(self) -> list[str]:
        """Agent tool allow-list as a list."""
        return [tool.strip() for tool in self.agent_allowed_tools.split(",") if tool.strip()]

    @property
    def agent_executable(self) -> str:
        """First word of the agent command."""
        parts = shlex.split(self.agent_command)
        return parts[0] if parts else ""

    def load_guidance(self) -> str | None:
        """Read the authoring guidance override, if one is configured."""
        if self.guidance_file and self.guidance_file.exists():
            return self.guidance_file.read_text(encoding="utf-8")
        return None

    def has_github_token(self) -> bool:
        """Check if GitHub token is configured."""
        return bool(self.github_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
