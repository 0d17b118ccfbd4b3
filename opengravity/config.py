"""Configuration management for Opengravity."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.opengravity/config.yaml").expanduser()
LOCAL_CONFIG_DIRNAME = ".opengravity"
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model provider configuration."""

    provider: str = "deepseek"
    model: str = ""
    api_key: str = ""
    base_url: str = ""
    temperature: float | None = None
    max_tokens: int = 8000
    timeout: float = 120.0


class AgentConfig(BaseModel):
    """Agent loop limits."""

    max_tool_rounds: int = 25


class ToolsConfig(BaseModel):
    """Built-in tool and approval configuration."""

    builtin_enabled: list[str] = [
        "read_file",
        "write_file",
        "run_command",
    ]
    auto_approve: list[str] = []
    command_timeout: int = 60


class McpConfigSection(BaseModel):
    """External tool server discovery."""

    config_path: str = ".opengravity/mcp_config.json"


class SessionConfig(BaseModel):
    """Session persistence configuration."""

    path: str = ".opengravity/session.json"
    archive_dir: str = "reviews"
    auto_save: bool = True


class WorkspaceConfig(BaseModel):
    """Workspace root configuration."""

    path: str = "."


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Opengravity."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    mcp: McpConfigSection = Field(default_factory=McpConfigSection)
    session: SessionConfig = Field(default_factory=SessionConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="OPENGRAVITY_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_DIRNAME / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; environment variables override YAML values."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()

    def resolve_in_workspace(self, raw: str, workspace: Path) -> Path:
        """Resolve a configured path relative to the workspace root."""
        path = Path(raw).expanduser()
        if path.is_absolute():
            return path
        return (workspace / path).resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
