"""
Settings models for the Openera MCP service.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from openera_mcp.utils.secrets import get_secret


class SessionIdentity(BaseModel):
    """The (transport, name) pair identifying a cached tool-server session."""

    model_config = ConfigDict(frozen=True)

    transport: str
    name: str

    def __str__(self) -> str:
        return f"{self.transport}-{self.name}"


class MCPServerSettings(BaseModel):
    """
    Declares one MCP tool server.

    Accepts the UI's field names (``type``, ``timeout``) as well as the
    Python ones. Missing transport fields are reported when connecting,
    not here.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    transport: str = Field(
        default="stdio", validation_alias=AliasChoices("transport", "type")
    )
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("timeout_seconds", "timeout")
    )
    read_timeout_seconds: Optional[float] = None

    @property
    def identity(self) -> SessionIdentity:
        return SessionIdentity(transport=self.transport, name=self.name)


class MCPSettings(BaseModel):
    """Default tool servers, used when a turn does not name its own."""

    servers: Dict[str, MCPServerSettings] = Field(default_factory=dict)

    def server_list(self) -> List[MCPServerSettings]:
        return list(self.servers.values())

    @model_validator(mode="before")
    @classmethod
    def _fill_server_names(cls, data: Any) -> Any:
        # Server entries in YAML are keyed by name; fill the name in.
        if not isinstance(data, dict):
            return data
        servers = data.get("servers") or {}
        if isinstance(servers, dict):
            data = {**data}
            data["servers"] = {
                key: (
                    {"name": key, **value}
                    if isinstance(value, dict) and "name" not in value
                    else value
                )
                for key, value in servers.items()
            }
        return data


class ConnectionSettings(BaseModel):
    """Settings for tool-server session creation."""

    connect_timeout_seconds: float = 30.0
    # None keeps failed servers failed for the process lifetime.
    failure_cooldown_seconds: Optional[float] = None


class OpenRouterSettings(BaseModel):
    """Settings for the hosted model routing API."""

    provider: str = "openrouter"
    api_key: Optional[str] = None
    api_base: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.5-pro-preview"
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    max_steps: int = 5
    app_url: Optional[str] = None
    app_title: str = "Openera Agentic"


class EnhancementSettings(BaseModel):
    """Settings for the prompt enhancement endpoint."""

    api_key: Optional[str] = None
    model: str = "openai/gpt-4.1-nano"
    temperature: float = 0.7
    max_tokens: int = 500
    system_prompt: Optional[str] = None


class ContextSettings(BaseModel):
    """Bounds for per-turn context retrieval."""

    agent_id: str = "main"
    history_limit: int = 20
    document_limit: int = 5
    summary_turns: int = 5
    excerpt_chars: int = 100


class StoreSettings(BaseModel):
    """Settings for the conversation/document store."""

    backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    conversations_table: str = "conversations"
    documents_table: str = "documents"


class ServerSettings(BaseModel):
    """Settings for the HTTP API."""

    host: str = "127.0.0.1"
    port: int = 8000


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    level: str = "info"
    file_path: Optional[str] = None


class Settings(BaseModel):
    """Root settings object for the Openera MCP service."""

    model_config = ConfigDict(extra="allow")

    mcp: MCPSettings = Field(default_factory=MCPSettings)
    connections: ConnectionSettings = Field(default_factory=ConnectionSettings)
    openrouter: OpenRouterSettings = Field(default_factory=OpenRouterSettings)
    enhancement: EnhancementSettings = Field(default_factory=EnhancementSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "OPENERA_"

# Well-known variables and where they land in the settings tree.
_ENV_PATHS: Tuple[Tuple[str, List[str]], ...] = (
    ("OPENROUTER_API_KEY", ["openrouter", "api_key"]),
    ("OPENROUTER_API_BASE", ["openrouter", "api_base"]),
    ("OPENROUTER_MODEL", ["openrouter", "model"]),
    ("OPENROUTER_ENHANCE_API_KEY", ["enhancement", "api_key"]),
    ("SUPABASE_URL", ["store", "supabase_url"]),
    ("SUPABASE_ANON_KEY", ["store", "supabase_key"]),
    ("LOG_LEVEL", ["logging", "level"]),
    ("LOG_FILE", ["logging", "file_path"]),
)


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate the configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
            If None, look for 'openera_mcp.config.yaml' in the current directory.

    Returns:
        Settings: Validated configuration object.
    """
    if config_path is None:
        config_path = os.path.join(os.getcwd(), "openera_mcp.config.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    secrets_path = Path(config_path).with_suffix(".secrets.yaml")
    if secrets_path.exists():
        with open(secrets_path, "r") as f:
            secrets_data = yaml.safe_load(f) or {}
        _merge_dicts(config_data, secrets_data)

    # Environment variables override file settings
    env_config = _load_from_env()
    if env_config:
        _merge_dicts(config_data, env_config)

    return Settings.model_validate(config_data)


def _load_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    ``OPENERA_SECTION__KEY`` sets ``section.key``; a double underscore
    separates levels so that keys may contain single underscores.
    """
    config: Dict[str, Any] = {}

    for name, path in _ENV_PATHS:
        _set_nested_dict(config, path, get_secret(name))

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            path = [part for part in key[len(ENV_PREFIX):].lower().split("__") if part]
            if path:
                _set_nested_dict(config, path, value)

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if not isinstance(d.get(path[0]), dict):
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value
