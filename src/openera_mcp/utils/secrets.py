"""
Secret management utilities for the Openera MCP service.

API keys are read from environment variables. For local development they can
also live in a .env file, which is loaded on import.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Paths to check for .env files, in order of precedence
ENV_PATHS = [
    Path.cwd() / ".env",
    Path.cwd() / ".secrets.env",
    Path.home() / ".openera_mcp" / ".env",
]


def load_env_files() -> Optional[Path]:
    """
    Load the first .env file found in ENV_PATHS.

    Variables already present in the environment are not overridden.

    Returns:
        The path that was loaded, or None.
    """
    for env_path in ENV_PATHS:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            return env_path
    return None


load_env_files()


def get_secret(key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret from environment variables with fallback.

    Args:
        key: The environment variable name containing the secret
        default: Default value if the secret is not found

    Returns:
        The secret value or default if not found
    """
    return os.environ.get(key, default)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Render a secret for log output, keeping only its last characters."""
    if not value:
        return "<unset>"
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
