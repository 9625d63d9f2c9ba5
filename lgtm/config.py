"""
Configuration for the GitHub client.
Defaults are overridden by an optional JSON file and then by LGTM_* variables.
"""

import os
import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from lgtm.errors import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "lgtm-cli" / "config.json"

# GitHub OAuth App used for the device flow
DEFAULT_CLIENT_ID = "Iv1.c76557a56c8b68ed"

ENV_OVERRIDES = {
    "LGTM_API_BASE_URL": "api_base_url",
    "LGTM_WEB_BASE_URL": "web_base_url",
    "LGTM_MAX_RETRY_COUNT": "max_retry_count",
    "LGTM_CLIENT_ID": "client_id",
}


@dataclass
class GitHubConfig:
    """GitHub endpoints and request settings."""
    api_base_url: str = "https://api.github.com"
    web_base_url: str = "https://github.com"
    max_retry_count: int = 3
    client_id: str = DEFAULT_CLIENT_ID
    scope: str = "repo"
    request_timeout: int = 30
    approval_comment: str = "LGTM 👍"

    def __post_init__(self):
        self.api_base_url = self._check_url("api_base_url", self.api_base_url)
        self.web_base_url = self._check_url("web_base_url", self.web_base_url)
        self.max_retry_count = self._check_count("max_retry_count", self.max_retry_count)
        self.request_timeout = self._check_count("request_timeout", self.request_timeout)
        if not self.client_id:
            raise ConfigError("client_id must not be empty")

    @staticmethod
    def _check_url(name: str, value: Any) -> str:
        if not isinstance(value, str) or not value.startswith(("http://", "https://")):
            raise ConfigError(f"{name} must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @staticmethod
    def _check_count(name: str, value: Any) -> int:
        if isinstance(value, bool):
            raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
        try:
            count = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
        if count < 0:
            raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
        return count

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> "GitHubConfig":
        """
        Load configuration from file and environment.

        Args:
            path: JSON config file (default: LGTM_CONFIG or ~/.config/lgtm-cli/config.json)
            environ: Environment mapping (default: os.environ)

        Returns:
            GitHubConfig instance

        Raises:
            ConfigError: If a configured value is invalid
        """
        environ = os.environ if environ is None else environ
        if path is None:
            path = Path(environ["LGTM_CONFIG"]) if environ.get("LGTM_CONFIG") else DEFAULT_CONFIG_PATH

        values: Dict[str, Any] = {}
        values.update(cls._read_file(Path(path)))

        for env_name, field_name in ENV_OVERRIDES.items():
            if environ.get(env_name):
                values[field_name] = environ[env_name]

        return cls(**values)

    @classmethod
    def _read_file(cls, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                f"Could not read configuration from {path}: {e}. "
                "Using in-memory defaults that will not be persisted."
            )
            return {}

        # accept both a flat object and the {"github": {...}} layout
        if isinstance(data, dict) and isinstance(data.get("github"), dict):
            section = dict(data["github"])
            if "approval_comment" in data:
                section["approval_comment"] = data["approval_comment"]
            data = section
        if not isinstance(data, dict):
            logger.warning(f"Ignoring configuration in {path}: expected a JSON object")
            return {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.debug(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        logger.info(f"Loaded configuration from {path}")
        return {k: v for k, v in data.items() if k in known}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
