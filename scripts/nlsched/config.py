"""
Settings for the Newsletter Scheduler.

Values come from three layers, later ones winning: built-in defaults,
``config/config.yaml`` under the base directory, and a few environment
variables for deployment-specific values such as the Mailer token.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

CONFIG_FILE = Path("config") / "config.yaml"


def _deep_merge(target: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Merge ``overrides`` into ``target`` in place, section by section."""
    for key, value in overrides.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            target[key] = value


class Config:
    """Process-wide settings shared by the CLI, the daemon and the services."""

    DEFAULTS: Dict[str, Any] = {
        "paths": {
            "base_dir": None,  # filled in at load time
            "database": "db/newsletters.db",
            "logs": "logs",
        },
        "mailer": {
            "base_url": "http://localhost:8080",
            "timeout": 30,
            "layout_code": "beam_newsletter",
            "template_description": "Newsletter generated by Beam",
        },
        "content": {
            "links_color": "#1F3F83",
            "article_base_url": "https://dennikn.sk/",
            "request_timeout": 15,
        },
        "scheduler": {
            "timezone": "UTC",
            "interval_minutes": 5,
            "misfire_grace_time": 300,
            "max_workers": 1,
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file_enabled": True,
        },
    }

    # Environment variable -> dotted key
    ENV_OVERRIDES: Dict[str, str] = {
        "MAILER_BASE_URL": "mailer.base_url",
        "MAILER_API_TOKEN": "mailer.api_token",
        "NLSCHED_DATABASE": "paths.database",
    }

    _instance: Optional["Config"] = None

    def __new__(cls) -> "Config":
        """Return the shared instance, creating it on first use."""
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._loaded = False
            cls._instance = instance
        return cls._instance

    def __init__(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._base_dir = self._locate_base_dir()
        self._settings: Dict[str, Any] = {}
        self.reload()

    @staticmethod
    def _locate_base_dir() -> Path:
        """Base directory from NLSCHED_BASE_DIR, else the checkout root."""
        override = os.environ.get("NLSCHED_BASE_DIR")
        if override:
            return Path(override)
        # scripts/nlsched/config.py sits two levels below the root
        return Path(__file__).resolve().parents[2]

    def reload(self) -> None:
        """Rebuild settings from defaults, the YAML file and the environment."""
        self._settings = copy.deepcopy(self.DEFAULTS)

        config_file = self._base_dir / CONFIG_FILE
        if config_file.exists():
            with open(config_file, "r", encoding="utf-8") as f:
                _deep_merge(self._settings, yaml.safe_load(f) or {})

        for variable, key in self.ENV_OVERRIDES.items():
            value = os.environ.get(variable)
            if value:
                self.set(key, value)

        self._settings["paths"]["base_dir"] = str(self._base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def database_path(self) -> Path:
        """SQLite file; relative paths are resolved against the base directory."""
        path = Path(self._settings["paths"]["database"])
        return path if path.is_absolute() else self._base_dir / path

    @property
    def logs_dir(self) -> Path:
        return self._base_dir / self._settings["paths"]["logs"]

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a setting by dotted key, e.g. ``scheduler.interval_minutes``.

        Returns ``default`` when any part of the key is missing.
        """
        node: Any = self._settings
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a setting by dotted key, creating missing sections."""
        *sections, name = key.split(".")
        node = self._settings
        for section in sections:
            node = node.setdefault(section, {})
        node[name] = value


# Shared settings instance
config = Config()
