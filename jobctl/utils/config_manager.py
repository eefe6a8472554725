"""YAML-backed settings for the jobctl CLI"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()

CONFIG_DIR_ENV = "HAOS_JOBS_CONFIG_DIR"
API_URL_ENV = "HAOS_JOBS_API_URL"

DEFAULTS: dict[str, Any] = {
    "api": {"base_url": "http://localhost:8000", "timeout": 30},
    "display": {"jobs_per_page": 20},
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` onto ``base`` section by section."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class ConfigManager:
    """Dot-addressed CLI settings stored in ``<config_dir>/config.yaml``.

    Keys missing from the file fall back to ``DEFAULTS``; an unreadable file
    is reported and ignored rather than breaking every command.
    """

    def __init__(self, config_dir: Path | None = None):
        if config_dir is None:
            config_dir = Path(
                os.getenv(CONFIG_DIR_ENV) or Path.home() / ".haos-jobs"
            )
        self.config_dir = config_dir
        self.config_file = config_dir / "config.yaml"

    def ensure_config_dir(self):
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def get_default_config(self) -> dict[str, Any]:
        defaults = copy.deepcopy(DEFAULTS)
        if url := os.getenv(API_URL_ENV):
            defaults["api"]["base_url"] = url
        return defaults

    def _read_file(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            loaded = yaml.safe_load(self.config_file.read_text())
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return {}
        return loaded if isinstance(loaded, dict) else {}

    def load_config(self) -> dict[str, Any]:
        """Defaults overlaid with whatever the config file sets"""
        return _merge(self.get_default_config(), self._read_file())

    def save_config(self, config: dict[str, Any]):
        self.ensure_config_dir()
        self.config_file.write_text(yaml.safe_dump(config, default_flow_style=False))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a value by dotted key, e.g. ``api.base_url``"""
        node: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any):
        """Store a value by dotted key, creating sections as needed"""
        *sections, leaf = key.split(".")
        config = self.load_config()
        node = config
        for part in sections:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = value
        self.save_config(config)

    def reset(self):
        self.save_config(self.get_default_config())


# Shared by every command module
config = ConfigManager()
