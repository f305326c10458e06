"""Configuration Management for CLI Settings"""

import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()


class ConfigManager:
    """Manage CLI configuration stored as YAML"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path(
            os.getenv("JOBRELAY_CONFIG_DIR", Path.home() / ".jobrelay")
        )
        self.config_file = self.config_dir / "config.yaml"

    def load_config(self) -> dict[str, Any]:
        """Load configuration from file, merged over the defaults"""
        config = self.get_default_config()
        if not self.config_file.exists():
            return config

        try:
            with open(self.config_file) as f:
                stored = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return config

        for section, values in stored.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
        return config

    def save_config(self, config: dict[str, Any]) -> None:
        """Save configuration to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get_default_config(self) -> dict[str, Any]:
        return {
            "api": {
                "base_url": os.getenv("JOBRELAY_API_URL", "http://localhost:8000"),
                "timeout": 30,
            },
            "display": {"default_limit": 20},
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'api.base_url')"""
        value: Any = self.load_config()
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        config = self.load_config()
        parts = key.split(".")

        current = config
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

        self.save_config(config)


# Global config manager instance
config = ConfigManager()
