"""
Configuration management for kforge.

Loads the cluster configuration YAML file and an optional values file whose
entries are substituted into ``${name}`` placeholders of the configuration.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from kforge.errors import ConfigError

DEFAULT_CONFIG_FILE = "kforge.yaml"
DEFAULT_VALUES_FILE = "kforge.vars.yaml"
DEFAULT_TERRAFORM_VERSION = ">=0.13,<0.14"

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.-]*)\}")


def _read_yaml(path: Path, allow_empty: bool = False) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {path}: {e}") from e

    if not data:
        if allow_empty:
            return {}
        raise ConfigError(f"Configuration file is empty: {path}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    return data


def interpolate(value: Any, variables: Dict[str, Any]) -> Any:
    """
    Substitute ``${name}`` placeholders from variables.

    A string consisting of a single placeholder is replaced by the raw value,
    so numbers, lists and mappings keep their type. Placeholders embedded in
    longer strings are replaced by the value's string form.

    Raises:
        ConfigError: If a placeholder names an unknown variable
    """
    if isinstance(value, dict):
        return {k: interpolate(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, variables) for v in value]
    if not isinstance(value, str):
        return value

    def lookup(name: str) -> Any:
        if name not in variables:
            raise ConfigError(f"Unknown variable '{name}' referenced in configuration")
        return variables[name]

    whole = _PLACEHOLDER.fullmatch(value)
    if whole:
        return lookup(whole.group(1))

    return _PLACEHOLDER.sub(lambda m: str(lookup(m.group(1))), value)


class ComponentConfig:
    """Configuration for a single cluster component."""

    def __init__(self, name: str, data: Optional[Dict[str, Any]] = None):
        self.name = name
        self.data = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __repr__(self) -> str:
        return f"ComponentConfig(name={self.name})"


class KforgeConfig:
    """Complete cluster configuration."""

    def __init__(self, config_path: Path, values_path: Optional[Path] = None):
        self.config_path = Path(config_path)

        explicit_values = values_path is not None
        if values_path is None:
            values_path = self.config_path.parent / DEFAULT_VALUES_FILE
        self.values_path = Path(values_path)

        if self.values_path.exists():
            self.values = _read_yaml(self.values_path, allow_empty=True)
        elif explicit_values:
            raise ConfigError(f"Values file not found: {self.values_path}")
        else:
            self.values = {}

        self.raw_config = interpolate(_read_yaml(self.config_path), self.values)

        cluster = self.raw_config.get("cluster") or {}
        self.platform_name: Optional[str] = cluster.get("platform")
        self.platform_config: Dict[str, Any] = cluster.get("config") or {}

        backend = self.raw_config.get("backend") or {}
        self.backend_type: Optional[str] = backend.get("type")
        self.backend_config: Dict[str, Any] = backend.get("config") or {}

        terraform = self.raw_config.get("terraform") or {}
        binary = terraform.get("binary")
        self.terraform_binary: Optional[Path] = Path(binary) if binary else None
        self.terraform_version: str = terraform.get("required_version", DEFAULT_TERRAFORM_VERSION)

        self.components: List[ComponentConfig] = []
        for entry in self.raw_config.get("components") or []:
            if isinstance(entry, str):
                self.components.append(ComponentConfig(entry))
            elif isinstance(entry, dict) and entry.get("name"):
                self.components.append(ComponentConfig(entry["name"], entry.get("config")))
            else:
                raise ConfigError(f"Invalid component entry: {entry!r}")

    def get_component(self, name: str) -> Optional[ComponentConfig]:
        """Get component configuration by name."""
        for component in self.components:
            if component.name == name:
                return component
        return None

    def component_names(self) -> List[str]:
        """Configured component names, in declaration order."""
        return [c.name for c in self.components]

    def validate(self) -> None:
        """Validate the configuration document."""
        names = self.component_names()
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate component entries: {', '.join(duplicates)}")

        if self.backend_type and not self.platform_name:
            raise ConfigError("A backend is configured but no cluster platform is set")

    def __repr__(self) -> str:
        return (
            f"KforgeConfig(platform={self.platform_name}, backend={self.backend_type}, "
            f"components={len(self.components)})"
        )


def load_config(config_path: Optional[Path] = None, values_path: Optional[Path] = None) -> KforgeConfig:
    """
    Load cluster configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to kforge.yaml in the current directory
        values_path: Path to values file. Defaults to kforge.vars.yaml beside the config

    Returns:
        KforgeConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE

    config = KforgeConfig(Path(config_path), values_path)
    config.validate()
    return config
