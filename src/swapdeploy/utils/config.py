"""Configuration loading with runtime overrides.

Settings come from a YAML file (swapdeploy.yaml in the working directory, or
the file named by $SWAPDEPLOY_CONFIG):

    device:
      serial: emulator-5554
      adb_path: adb
      command_timeout_s: 120
    cache:
      path: ~/.cache/swapdeploy/units.db
    tasks:
      max_workers: 4
    deploy:
      staging_dir: /data/local/tmp/swapdeploy
      install_options: [-r, -t]
      history_dir: ~/.cache/swapdeploy/history
    debugger:
      endpoint: localhost:8700
      agent_path: build/agent.bin
      attach_timeout_s: 10

Every key is optional. Unknown keys are ignored.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from swapdeploy.core.protocols import ConfigLoader
from swapdeploy.exceptions import ConfigError

DEFAULT_CONFIG_FILE = 'swapdeploy.yaml'
CONFIG_ENV_VAR = 'SWAPDEPLOY_CONFIG'

# (section, key) in the YAML file -> DeployConfig field
SECTIONS = {
    ('device', 'serial'): 'serial',
    ('device', 'adb_path'): 'adb_path',
    ('device', 'command_timeout_s'): 'command_timeout_s',
    ('cache', 'path'): 'cache_path',
    ('tasks', 'max_workers'): 'max_workers',
    ('deploy', 'staging_dir'): 'staging_dir',
    ('deploy', 'install_options'): 'install_options',
    ('deploy', 'history_dir'): 'history_dir',
    ('debugger', 'endpoint'): 'debugger_endpoint',
    ('debugger', 'agent_path'): 'agent_path',
    ('debugger', 'attach_timeout_s'): 'attach_timeout_s',
}

EXPANDED_PATHS = ('cache_path', 'history_dir', 'agent_path')


@dataclass
class DeployConfig:
    serial: Optional[str] = None
    adb_path: str = 'adb'
    command_timeout_s: float = 120.0
    cache_path: str = '~/.cache/swapdeploy/units.db'
    max_workers: int = 4
    staging_dir: str = '/data/local/tmp/swapdeploy'
    install_options: list = field(default_factory=lambda: ['-r', '-t'])
    history_dir: str = '~/.cache/swapdeploy/history'
    debugger_endpoint: Optional[str] = None
    agent_path: Optional[str] = None
    attach_timeout_s: float = 10.0

    @property
    def live_swap_enabled(self) -> bool:
        return bool(self.debugger_endpoint and self.agent_path)


def _check_type(name: str, value: Any) -> Any:
    """Validate value for field name, returning it normalised."""
    if name in ('serial', 'debugger_endpoint', 'agent_path'):
        if value is not None and not isinstance(value, str):
            value = str(value)  # numeric serials are common in YAML
        return value

    if name in ('adb_path', 'cache_path', 'staging_dir', 'history_dir'):
        if not isinstance(value, str) or not value:
            raise ConfigError(f"'{name}' must be a non-empty string, got {value!r}")
        return value

    if name == 'max_workers':
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"'max_workers' must be a positive integer, got {value!r}")
        return value

    if name in ('command_timeout_s', 'attach_timeout_s'):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"'{name}' must be a positive number of seconds, got {value!r}")
        return float(value)

    if name == 'install_options':
        if isinstance(value, str):
            return value.split()
        if not isinstance(value, list) or not all(isinstance(o, str) for o in value):
            raise ConfigError(f"'install_options' must be a list of strings, got {value!r}")
        return list(value)

    raise ConfigError(f"Unknown setting '{name}'")


def _resolve_path(path: Optional[str]) -> tuple[Path, bool]:
    """Return (config path, whether the user named it explicitly)."""
    if path:
        return Path(path), True
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path), True
    return Path(DEFAULT_CONFIG_FILE), False


def load_config(
    path: Optional[str] = None,
    loader: Optional[ConfigLoader] = None,
    **overrides: Any
) -> DeployConfig:
    """Load configuration and apply runtime overrides.

    Args:
        path: Config file (default: $SWAPDEPLOY_CONFIG, then ./swapdeploy.yaml)
        loader: YAML loader (default: YamlConfigLoader)
        **overrides: DeployConfig field values; None values are ignored

    Returns:
        DeployConfig with defaults for everything not set

    Raises:
        ConfigError: If an explicitly named file is missing, the YAML is
            malformed, or a value has the wrong type
    """
    if loader is None:
        from swapdeploy.core.implementations import YamlConfigLoader
        loader = YamlConfigLoader()

    config_path, explicit = _resolve_path(path)
    data: dict = {}
    if config_path.exists():
        try:
            data = loader.load_yaml(str(config_path))
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed configuration file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping")
    elif explicit:
        raise ConfigError(f"Configuration file not found: {config_path}")

    values = {}
    for (section, key), name in SECTIONS.items():
        section_data = data.get(section)
        if section_data is None:
            continue
        if not isinstance(section_data, dict):
            raise ConfigError(f"Section '{section}' in {config_path} must be a mapping")
        if key in section_data and section_data[key] is not None:
            values[name] = _check_type(name, section_data[key])

    known = {f.name for f in fields(DeployConfig)}
    for name, value in overrides.items():
        if name not in known:
            raise ValueError(f"Unknown configuration override '{name}'")
        if value is not None:
            values[name] = _check_type(name, value)

    config = DeployConfig(**values)
    for name in EXPANDED_PATHS:
        current = getattr(config, name)
        if current:
            setattr(config, name, os.path.expanduser(current))
    return config
