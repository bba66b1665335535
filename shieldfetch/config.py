"""
Engine settings: the config.yaml shipped beside this module, with
SHIELDFETCH_* environment variables applied on top.
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Tuple

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
DEFAULT_BASE_MS = 2000
DEFAULT_SPACING_MS = 2000

# env var -> (section, key, cast)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    'SHIELDFETCH_POOL_MAX_CONNECTIONS_PER_HOST': ('pool', 'max_connections_per_host', int),
    'SHIELDFETCH_POOL_TIMEOUT_MS': ('pool', 'timeout_ms', int),
    'SHIELDFETCH_WORKERS': ('dispatcher', 'workers', int),
    'SHIELDFETCH_MAX_RETRIES': ('retry', 'max_retries', int),
    'SHIELDFETCH_LOG_LEVEL': ('logging', 'level', str.upper),
    'SHIELDFETCH_LOG_FORMAT': ('logging', 'format', str.lower),
}


class Config:
    """Settings loaded once from YAML, then overridden from the environment."""

    def __init__(self, config_path: str = None, environ: Mapping[str, str] = None):
        """
        Args:
            config_path: YAML file to read. Defaults to the config.yaml next to this module.
            environ: Source of overrides. Defaults to os.environ.
        """
        self.config_path = Path(config_path or DEFAULT_CONFIG_PATH)
        self._config = self._load(self.config_path)
        self._apply_env_overrides(os.environ if environ is None else environ)

    @staticmethod
    def _load(path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")
        return data

    def _apply_env_overrides(self, environ: Mapping[str, str]) -> None:
        for env_var, (section, key, cast) in ENV_OVERRIDES.items():
            raw = environ.get(env_var)
            if raw is None:
                continue
            try:
                value = cast(raw.strip())
            except ValueError:
                raise ValueError(f"{env_var}={raw!r} is not a valid {cast.__name__}")

            if not isinstance(self._config.get(section), dict):
                self._config[section] = {}
            self._config[section][key] = value

    def get(self, *keys, default=None):
        """Nested lookup, e.g. get('pool', 'timeout_ms'). Missing or null values give ``default``."""
        current = self._config
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current if current is not None else default

    @property
    def pool(self) -> Dict[str, Any]:
        return self.get('pool', default={})

    @property
    def retry(self) -> Dict[str, Any]:
        return self.get('retry', default={})

    def backoff_base_ms(self, cause: str) -> int:
        """Backoff base for 'network', 'extraction' or a detection type value."""
        if cause in ('network', 'extraction'):
            return int(self.get('retry', f'{cause}_base_ms', default=DEFAULT_BASE_MS))
        table = self.get('retry', 'block_base_ms', default={})
        return int(table.get(cause, table.get('default', DEFAULT_BASE_MS)))

    def platform_spacing_ms(self, platform: str) -> int:
        """Minimum gap before every retry on a platform."""
        return int(self.get('retry', 'platform_spacing_ms', platform, default=DEFAULT_SPACING_MS))


config = Config()
