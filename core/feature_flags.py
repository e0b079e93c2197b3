"""
Dynamic Feature Flags for the provisioning control plane

Supports multiple configuration sources with priority:
1. Environment variables (highest priority) - FF_<FLAG_NAME>=true
2. Config file (config/feature_flags.yaml)
3. Defaults (lowest priority)

Usage:
    from core.feature_flags import is_enabled, flags

    if is_enabled("tenant_provisioning"):
        ...

    # Get all flags for debugging
    print(flags.all_flags())

    # Force refresh (after config file change)
    flags.refresh()
"""

import os
from typing import Dict, Optional
from dataclasses import dataclass, field
from pathlib import Path
import logging

import yaml

logger = logging.getLogger(__name__)

_TRUTHY = ('true', '1', 'yes', 'on')


@dataclass
class FeatureFlags:
    """
    Dynamic feature flags with multiple sources.

    Priority order:
    1. Environment variables (FF_<FLAG_NAME>=true/false)
    2. Config file (config/feature_flags.yaml)
    3. Default values

    Thread-safe for reads, refresh() should be called sparingly.
    """

    _defaults: Dict[str, bool] = field(default_factory=lambda: {
        # Super-admin tenant lifecycle API
        "tenant_provisioning": True,

        # Observability
        "structured_logging": True,
    })

    _config_path: Optional[Path] = None
    _cache: Dict[str, bool] = field(default_factory=dict)
    _loaded: bool = False

    def __post_init__(self):
        """Initialize config path relative to project root"""
        if self._config_path is None:
            self._config_path = Path(__file__).parent.parent / "config" / "feature_flags.yaml"

    def _load_config_file(self) -> Dict[str, bool]:
        """Load flags from YAML config file"""
        if self._config_path is None or not self._config_path.exists():
            return {}

        try:
            with open(self._config_path) as f:
                config = yaml.safe_load(f) or {}
            return config.get("feature_flags", {}) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load feature flags config: {e}")
            return {}

    def _refresh_cache(self):
        """Rebuild cache from all sources"""
        file_flags = self._load_config_file()

        for flag_name, default_value in self._defaults.items():
            # Priority: env var > config file > default
            env_key = f"FF_{flag_name.upper()}"

            if env_key in os.environ:
                self._cache[flag_name] = os.environ[env_key].lower() in _TRUTHY
            elif flag_name in file_flags:
                self._cache[flag_name] = bool(file_flags[flag_name])
            else:
                self._cache[flag_name] = default_value

        self._loaded = True
        logger.debug(f"Feature flags loaded: {self._cache}")

    def is_enabled(self, flag_name: str) -> bool:
        """
        Check if a feature flag is enabled.

        Unknown flags are reported and treated as disabled.
        """
        if not self._loaded:
            self._refresh_cache()

        if flag_name not in self._cache:
            logger.warning(f"Unknown feature flag: {flag_name}")
            return False

        return self._cache.get(flag_name, False)

    def refresh(self):
        """
        Force refresh of all flags.

        Call this after modifying the config file at runtime,
        or to pick up environment variable changes.
        """
        self._loaded = False
        self._refresh_cache()

    def all_flags(self) -> Dict[str, bool]:
        """Get all flag values."""
        if not self._loaded:
            self._refresh_cache()
        return dict(self._cache)

    def get_flag_info(self) -> Dict[str, Dict]:
        """
        Get detailed info about each flag including source.

        Returns:
            Dict with flag details including value and source
        """
        if not self._loaded:
            self._refresh_cache()

        file_flags = self._load_config_file()
        result = {}

        for flag_name, value in self._cache.items():
            env_key = f"FF_{flag_name.upper()}"

            if env_key in os.environ:
                source = "environment"
            elif flag_name in file_flags:
                source = "config_file"
            else:
                source = "default"

            result[flag_name] = {
                "enabled": value,
                "source": source,
                "default": self._defaults.get(flag_name, False),
            }

        return result


# Singleton instance
flags = FeatureFlags()


def is_enabled(flag_name: str) -> bool:
    """Convenience function to check if a feature flag is enabled."""
    return flags.is_enabled(flag_name)


def get_all_flags() -> Dict[str, bool]:
    """Get all feature flag values"""
    return flags.all_flags()


def refresh_flags():
    """Force refresh all feature flags from sources"""
    flags.refresh()
