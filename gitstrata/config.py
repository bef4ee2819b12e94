"""
Configuration file support and option resolution.

Values resolve with precedence: CLI > config file > range preset > defaults.
"""

import json
import logging
import os
from datetime import date, timedelta
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

CONFIG_NAMES = (
    ".git-strata.yaml",
    ".git-strata.yml",
    ".git-strata.json",
)

# Lookback in days; None means the whole history.
DATE_PRESETS = {
    "30d": 30,
    "90d": 90,
    "6mo": 182,
    "1yr": 365,
    "all": None,
}
DEFAULT_PRESET = "6mo"
EPOCH = date(1970, 1, 1)

DEFAULTS = {
    "source_backend": "native",
    "store_backend": "sqlite",
    "batch_size": 500,
    "half_life_days": 30.0,
    "min_count": 1,
    "limit": 100,
    "exclude": (),
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration must be a mapping: {config_path}")
    return data


def find_config_file(repo_path: Optional[str]) -> Optional[str]:
    """
    Auto-discover a configuration file in the repository or current directory.
    Searches for: .git-strata.yaml, .git-strata.yml, .git-strata.json
    """
    search_paths = [p for p in (repo_path, os.getcwd()) if p]

    for search_dir in search_paths:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path

    return None


def preset_date_range(name: str, today: Optional[date] = None) -> Tuple[str, str]:
    """
    ISO (from, to) for a named lookback. The upper bound is tomorrow so that
    commits made today fall inside the half-open range.
    """
    if name not in DATE_PRESETS:
        raise ValueError(
            f"Unknown range preset {name!r} (choose from {', '.join(DATE_PRESETS)})"
        )
    today = today or date.today()
    days = DATE_PRESETS[name]
    start = EPOCH if days is None else today - timedelta(days=days)
    return start.isoformat(), (today + timedelta(days=1)).isoformat()


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        range_preset: Optional[str],
        repo_path: Optional[str],
        today: Optional[date] = None,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None and v != ()}
        self.config: Dict[str, Any] = {}
        self.config_source: Optional[str] = None

        if config_path:
            self.config = load_config_file(config_path)
            self.config_source = config_path
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                self.config = load_config_file(auto_path)
                self.config_source = auto_path
                logger.info("Auto-discovered configuration: %s", auto_path)

        # Normalize config keys (kebab-case to snake_case)
        self.config = {str(k).replace("-", "_"): v for k, v in self.config.items()}

        # CLI preset overrides config preset
        self.range_preset = range_preset or self.config.get("range") or DEFAULT_PRESET
        self.preset = self._get_preset(self.range_preset, today)

    def _get_preset(self, name: str, today: Optional[date]) -> Dict[str, Any]:
        start, end = preset_date_range(name, today)
        return {"from": start, "to": end}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        if key in DEFAULTS:
            return DEFAULTS[key]
        return default

    def date_range(self) -> Tuple[str, str]:
        """
        (from, to) as ISO strings. An explicit --from/--to wins; a --range
        given on the command line beats bounds from the config file.
        """
        bounds = []
        for key in ("from", "to"):
            if key in self.cli:
                value = self.cli[key]
            elif "range" in self.cli:
                value = self.preset[key]
            else:
                value = self.get(key)
            bounds.append(str(value))
        return bounds[0], bounds[1]

    def exclude_globs(self) -> Tuple[str, ...]:
        value = self.get("exclude", ())
        if isinstance(value, str):
            return (value,)
        return tuple(value)
