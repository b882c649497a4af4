"""
Pooldoc configuration.

Values come from three layers, later layers winning:

    1. _DEFAULTS below (the pipeline runs with no settings file at all)
    2. config/settings.toml, or the file named by POOLDOC_CONFIG
    3. POOLDOC_* environment variables

Only the application layer (CLI, self-test) calls get_config(). Pipeline
components take plain values in their constructors.

    config = get_config()
    config.documents.output_dir
    config.transfer.max_attempts
    config.reload()   # -> {"transfer.max_attempts": {"old": 3, "new": 5}}
"""

import copy
import logging
import os
import threading
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("pooldoc.config")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.toml"


# ---------------------------------------------------------------------------
# Defaults and environment mapping
# ---------------------------------------------------------------------------

_DEFAULTS: dict[str, dict[str, Any]] = {
    "documents": {
        "output_dir": "data/documents",
        "cache_dir": "data/cache",
        "logo_path": "assets/logo.png",
        "retention_days": 7,
    },
    "transfer": {
        "api_url": "http://localhost:3000/api",
        "token": "",
        "max_attempts": 3,
        "initial_delay_ms": 1000,
        "timeout_seconds": 30.0,
        "min_size_bytes": 1000,
        "history_size": 50,
    },
    "share": {
        "cleanup_delay_seconds": 10.0,
        "dialog_title": "Compartir Reporte",
    },
    "logging": {
        "level": "info",
    },
}

# env var -> (section, key, cast)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "POOLDOC_OUTPUT_DIR":            ("documents", "output_dir", str),
    "POOLDOC_CACHE_DIR":             ("documents", "cache_dir", str),
    "POOLDOC_LOGO_PATH":             ("documents", "logo_path", str),
    "POOLDOC_RETENTION_DAYS":        ("documents", "retention_days", int),
    "POOLDOC_API_URL":               ("transfer", "api_url", str),
    "POOLDOC_TOKEN":                 ("transfer", "token", str),
    "POOLDOC_MAX_ATTEMPTS":          ("transfer", "max_attempts", int),
    "POOLDOC_INITIAL_DELAY_MS":      ("transfer", "initial_delay_ms", int),
    "POOLDOC_TIMEOUT_SECONDS":       ("transfer", "timeout_seconds", float),
    "POOLDOC_CLEANUP_DELAY_SECONDS": ("share", "cleanup_delay_seconds", float),
    "POOLDOC_LOG_LEVEL":             ("logging", "level", str),
}

_SECRET_KEYS = {"token"}


# ---------------------------------------------------------------------------
# Section access
# ---------------------------------------------------------------------------

class ConfigSection:
    """Read-only attribute view over one settings table."""

    __slots__ = ("_values",)

    def __init__(self, values: dict[str, Any]):
        object.__setattr__(self, "_values", values)

    def __getattr__(self, name: str) -> Any:
        values = object.__getattribute__(self, "_values")
        if name not in values:
            raise AttributeError(f"Unknown setting '{name}' (have: {', '.join(values)})")
        value = values[name]
        return ConfigSection(value) if isinstance(value, dict) else value

    def __repr__(self) -> str:
        return f"ConfigSection({self._values!r})"

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._values)


class PooldocConfig:
    """Layered settings with section access: config.transfer.max_attempts."""

    def __init__(self, config_path: str | Path | None = None):
        if config_path is None:
            config_path = os.environ.get("POOLDOC_CONFIG") or DEFAULT_CONFIG_PATH
        self.path = Path(config_path)
        self.last_loaded = ""
        self._lock = threading.Lock()
        self._sections: dict[str, dict[str, Any]] = self._build()

    # -- loading -----------------------------------------------------------

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            logger.warning("No settings file at %s, running on defaults", self.path)
            return {}
        try:
            with self.path.open("rb") as fh:
                parsed = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Could not parse %s (%s), running on defaults", self.path, exc)
            return {}
        logger.info("Settings loaded from %s", self.path)
        return parsed

    def _build(self) -> dict[str, dict[str, Any]]:
        sections = copy.deepcopy(_DEFAULTS)

        for name, table in self._read_file().items():
            if isinstance(table, dict):
                sections.setdefault(name, {}).update(table)
            else:
                logger.warning("Ignoring top-level setting %r, expected a table", name)

        for env_var, (section, key, cast) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            try:
                sections[section][key] = cast(raw)
            except ValueError:
                logger.warning("Ignoring %s=%r: not a valid %s", env_var, raw, cast.__name__)
                continue
            logger.info("%s overrides %s.%s = %s", env_var, section, key,
                        "[set]" if key in _SECRET_KEYS else raw)

        self.last_loaded = datetime.now(timezone.utc).isoformat()
        return sections

    def reload(self) -> dict[str, dict[str, Any]]:
        """Re-read every layer and report what changed, keyed "section.key"."""
        with self._lock:
            before = self._sections
            self._sections = self._build()
            changes = {}
            for section in before.keys() | self._sections.keys():
                old_table = before.get(section, {})
                new_table = self._sections.get(section, {})
                for key in old_table.keys() | new_table.keys():
                    old, new = old_table.get(key), new_table.get(key)
                    if old != new:
                        changes[f"{section}.{key}"] = {"old": old, "new": new}
        logger.info("Settings reloaded (%d change(s))", len(changes))
        return changes

    # -- access ------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        sections = self.__dict__.get("_sections")
        if sections is None or name not in sections:
            raise AttributeError(f"Unknown settings section '{name}'")
        return ConfigSection(sections[name])

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._sections)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_instance: PooldocConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> PooldocConfig:
    """Shared PooldocConfig; config_path only matters on the first call."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = PooldocConfig(config_path)
        return _instance
