"""
Engine configuration.

Silo keeps its runtime data (rule database, settings) under a single data
root. Resolution order:

1) ``SILO_DATA_ROOT`` if set
2) ``XDG_DATA_HOME/silo`` if set
3) ``%LOCALAPPDATA%\\silo`` then ``%APPDATA%\\silo``
4) ``~/.local/share/silo``
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

from .errors import SettingsError
from .matching.pattern_matcher import MatcherOptions

log = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
STORE_FILENAME = "silo.sqlite"


def default_data_root() -> Path:
    """Resolve the default Silo data root from the environment."""
    explicit = os.environ.get("SILO_DATA_ROOT")
    if explicit:
        return Path(explicit).expanduser()

    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "silo"

    for var in ("LOCALAPPDATA", "APPDATA"):
        value = os.environ.get(var)
        if value:
            return Path(value) / "silo"

    try:
        home = Path.home()
    except RuntimeError as exc:
        raise SettingsError("Cannot determine a data root: no home directory.") from exc
    return home / ".local" / "share" / "silo"


def resolve_data_root(data_root: Path | None) -> Path:
    """Return ``data_root`` or the default when it is None."""
    return default_data_root() if data_root is None else data_root


def store_db_path(data_root: Path | None = None) -> Path:
    """Return the rule database path under the data root."""
    return resolve_data_root(data_root) / STORE_FILENAME


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """
    Persisted engine tunables.

    Attributes
    ----------
    regex_time_budget_ms:
        Budget for a single regex evaluation, in milliseconds.
    max_regex_length:
        Longest accepted regex pattern.
    default_priority:
        Priority given to rules created without one.
    bookmark_param:
        Query parameter carrying a bookmark's container association.
    """

    regex_time_budget_ms: float = 50.0
    max_regex_length: int = 1024
    default_priority: int = 1
    bookmark_param: str = "silo"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EngineSettings":
        """Build settings from a mapping, keeping defaults for invalid values."""
        defaults = cls()

        budget = payload.get("regex_time_budget_ms", defaults.regex_time_budget_ms)
        if isinstance(budget, bool) or not isinstance(budget, (int, float)) or budget <= 0:
            budget = defaults.regex_time_budget_ms

        max_len = payload.get("max_regex_length", defaults.max_regex_length)
        if isinstance(max_len, bool) or not isinstance(max_len, int) or max_len <= 0:
            max_len = defaults.max_regex_length

        priority = payload.get("default_priority", defaults.default_priority)
        if isinstance(priority, bool) or not isinstance(priority, int):
            priority = defaults.default_priority

        param = payload.get("bookmark_param", defaults.bookmark_param)
        if not isinstance(param, str) or not param.strip():
            param = defaults.bookmark_param

        return cls(
            regex_time_budget_ms=float(budget),
            max_regex_length=max_len,
            default_priority=priority,
            bookmark_param=param.strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a JSON-serializable dict."""
        return asdict(self)

    def matcher_options(self) -> MatcherOptions:
        """Return matcher options derived from these settings."""
        return MatcherOptions(
            time_budget=self.regex_time_budget_ms / 1000.0,
            max_regex_length=self.max_regex_length,
        )


def _settings_path(data_root: Path | None) -> Path:
    return resolve_data_root(data_root) / SETTINGS_FILENAME


def load_settings(*, data_root: Path | None = None) -> EngineSettings:
    """
    Load engine settings from disk.

    Returns
    -------
    EngineSettings
        Loaded settings, or defaults if the file is missing or unreadable.
    """
    path = _settings_path(data_root)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EngineSettings()
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings()

    if not isinstance(payload, dict):
        log.warning("Ignoring settings file %s: expected a JSON object", path)
        return EngineSettings()
    return EngineSettings.from_dict(payload)


def save_settings(*, data_root: Path | None = None, settings: EngineSettings) -> Path:
    """Save engine settings to disk and return the file path."""
    path = _settings_path(data_root)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(settings.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    except OSError as exc:
        raise SettingsError(f"Failed to write settings: {path} ({exc!s})") from exc
    return path
