"""Configuration and directory layout.

Directories follow the XDG base directory convention, with SESAME_* variables
taking precedence:

    data    ~/.local/share/sesame   (SESAME_DATA_DIR, XDG_DATA_HOME)
    config  ~/.config/sesame        (SESAME_CONFIG_DIR, XDG_CONFIG_HOME)
    cache   ~/.cache/sesame         (SESAME_CACHE_DIR, XDG_CACHE_HOME)

Sources to index are read from <config>/config.jsonc, which is created with
the defaults on first use.
"""

import json
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path

from sesame.exceptions import ConfigError

APP_NAME = "sesame"
CONFIG_FILENAME = "config.jsonc"
INDEX_FILENAME = "index.sqlite"


@dataclass(slots=True)
class SessionSource:
    parser: str
    path: str


def _default_sources() -> list[SessionSource]:
    return [SessionSource(parser="pi", path="~/.pi/agent/sessions")]


@dataclass(slots=True)
class SesameConfig:
    sources: list[SessionSource] = field(default_factory=_default_sources)


@dataclass(slots=True)
class AppPaths:
    data: Path
    config: Path
    cache: Path

    @property
    def index_path(self) -> Path:
        return self.data / INDEX_FILENAME

    @property
    def config_path(self) -> Path:
        return self.config / CONFIG_FILENAME


def expand_path(path: str) -> Path:
    """Expand a leading ~/ to the home directory."""
    if path.startswith("~/"):
        return Path.home() / path[2:]
    return Path(path)


def _resolve_dir(override_var: str, xdg_var: str, default: Path) -> Path:
    override = os.environ.get(override_var)
    if override:
        return expand_path(override)
    base = os.environ.get(xdg_var)
    return (Path(base) if base else default) / APP_NAME


def get_app_paths() -> AppPaths:
    """Resolve the data, config and cache directories."""
    home = Path.home()
    posix = sys.platform.startswith("linux") or sys.platform == "darwin"

    if posix:
        data_default = home / ".local" / "share"
        config_default = home / ".config"
        if sys.platform == "darwin":
            cache_default = home / "Library" / "Caches"
        else:
            cache_default = home / ".cache"
    else:
        data_default = home / f".{APP_NAME}"
        config_default = home / f".{APP_NAME}"
        cache_default = home / f".{APP_NAME}" / "cache"

    return AppPaths(
        data=_resolve_dir("SESAME_DATA_DIR", "XDG_DATA_HOME", data_default),
        config=_resolve_dir("SESAME_CONFIG_DIR", "XDG_CONFIG_HOME", config_default),
        cache=_resolve_dir("SESAME_CACHE_DIR", "XDG_CACHE_HOME", cache_default),
    )


# Strings are matched first so comment markers inside them survive
_JSONC_TOKENS = re.compile(r'"(?:\\.|[^"\\])*"|//[^\n]*|/\*.*?\*/', re.DOTALL)


def parse_jsonc(text: str) -> object:
    """Parse JSON with // and /* */ comments."""
    cleaned = _JSONC_TOKENS.sub(
        lambda m: m.group(0) if m.group(0).startswith('"') else "", text
    )
    return json.loads(cleaned)


def _parse_config(data: object) -> SesameConfig:
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    raw_sources = data.get("sources")
    if raw_sources is None:
        return SesameConfig()
    if not isinstance(raw_sources, list):
        raise ConfigError("'sources' must be a list")

    sources: list[SessionSource] = []
    for entry in raw_sources:
        if not isinstance(entry, dict) or "parser" not in entry or "path" not in entry:
            raise ConfigError(f"Invalid source entry: {entry!r}")
        sources.append(SessionSource(parser=str(entry["parser"]), path=str(entry["path"])))
    return SesameConfig(sources=sources)


def load_config(paths: AppPaths | None = None) -> SesameConfig:
    """Load config.jsonc, writing the defaults if it does not exist."""
    if paths is None:
        paths = get_app_paths()
    config_path = paths.config_path

    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        config = SesameConfig()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(asdict(config), indent=2), encoding="utf-8")
        return config

    try:
        data = parse_jsonc(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
    return _parse_config(data)
