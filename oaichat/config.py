"""Configuration file loading and merging for oaichat.

Reads TOML config from ~/.config/oaichat/config.toml (global) and
./oaichat.toml (project). Precedence: CLI > project > global > environment >
defaults. Credentials are resolved here, once, into an immutable ApiConfig;
nothing below the CLI layer looks at the environment.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .transport import DEFAULT_TIMEOUT, PROVIDERS, ApiConfig

_UNSET = object()  # Sentinel for "not set by CLI"

PROJECT_CONFIG_FILE = "oaichat.toml"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "api_key": str,
    "base_url": str,
    "api_version": str,
    "timeout": (int, float),
    "chats_dir": str,
    "config_dir": str,
    "write_req_resp": bool,
    "color": bool,
    "quiet": bool,
}

_PATH_KEYS = ("chats_dir", "config_dir")

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": None,
    "model": None,
    "api_key": None,
    "base_url": None,
    "api_version": None,
    "timeout": DEFAULT_TIMEOUT,
    "chats_dir": "chats",
    "config_dir": "data",
    "write_req_resp": False,
    "color": False,
    "no_color": False,
    "quiet": False,
}

# Environment variable names per provider: (api_key, base_url, version/model)
AZURE_ENV = ("AZURE_API_KEY", "AZURE_API_BASE", "AZURE_API_VERSION")
OAICOMPAT_ENV = ("OAICOMPAT_API_KEY", "OAICOMPAT_API_BASE", "OAICOMPAT_MODEL_NAME")


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "oaichat"
    return Path.home() / ".config" / "oaichat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "provider" in config and config["provider"] not in PROVIDERS:
        raise ConfigError(
            f"{source}: 'provider' must be one of {', '.join(PROVIDERS)}, "
            f"got {config['provider']!r}"
        )


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve relative paths against the config file's parent directory."""
    for key in _PATH_KEYS:
        if key in config:
            expanded = Path(config[key]).expanduser()
            if expanded.is_absolute():
                config[key] = str(expanded)
            else:
                config[key] = str(config_dir / config[key])


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using an environment variable.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(project_dir: Path | str = ".") -> dict:
    """Load and merge global + project config.

    Returns a flat dict containing only keys that were set in config files.
    Relative paths are resolved against each file's parent directory.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    _resolve_paths(global_config, global_path.parent)

    project_path = Path(project_dir).resolve() / PROJECT_CONFIG_FILE
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)
    _resolve_paths(project_config, project_path.parent)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    Remaining _UNSET sentinels are then replaced with hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the --color/--no-color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def resolve_api_config(args: argparse.Namespace, environ=None) -> ApiConfig:
    """Build the ApiConfig from CLI/config values, falling back to the environment.

    Provider selection when not given explicitly: Azure if all three AZURE_*
    variables are set, otherwise OpenAI-compatible.
    """
    env = os.environ if environ is None else environ
    provider = args.provider
    if provider is None:
        provider = "azure" if all(env.get(v) for v in AZURE_ENV) else "openai"

    if provider == "azure":
        key_var, base_var, version_var = AZURE_ENV
        api_key = args.api_key or env.get(key_var)
        base_url = args.base_url or env.get(base_var)
        api_version = args.api_version or env.get(version_var)
        model = args.model or ""
        if not api_version:
            raise ConfigError(f"--api-version or {version_var} required for azure")
    elif provider == "openai":
        key_var, base_var, model_var = OAICOMPAT_ENV
        api_key = args.api_key or env.get(key_var)
        base_url = args.base_url or env.get(base_var)
        api_version = args.api_version
        model = args.model or env.get(model_var, "")
    else:
        raise ConfigError(f"unknown provider {provider!r}")

    if not api_key or not base_url:
        raise ConfigError(
            f"no API credentials for provider {provider!r}: "
            f"set {key_var} and {base_var} (or --api-key / --base-url)"
        )

    return ApiConfig(
        provider=provider,
        base_url=base_url.rstrip("/"),
        api_key=api_key,
        model=model,
        api_version=api_version,
        timeout=float(args.timeout),
    )


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# oaichat configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'./oaichat.toml' if project else '~/.config/oaichat/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Endpoint ---",
        '# provider = "openai"            # "openai" (compatible) | "azure"',
        '# model = "gpt-4o-mini"',
        '# api_key = "sk-..."               # prefer env vars; this is a fallback',
        '# base_url = "https://api.example.com/v1"',
        '# api_version = "2024-06-01"       # azure only',
        "# timeout = 600",
        "",
        "# --- Storage ---",
        '# chats_dir = "chats"',
        '# config_dir = "data"              # holds empty_chat.json',
        "# write_req_resp = false           # dump last_request.json / last_response.json",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
