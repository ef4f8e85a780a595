"""User configuration: RPC endpoint and display defaults."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
RPC_URL_ENV = "SOL_RPC_URL"


class ConfigError(Exception):
    """Raised when the config file cannot be read or has invalid values."""


@dataclass(frozen=True)
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    timeout: float = 60.0
    display_limit: int = 5  # accounts printed to the console
    top: int = 5  # values printed in the frequency table


def get_config_dir() -> Path:
    """Get platform-appropriate user config directory."""
    if os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
        return Path(base) / "acctmap"
    else:  # macOS, Linux
        return Path.home() / ".config" / "acctmap"


def default_config_path() -> Path:
    return get_config_dir() / "config.yaml"


def _coerce(data: dict[str, Any], path: Path) -> dict[str, Any]:
    out: dict[str, Any] = {}
    errors: list[str] = []
    if "rpc_url" in data:
        if not isinstance(data["rpc_url"], str) or not data["rpc_url"]:
            errors.append("rpc_url must be a non-empty string")
        else:
            out["rpc_url"] = data["rpc_url"]
    if "timeout" in data:
        t = data["timeout"]
        if isinstance(t, bool) or not isinstance(t, (int, float)) or t <= 0:
            errors.append("timeout must be a positive number")
        else:
            out["timeout"] = float(t)
    for key in ("display_limit", "top"):
        if key in data:
            v = data[key]
            if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                errors.append(f"{key} must be a non-negative integer")
            else:
                out[key] = v
    unknown = sorted(set(data) - {"rpc_url", "timeout", "display_limit", "top"})
    if unknown:
        errors.append(f"unknown keys: {', '.join(unknown)}")
    if errors:
        raise ConfigError(f"{path}: " + "; ".join(errors))
    return out


def load_settings(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> Settings:
    """Build settings from defaults, then the YAML file, then the environment.

    A missing default config file is not an error; an explicitly given path
    must exist.
    """
    env = os.environ if env is None else env
    settings = Settings()

    explicit = path is not None
    cfg_path = path if path is not None else default_config_path()
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"{cfg_path}: {e}") from None
        if not isinstance(data, dict):
            raise ConfigError(f"{cfg_path}: top-level YAML must be a mapping")
        settings = replace(settings, **_coerce(data, cfg_path))
    elif explicit:
        raise ConfigError(f"config file not found: {cfg_path}")

    url = env.get(RPC_URL_ENV)
    if url:
        settings = replace(settings, rpc_url=url)
    return settings
