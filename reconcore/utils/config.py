#!/usr/bin/env python3
"""
ReconCore - Configuration Management Module
Copyright (C) 2026  Dorin Badea
GPLv3 License

Persistent scan defaults (~/.reconcore/config.json), RECONCORE_* environment
overrides and dry-run detection.
"""

import copy
import json
import logging
import os
import stat

try:
    import pwd  # Unix-only
except ImportError:  # pragma: no cover
    pwd = None
from typing import Any, Dict, Mapping, Optional, Tuple

from reconcore.utils.constants import VERSION

CONFIG_VERSION = VERSION
CONFIG_DIRNAME = ".reconcore"

ENV_DRY_RUN = "RECONCORE_DRY_RUN"

# Environment variable -> scan setting(s)
ENV_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "RECONCORE_WORKERS": ("workers",),
    "RECONCORE_TIMEOUT": ("connect_timeout", "udp_timeout", "icmp_timeout"),
    "RECONCORE_BANNER_TIMEOUT": ("banner_timeout",),
    "RECONCORE_PAYLOAD_FILE": ("payload_file",),
    "RECONCORE_NMAP_PATH": ("nmap_path",),
    "RECONCORE_NMAP_ARGS": ("nmap_extra_args",),
}

_TRUTHY = {"1", "true", "yes", "y", "on"}

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": CONFIG_VERSION,
    # Persisted scan defaults; None means "use the built-in default"
    "scan": {
        "workers": None,
        "connect_timeout": None,
        "banner_timeout": None,
        "banner_size": None,
        "udp_timeout": None,
        "icmp_timeout": None,
        "banner_nudge": None,
        "payload_file": None,
        "nmap_path": None,
        "nmap_timeout": None,
        "nmap_extra_args": None,
    },
}

logger = logging.getLogger(__name__)


def is_dry_run(dry_run: Optional[bool] = None) -> bool:
    """
    Determine whether dry-run mode is enabled.

    An explicit argument wins; otherwise RECONCORE_DRY_RUN is consulted.
    """
    if dry_run is not None:
        return bool(dry_run)
    return os.environ.get(ENV_DRY_RUN, "").strip().lower() in _TRUTHY


def _resolve_config_owner() -> Optional[Tuple[int, int]]:
    """(uid, gid) of the invoking user when running under sudo."""
    try:
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            sudo_user = os.environ.get("SUDO_USER")
            if sudo_user and pwd is not None:
                pw = pwd.getpwnam(sudo_user)
                return pw.pw_uid, pw.pw_gid
    except (KeyError, OSError):
        logger.debug("Failed to resolve config owner", exc_info=True)
    return None


def get_config_paths() -> Tuple[str, str]:
    """
    Get the config directory and file path.

    Under sudo the invoking user's home is used, so a privileged ICMP scan
    reads the same defaults as an unprivileged one.
    """
    home_dir = os.path.expanduser("~")
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        sudo_user = os.environ.get("SUDO_USER")
        if sudo_user:
            home_dir = os.path.expanduser(f"~{sudo_user}")
    config_dir = os.path.join(home_dir, CONFIG_DIRNAME)
    return config_dir, os.path.join(config_dir, "config.json")


def _maybe_chown(path: str) -> None:
    owner = _resolve_config_owner()
    if not owner:
        return
    try:
        os.chown(path, *owner)
    except OSError:
        logger.debug("Failed to chown config path: %s", path, exc_info=True)


def ensure_config_dir() -> str:
    config_dir, _ = get_config_paths()
    os.makedirs(config_dir, mode=0o700, exist_ok=True)
    _maybe_chown(config_dir)
    return config_dir


def load_config() -> Dict[str, Any]:
    """
    Load configuration from file.

    Returns:
        Configuration dictionary (defaults if the file is missing or corrupt)
    """
    _, config_file = get_config_paths()
    merged = copy.deepcopy(DEFAULT_CONFIG)
    if not os.path.isfile(config_file):
        return merged
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        logger.warning("Ignoring unreadable config file %s", config_file)
        logger.debug("Config load failure", exc_info=True)
        return merged
    if not isinstance(data, dict):
        return merged
    scan = data.pop("scan", None)
    merged.update(data)
    if isinstance(scan, dict):
        merged["scan"].update(scan)
    return merged


def save_config(config: Dict[str, Any]) -> bool:
    """
    Save configuration atomically with owner-only permissions.

    Returns:
        True if save succeeded
    """
    _, config_file = get_config_paths()
    try:
        config_dir = ensure_config_dir()
        config["version"] = CONFIG_VERSION
        temp_file = config_file + ".tmp"
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        os.chmod(temp_file, stat.S_IRUSR | stat.S_IWUSR)
        os.replace(temp_file, config_file)
        _maybe_chown(config_dir)
        _maybe_chown(config_file)
        return True
    except OSError:
        logger.debug("Config save to %s failed", config_file, exc_info=True)
        return False


def get_scan_defaults() -> Dict[str, Any]:
    """Persisted scan settings that are actually set (None values dropped)."""
    scan = load_config().get("scan") or {}
    return {k: v for k, v in scan.items() if v is not None}


def update_scan_defaults(**kwargs: Any) -> bool:
    """Persist scan settings. Unknown keys are ignored."""
    config = load_config()
    allowed = set(DEFAULT_CONFIG["scan"])
    for key, value in kwargs.items():
        if key in allowed:
            config["scan"][key] = value
    return save_config(config)


def apply_env_overrides(
    settings: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """
    Overlay RECONCORE_* environment variables onto `settings` (in place).

    Values stay strings; ConfigurationContext validates them on use.
    """
    env = os.environ if environ is None else environ
    for var, keys in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or not value.strip():
            continue
        for key in keys:
            settings[key] = value.strip()
    token = env.get(ENV_DRY_RUN)
    if token is not None and token.strip():
        settings["dry_run"] = token.strip().lower() in _TRUTHY
    return settings
