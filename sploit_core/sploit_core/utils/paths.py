from __future__ import annotations
import os
from pathlib import Path
from typing import Optional

"""
Path resolver for FHS/XDG compliance with env overrides.
Priority:
1) Explicit env overrides: SPLOIT_CONFIG_DIR, SPLOIT_LOG_DIR
2) If running as root (uid==0): /etc/sploit, /var/log/sploit
3) XDG (user scope):
   - CONFIG: $XDG_CONFIG_HOME/sploit or ~/.config/sploit
   - LOGS:   $XDG_STATE_HOME/sploit/log or ~/.local/state/sploit/log
"""

DEFAULT_CONFIG_NAME = "sploit.yml"


def _is_root() -> bool:
    try:
        return os.geteuid() == 0
    except AttributeError:
        return False


def config_dir() -> str:
    if os.environ.get("SPLOIT_CONFIG_DIR"):
        return os.environ["SPLOIT_CONFIG_DIR"]
    if _is_root():
        return "/etc/sploit"
    xdg = os.environ.get("XDG_CONFIG_HOME") or os.path.join(Path.home(), ".config")
    return os.path.join(xdg, "sploit")


def state_dir() -> str:
    if _is_root():
        return "/var/lib/sploit/state"
    x = os.environ.get("XDG_STATE_HOME") or os.path.join(Path.home(), ".local", "state")
    return os.path.join(x, "sploit")


def log_dir() -> str:
    if os.environ.get("SPLOIT_LOG_DIR"):
        return os.environ["SPLOIT_LOG_DIR"]
    if _is_root():
        return "/var/log/sploit"
    return os.path.join(state_dir(), "log")


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def resolve_config_file(explicit: Optional[str] = None) -> str:
    """
    Pick the daemon settings file: an explicit path wins, then ./sploit.yml,
    then <config dir>/sploit.yml. The returned path may not exist.
    """
    if explicit:
        return explicit
    if os.path.exists(DEFAULT_CONFIG_NAME):
        return DEFAULT_CONFIG_NAME
    return os.path.join(config_dir(), DEFAULT_CONFIG_NAME)
