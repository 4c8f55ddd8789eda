"""
Daemon settings loader (sploit.yml).

Keys are matched case-insensitively with underscores ignored, so both
`watchdir` and `watch_dir` are accepted.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml  # type: ignore
from sqlalchemy.engine import URL

from ..errors import ConfigError
from ..utils.paths import log_dir


@dataclass
class SploitSettings:
    watch_dir: str = "host.d"
    services_file: str = "services.yml"
    serve_address: str = ""
    update_spec: str = "@daily"
    status_spec: str = "@weekly"
    log_file: str = ""
    debounce_seconds: float = 3.0
    settle_delay: float = 0.75
    poll_interval: float = 3.0
    max_console_wait: float = 600.0


@dataclass
class MsfRpcSettings:
    user: str = "msf"
    password: str = ""
    host: str = "127.0.0.1"
    port: int = 55552
    uri: str = "/api/"
    ssl: bool = False

    @property
    def url(self) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.host}:{self.port}{self.uri}"


@dataclass
class PostgresSettings:
    user: str = "msf"
    password: str = ""
    host: str = "127.0.0.1"
    port: int = 5432
    db: str = "msf"

    @property
    def url(self) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=self.user or None,
            password=self.password or None,
            host=self.host or None,
            port=self.port,
            database=self.db or None,
        )


@dataclass
class SmtpSettings:
    user: str = ""
    password: str = ""
    host: str = ""
    sender: str = ""
    to: str = ""

    @property
    def recipients(self) -> List[str]:
        return self.to.split()

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.sender and self.to)


@dataclass
class Settings:
    sploit: SploitSettings = field(default_factory=SploitSettings)
    msfrpc: MsfRpcSettings = field(default_factory=MsfRpcSettings)
    postgres: PostgresSettings = field(default_factory=PostgresSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    path: Optional[str] = None

    def resolve(self, path: str) -> str:
        """Resolve a path from the settings file relative to that file."""
        if os.path.isabs(path) or not self.path:
            return path
        return os.path.join(os.path.dirname(os.path.abspath(self.path)), path)

    @property
    def log_path(self) -> str:
        name = self.sploit.log_file
        if not name:
            return ""
        if os.path.dirname(name):
            return self.resolve(name)
        return os.path.join(log_dir(), name)


def _norm(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


# normalized yaml key -> dataclass attribute, per section
_SECTIONS: Dict[str, Dict[str, str]] = {
    "sploit": {
        "watchdir": "watch_dir",
        "servicesfile": "services_file",
        "serveaddress": "serve_address",
        "updatespec": "update_spec",
        "statusspec": "status_spec",
        "logfile": "log_file",
        "debounceseconds": "debounce_seconds",
        "settledelay": "settle_delay",
        "pollinterval": "poll_interval",
        "maxconsolewait": "max_console_wait",
    },
    "msfrpc": {"user": "user", "pass": "password", "password": "password", "host": "host",
               "port": "port", "uri": "uri", "ssl": "ssl"},
    "postgres": {"user": "user", "pass": "password", "password": "password", "host": "host",
                 "port": "port", "db": "db"},
    "smtp": {"user": "user", "pass": "password", "password": "password", "host": "host",
             "from": "sender", "to": "to"},
}


def _coerce(section: str, attr: str, value: Any, default: Any) -> Any:
    if value is None:
        return default
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{attr}: expected {type(default).__name__}, got {value!r}")
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{section}.{attr}: expected a scalar, got {type(value).__name__}")
    return str(value)


def _build(section: str, cls: type, doc: Dict[str, Any]) -> Any:
    obj = cls()
    mapping = _SECTIONS[section]
    for key, value in doc.items():
        attr = mapping.get(_norm(key))
        if attr is None:
            continue
        setattr(obj, attr, _coerce(section, attr, value, getattr(obj, attr)))
    return obj


def load_settings(path: str) -> Settings:
    """Load sploit.yml; raises ConfigError on missing file, bad YAML or bad types."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read settings file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"settings file {path} is not valid UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    sections = {_norm(k): v for k, v in doc.items()}
    built: Dict[str, Any] = {}
    for name, cls in (("sploit", SploitSettings), ("msfrpc", MsfRpcSettings),
                      ("postgres", PostgresSettings), ("smtp", SmtpSettings)):
        raw = sections.get(name) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{path}: section '{name}' must be a mapping")
        built[name] = _build(name, cls, raw)
    return Settings(path=path, **built)
