"""
Host and service definition loader.

Host files (<watch_dir>/*.yml), one host per file:

    name: web1.example.com
    services:
      - name: http
        ports: [80, 8080]

Services file, a list of services and the modules run for them:

    - name: http
      modules:
        - name: http_version
          cronspec: "0 0 3 * * *"
          commands:
            - use auxiliary/scanner/http/http_version
            - set RHOSTS SPLOITHOSTNAME
            - set RPORT SPLOITHOSTPORT
            - run
"""

from __future__ import annotations
import logging
import os
import re
from typing import Any, Dict, List, Pattern

import yaml  # type: ignore

from ..errors import ConfigError
from ..models import Definitions, Module, ServiceDefinition, Target, TargetService
from ..scheduler.triggers import parse_trigger

logger = logging.getLogger('sploit.config.definitions')

DEFINITION_PATTERN = r".*\.yml$"


def _read_yaml(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"{path} is not valid UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e


def _get(doc: Dict[str, Any], key: str, default: Any = None) -> Any:
    for k, v in doc.items():
        if str(k).lower().replace("_", "") == key:
            return v
    return default


def _as_list(value: Any, what: str, path: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{path}: {what} must be a list")
    return value


def parse_target(doc: Any, path: str = "<host>") -> Target:
    if not isinstance(doc, dict):
        raise ConfigError(f"{path}: host definition must be a mapping")
    name = _get(doc, "name")
    if not name:
        raise ConfigError(f"{path}: host 'name' is required")
    services: List[TargetService] = []
    for svc in _as_list(_get(doc, "services"), "services", path):
        if not isinstance(svc, dict) or not _get(svc, "name"):
            raise ConfigError(f"{path}: each service needs a 'name'")
        try:
            ports = tuple(int(p) for p in _as_list(_get(svc, "ports"), "ports", path))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{path}: invalid port in service {_get(svc, 'name')}: {e}") from e
        services.append(TargetService(name=str(_get(svc, "name")), ports=ports))
    return Target(name=str(name), services=tuple(services))


def parse_services(doc: Any, path: str = "<services>") -> List[ServiceDefinition]:
    services: List[ServiceDefinition] = []
    for svc in _as_list(doc, "services file", path):
        if not isinstance(svc, dict) or not _get(svc, "name"):
            raise ConfigError(f"{path}: each service needs a 'name'")
        svc_name = str(_get(svc, "name"))
        modules: List[Module] = []
        for mod in _as_list(_get(svc, "modules"), f"modules of {svc_name}", path):
            if not isinstance(mod, dict) or not _get(mod, "name"):
                raise ConfigError(f"{path}: each module of {svc_name} needs a 'name'")
            spec = _get(mod, "cronspec") or _get(mod, "schedule")
            parse_trigger(spec)  # fail the load, not the registration
            commands = tuple(str(c) for c in _as_list(_get(mod, "commands"), "commands", path))
            modules.append(Module(name=str(_get(mod, "name")), commands=commands, trigger_spec=str(spec)))
        services.append(ServiceDefinition(name=svc_name, modules=tuple(modules)))
    return services


class DefinitionSource:
    """Loads the full Target and ServiceDefinition sets from disk."""

    def __init__(self, watch_dir: str, services_file: str, pattern: str = DEFINITION_PATTERN) -> None:
        self.watch_dir = watch_dir
        self.services_file = services_file
        self.pattern: Pattern[str] = re.compile(pattern)

    def load_targets(self) -> List[Target]:
        try:
            names = sorted(os.listdir(self.watch_dir))
        except OSError as e:
            raise ConfigError(f"cannot read host directory {self.watch_dir}: {e}") from e
        targets: List[Target] = []
        for fname in names:
            full = os.path.join(self.watch_dir, fname)
            if os.path.isdir(full) or not self.pattern.match(fname):
                continue
            targets.append(parse_target(_read_yaml(full), full))
        logger.info(f"Loaded {len(targets)} host definitions from {self.watch_dir}")
        logger.debug(f"Host definitions: {targets}")
        return targets

    def load_services(self) -> List[ServiceDefinition]:
        services = parse_services(_read_yaml(self.services_file), self.services_file)
        logger.info(f"Loaded {len(services)} service definitions from {self.services_file}")
        logger.debug(f"Service definitions: {services}")
        return services

    def load(self) -> Definitions:
        return Definitions(targets=tuple(self.load_targets()), services=tuple(self.load_services()))
