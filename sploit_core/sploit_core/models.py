from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

HOSTNAME_PLACEHOLDER = "SPLOITHOSTNAME"
PORT_PLACEHOLDER = "SPLOITHOSTPORT"

ModuleKey = Tuple[str, str]  # (service name, module name)


@dataclass(frozen=True)
class TargetService:
    name: str
    ports: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Target:
    """A host from one file in the watch directory."""
    name: str
    services: Tuple[TargetService, ...] = ()

    def ports_for(self, service_name: str) -> List[int]:
        ports: List[int] = []
        for svc in self.services:
            if svc.name == service_name:
                ports.extend(svc.ports)
        return ports


@dataclass(frozen=True)
class Module:
    """
    A Metasploit module run on a trigger spec.
    The running flag is tracked by DaemonState under the module key.
    """
    name: str
    commands: Tuple[str, ...]
    trigger_spec: str

    def render(self, host: str, port: int) -> List[str]:
        return [render_command(c, host, port) for c in self.commands]


@dataclass(frozen=True)
class ServiceDefinition:
    name: str
    modules: Tuple[Module, ...] = ()


@dataclass(frozen=True)
class ScheduleEntry:
    service: str
    module: Module

    @property
    def key(self) -> ModuleKey:
        return (self.service, self.module.name)


@dataclass(frozen=True)
class Definitions:
    targets: Tuple[Target, ...] = ()
    services: Tuple[ServiceDefinition, ...] = ()


@dataclass
class VulnerabilityRecord:
    id: int
    created_at: Optional[datetime]
    address: str
    name: str
    references: str = ""

    def line(self) -> str:
        return f"{self.created_at} {self.address} {self.name} {self.references}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "address": self.address,
            "name": self.name,
            "references": self.references,
        }


def render_command(template: str, host: str, port: int) -> str:
    cmd = template.replace(HOSTNAME_PLACEHOLDER, host)
    return cmd.replace(PORT_PLACEHOLDER, str(port))


def schedule_entries(services: Tuple[ServiceDefinition, ...]) -> List[ScheduleEntry]:
    return [ScheduleEntry(service=s.name, module=m) for s in services for m in s.modules]
