from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

ENV_PREFIXES: Tuple[str, ...] = ("dev", "qa", "stg", "prod")
DEFAULT_ENVIRONMENT = "default"


@dataclass(frozen=True)
class PodRecord:
    """One row of a pod listing."""

    namespace: str
    name: str
    status: Optional[str] = None

    @property
    def running(self) -> bool:
        # A missing status column or cell counts as running.
        return self.status is None or self.status == "Running"


@dataclass(frozen=True)
class ServiceIdentity:
    """One (environment, pod) binding for a short service name."""

    id: str
    namespace: str
    full_service_name: str

    @property
    def pod_name(self) -> str:
        return f"{self.full_service_name}-{self.id}"


# short name -> environment tag -> identity; insertion order is listing order.
ServiceMap = Dict[str, Dict[str, ServiceIdentity]]


@dataclass(frozen=True)
class ResolvedService:
    namespace: str
    pod_name: str
    full_service_name: str
    environment: str


@dataclass(frozen=True)
class ForwardRequest:
    """A validated entry of a start request, before resolution."""

    service_name: str
    local_port: int
    namespace: Optional[str] = None
    remote_port: Optional[int] = None
    environment: Optional[str] = None
    include_logs: bool = True


@dataclass(frozen=True)
class ForwardSession:
    namespace: str
    pod_name: str
    local_port: int
    remote_port: int
    label: str
    include_logs: bool = True
    environment: str = DEFAULT_ENVIRONMENT

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.local_port}"


@dataclass
class StartReport:
    """Outcome of a start call: either errors (nothing spawned) or started sessions."""

    errors: List[str] = field(default_factory=list)
    sessions: List[ForwardSession] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def session_label(service_name: str, local_port: int, environment: str) -> str:
    prefix = f"{environment}~" if environment != DEFAULT_ENVIRONMENT else ""
    return f"{prefix}{service_name}:{local_port}"
