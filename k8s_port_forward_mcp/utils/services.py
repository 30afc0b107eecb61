"""Pod listing parser and short-name resolution.

Pod names are expected to look like ``dev-b2b-ecommerce-7f9c-2x4k``: the last
two segments are the ReplicaSet/pod suffix (the *id*), everything before is the
full service name. The environment tag comes from a known prefix of the full
service name and the short name is what remains after stripping the
environment prefix and then the namespace prefix.
"""

from __future__ import annotations

from typing import Iterator, Optional

from ..exceptions import ServiceLookupError
from ..logging import get_logger
from .models import (
    DEFAULT_ENVIRONMENT,
    ENV_PREFIXES,
    PodRecord,
    ResolvedService,
    ServiceIdentity,
    ServiceMap,
)

logger = get_logger(__name__)


def iter_pod_records(listing: str, namespace: Optional[str] = None) -> Iterator[PodRecord]:
    """Yield one record per data row of a ``kubectl get pods`` style table.

    Columns are located by header name. Rows without a NAME cell are dropped;
    a missing NAMESPACE column falls back to ``namespace`` (or "" when that is
    not given either).
    """

    lines = [line for line in listing.strip().splitlines() if line.strip()]
    if not lines:
        return

    headers = lines[0].split()
    if "NAME" not in headers:
        return
    name_idx = headers.index("NAME")
    namespace_idx = headers.index("NAMESPACE") if "NAMESPACE" in headers else None
    status_idx = headers.index("STATUS") if "STATUS" in headers else None

    for line in lines[1:]:
        columns = line.split()
        if name_idx >= len(columns):
            continue

        status: Optional[str] = None
        if status_idx is not None and status_idx < len(columns):
            status = columns[status_idx]

        row_namespace = namespace
        if row_namespace is None and namespace_idx is not None and namespace_idx < len(columns):
            row_namespace = columns[namespace_idx]

        yield PodRecord(namespace=row_namespace or "", name=columns[name_idx], status=status)


def environment_of(full_service_name: str) -> str:
    for env in ENV_PREFIXES:
        if full_service_name.startswith(f"{env}-"):
            return env
    return DEFAULT_ENVIRONMENT


def short_name_of(full_service_name: str, environment: str, namespace: str) -> str:
    short = full_service_name
    if environment != DEFAULT_ENVIRONMENT:
        short = short[len(environment) + 1:]
    if namespace and short.startswith(f"{namespace}-"):
        short = short[len(namespace) + 1:]
    return short


def parse_services_map(listing: str, namespace: Optional[str] = None) -> ServiceMap:
    """Parse a pod listing into ``short name -> environment -> identity``.

    Only running pods are considered. Names with fewer than three ``-``
    segments cannot carry an id and are skipped. When two pods map to the same
    (short name, environment) key, the one listed last wins.
    """

    services: ServiceMap = {}
    for record in iter_pod_records(listing, namespace):
        if not record.running:
            continue

        parts = record.name.split("-")
        if len(parts) < 3:
            continue

        full_service_name = "-".join(parts[:-2])
        pod_id = "-".join(parts[-2:])
        environment = environment_of(full_service_name)
        short_name = short_name_of(full_service_name, environment, record.namespace)

        env_map = services.setdefault(short_name, {})
        if environment in env_map:
            logger.debug(
                "duplicate_service_pod",
                service=short_name,
                environment=environment,
                replaced=env_map[environment].pod_name,
                pod=record.name,
            )
        env_map[environment] = ServiceIdentity(id=pod_id, namespace=record.namespace, full_service_name=full_service_name)

    return services


def resolve_service(
    services: ServiceMap,
    short_name: str,
    *,
    namespace: Optional[str] = None,
    environment: Optional[str] = None,
) -> ResolvedService:
    """Pick one pod for ``short_name``.

    A namespace match wins over the requested environment (and decides the
    resulting environment). When no entry lives in ``namespace`` the filter is
    ignored. Without an environment the first entry of the map is used.

    Raises:
        ServiceLookupError: if the name is unknown or the environment has no pod.
    """

    env_map = services.get(short_name)
    if not env_map:
        raise ServiceLookupError(f"unknown service {short_name!r}", service_name=short_name)

    if namespace:
        for env, identity in env_map.items():
            if identity.namespace == namespace:
                return _resolved(identity, env)

    env = environment or next(iter(env_map))
    identity = env_map.get(env)
    if identity is None:
        raise ServiceLookupError(
            f"service {short_name!r} has no {env!r} environment (available: {', '.join(env_map)})",
            service_name=short_name,
        )
    return _resolved(identity, env)


def _resolved(identity: ServiceIdentity, environment: str) -> ResolvedService:
    return ResolvedService(
        namespace=identity.namespace,
        pod_name=identity.pod_name,
        full_service_name=identity.full_service_name,
        environment=environment,
    )
