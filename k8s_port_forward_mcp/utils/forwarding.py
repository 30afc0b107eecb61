"""Tool-level operations: discovery, start and stop of port-forwards."""

from __future__ import annotations

from typing import Any, List, Optional

from ..exceptions import RequestValidationError, ServiceLookupError
from ..logging import get_logger
from .cluster import ClusterQuery
from .commands import render
from .models import ForwardSession, ServiceMap, StartReport, session_label
from .ports import DEFAULT_REMOTE_PORT, resolve_remote_port
from .services import parse_services_map, resolve_service
from .supervisor import ManagedForward, PortForwardSupervisor
from .validation import EMPTY_REQUEST_MESSAGE, is_request_list, parse_forward_request

logger = get_logger(__name__)


class PortForwardManager:
    """Ties discovery, resolution and the supervisor together.

    Discovery runs fresh on every call; nothing is cached between calls.
    """

    def __init__(
        self,
        cluster: ClusterQuery,
        supervisor: PortForwardSupervisor,
        *,
        default_remote_port: int = DEFAULT_REMOTE_PORT,
        open_log_windows: bool = True,
    ) -> None:
        self.cluster = cluster
        self.supervisor = supervisor
        self.default_remote_port = default_remote_port
        self.open_log_windows = open_log_windows

    async def list_namespaces(self) -> List[str]:
        return await self.cluster.list_namespaces()

    async def list_services(self, namespace: Optional[str] = None) -> ServiceMap:
        listing = await self.cluster.list_pods(namespace)
        return parse_services_map(listing, namespace)

    async def start(self, entries: Any) -> StartReport:
        """Validate and resolve every entry, then spawn all forwards or none.

        Per-entry problems are collected (one message per entry, in entry
        order). Cluster query failures during discovery propagate.
        """

        if not is_request_list(entries):
            return StartReport(errors=[EMPTY_REQUEST_MESSAGE])

        services = await self.list_services(None)

        errors: List[str] = []
        sessions: List[ForwardSession] = []
        for index, entry in enumerate(entries, start=1):
            try:
                request = parse_forward_request(entry, index)
            except RequestValidationError as exc:
                errors.append(str(exc))
                continue

            try:
                resolved = resolve_service(
                    services,
                    request.service_name,
                    namespace=request.namespace,
                    environment=request.environment,
                )
            except ServiceLookupError:
                where = f" in namespace {request.namespace}" if request.namespace else ""
                errors.append(
                    f'Entry {index}: could not resolve service "{request.service_name}"{where}. '
                    "Call list_k8s_services to see available names."
                )
                continue

            if errors:
                # The batch is already rejected; skip port detection.
                continue

            remote_port = request.remote_port
            if remote_port is None:
                remote_port = await resolve_remote_port(
                    self.cluster,
                    resolved.namespace,
                    resolved.full_service_name,
                    default=self.default_remote_port,
                )

            sessions.append(
                ForwardSession(
                    namespace=resolved.namespace,
                    pod_name=resolved.pod_name,
                    local_port=request.local_port,
                    remote_port=remote_port,
                    label=session_label(request.service_name, request.local_port, resolved.environment),
                    include_logs=request.include_logs and self.open_log_windows,
                    environment=resolved.environment,
                )
            )

        if errors:
            logger.info("start_rejected", errors=len(errors), entries=len(entries))
            return StartReport(errors=errors)

        await self.supervisor.start(sessions)

        command = self.supervisor.command
        commands = [f"# Logs: {render(command.logs(s))}" for s in sessions if s.include_logs]
        commands += [render(command.port_forward(s)) for s in sessions]
        return StartReport(sessions=sessions, commands=commands)

    async def stop(self) -> int:
        return await self.supervisor.stop()

    def active(self) -> List[ManagedForward]:
        return self.supervisor.sessions()
