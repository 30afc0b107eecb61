from __future__ import annotations

from typing import Any, Dict, List, Optional

import anyio
from fastmcp import FastMCP

from .config import PortForwardMCPServerConfig
from .exceptions import PortForwardError
from .logging import configure_logging, get_logger
from .utils.cluster import build_cluster
from .utils.commands import KubectlCommand
from .utils.formatting import (
    active_forwards_text,
    namespaces_text,
    services_text,
    start_report_text,
    stop_text,
)
from .utils.forwarding import PortForwardManager
from .utils.supervisor import LogOutputSink, PortForwardSupervisor
from .utils.terminal import TerminalLauncher

SERVER_NAME = "k8s-port-forward-mcp"

logger = get_logger(__name__)


def build_manager(cfg: PortForwardMCPServerConfig) -> PortForwardManager:
    """Create the single manager (and supervisor) shared by every tool call."""

    supervisor = PortForwardSupervisor(
        KubectlCommand(binary=cfg.kubectl, kubeconfig=cfg.kubeconfig, context=cfg.context),
        sink=LogOutputSink(),
        terminal=TerminalLauncher(),
        grace_period=cfg.grace_period_seconds,
    )
    return PortForwardManager(
        build_cluster(cfg),
        supervisor,
        default_remote_port=cfg.default_remote_port,
        open_log_windows=cfg.open_log_windows,
    )


def build_server(manager: PortForwardManager) -> FastMCP:
    """Register the port-forward tools against ``manager``.

    Starting forwards needs the manager's supervisor to be running; see
    :func:`serve`.
    """

    mcp = FastMCP(SERVER_NAME)

    @mcp.tool
    async def list_k8s_namespaces() -> str:
        """List all available Kubernetes namespaces."""

        try:
            namespaces = await manager.list_namespaces()
        except PortForwardError as exc:
            return f"Failed to list namespaces: {exc}"
        return namespaces_text(namespaces)

    @mcp.tool
    async def list_k8s_services(namespace: Optional[str] = None, output: str = "text") -> str:
        """List Kubernetes services grouped by short name and environment.

        Use this to find exact service names and namespaces before calling
        start_k8s_port_forward.

        - namespace: optional namespace filter
        - output: text (default), json or yaml
        """

        ns = (namespace or "").strip() or None
        try:
            services = await manager.list_services(ns)
        except PortForwardError as exc:
            return f"Failed to list services: {exc}"
        return services_text(services, output)

    @mcp.tool
    async def start_k8s_port_forward(services: List[Dict[str, Any]]) -> str:
        """Start port forwarding for one or more Kubernetes services.

        Call list_k8s_services (and optionally list_k8s_namespaces) first to
        get exact service names. Each entry accepts:

        - serviceName (required): short service name, e.g. b2b-ecommerce
        - localPort (required): local port to bind, 1-65535
        - namespace: namespace to target, wins over environment
        - remotePort: cluster port; detected when omitted (3000 on failure)
        - environment: dev, qa, stg or prod
        - includeLogs: open the pod logs in a separate window (default true)

        If any entry is invalid or cannot be resolved nothing is started.
        """

        try:
            report = await manager.start(services)
        except PortForwardError as exc:
            return f"Failed to start port forwarding: {exc}"
        return start_report_text(report)

    @mcp.tool
    async def stop_k8s_port_forward() -> str:
        """Stop all active Kubernetes port-forward processes."""

        count = await manager.stop()
        return stop_text(count)

    @mcp.tool
    async def list_k8s_port_forwards() -> str:
        """List the port-forwards started by this server that are still running."""

        return active_forwards_text(manager.active())

    return mcp


def _transport_kwargs(cfg: PortForwardMCPServerConfig) -> Dict[str, Any]:
    if cfg.mcp_transport == "stdio":
        return {"transport": "stdio"}
    return {"transport": cfg.mcp_transport, "host": cfg.mcp_host, "port": cfg.mcp_port}


async def serve(mcp: FastMCP, manager: PortForwardManager, cfg: PortForwardMCPServerConfig) -> None:
    """Run the server with the supervisor alive around it.

    Leaving the server (normally or by cancellation) stops every forward.
    """

    async with manager.supervisor.running(handle_signals=True):
        logger.info("server_starting", transport=cfg.mcp_transport, backend=cfg.cluster_backend)
        await mcp.run_async(**_transport_kwargs(cfg))
    logger.info("server_stopped")


def main() -> None:
    cfg = PortForwardMCPServerConfig.from_env()
    configure_logging(cfg.log_level, cfg.log_format)

    manager = build_manager(cfg)
    anyio.run(serve, build_server(manager), manager, cfg)


if __name__ == "__main__":
    main()
