from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config_utils import env_bool, env_choice, env_int, env_optional_str, env_str


@dataclass(frozen=True)
class PortForwardMCPServerConfig:
    """Runtime configuration for the port-forward MCP server.

    Cluster access:
    - K8S_KUBECONFIG: path to kubeconfig file
    - K8S_CONTEXT: kube context name
    - PORT_FORWARD_KUBECTL: kubectl binary (default: kubectl)
    - PORT_FORWARD_CLUSTER_BACKEND: kubectl|api, how discovery queries run
    - PORT_FORWARD_QUERY_TIMEOUT_SECONDS: timeout for a single cluster query

    Forwarding:
    - PORT_FORWARD_DEFAULT_REMOTE_PORT: used when the service port cannot be detected
    - PORT_FORWARD_GRACE_PERIOD_MS: wait between graceful and forced termination
    - PORT_FORWARD_OPEN_LOG_WINDOWS: set false to never open log windows

    Diagnostics:
    - PORT_FORWARD_LOG_LEVEL, PORT_FORWARD_LOG_FORMAT (console|json)

    MCP transport selection:
    - PORT_FORWARD_MCP_TRANSPORT: stdio|http|sse
    - PORT_FORWARD_MCP_HOST
    - PORT_FORWARD_MCP_PORT
    """

    kubeconfig: Optional[str]
    context: Optional[str]
    kubectl: str
    cluster_backend: str
    query_timeout_seconds: int
    default_remote_port: int
    grace_period_ms: int
    open_log_windows: bool
    log_level: str
    log_format: str
    mcp_transport: str
    mcp_host: str
    mcp_port: int

    DEFAULT_KUBECTL: str = "kubectl"
    DEFAULT_CLUSTER_BACKEND: str = "kubectl"
    DEFAULT_REMOTE_PORT: int = 3000
    DEFAULT_GRACE_PERIOD_MS: int = 500
    DEFAULT_QUERY_TIMEOUT_SECONDS: int = 30
    DEFAULT_MCP_TRANSPORT: str = "stdio"
    DEFAULT_MCP_HOST: str = "127.0.0.1"
    DEFAULT_MCP_PORT: int = 8000

    @classmethod
    def from_env(cls) -> "PortForwardMCPServerConfig":
        return cls(
            kubeconfig=env_optional_str("K8S_KUBECONFIG"),
            context=env_optional_str("K8S_CONTEXT"),
            kubectl=env_str("PORT_FORWARD_KUBECTL", cls.DEFAULT_KUBECTL) or cls.DEFAULT_KUBECTL,
            cluster_backend=env_choice("PORT_FORWARD_CLUSTER_BACKEND", cls.DEFAULT_CLUSTER_BACKEND, ("kubectl", "api")),
            query_timeout_seconds=env_int("PORT_FORWARD_QUERY_TIMEOUT_SECONDS", cls.DEFAULT_QUERY_TIMEOUT_SECONDS, minimum=1),
            default_remote_port=env_int("PORT_FORWARD_DEFAULT_REMOTE_PORT", cls.DEFAULT_REMOTE_PORT, minimum=1, maximum=65535),
            grace_period_ms=env_int("PORT_FORWARD_GRACE_PERIOD_MS", cls.DEFAULT_GRACE_PERIOD_MS, minimum=0),
            open_log_windows=env_bool("PORT_FORWARD_OPEN_LOG_WINDOWS", True),
            log_level=env_str("PORT_FORWARD_LOG_LEVEL", "INFO").upper(),
            log_format=env_choice("PORT_FORWARD_LOG_FORMAT", "console", ("console", "json")),
            # http is the streamable transport; sse is kept for older clients
            mcp_transport=env_choice("PORT_FORWARD_MCP_TRANSPORT", cls.DEFAULT_MCP_TRANSPORT, ("stdio", "http", "sse")),
            mcp_host=env_str("PORT_FORWARD_MCP_HOST", cls.DEFAULT_MCP_HOST),
            mcp_port=env_int("PORT_FORWARD_MCP_PORT", cls.DEFAULT_MCP_PORT, minimum=1, maximum=65535),
        )

    @property
    def grace_period_seconds(self) -> float:
        return self.grace_period_ms / 1000.0
