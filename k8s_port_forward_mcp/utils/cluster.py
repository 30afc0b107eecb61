"""Cluster query backends.

Both backends answer the same three questions (namespaces, pod listing,
service ports) with plain text so that discovery semantics live in one place
(:mod:`.services`). Failures raise :class:`ClusterQueryError`.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, Sequence, runtime_checkable

import anyio
import anyio.to_thread
from kubernetes.client import ApiException

from ..config import PortForwardMCPServerConfig
from ..exceptions import ClusterQueryError
from ..logging import get_logger
from .clients import load_core_api
from .commands import KubectlCommand, render

logger = get_logger(__name__)


@runtime_checkable
class ClusterQuery(Protocol):
    async def list_namespaces(self) -> List[str]:
        ...

    async def list_pods(self, namespace: Optional[str] = None) -> str:
        """Return a table with at least NAME and usually NAMESPACE/STATUS columns."""
        ...

    async def get_service_ports(self, namespace: str, service_name: str) -> str:
        """Return the service's ports separated by whitespace."""
        ...


class KubectlCluster:
    """Answers cluster queries by running kubectl."""

    def __init__(self, command: KubectlCommand, *, timeout: float = 30.0) -> None:
        self.command = command
        self.timeout = timeout

    async def _run(self, argv: Sequence[str]) -> str:
        try:
            with anyio.fail_after(self.timeout):
                proc = await anyio.run_process(list(argv), check=False)
        except FileNotFoundError as exc:
            raise ClusterQueryError(f"{argv[0]} not found in PATH", command=argv) from exc
        except TimeoutError as exc:
            raise ClusterQueryError(f"timed out after {self.timeout:g}s: {render(argv)}", command=argv) from exc
        except OSError as exc:
            raise ClusterQueryError(f"could not run {argv[0]}: {exc}", command=argv) from exc

        stdout = (proc.stdout or b"").decode("utf-8", errors="replace")
        stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise ClusterQueryError(
                stderr or f"{render(argv)} exited with code {proc.returncode}",
                command=argv,
                exit_code=proc.returncode,
                stderr=stderr,
            )
        if stderr:
            # e.g. "No resources found in <ns> namespace." or deprecation warnings
            logger.debug("kubectl_stderr", command=render(argv), stderr=stderr)
        return stdout

    async def list_namespaces(self) -> List[str]:
        out = await self._run(self.command.get_namespaces())
        return out.split()

    async def list_pods(self, namespace: Optional[str] = None) -> str:
        return await self._run(self.command.get_pods(namespace))

    async def get_service_ports(self, namespace: str, service_name: str) -> str:
        out = await self._run(self.command.get_service_ports(namespace, service_name))
        return out.strip()


class KubernetesApiCluster:
    """Answers cluster queries through the Kubernetes Python client.

    The client is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, core_api_factory: Callable[[], Any]) -> None:
        self._core_api_factory = core_api_factory
        self._core_api: Any = None

    def _core(self) -> Any:
        if self._core_api is None:
            self._core_api = self._core_api_factory()
        return self._core_api

    async def _call(self, what: str, fn: Callable[[], Any]) -> Any:
        try:
            return await anyio.to_thread.run_sync(fn)
        except ApiException as exc:
            raise ClusterQueryError(f"{what} failed: {exc.status} {exc.reason}", stderr=str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            raise ClusterQueryError(f"{what} failed: {exc}") from exc

    async def list_namespaces(self) -> List[str]:
        items = await self._call("list namespaces", lambda: self._core().list_namespace().items)
        return [ns.metadata.name for ns in items]

    async def list_pods(self, namespace: Optional[str] = None) -> str:
        def _list() -> Any:
            core = self._core()
            if namespace:
                return core.list_namespaced_pod(namespace=namespace).items
            return core.list_pod_for_all_namespaces().items

        items = await self._call("list pods", _list)
        return render_pod_table(items)

    async def get_service_ports(self, namespace: str, service_name: str) -> str:
        svc = await self._call(
            "read service",
            lambda: self._core().read_namespaced_service(name=service_name, namespace=namespace),
        )
        ports = getattr(svc.spec, "ports", None) or []
        return " ".join(str(p.port) for p in ports if getattr(p, "port", None))


def render_pod_table(pods: Sequence[Any]) -> str:
    """Render API pod objects like ``kubectl get pods -A`` (NAMESPACE, NAME, STATUS)."""

    rows = [("NAMESPACE", "NAME", "STATUS")]
    for pod in pods:
        status = getattr(pod.status, "phase", None) or "Unknown"
        if getattr(pod.metadata, "deletion_timestamp", None):
            status = "Terminating"
        rows.append((pod.metadata.namespace, pod.metadata.name, status))

    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    return "\n".join("   ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip() for row in rows)


def build_cluster(cfg: PortForwardMCPServerConfig) -> ClusterQuery:
    if cfg.cluster_backend == "api":
        return KubernetesApiCluster(lambda: load_core_api(kubeconfig=cfg.kubeconfig, context=cfg.context))
    command = KubectlCommand(binary=cfg.kubectl, kubeconfig=cfg.kubeconfig, context=cfg.context)
    return KubectlCluster(command, timeout=float(cfg.query_timeout_seconds))
