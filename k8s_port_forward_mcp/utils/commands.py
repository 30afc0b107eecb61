from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import ForwardSession


@dataclass(frozen=True)
class KubectlCommand:
    """Builds kubectl argv lists.

    Global flags (``--kubeconfig``/``--context``) are only added when
    configured so the rendered commands stay copy/paste friendly.
    """

    binary: str = "kubectl"
    kubeconfig: Optional[str] = None
    context: Optional[str] = None

    def _base(self) -> List[str]:
        cmd = [self.binary]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        if self.context:
            cmd += ["--context", self.context]
        return cmd

    def get_namespaces(self) -> List[str]:
        return self._base() + ["get", "namespaces", "-o", "jsonpath={.items[*].metadata.name}"]

    def get_pods(self, namespace: Optional[str] = None) -> List[str]:
        if namespace:
            return self._base() + ["get", "pods", "--namespace", namespace]
        return self._base() + ["get", "pods", "--all-namespaces"]

    def get_service_ports(self, namespace: str, service_name: str) -> List[str]:
        return self._base() + [
            "get",
            "service",
            "--namespace",
            namespace,
            service_name,
            "-o",
            "jsonpath={.spec.ports[*].port}",
        ]

    def port_forward(self, session: ForwardSession) -> List[str]:
        return self._base() + [
            "port-forward",
            "--namespace",
            session.namespace,
            session.pod_name,
            f"{session.local_port}:{session.remote_port}",
        ]

    def logs(self, session: ForwardSession) -> List[str]:
        return self._base() + ["logs", "--namespace", session.namespace, session.pod_name, "-f"]


def render(argv: Sequence[str]) -> str:
    return shlex.join(list(argv))
