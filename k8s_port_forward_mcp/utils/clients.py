from __future__ import annotations

from typing import Any, Optional

from kubernetes import client, config


def load_core_api(*, kubeconfig: Optional[str] = None, context: Optional[str] = None) -> Any:
    """Create a CoreV1Api client from kubeconfig/context.

    Falls back to in-cluster configuration when no kubeconfig can be loaded
    and neither a file nor a context was requested explicitly.
    """

    if kubeconfig or context:
        config.load_kube_config(config_file=kubeconfig, context=context)
    else:
        try:
            config.load_kube_config()
        except config.ConfigException:
            config.load_incluster_config()

    return client.CoreV1Api()
