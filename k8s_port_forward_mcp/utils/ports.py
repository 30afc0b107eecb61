from __future__ import annotations

from typing import Any, Optional

from ..logging import get_logger
from .cluster import ClusterQuery

logger = get_logger(__name__)

DEFAULT_REMOTE_PORT = 3000


def is_valid_port(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= 65535


def first_port(raw: Optional[str]) -> Optional[int]:
    """First whitespace separated token of ``raw`` as a port, if it is one."""

    tokens = (raw or "").split()
    if not tokens:
        return None
    try:
        port = int(tokens[0])
    except ValueError:
        return None
    return port if is_valid_port(port) else None


async def resolve_remote_port(
    cluster: ClusterQuery,
    namespace: str,
    full_service_name: str,
    *,
    default: int = DEFAULT_REMOTE_PORT,
) -> int:
    """Detect the service's first port; any failure yields ``default``."""

    try:
        raw = await cluster.get_service_ports(namespace, full_service_name)
    except Exception as exc:  # noqa: BLE001
        logger.info("remote_port_fallback", namespace=namespace, service=full_service_name, port=default, reason=str(exc))
        return default

    port = first_port(raw)
    if port is None:
        logger.info("remote_port_fallback", namespace=namespace, service=full_service_name, port=default, reason=f"unusable answer {raw!r}")
        return default
    return port
