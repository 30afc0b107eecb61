from __future__ import annotations

from typing import Any, Mapping, Optional

from ..exceptions import RequestValidationError
from .models import ENV_PREFIXES, ForwardRequest
from .ports import is_valid_port


def coerce_port(value: Any) -> Optional[int]:
    """Normalise a port sent by a client; agents often send numbers as strings.

    Returns None when the value is not an integer (range is checked separately).
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        raw = value.strip()
        try:
            return int(raw)
        except ValueError:
            try:
                as_float = float(raw)
            except ValueError:
                return None
            return int(as_float) if as_float.is_integer() else None
    return None


def _optional_str(entry: Mapping[str, Any], key: str) -> Optional[str]:
    value = entry.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def parse_forward_request(entry: Any, index: int) -> ForwardRequest:
    """Validate one entry; ``index`` is 1-based and only used for messages.

    Raises:
        RequestValidationError: on the first failing check.
    """

    if not isinstance(entry, Mapping):
        raise RequestValidationError("invalid object", index=index)

    raw_name = entry.get("serviceName")
    service_name = raw_name.strip() if isinstance(raw_name, str) else ""
    if not service_name:
        raise RequestValidationError("serviceName is required", index=index)

    local_port = coerce_port(entry.get("localPort"))
    if local_port is None or not is_valid_port(local_port):
        raise RequestValidationError("localPort must be 1-65535", index=index)

    remote_port: Optional[int] = None
    if entry.get("remotePort") is not None:
        remote_port = coerce_port(entry.get("remotePort"))
        if remote_port is None or not is_valid_port(remote_port):
            raise RequestValidationError("remotePort must be 1-65535", index=index)

    environment = _optional_str(entry, "environment")
    if environment is not None and environment not in ENV_PREFIXES:
        raise RequestValidationError(f"environment must be one of {', '.join(ENV_PREFIXES)}", index=index)

    return ForwardRequest(
        service_name=service_name,
        local_port=local_port,
        namespace=_optional_str(entry, "namespace"),
        remote_port=remote_port,
        environment=environment,
        include_logs=entry.get("includeLogs") is not False,
    )


EMPTY_REQUEST_MESSAGE = "'services' must be a non-empty array of objects with serviceName and localPort."


def is_request_list(entries: Any) -> bool:
    return isinstance(entries, (list, tuple)) and len(entries) > 0
