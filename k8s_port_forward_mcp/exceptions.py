"""Exceptions raised by the port-forward server."""

from __future__ import annotations

from typing import Optional, Sequence


class PortForwardError(Exception):
    """Base exception for port-forward server errors."""


class ClusterQueryError(PortForwardError):
    """A cluster query (kubectl or API call) failed or returned an error."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command is not None else None
        self.exit_code = exit_code
        self.stderr = stderr


class ServiceLookupError(LookupError, PortForwardError):
    """A short service name (or its namespace/environment) is not in the service map."""

    def __init__(self, message: str, *, service_name: str) -> None:
        super().__init__(message)
        self.service_name = service_name


class RequestValidationError(PortForwardError):
    """One entry of a start request is malformed."""

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index

    def __str__(self) -> str:
        return f"Entry {self.index}: {self.args[0]}"


class ForwardStartError(PortForwardError):
    """A port-forward process could not be spawned."""


class SupervisorNotRunningError(PortForwardError):
    """The supervisor was used outside of its running context."""
