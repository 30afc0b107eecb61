"""Shared fakes for the port-forward tests.

Nothing here talks to a cluster or spawns kubectl.
"""

from __future__ import annotations

import itertools
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import anyio
import pytest

from k8s_port_forward_mcp.utils.commands import KubectlCommand
from k8s_port_forward_mcp.utils.supervisor import PortForwardSupervisor

_pids = itertools.count(4000)

PODS_ALL_NAMESPACES = """\
NAMESPACE         NAME                                   READY   STATUS             RESTARTS   AGE
billing           qa-billing-api-5d6f7-abcde             1/1     Running            0          3d
billing           dev-billing-api-7f9c4-2x4kq            1/1     Running            0          1d
shared-services   b2b-ecommerce-66b8d-q7wrt              1/1     Running            0          8h
shared-services   stg-b2b-ticketing-6c9f8-zz91k          1/1     Running            0          8h
shared-services   prod-b2b-ticketing-77aa1-p0p0p         0/1     CrashLoopBackOff   12         8h
kube-system       coredns                                1/1     Running            0          40d
"""


class FakeCluster:
    def __init__(
        self,
        listing: str = PODS_ALL_NAMESPACES,
        *,
        namespaces: Optional[List[str]] = None,
        ports: Any = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.listing = listing
        self.namespaces = namespaces if namespaces is not None else ["billing", "shared-services"]
        self.ports = ports if ports is not None else {}
        self.error = error
        self.calls: List[Tuple[Any, ...]] = []

    async def list_namespaces(self) -> List[str]:
        self.calls.append(("namespaces",))
        if self.error:
            raise self.error
        return list(self.namespaces)

    async def list_pods(self, namespace: Optional[str] = None) -> str:
        self.calls.append(("pods", namespace))
        if self.error:
            raise self.error
        return self.listing

    async def get_service_ports(self, namespace: str, service_name: str) -> str:
        self.calls.append(("ports", namespace, service_name))
        if isinstance(self.ports, Exception):
            raise self.ports
        return self.ports.get((namespace, service_name), "")


class FakeProcess:
    """Process double recording the signals it receives and when."""

    def __init__(self, argv: Sequence[str], *, exits_on_interrupt: bool = True, with_output: bool = False) -> None:
        self.argv = list(argv)
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.exits_on_interrupt = exits_on_interrupt
        self.signals: List[Tuple[Any, float]] = []
        self.closed = False
        self._exited = anyio.Event()
        self.stdout: Any = None
        self.stderr: Any = None
        self.stdout_writer: Any = None
        self.stderr_writer: Any = None
        if with_output:
            self.stdout_writer, self.stdout = anyio.create_memory_object_stream(100)
            self.stderr_writer, self.stderr = anyio.create_memory_object_stream(100)

    def send_signal(self, sig: int) -> None:
        self.signals.append((sig, time.monotonic()))
        if self.exits_on_interrupt:
            self.finish(-int(sig))

    def kill(self) -> None:
        self.signals.append(("kill", time.monotonic()))
        self.finish(-9)

    def finish(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        for writer in (self.stdout_writer, self.stderr_writer):
            if writer is not None:
                writer.close()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    async def aclose(self) -> None:
        self.closed = True


class FakeSpawner:
    def __init__(self, *, exits_on_interrupt: bool = True, with_output: bool = False, fail_after: Optional[int] = None) -> None:
        self.exits_on_interrupt = exits_on_interrupt
        self.with_output = with_output
        self.fail_after = fail_after
        self.processes: List[FakeProcess] = []

    async def __call__(self, argv: Sequence[str]) -> FakeProcess:
        if self.fail_after is not None and len(self.processes) >= self.fail_after:
            raise FileNotFoundError(2, "No such file or directory", argv[0])
        process = FakeProcess(argv, exits_on_interrupt=self.exits_on_interrupt, with_output=self.with_output)
        self.processes.append(process)
        return process


class RecordingSink:
    def __init__(self) -> None:
        self.lines: List[Tuple[str, str, str]] = []
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def write_line(self, label: str, stream: str, line: str) -> None:
        self.lines.append((label, stream, line))

    async def write_event(self, label: str, message: str, **fields: Any) -> None:
        self.events.append((label, message, fields))


class StubTerminal:
    def __init__(self) -> None:
        self.opened: List[Tuple[List[str], str]] = []

    async def open(self, command: Sequence[str], title: str, fallback: Any) -> str:
        self.opened.append((list(command), title))
        return "stub"


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.005)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def terminal() -> StubTerminal:
    return StubTerminal()


@pytest.fixture
def supervisor(spawner: FakeSpawner, sink: RecordingSink, terminal: StubTerminal) -> PortForwardSupervisor:
    return PortForwardSupervisor(KubectlCommand(), spawn=spawner, sink=sink, terminal=terminal, grace_period=0.05)
