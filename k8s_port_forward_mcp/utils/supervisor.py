"""Lifecycle management for port-forward child processes.

The supervisor owns every forward it spawns. Spawning is fire-and-forget: each
process gets a watcher task in the supervisor's task group that relays its
output line by line to an :class:`OutputSink` (prefixed with the session
label) and drops the process from the registry as soon as it exits, so the
registry only ever holds live forwards.
"""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import sys
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import anyio
import anyio.abc
from anyio.streams.text import TextReceiveStream

from ..exceptions import ForwardStartError, SupervisorNotRunningError
from ..logging import get_logger
from .commands import KubectlCommand, render
from .models import ForwardSession
from .terminal import TerminalLauncher

logger = get_logger(__name__)

# kubectl port-forward shuts down cleanly on SIGINT; Windows only knows terminate.
GRACEFUL_SIGNAL = signal.SIGTERM if sys.platform == "win32" else signal.SIGINT
DEFAULT_GRACE_PERIOD = 0.5

StreamName = Literal["stdout", "stderr"]


@runtime_checkable
class ProcessHandle(Protocol):
    """The subset of :class:`anyio.abc.Process` the supervisor relies on."""

    @property
    def pid(self) -> int:
        ...

    @property
    def returncode(self) -> Optional[int]:
        ...

    @property
    def stdout(self) -> Optional[anyio.abc.ByteReceiveStream]:
        ...

    @property
    def stderr(self) -> Optional[anyio.abc.ByteReceiveStream]:
        ...

    def send_signal(self, sig: int) -> None:
        ...

    def kill(self) -> None:
        ...

    async def wait(self) -> int:
        ...

    async def aclose(self) -> None:
        ...


Spawner = Callable[[Sequence[str]], Awaitable[ProcessHandle]]


async def open_piped_process(argv: Sequence[str]) -> ProcessHandle:
    return await anyio.open_process(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


@runtime_checkable
class OutputSink(Protocol):
    """Consumer of relayed child output and lifecycle events."""

    async def write_line(self, label: str, stream: StreamName, line: str) -> None:
        ...

    async def write_event(self, label: str, message: str, **fields: Any) -> None:
        ...


class LogOutputSink:
    """Relays child output to the diagnostic log (stderr), one event per line."""

    def __init__(self, log: Any = None) -> None:
        self._log = log or get_logger("k8s_port_forward_mcp.forwards")

    async def write_line(self, label: str, stream: StreamName, line: str) -> None:
        self._log.info(f"[{label}] {line}", stream=stream)

    async def write_event(self, label: str, message: str, **fields: Any) -> None:
        self._log.info(f"[{label}] {message}", **fields)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class ManagedForward:
    session_id: str
    session: ForwardSession
    process: ProcessHandle
    command: List[str]
    started_at: str = field(default_factory=_utc_now_iso)

    @property
    def label(self) -> str:
        return self.session.label

    @property
    def pid(self) -> int:
        return self.process.pid


@dataclass
class DetachedProcess:
    """A headless log tail started because no terminal window could be opened."""

    label: str
    process: ProcessHandle


def _send(process: ProcessHandle, sig: int) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.send_signal(sig)


def _kill(process: ProcessHandle) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()


class PortForwardSupervisor:
    """Starts, tracks and stops port-forward processes.

    Use inside ``async with supervisor.running():``; leaving the context stops
    every process the supervisor still owns.
    """

    def __init__(
        self,
        command: Optional[KubectlCommand] = None,
        *,
        spawn: Optional[Spawner] = None,
        sink: Optional[OutputSink] = None,
        terminal: Optional[TerminalLauncher] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self.command = command or KubectlCommand()
        self.grace_period = grace_period
        self._spawn: Spawner = spawn or open_piped_process
        self._sink: OutputSink = sink or LogOutputSink()
        self._terminal = terminal or TerminalLauncher()
        self._forwards: Dict[str, ManagedForward] = {}
        self._detached: List[DetachedProcess] = []
        self._task_group: Optional[anyio.abc.TaskGroup] = None

    def __len__(self) -> int:
        return len(self._forwards)

    @property
    def is_running(self) -> bool:
        return self._task_group is not None

    def sessions(self) -> List[ManagedForward]:
        return list(self._forwards.values())

    @property
    def detached(self) -> List[DetachedProcess]:
        return list(self._detached)

    @asynccontextmanager
    async def running(self, *, handle_signals: bool = False) -> AsyncIterator["PortForwardSupervisor"]:
        """Own a task group for watcher tasks for the duration of the context.

        With ``handle_signals`` SIGINT/SIGTERM first interrupt every child and
        then take their default action (POSIX only).
        """

        if self._task_group is not None:
            raise RuntimeError("supervisor is already running")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if handle_signals and sys.platform != "win32":
                tg.start_soon(self._handle_signals)
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.stop()
                self._task_group = None
                tg.cancel_scope.cancel()

    def _require_task_group(self) -> anyio.abc.TaskGroup:
        if self._task_group is None:
            raise SupervisorNotRunningError("supervisor is not running")
        return self._task_group

    async def start(self, sessions: Sequence[ForwardSession]) -> List[ManagedForward]:
        """Spawn one forward per session without waiting for connectivity.

        If any spawn fails, the forwards already spawned by this call are
        killed and :class:`ForwardStartError` is raised.
        """

        tg = self._require_task_group()
        started: List[ManagedForward] = []
        for session in sessions:
            argv = self.command.port_forward(session)
            try:
                process = await self._spawn(argv)
            except OSError as exc:
                for managed in started:
                    self._forwards.pop(managed.session_id, None)
                    _kill(managed.process)
                raise ForwardStartError(f"could not start {render(argv)}: {exc}") from exc

            managed = ManagedForward(session_id=uuid.uuid4().hex[:8], session=session, process=process, command=argv)
            self._forwards[managed.session_id] = managed
            started.append(managed)
            tg.start_soon(self._watch_forward, managed)
            logger.info("forward_started", label=session.label, pid=process.pid, command=render(argv))

        for session in sessions:
            if session.include_logs:
                tg.start_soon(self._open_logs, session)

        return started

    async def stop(self) -> int:
        """Interrupt every forward, wait the grace period, kill what is left.

        Returns the number of forwards registered when the call started.
        Headless log tails are stopped as well but not counted.
        """

        forwards = list(self._forwards.values())
        detached = list(self._detached)
        count = len(forwards)

        for managed in forwards:
            _send(managed.process, GRACEFUL_SIGNAL)
        for item in detached:
            _send(item.process, GRACEFUL_SIGNAL)

        if forwards or detached:
            await anyio.sleep(self.grace_period)

        for process in [m.process for m in forwards] + [d.process for d in detached]:
            if process.returncode is None:
                _kill(process)

        self._forwards.clear()
        self._detached.clear()
        if count:
            logger.info("forwards_stopped", count=count)
        return count

    def interrupt_all(self) -> None:
        for managed in list(self._forwards.values()):
            _send(managed.process, GRACEFUL_SIGNAL)
        for item in list(self._detached):
            _send(item.process, GRACEFUL_SIGNAL)

    async def _handle_signals(self) -> None:
        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async for signum in signals:
                logger.info("host_signal", signal=signal.Signals(signum).name, children=len(self._forwards))
                self.interrupt_all()
                signal.signal(signum, signal.SIG_DFL)
                os.kill(os.getpid(), signum)
                return

    async def _watch_forward(self, managed: ManagedForward) -> None:
        exit_code = await self._supervise(managed.label, managed.process)
        if self._forwards.get(managed.session_id) is managed:
            del self._forwards[managed.session_id]
        await self._emit_event(managed.label, f"port-forward exited with code {exit_code}", exit_code=exit_code)

    async def _supervise(self, label: str, process: ProcessHandle) -> Optional[int]:
        """Relay output until the process exits; return its exit code."""

        exit_code: Optional[int] = None
        try:
            async with anyio.create_task_group() as tg:
                if process.stdout is not None:
                    tg.start_soon(self._relay, label, "stdout", process.stdout)
                if process.stderr is not None:
                    tg.start_soon(self._relay, label, "stderr", process.stderr)
                exit_code = await process.wait()
        except Exception:  # noqa: BLE001
            logger.exception("watcher_failed", label=label)
        finally:
            with anyio.CancelScope(shield=True):
                if process.returncode is None:
                    _kill(process)
                await process.aclose()
        return exit_code if exit_code is not None else process.returncode

    async def _relay(self, label: str, stream_name: StreamName, stream: anyio.abc.ByteReceiveStream) -> None:
        pending = ""
        try:
            async for chunk in TextReceiveStream(stream, errors="replace"):
                pending += chunk
                *lines, pending = pending.split("\n")
                for line in lines:
                    await self._emit_line(label, stream_name, line)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        if pending:
            await self._emit_line(label, stream_name, pending)

    async def _emit_line(self, label: str, stream_name: StreamName, line: str) -> None:
        line = line.rstrip("\r")
        if not line.strip():
            return
        try:
            await self._sink.write_line(label, stream_name, line)
        except Exception:  # noqa: BLE001
            logger.exception("output_sink_failed", label=label)

    async def _emit_event(self, label: str, message: str, **fields: Any) -> None:
        try:
            await self._sink.write_event(label, message, **fields)
        except Exception:  # noqa: BLE001
            logger.exception("output_sink_failed", label=label)

    async def _open_logs(self, session: ForwardSession) -> None:
        try:
            await self._terminal.open(self.command.logs(session), session.label, self._spawn_detached)
        except Exception:  # noqa: BLE001
            logger.exception("log_window_failed", label=session.label)

    async def _spawn_detached(self, command: Sequence[str], title: str) -> None:
        try:
            process = await self._spawn(command)
        except OSError as exc:
            logger.warning("log_tail_failed", label=title, command=render(command), error=str(exc))
            return

        item = DetachedProcess(label=f"{title} logs", process=process)
        self._detached.append(item)
        try:
            await self._supervise(item.label, process)
        finally:
            if item in self._detached:
                self._detached.remove(item)
