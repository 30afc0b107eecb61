import contextlib
import os
import signal
import sys

import anyio
import pytest

from k8s_port_forward_mcp.exceptions import ForwardStartError, SupervisorNotRunningError
from k8s_port_forward_mcp.utils.commands import KubectlCommand
from k8s_port_forward_mcp.utils.models import ForwardSession
from k8s_port_forward_mcp.utils.supervisor import GRACEFUL_SIGNAL, PortForwardSupervisor
from k8s_port_forward_mcp.utils.terminal import TerminalLauncher

from conftest import FakeSpawner, RecordingSink, wait_until

pytestmark = pytest.mark.asyncio


def _session(port: int = 3000, include_logs: bool = False) -> ForwardSession:
    return ForwardSession(
        namespace="billing",
        pod_name="dev-billing-api-7f9c4-2x4kq",
        local_port=port,
        remote_port=8080,
        label=f"dev~api:{port}",
        include_logs=include_logs,
        environment="dev",
    )


async def test_start_requires_running_context(supervisor):
    with pytest.raises(SupervisorNotRunningError):
        await supervisor.start([_session()])


async def test_start_spawns_port_forward_commands(supervisor, spawner):
    async with supervisor.running():
        started = await supervisor.start([_session(3000), _session(3001)])

        assert len(started) == 2
        assert len(supervisor) == 2
        assert spawner.processes[0].argv == [
            "kubectl",
            "port-forward",
            "--namespace",
            "billing",
            "dev-billing-api-7f9c4-2x4kq",
            "3000:8080",
        ]
        assert [f.label for f in supervisor.sessions()] == ["dev~api:3000", "dev~api:3001"]


async def test_stop_interrupts_and_clears(supervisor, spawner):
    async with supervisor.running():
        await supervisor.start([_session(3000), _session(3001)])

        assert await supervisor.stop() == 2
        assert len(supervisor) == 0
        for process in spawner.processes:
            assert [sig for sig, _ in process.signals] == [GRACEFUL_SIGNAL]

        assert await supervisor.stop() == 0


async def test_stop_kills_after_grace_period(sink, terminal):
    spawner = FakeSpawner(exits_on_interrupt=False)
    supervisor = PortForwardSupervisor(KubectlCommand(), spawn=spawner, sink=sink, terminal=terminal, grace_period=0.05)

    async with supervisor.running():
        await supervisor.start([_session()])
        assert await supervisor.stop() == 1

    process = spawner.processes[0]
    assert [sig for sig, _ in process.signals] == [GRACEFUL_SIGNAL, "kill"]
    (_, interrupted_at), (_, killed_at) = process.signals
    assert killed_at - interrupted_at >= 0.04
    assert process.returncode == -9


async def test_exited_forward_leaves_registry(supervisor, spawner, sink):
    async with supervisor.running():
        await supervisor.start([_session(3000), _session(3001)])
        spawner.processes[0].finish(1)

        await wait_until(lambda: len(supervisor) == 1)
        await wait_until(lambda: sink.events)

        assert [m.session.local_port for m in supervisor.sessions()] == [3001]
        label, message, fields = sink.events[0]
        assert label == "dev~api:3000"
        assert message == "port-forward exited with code 1"
        assert fields["exit_code"] == 1
        assert spawner.processes[0].closed


async def test_output_is_relayed_with_label(sink, terminal):
    spawner = FakeSpawner(with_output=True)
    supervisor = PortForwardSupervisor(KubectlCommand(), spawn=spawner, sink=sink, terminal=terminal)

    async with supervisor.running():
        await supervisor.start([_session()])
        process = spawner.processes[0]
        await process.stdout_writer.send(b"Forwarding from 127.0.0.1:3000 -> 8080\nForwarding from ")
        await process.stdout_writer.send(b"[::1]:3000 -> 8080\n\n")
        await process.stderr_writer.send(b"error: lost connection to pod\r\n")

        await wait_until(lambda: len(sink.lines) == 3)

    assert sorted(sink.lines) == [
        ("dev~api:3000", "stderr", "error: lost connection to pod"),
        ("dev~api:3000", "stdout", "Forwarding from 127.0.0.1:3000 -> 8080"),
        ("dev~api:3000", "stdout", "Forwarding from [::1]:3000 -> 8080"),
    ]


async def test_spawn_failure_rolls_back_batch(sink, terminal):
    spawner = FakeSpawner(fail_after=1)
    supervisor = PortForwardSupervisor(KubectlCommand(), spawn=spawner, sink=sink, terminal=terminal)

    async with supervisor.running():
        with pytest.raises(ForwardStartError):
            await supervisor.start([_session(3000), _session(3001)])

        assert len(supervisor) == 0
        assert [sig for sig, _ in spawner.processes[0].signals] == ["kill"]


async def test_leaving_context_stops_forwards(supervisor, spawner):
    async with supervisor.running():
        await supervisor.start([_session()])

    assert not supervisor.is_running
    assert len(supervisor) == 0
    assert spawner.processes[0].returncode is not None


async def test_running_twice_is_an_error(supervisor):
    async with supervisor.running():
        with pytest.raises(RuntimeError):
            async with supervisor.running():
                pass


async def test_log_window_opened_for_sessions_with_logs(supervisor, terminal):
    async with supervisor.running():
        await supervisor.start([_session(3000, include_logs=True), _session(3001)])

        await wait_until(lambda: terminal.opened)
        await anyio.sleep(0.01)

    assert terminal.opened == [
        (["kubectl", "logs", "--namespace", "billing", "dev-billing-api-7f9c4-2x4kq", "-f"], "dev~api:3000"),
    ]


async def test_headless_log_tail_when_no_window_strategy(spawner):
    supervisor = PortForwardSupervisor(
        KubectlCommand(),
        spawn=spawner,
        sink=RecordingSink(),
        terminal=TerminalLauncher(strategies=[]),
        grace_period=0.01,
    )

    async with supervisor.running():
        await supervisor.start([_session(include_logs=True)])
        await wait_until(lambda: len(supervisor.detached) == 1)

        assert spawner.processes[1].argv[1] == "logs"
        # headless tails are not counted as forwards
        assert await supervisor.stop() == 1

    assert spawner.processes[1].returncode is not None


async def test_interrupt_all_signals_forwards_and_log_tails():
    spawner = FakeSpawner(exits_on_interrupt=False)
    supervisor = PortForwardSupervisor(
        KubectlCommand(),
        spawn=spawner,
        sink=RecordingSink(),
        terminal=TerminalLauncher(strategies=[]),
        grace_period=0.01,
    )

    async with supervisor.running():
        await supervisor.start([_session(3000, include_logs=True), _session(3001)])
        await wait_until(lambda: len(supervisor.detached) == 1)

        supervisor.interrupt_all()

        assert len(spawner.processes) == 3
        for process in spawner.processes:
            assert [sig for sig, _ in process.signals] == [GRACEFUL_SIGNAL]
        # interrupting does not forget the processes; stop still owns them
        assert len(supervisor) == 2


@pytest.mark.skipif(sys.platform == "win32", reason="host signal handling is POSIX only")
async def test_host_signal_interrupts_children_then_restores_default(supervisor, spawner, monkeypatch):
    delivered = anyio.Event()
    calls = []

    @contextlib.contextmanager
    def fake_signal_receiver(*signals):
        calls.append(("listen", signals))

        async def receive():
            await delivered.wait()
            yield signal.SIGTERM

        yield receive()

    monkeypatch.setattr(anyio, "open_signal_receiver", fake_signal_receiver)
    monkeypatch.setattr(signal, "signal", lambda signum, handler: calls.append(("handler", signum, handler)))
    monkeypatch.setattr(os, "kill", lambda pid, signum: calls.append(("kill", pid, signum)))

    async with supervisor.running(handle_signals=True):
        await supervisor.start([_session(3000), _session(3001)])
        delivered.set()

        await wait_until(lambda: any(call[0] == "kill" for call in calls))

        for process in spawner.processes:
            assert [sig for sig, _ in process.signals] == [GRACEFUL_SIGNAL]

    assert calls == [
        ("listen", (signal.SIGINT, signal.SIGTERM)),
        ("handler", signal.SIGTERM, signal.SIG_DFL),
        ("kill", os.getpid(), signal.SIGTERM),
    ]
