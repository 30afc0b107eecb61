"""Opening log-tailing commands in a new terminal window.

Each platform has an ordered list of window strategies. A strategy is skipped
when its binary is missing and counts as failed when it cannot be spawned or
exits non-zero; after the last one the caller-provided headless fallback runs
the command as a plain background process. Nothing here raises to the caller.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Union

import anyio

from ..logging import get_logger
from .commands import render

logger = get_logger(__name__)

HEADLESS = "headless"

# A string is run through the platform shell, a list is exec'd directly.
LaunchCommand = Union[str, List[str]]
ArgvBuilder = Callable[[str, str], LaunchCommand]
Runner = Callable[[LaunchCommand], Awaitable[int]]
Fallback = Callable[[Sequence[str], str], Awaitable[None]]


def _applescript_quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _keep_open(command: str) -> str:
    return f"{command}; exec bash"


@dataclass(frozen=True)
class WindowStrategy:
    name: str
    binary: str
    build: ArgvBuilder
    needs_display: bool = False

    def available(self) -> bool:
        if self.needs_display and not (os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")):
            return False
        return shutil.which(self.binary) is not None

    def argv(self, command: str, title: str) -> LaunchCommand:
        return self.build(command, title)


def windows_strategies() -> List[WindowStrategy]:
    return [
        # start only takes its first argument as the window title when it is quoted
        WindowStrategy("cmd-start", "cmd", lambda cmd, title: f'start "{title}" cmd.exe /k {cmd}'),
    ]


def macos_strategies() -> List[WindowStrategy]:
    def _terminal_app(cmd: str, title: str) -> List[str]:
        return [
            "osascript",
            "-e",
            'tell application "Terminal"',
            "-e",
            f'set newTab to do script "{_applescript_quote(cmd)}"',
            "-e",
            f'set custom title of newTab to "{_applescript_quote(title)}"',
            "-e",
            "activate",
            "-e",
            "end tell",
        ]

    return [WindowStrategy("osascript-terminal", "osascript", _terminal_app)]


def linux_strategies() -> List[WindowStrategy]:
    return [
        WindowStrategy(
            "gnome-terminal",
            "gnome-terminal",
            lambda cmd, title: ["gnome-terminal", f"--title={title}", "--", "bash", "-c", _keep_open(cmd)],
            needs_display=True,
        ),
        WindowStrategy(
            "x-terminal-emulator",
            "x-terminal-emulator",
            lambda cmd, title: ["x-terminal-emulator", "-T", title, "-e", "bash", "-c", _keep_open(cmd)],
            needs_display=True,
        ),
        WindowStrategy(
            "konsole",
            "konsole",
            lambda cmd, title: ["konsole", "-p", f"tabtitle={title}", "-e", "bash", "-c", _keep_open(cmd)],
            needs_display=True,
        ),
        WindowStrategy(
            "xterm",
            "xterm",
            lambda cmd, title: ["xterm", "-T", title, "-e", "bash", "-c", _keep_open(cmd)],
            needs_display=True,
        ),
    ]


def default_strategies(platform: Optional[str] = None) -> List[WindowStrategy]:
    platform = platform or sys.platform
    if platform == "win32":
        return windows_strategies()
    if platform == "darwin":
        return macos_strategies()
    return linux_strategies()


async def _run_to_exit(command: LaunchCommand) -> int:
    # Terminal launchers usually return right away; xterm stays until the window closes.
    proc = await anyio.run_process(
        command if isinstance(command, str) else list(command),
        check=False,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    )
    if proc.returncode != 0 and proc.stderr:
        logger.debug(
            "terminal_stderr",
            command=command if isinstance(command, str) else command[0],
            stderr=proc.stderr.decode("utf-8", errors="replace").strip(),
        )
    return proc.returncode


class TerminalLauncher:
    """Runs a command in the first terminal window strategy that works."""

    def __init__(self, strategies: Optional[Sequence[WindowStrategy]] = None, *, runner: Optional[Runner] = None) -> None:
        self.strategies: List[WindowStrategy] = list(strategies) if strategies is not None else default_strategies()
        self._runner: Runner = runner or _run_to_exit

    async def open(self, command: Sequence[str], title: str, fallback: Fallback) -> str:
        """Open ``command`` in a window titled ``title``.

        Returns the name of the strategy that handled it, ``"headless"`` when
        the fallback ran.
        """

        text = render(command)
        for strategy in self.strategies:
            if not strategy.available():
                continue
            try:
                exit_code = await self._runner(strategy.argv(text, title))
            except OSError as exc:
                logger.warning("terminal_open_failed", strategy=strategy.name, title=title, error=str(exc))
                continue
            if exit_code == 0:
                logger.info("terminal_opened", strategy=strategy.name, title=title)
                return strategy.name
            logger.warning("terminal_open_failed", strategy=strategy.name, title=title, exit_code=exit_code)

        logger.info("terminal_fallback_headless", title=title, command=text)
        await fallback(command, title)
        return HEADLESS
