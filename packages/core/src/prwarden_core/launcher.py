"""Process Launch Controller.

Starts an external command (usually the AI agent) in one of four execution
targets. Each target is a Launcher variant behind one interface:

    new-instance   a fresh process; started/failed is read from its exit code
    same-space     reuse the current terminal workspace via UI automation
    new-tab        a new tab in the running terminal via UI automation
    new-window     a new terminal window via UI automation

UI automation does not report whether the command actually ran, so the
automation launchers wrap the command so that it first writes a marker file,
and treat the launch as started once the marker shows up. Automation is flaky:
a launch that never produces its marker is retried, and when every attempt
fails the controller degrades to new-instance instead of doing nothing.

Which launchers exist on a platform is decided once, in ``build_controller``.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path

from prwarden_core.errors import LaunchError

logger = logging.getLogger(__name__)

_RETRY_PAUSE_SEC = 0.3
_MARKER_POLL_SEC = 0.2


class LaunchMode(str, Enum):
    NEW_INSTANCE = "new-instance"
    SAME_SPACE = "same-space"
    NEW_TAB = "new-tab"
    NEW_WINDOW = "new-window"

    @classmethod
    def parse(cls, value: str | None) -> LaunchMode | None:
        """Parse a configured mode. ``auto`` (or empty) returns None: use the platform default."""
        text = (value or "").strip().lower()
        if text in ("", "auto"):
            return None
        for mode in cls:
            if mode.value == text:
                return mode
        choices = ", ".join(["auto"] + [m.value for m in cls])
        raise ValueError(f"Invalid launch mode {value!r}. Expected one of: {choices}")


class CompletionSignal(str, Enum):
    EXIT_CODE = "exit-code"
    SENTINEL = "sentinel"


@dataclass
class LaunchOutcome:
    requested_mode: LaunchMode
    used_mode: LaunchMode
    started: bool
    signal: CompletionSignal
    attempts: int = 1
    exit_code: int | None = None
    degraded: bool = False
    error: str | None = None
    marker_path: str | None = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["requested_mode"] = self.requested_mode.value
        d["used_mode"] = self.used_mode.value
        d["signal"] = self.signal.value
        return d


# ---------------------------------------------------------------------------
# Command runner
# ---------------------------------------------------------------------------


@dataclass
class CommandResult:
    returncode: int
    stderr: str = ""


class CommandRunner(ABC):
    """Seam between launchers and the operating system."""

    @abstractmethod
    def spawn(self, argv: Sequence[str], cwd: str | None = None):
        """Start ``argv`` without waiting. Returns an object with ``poll()`` and ``returncode``."""

    @abstractmethod
    def run(self, argv: Sequence[str], timeout: float | None = None) -> CommandResult:
        """Run ``argv`` to completion."""


class SubprocessRunner(CommandRunner):
    def spawn(self, argv, cwd=None):
        return subprocess.Popen(
            list(argv),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def run(self, argv, timeout=None):
        try:
            completed = subprocess.run(
                list(argv), stdin=subprocess.DEVNULL, capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return CommandResult(returncode=-1, stderr=f"{argv[0]} timed out after {timeout}s")
        return CommandResult(returncode=completed.returncode, stderr=(completed.stderr or "").strip())


def shell_command(command: str, cwd: str | None = None) -> str:
    """Prefix ``command`` with a cd into ``cwd`` when given."""
    if not cwd:
        return command
    return f"cd {shlex.quote(str(cwd))} && {command}"


# ---------------------------------------------------------------------------
# Launchers
# ---------------------------------------------------------------------------


class Launcher(ABC):
    mode: LaunchMode

    @abstractmethod
    def launch(self, command: str, cwd: str | None = None) -> LaunchOutcome:
        """Start ``command``. Never raises for launch failures; see ``LaunchOutcome.started``."""


class NewInstanceLauncher(Launcher):
    """Starts a brand-new process and judges it by its exit code.

    A process still running after ``startup_timeout`` seconds, or one that
    exited 0 within it (e.g. ``open -na`` handing off to a terminal app), has
    started. A non-zero exit within the window is a failed launch.
    """

    mode = LaunchMode.NEW_INSTANCE

    def __init__(
        self,
        runner: CommandRunner,
        argv_for: Callable[[str], list[str]] | None = None,
        startup_timeout: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._runner = runner
        self._argv_for = argv_for or (lambda command_line: ["bash", "-lc", command_line])
        self._startup_timeout = startup_timeout
        self._sleep = sleep
        self._clock = clock

    def launch(self, command, cwd=None):
        outcome = LaunchOutcome(
            requested_mode=self.mode, used_mode=self.mode, started=False, signal=CompletionSignal.EXIT_CODE
        )
        try:
            proc = self._runner.spawn(self._argv_for(shell_command(command, cwd)), cwd=cwd)
        except OSError as e:
            outcome.error = f"could not start process: {e}"
            return outcome

        deadline = self._clock() + self._startup_timeout
        while proc.poll() is None and self._clock() < deadline:
            self._sleep(0.05)

        outcome.exit_code = proc.returncode
        if proc.returncode not in (None, 0):
            outcome.error = f"process exited with code {proc.returncode} during startup"
        else:
            outcome.started = True
        return outcome


class AutomationLauncher(Launcher):
    """Drives an already-running terminal through an automation command.

    ``argv_for`` turns the wrapped shell command line into the automation argv
    (for example ``osascript -e <script>``). Completion is signalled by the
    marker file the wrapped command writes before running the real command.
    """

    def __init__(
        self,
        mode: LaunchMode,
        runner: CommandRunner,
        argv_for: Callable[[str], list[str]],
        max_attempts: int = 1,
        verify_timeout: float = 10.0,
        marker_dir: str | Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.mode = mode
        self._runner = runner
        self._argv_for = argv_for
        self._max_attempts = max(1, max_attempts)
        self._verify_timeout = verify_timeout
        self._marker_dir = Path(marker_dir) if marker_dir else Path(tempfile.gettempdir()) / "prwarden-launch"
        self._sleep = sleep
        self._clock = clock

    def _wait_for_marker(self, marker: Path, token: str) -> bool:
        deadline = self._clock() + self._verify_timeout
        while True:
            try:
                if token in marker.read_text(encoding="utf-8"):
                    return True
            except OSError:
                pass  # not written yet
            if self._clock() >= deadline:
                return False
            self._sleep(_MARKER_POLL_SEC)

    def launch(self, command, cwd=None):
        self._marker_dir.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        marker = self._marker_dir / f"launch-{token}.marker"
        wrapped = f"printf '%s\\n' {shlex.quote(token)} > {shlex.quote(str(marker))}; {shell_command(command, cwd)}"
        outcome = LaunchOutcome(
            requested_mode=self.mode,
            used_mode=self.mode,
            started=False,
            signal=CompletionSignal.SENTINEL,
            attempts=0,
            marker_path=str(marker),
        )

        for attempt in range(1, self._max_attempts + 1):
            outcome.attempts = attempt
            marker.unlink(missing_ok=True)
            try:
                result = self._runner.run(self._argv_for(wrapped), timeout=self._verify_timeout)
            except OSError as e:
                result = CommandResult(returncode=-1, stderr=str(e))
            outcome.exit_code = result.returncode

            if result.returncode != 0:
                outcome.error = f"automation command failed: {result.stderr or 'exit code ' + str(result.returncode)}"
            elif self._wait_for_marker(marker, token):
                outcome.started = True
                outcome.error = None
                break
            else:
                outcome.error = f"no launch marker within {self._verify_timeout:g}s"

            logger.warning(
                "%s launch attempt %d/%d did not start: %s", self.mode.value, attempt, self._max_attempts, outcome.error
            )
            if attempt < self._max_attempts:
                self._sleep(_RETRY_PAUSE_SEC)

        marker.unlink(missing_ok=True)
        return outcome


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class LaunchController:
    """Dispatches a launch to the launcher for the requested mode.

    Reuse modes that fail (or do not exist on this platform) degrade to
    new-instance. LaunchError is raised only when new-instance fails too.
    """

    def __init__(self, launchers: dict[LaunchMode, Launcher], default_mode: LaunchMode = LaunchMode.NEW_INSTANCE):
        if LaunchMode.NEW_INSTANCE not in launchers:
            raise ValueError("A new-instance launcher is required as the fallback")
        self._launchers = dict(launchers)
        self.default_mode = default_mode

    @property
    def modes(self) -> list[LaunchMode]:
        return list(self._launchers)

    def launch(self, command: str, mode: LaunchMode | None = None, cwd: str | None = None) -> LaunchOutcome:
        requested = mode or self.default_mode
        attempts = 0
        reason = None

        if requested is not LaunchMode.NEW_INSTANCE:
            launcher = self._launchers.get(requested)
            if launcher is None:
                reason = f"{requested.value} is not available on this platform"
            else:
                outcome = launcher.launch(command, cwd)
                if outcome.started:
                    logger.info("Launched in %s (attempt %d)", requested.value, outcome.attempts)
                    return outcome
                attempts = outcome.attempts
                reason = outcome.error
            logger.warning("%s launch failed (%s); falling back to new-instance", requested.value, reason)

        outcome = self._launchers[LaunchMode.NEW_INSTANCE].launch(command, cwd)
        outcome.requested_mode = requested
        outcome.degraded = requested is not LaunchMode.NEW_INSTANCE
        outcome.attempts += attempts
        if not outcome.started:
            detail = outcome.error if reason is None else f"{reason}; new-instance: {outcome.error}"
            raise LaunchError(f"Could not launch {command.split(' ', 1)[0]!r}: {detail}", outcome)
        logger.info("Launched in new-instance%s", " (degraded)" if outcome.degraded else "")
        return outcome


# ---------------------------------------------------------------------------
# macOS automation scripts
# ---------------------------------------------------------------------------


def _escape_applescript(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _app_name(app: str) -> str:
    name = app.strip()
    return name[: -len(".app")].strip() if name.lower().endswith(".app") else name


def _is_terminal(app: str) -> bool:
    return _app_name(app).lower() == "terminal"


def _is_ghostty(app: str) -> bool:
    return _app_name(app).lower() == "ghostty"


def terminal_do_script(command_line: str, in_front_window: bool = False) -> list[str]:
    target = " in front window" if in_front_window else ""
    command = _escape_applescript(command_line)
    script = (
        'tell application "Terminal"\n'
        "    activate\n"
        f'    if (count of windows) is 0 then\n        do script "{command}"\n'
        f'    else\n        do script "{command}"{target}\n    end if\n'
        "end tell"
    )
    return ["osascript", "-e", script]


def keystroke_new_tab(app: str, command_line: str) -> list[str]:
    """Open a tab with Cmd-T and paste the command, restoring the clipboard afterwards."""
    name = _escape_applescript(_app_name(app))
    command = _escape_applescript(command_line)
    script = f"""set launchCmd to "{command}"
set oldClipboard to ""
try
    set oldClipboard to (the clipboard as text)
end try
set the clipboard to launchCmd
tell application "{name}" to activate
delay 0.25
tell application "System Events"
    keystroke "t" using command down
    delay 0.25
    keystroke "v" using command down
    delay 0.1
    key code 36
end tell
delay 0.2
try
    set the clipboard to oldClipboard
end try"""
    return ["osascript", "-e", script]


def open_app(app: str, command_line: str, new_instance: bool) -> list[str]:
    return ["open", "-na" if new_instance else "-a", app, "--args", "-e", "bash", "-lc", command_line]


def _automation_argv(mode: LaunchMode, app: str) -> Callable[[str], list[str]]:
    if _is_terminal(app):
        return lambda line: terminal_do_script(line, in_front_window=mode is LaunchMode.NEW_TAB)
    if _is_ghostty(app) and mode in (LaunchMode.NEW_TAB, LaunchMode.SAME_SPACE):
        return lambda line: keystroke_new_tab(app, line)
    # Ghostty's new-window action is not scriptable on macOS; a fresh instance is the closest match.
    return lambda line: open_app(app, line, new_instance=_is_ghostty(app))


# new-tab automation misfires more often than the others; give it more attempts.
DEFAULT_MAX_ATTEMPTS = {
    LaunchMode.NEW_TAB: 3,
    LaunchMode.SAME_SPACE: 2,
    LaunchMode.NEW_WINDOW: 1,
}


def build_controller(
    launch_config: dict | None = None,
    runner: CommandRunner | None = None,
    platform: str | None = None,
) -> LaunchController:
    """Create the controller for this platform from the ``launch`` config section."""
    cfg = launch_config or {}
    runner = runner or SubprocessRunner()
    platform = platform or sys.platform
    app = (cfg.get("terminal_app") or "Terminal").strip()
    startup_timeout = float(cfg.get("startup_timeout", 2.0))
    verify_timeout = float(cfg.get("verify_timeout", 10.0))
    requested = LaunchMode.parse(cfg.get("mode"))

    if platform == "darwin":
        new_instance = NewInstanceLauncher(
            runner, argv_for=lambda line: open_app(app, line, new_instance=True), startup_timeout=startup_timeout
        )
        launchers: dict[LaunchMode, Launcher] = {LaunchMode.NEW_INSTANCE: new_instance}
        for mode, attempts in DEFAULT_MAX_ATTEMPTS.items():
            launchers[mode] = AutomationLauncher(
                mode, runner, _automation_argv(mode, app), max_attempts=attempts, verify_timeout=verify_timeout
            )
        default = LaunchMode.NEW_WINDOW if _is_terminal(app) else LaunchMode.NEW_INSTANCE
    else:
        launchers = {LaunchMode.NEW_INSTANCE: NewInstanceLauncher(runner, startup_timeout=startup_timeout)}
        default = LaunchMode.NEW_INSTANCE

    return LaunchController(launchers, default_mode=requested or default)
