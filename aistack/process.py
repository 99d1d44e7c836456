"""
Detached process launching for supervised services.

Services are started in a new session with stdin from /dev/null and
stdout/stderr appended to a per-service log file, so they keep running after
the supervisor exits. Launched handles are kept in a ProcessTable owned by
the supervisor for later inspection; nothing ever waits on them beyond the
short launch grace period.
"""

import logging
import os
import shlex
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import ProcessLaunchFailure
from .registry import ServiceSpec

logger = logging.getLogger(__name__)

SHELL_TOKENS = ("&&", "||", "|", ";", ">", "<", "$(", "`")


@dataclass
class LaunchedProcess:
    """A process started by this supervisor."""

    service_name: str
    process: subprocess.Popen
    command: str
    log_path: Path
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def to_dict(self) -> dict:
        return {
            "service": self.service_name,
            "pid": self.pid,
            "command": self.command,
            "log_path": str(self.log_path),
            "started_at": self.started_at.isoformat(),
            "alive": self.is_alive(),
            "exit_code": self.process.returncode,
        }


class ProcessTable:
    """Handles of processes launched by one supervisor instance."""

    def __init__(self):
        self._processes: dict[str, LaunchedProcess] = {}
        self._lock = threading.Lock()

    def add(self, launched: LaunchedProcess):
        with self._lock:
            self._processes[launched.service_name] = launched

    def get(self, service_name: str) -> LaunchedProcess | None:
        with self._lock:
            return self._processes.get(service_name)

    def all(self) -> list[LaunchedProcess]:
        with self._lock:
            return list(self._processes.values())

    def get_all_running(self) -> list[str]:
        """Names of launched services whose process is still alive."""
        with self._lock:
            return [name for name, info in self._processes.items() if info.is_alive()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)


def build_command(command: str) -> tuple[list[str] | str, bool]:
    """
    Turn a start command into Popen arguments.

    Returns (cmd, shell). Commands using shell syntax run through the shell
    as-is; anything else is split and has ~ expanded in each argument.
    """
    stripped = command.strip()
    if stripped.startswith("cd ") or any(token in stripped for token in SHELL_TOKENS):
        return stripped, True
    return [os.path.expanduser(part) for part in shlex.split(stripped)], False


def launch_detached(spec: ServiceSpec, logs_dir: Path, grace: float = 0.5) -> LaunchedProcess:
    """
    Start a service's command detached from this process.

    Waits at most `grace` seconds to catch commands that fail immediately.
    A command that is still running, or that already exited 0, counts as
    launched. Raises ProcessLaunchFailure otherwise.
    """
    log_dir = Path(logs_dir) / spec.name
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "output.log"

    try:
        cmd, shell = build_command(spec.start_command)
    except ValueError as e:
        raise ProcessLaunchFailure(spec.name, f"cannot parse command: {e}") from e
    if not cmd:
        raise ProcessLaunchFailure(spec.name, "empty start command")

    with open(log_path, "a") as log_file:
        log_file.write(f"[{datetime.now().isoformat()}] starting: {spec.start_command}\n")
        log_file.flush()
        try:
            process = subprocess.Popen(
                cmd,
                shell=shell,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                env=os.environ.copy(),
                start_new_session=True,  # Survive the supervisor's terminal
            )
        except FileNotFoundError:
            raise ProcessLaunchFailure(spec.name, f"command not found: {spec.start_command}")
        except PermissionError:
            raise ProcessLaunchFailure(spec.name, f"permission denied: {spec.start_command}")
        except OSError as e:
            raise ProcessLaunchFailure(spec.name, str(e)) from e

    try:
        returncode = process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        returncode = None

    if returncode:
        raise ProcessLaunchFailure(
            spec.name, f"exited immediately with code {returncode} (see {log_path})"
        )

    logger.info(f"Started service {spec.name} with PID {process.pid}")
    return LaunchedProcess(
        service_name=spec.name,
        process=process,
        command=spec.start_command,
        log_path=log_path,
    )
