"""
Service supervisor.

One supervisory pass probes every registered service's port and launches the
start command of each service that is not listening. Services are handled
concurrently and independently: a failed launch is reported and left alone,
it never stops the others and is never retried.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .config import Config, config
from .errors import ProcessLaunchFailure
from .monitor import find_listener
from .probe import ServiceState, probe_liveness, service_state
from .process import LaunchedProcess, ProcessTable, launch_detached
from .registry import ServiceSpec

logger = logging.getLogger(__name__)


class Outcome(Enum):
    ALREADY_RUNNING = "already_running"
    STARTED = "started"
    START_FAILED = "start_failed"


@dataclass
class ServiceResult:
    """Outcome of one service in a supervisory pass."""

    spec: ServiceSpec
    outcome: Outcome
    pid: Optional[int] = None
    reason: Optional[str] = None
    listener: Optional[dict] = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def port(self) -> int:
        return self.spec.port

    def line(self) -> str:
        """Human-readable report line."""
        label = f"{self.spec.label} (port {self.port})"
        if self.outcome == Outcome.STARTED:
            return f"✓ {label} started, PID {self.pid}"
        if self.outcome == Outcome.ALREADY_RUNNING:
            owner = ""
            if self.listener and self.listener.get("pid"):
                owner = f" by {self.listener.get('name') or 'process'} [{self.listener['pid']}]"
            elif self.pid:
                owner = f", launched earlier as PID {self.pid}"
            return f"• {label} already running{owner}"
        return f"✗ {label} failed to start: {self.reason}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "port": self.port,
            "outcome": self.outcome.value,
            "pid": self.pid,
            "reason": self.reason,
            "listener": self.listener,
        }


@dataclass
class SummaryReport:
    """Per-service outcomes of one pass, in registry order."""

    results: list[ServiceResult]
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return all(r.outcome != Outcome.START_FAILED for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def failed(self) -> list[ServiceResult]:
        return [r for r in self.results if r.outcome == Outcome.START_FAILED]

    def get(self, name: str) -> ServiceResult | None:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def lines(self) -> list[str]:
        return [r.line() for r in self.results]

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results],
        }


class Supervisor:
    """Ensures registered services are running."""

    def __init__(
        self,
        cfg: Config = config,
        processes: ProcessTable = None,
        launcher: Callable[..., LaunchedProcess] = launch_detached,
        inspect_listeners: bool = True,
    ):
        self.config = cfg
        self.processes = processes if processes is not None else ProcessTable()
        self._launcher = launcher
        self._inspect_listeners = inspect_listeners
        self._service_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _service_lock(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._service_locks.setdefault(name, threading.Lock())

    def probe_liveness(self, port: int) -> bool:
        """True if something accepts connections on the port."""
        return probe_liveness(port, self.config.probe_host, self.config.probe_timeout)

    def start_service(self, spec: ServiceSpec) -> LaunchedProcess:
        """Launch a service detached and record its handle. Raises ProcessLaunchFailure."""
        launched = self._launcher(spec, self.config.logs_dir, self.config.launch_grace)
        self.processes.add(launched)
        return launched

    def ensure_service(self, spec: ServiceSpec) -> ServiceResult:
        """Probe one service and start it if nothing is listening."""
        # Overlapping passes must not both see the port closed and launch twice
        with self._service_lock(spec.name):
            return self._ensure_service(spec)

    def _ensure_service(self, spec: ServiceSpec) -> ServiceResult:
        if self.probe_liveness(spec.port):
            listener = find_listener(spec.port) if self._inspect_listeners else None
            logger.info(f"Service {spec.name} is already running on port {spec.port}")
            return ServiceResult(spec, Outcome.ALREADY_RUNNING, listener=listener)

        # Launched by us earlier but not listening yet (e.g. still loading a model)
        previous = self.processes.get(spec.name)
        if previous and previous.is_alive():
            logger.info(f"Service {spec.name} (PID {previous.pid}) is still starting")
            return ServiceResult(spec, Outcome.ALREADY_RUNNING, pid=previous.pid)

        logger.info(f"Starting service {spec.name}: {spec.start_command}")
        try:
            launched = self.start_service(spec)
        except ProcessLaunchFailure as e:
            logger.error(str(e))
            return ServiceResult(spec, Outcome.START_FAILED, reason=e.reason)

        return ServiceResult(spec, Outcome.STARTED, pid=launched.pid)

    def ensure_all(self, registry: list[ServiceSpec]) -> SummaryReport:
        """Run one supervisory pass over the registry."""
        report = SummaryReport(results=[])
        if not registry:
            report.finished_at = datetime.now()
            return report

        with ThreadPoolExecutor(max_workers=len(registry), thread_name_prefix="ensure") as pool:
            futures = [(spec, pool.submit(self.ensure_service, spec)) for spec in registry]

            for spec, future in futures:
                try:
                    result = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected error ensuring {spec.name}")
                    result = ServiceResult(spec, Outcome.START_FAILED, reason=str(e))
                report.results.append(result)

        report.finished_at = datetime.now()
        logger.info(
            f"Supervisory pass finished: {len(report.results)} services, "
            f"{len(report.failed)} failed"
        )
        return report

    def state(self, spec: ServiceSpec) -> ServiceState:
        return service_state(
            spec,
            self.config.probe_host,
            self.config.probe_timeout,
            self.config.health_timeout,
        )

    def status(self, registry: list[ServiceSpec]) -> list[tuple[ServiceSpec, ServiceState]]:
        """Current state of every service, in registry order."""
        if not registry:
            return []
        with ThreadPoolExecutor(max_workers=len(registry), thread_name_prefix="status") as pool:
            states = list(pool.map(self.state, registry))
        return list(zip(registry, states))

    def wait_until_ready(
        self, spec: ServiceSpec, timeout: float = 60.0, interval: float = 1.0
    ) -> ServiceState:
        """Poll a service until it is RUNNING or the timeout expires. Returns the last state."""
        deadline = time.monotonic() + timeout
        while True:
            current = self.state(spec)
            if current == ServiceState.RUNNING:
                return current
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Service {spec.name} not ready after {timeout}s ({current.value})")
                return current
            time.sleep(min(interval, remaining))
