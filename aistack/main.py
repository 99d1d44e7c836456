"""
aistack status API.

Provides a small REST API to inspect the local AI stack: the service
registry, live per-service state, processes launched by this instance, and
the history of supervisory passes. POST /api/ensure runs a pass on demand.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from . import __version__
from .config import config
from .errors import RegistryError
from .logs import configure_logging
from .models import initialize_db, record_pass, recent_passes
from .monitor import find_listener, get_process_metrics
from .probe import ServiceState
from .registry import ServiceSpec, load_registry, select
from .supervisor import Supervisor

logger = logging.getLogger(__name__)

supervisor = Supervisor()
_registry: list[ServiceSpec] = None


def get_registry() -> list[ServiceSpec]:
    """Registry loaded once per process."""
    global _registry
    if _registry is None:
        _registry = load_registry(config)
    return _registry


def _get_spec(name: str) -> ServiceSpec:
    try:
        return select(get_registry(), [name])[0]
    except RegistryError:
        raise HTTPException(status_code=404, detail=f"Service '{name}' not found")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    configure_logging(config)
    initialize_db()
    registry = get_registry()
    logger.info(f"aistack API serving {len(registry)} services")
    yield
    # Launched services are detached and keep running
    logger.info("Shutting down aistack API")


app = FastAPI(
    title="aistack",
    description="Keeps the local AI service stack running",
    version=__version__,
    lifespan=lifespan,
)


# Pydantic models for API
class ListenerInfo(BaseModel):
    pid: Optional[int] = None
    name: Optional[str] = None


class ServiceResultResponse(BaseModel):
    name: str
    port: int
    outcome: str = Field(..., description="already_running, started or start_failed")
    pid: Optional[int] = None
    reason: Optional[str] = None
    listener: Optional[ListenerInfo] = None


class PassResponse(BaseModel):
    id: int
    ok: bool
    started_at: str
    finished_at: Optional[str]
    results: list[ServiceResultResponse]
    trigger: str = "api"


class EnsureResponse(PassResponse):
    lines: list[str] = []


def _state_response(spec: ServiceSpec, state: ServiceState) -> dict:
    launched = supervisor.processes.get(spec.name)
    return {
        "name": spec.name,
        "description": spec.description,
        "port": spec.port,
        "health_path": spec.health_path,
        "state": state.value,
        "listener": find_listener(spec.port) if state != ServiceState.UNREACHABLE else None,
        "launched_pid": launched.pid if launched else None,
    }


@app.get("/api/services")
async def list_services():
    """List registered services."""
    return [spec.to_dict() for spec in get_registry()]


@app.get("/api/status")
async def get_status():
    """Get the current state of every service."""
    loop = asyncio.get_event_loop()
    states = await loop.run_in_executor(None, supervisor.status, get_registry())
    services = [_state_response(spec, state) for spec, state in states]
    return {
        "services": services,
        "total": len(services),
        "running": sum(1 for s in services if s["state"] == ServiceState.RUNNING.value),
    }


@app.get("/api/services/{name}/status")
async def get_service_status(name: str):
    """Get the current state of one service."""
    spec = _get_spec(name)
    loop = asyncio.get_event_loop()
    state = await loop.run_in_executor(None, supervisor.state, spec)
    return _state_response(spec, state)


@app.post("/api/ensure", response_model=EnsureResponse)
async def ensure(only: Optional[list[str]] = Query(None, description="Restrict to these services")):
    """Run a supervisory pass and record it."""
    try:
        registry = select(get_registry(), only or [])
    except RegistryError as e:
        raise HTTPException(status_code=404, detail=str(e))

    loop = asyncio.get_event_loop()
    report = await loop.run_in_executor(None, supervisor.ensure_all, registry)
    record = record_pass(report, trigger="api")

    data = report.to_dict()
    data["id"] = record.id
    data["lines"] = report.lines()
    return data


@app.get("/api/passes", response_model=list[PassResponse])
async def list_passes(limit: int = Query(20, ge=1, le=200)):
    """Get recent supervisory passes, newest first."""
    return [p.to_dict() for p in recent_passes(limit)]


@app.get("/api/processes")
async def list_processes():
    """Processes launched by this API instance."""
    processes = []
    for launched in supervisor.processes.all():
        data = launched.to_dict()
        data["metrics"] = get_process_metrics(launched)
        processes.append(data)
    return processes


@app.get("/api/supervisor/logs")
async def get_supervisor_logs(lines: int = Query(100, ge=1, le=1000)):
    """Get recent supervisor log entries."""
    try:
        with open(config.supervisor_log, "r") as f:
            all_lines = f.readlines()
            return {"lines": all_lines[-lines:], "total": len(all_lines)}
    except FileNotFoundError:
        return {"lines": [], "total": 0}
