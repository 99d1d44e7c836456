"""
Process inspection for supervised services.

Looks up which process currently listens on a service port (the only way to
spot an unrelated process squatting on it) and collects CPU and memory
usage of processes this supervisor launched.
"""

import logging
from datetime import datetime

import psutil

from .process import LaunchedProcess

logger = logging.getLogger(__name__)


def find_listener(port: int) -> dict | None:
    """Return {"pid", "name"} of the process listening on a TCP port, if visible."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        # macOS needs root for system-wide connection listing
        logger.debug("Access denied listing connections")
        return None

    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
            continue
        if conn.pid is None:
            return {"pid": None, "name": None}
        try:
            return {"pid": conn.pid, "name": psutil.Process(conn.pid).name()}
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return {"pid": conn.pid, "name": None}
    return None


def get_process_metrics(launched: LaunchedProcess) -> dict:
    """Current resource usage of a launched process and its children."""
    result = {
        "pid": launched.pid,
        "alive": launched.is_alive(),
        "cpu_percent": 0.0,
        "memory_mb": 0.0,
        "child_processes": 0,
        "uptime_seconds": (datetime.now() - launched.started_at).total_seconds(),
    }
    if not result["alive"]:
        return result

    try:
        proc = psutil.Process(launched.pid)
        cpu_percent = proc.cpu_percent(interval=0.1)
        memory_mb = proc.memory_info().rss / 1024 / 1024

        # Wrapper scripts exec python, Ollama forks runners
        child_count = 0
        try:
            children = proc.children(recursive=True)
            child_count = len(children)
            for child in children:
                cpu_percent += child.cpu_percent(interval=0.1)
                memory_mb += child.memory_info().rss / 1024 / 1024
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        result.update({
            "cpu_percent": round(cpu_percent, 1),
            "memory_mb": round(memory_mb, 1),
            "child_processes": child_count,
        })
    except psutil.NoSuchProcess:
        logger.warning(f"Process for {launched.service_name} no longer exists")
    except psutil.AccessDenied:
        logger.warning(f"Access denied for {launched.service_name}")

    return result
