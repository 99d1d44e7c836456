"""
Liveness and health probes.

A port probe only tells us that *something* accepts connections on the port;
it cannot tell the intended service apart from an unrelated process holding
the same port. When a service has a health path, status queries also ask
that endpoint, and a listener that does not answer it is reported as
STARTING rather than RUNNING.
"""

import logging
import socket
import time
from enum import Enum

import httpx

from .errors import PortProbeTimeout
from .registry import ServiceSpec

logger = logging.getLogger(__name__)


class ServiceState(Enum):
    RUNNING = "running"
    STARTING = "starting"
    UNREACHABLE = "unreachable"


def _connect(family: int, address: tuple, timeout: float) -> None:
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        sock.connect(address)


def check_port(host: str, port: int, timeout: float) -> bool:
    """
    Connect to host:port and report whether a listener accepted.

    The timeout bounds the whole probe: every address the host resolves to
    is tried in turn with whatever time is left. Raises PortProbeTimeout when
    an attempt timed out and no address accepted (e.g. a firewall dropping
    packets).
    """
    deadline = time.monotonic() + timeout
    try:
        addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        logger.debug(f"Cannot resolve {host}: {e}")
        return False

    timed_out = False
    for family, _, _, _, address in addresses:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            timed_out = True
            break
        try:
            _connect(family, address, remaining)
            return True
        except socket.timeout:
            timed_out = True
        except OSError:
            continue

    if timed_out:
        raise PortProbeTimeout(host, port, timeout)
    return False


def probe_liveness(port: int, host: str = "127.0.0.1", timeout: float = 1.5) -> bool:
    """True if something is listening on the port. Timeouts count as not listening."""
    try:
        return check_port(host, port, timeout)
    except PortProbeTimeout as e:
        logger.warning(str(e))
        return False


def check_health(host: str, port: int, path: str, timeout: float = 2.0) -> bool:
    """GET the health path and report whether it answered with a 2xx status."""
    url = f"http://{host}:{port}{path}"
    try:
        # Local endpoints, never through an HTTP proxy
        response = httpx.get(url, timeout=timeout, trust_env=False)
    except httpx.HTTPError as e:
        logger.debug(f"Health check {url} failed: {e}")
        return False
    if not response.is_success:
        logger.debug(f"Health check {url} returned {response.status_code}")
    return response.is_success


def service_state(
    spec: ServiceSpec,
    host: str = "127.0.0.1",
    probe_timeout: float = 1.5,
    health_timeout: float = 2.0,
) -> ServiceState:
    """Compute the current state of a service. Nothing is cached."""
    if not probe_liveness(spec.port, host, probe_timeout):
        return ServiceState.UNREACHABLE
    if not spec.health_path:
        return ServiceState.RUNNING
    if check_health(host, spec.port, spec.health_path, health_timeout):
        return ServiceState.RUNNING
    return ServiceState.STARTING
