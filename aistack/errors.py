"""Exceptions raised by the supervisor."""


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class PortProbeTimeout(SupervisorError):
    """A port probe did not complete within its timeout."""

    def __init__(self, host: str, port: int, timeout: float):
        self.host = host
        self.port = port
        self.timeout = timeout
        super().__init__(f"Probe of {host}:{port} timed out after {timeout}s")


class ProcessLaunchFailure(SupervisorError):
    """A service's start command could not be launched."""

    def __init__(self, service_name: str, reason: str):
        self.service_name = service_name
        self.reason = reason
        super().__init__(f"Failed to start {service_name}: {reason}")


class RegistryError(SupervisorError):
    """The service registry configuration is invalid."""
