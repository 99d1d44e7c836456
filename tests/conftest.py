import os
import socket
import tempfile
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer

# Keep the module-level config away from the real home directory
os.environ.setdefault("AISTACK_DATA_DIR", tempfile.mkdtemp(prefix="aistack-test-"))

import pytest

from aistack.config import Config
from aistack.errors import ProcessLaunchFailure
from aistack.models import initialize_db


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def listen_on(port: int = 0) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", port))
    sock.listen()
    return sock


@dataclass
class FakeProcess:
    service_name: str
    pid: int
    alive: bool = False

    def is_alive(self) -> bool:
        return self.alive


class FakeLauncher:
    """Stands in for launch_detached; optionally binds the service port."""

    def __init__(self, fail=(), bind=False, alive=False):
        self.calls = []
        self.fail = set(fail)
        self.bind = bind
        self.alive = alive
        self.sockets = []
        self._lock = threading.Lock()

    def __call__(self, spec, logs_dir, grace):
        with self._lock:
            self.calls.append(spec.name)
            pid = 10000 + len(self.calls)
        if spec.name in self.fail:
            raise ProcessLaunchFailure(spec.name, f"command not found: {spec.start_command}")
        if self.bind:
            self.sockets.append(listen_on(spec.port))
        return FakeProcess(spec.name, pid, alive=self.alive)

    def close(self):
        for sock in self.sockets:
            sock.close()


class _HealthHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        status = 200 if self.path == "/health" else 404
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(b'{"status": "ok"}')

    def log_message(self, format, *args):
        pass


@pytest.fixture
def cfg(tmp_path):
    return Config(data_dir=tmp_path / "data", probe_timeout=0.5, health_timeout=1.0, launch_grace=0.3)


@pytest.fixture
def free_port():
    return get_free_port()


@pytest.fixture
def listener():
    sock = listen_on()
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def health_server():
    server = HTTPServer(("127.0.0.1", 0), _HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture
def fake_launcher():
    launcher = FakeLauncher()
    yield launcher
    launcher.close()


@pytest.fixture
def db(tmp_path):
    database = initialize_db(tmp_path / "test.db")
    yield database
    database.close()
