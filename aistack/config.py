"""
Configuration for the aistack supervisor.

Loads settings from environment variables with sensible defaults.
All persistent data (pass history, service logs, supervisor log) is stored
under AISTACK_DATA_DIR, ~/.local-ai-stack-supervisor by default.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Supervisor configuration."""

    # Paths
    data_dir: Path = Path(
        os.environ.get("AISTACK_DATA_DIR", str(Path.home() / ".local-ai-stack-supervisor"))
    ).expanduser()
    bin_dir: Path = Path(os.environ.get("AISTACK_BIN_DIR", "~/.local/bin")).expanduser()
    services_file: Path = None
    services_file_required: bool = field(default=False, init=False)
    db_path: Path = None
    logs_dir: Path = None
    supervisor_log: Path = None

    # Logging
    log_level: str = os.environ.get("LOG_LEVEL", "INFO")
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Status API
    host: str = os.environ.get("AISTACK_HOST", "127.0.0.1")
    port: int = int(os.environ.get("AISTACK_PORT", "5100"))

    # Probing
    probe_host: str = os.environ.get("AISTACK_PROBE_HOST", "127.0.0.1")
    probe_timeout: float = float(os.environ.get("AISTACK_PROBE_TIMEOUT", "1.5"))
    health_timeout: float = float(os.environ.get("AISTACK_HEALTH_TIMEOUT", "2.0"))

    # Process management
    launch_grace: float = float(os.environ.get("AISTACK_LAUNCH_GRACE", "0.5"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(self.data_dir)
        env_file = os.environ.get("AISTACK_SERVICES_FILE")
        # A named override file must exist; only the default one may be absent
        self.services_file_required = self.services_file is not None or bool(env_file)
        if self.services_file is None:
            self.services_file = (
                Path(env_file).expanduser() if env_file else self.data_dir / "services.json"
            )
        self.db_path = self.data_dir / "aistack.db"
        self.logs_dir = self.data_dir / "logs"
        self.supervisor_log = self.data_dir / "supervisor.log"

        # Create directories
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
