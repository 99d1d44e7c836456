"""
Static service registry.

The registry is built once at startup from the built-in defaults, optionally
merged with a JSON override file, and never mutated afterwards.

Override file format (services.json):

    {
        "services": [
            {"name": "llm-runtime", "start_command": "/opt/homebrew/bin/ollama serve"},
            {"name": "embeddings", "port": 5118, "start_command": "embed-server",
             "health_path": "/health"}
        ]
    }

Entries naming a built-in service replace only the fields they set. Entries
with a new name are appended and must define port and start_command.
"""

import json
import logging
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Optional

from .config import Config, config
from .errors import RegistryError

logger = logging.getLogger(__name__)

OVERRIDABLE_FIELDS = ("port", "start_command", "health_path", "description")


@dataclass(frozen=True)
class ServiceSpec:
    """A service the supervisor keeps running."""

    name: str
    port: int
    start_command: str
    health_path: Optional[str] = None
    description: str = ""

    @property
    def label(self) -> str:
        return self.description or self.name

    def to_dict(self) -> dict:
        return asdict(self)


def default_registry(cfg: Config = config) -> list[ServiceSpec]:
    """The built-in local AI stack."""
    bin_dir = cfg.bin_dir
    return [
        ServiceSpec(
            name="llm-runtime",
            port=11434,
            start_command="ollama serve",
            health_path="/api/tags",
            description="Ollama (LLM)",
        ),
        ServiceSpec(
            name="speech-to-text",
            port=5115,
            start_command=str(bin_dir / "whisper-server"),
            health_path="/health",
            description="Whisper STT",
        ),
        ServiceSpec(
            name="text-to-speech",
            port=5114,
            start_command=str(bin_dir / "tts-server"),
            health_path="/health",
            description="Piper TTS",
        ),
        ServiceSpec(
            name="ocr",
            port=5117,
            start_command=str(bin_dir / "ocr-server"),
            health_path="/health",
            description="EasyOCR",
        ),
    ]


def _validate_port(name: str, port) -> int:
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise RegistryError(f"Service '{name}' has invalid port: {port!r}")
    return port


def _validate_health_path(name: str, path) -> Optional[str]:
    if path is None:
        return None
    if not isinstance(path, str) or not path.startswith("/"):
        raise RegistryError(f"Service '{name}' health_path must start with '/': {path!r}")
    return path


def apply_overrides(registry: list[ServiceSpec], entries: list) -> list[ServiceSpec]:
    """Merge override entries into a registry, returning a new list."""
    if not isinstance(entries, list):
        raise RegistryError("'services' must be a list")

    merged = {spec.name: spec for spec in registry}
    order = [spec.name for spec in registry]
    seen = set()

    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str) or not entry["name"]:
            raise RegistryError(f"Service entry needs a non-empty 'name': {entry!r}")

        name = entry["name"]
        if name in seen:
            raise RegistryError(f"Duplicate service '{name}' in overrides")
        seen.add(name)

        unknown = set(entry) - set(OVERRIDABLE_FIELDS) - {"name"}
        if unknown:
            raise RegistryError(f"Service '{name}' has unknown fields: {', '.join(sorted(unknown))}")

        if "port" in entry:
            _validate_port(name, entry["port"])
        if "health_path" in entry:
            _validate_health_path(name, entry["health_path"])
        if "start_command" in entry and (
            not isinstance(entry["start_command"], str) or not entry["start_command"].strip()
        ):
            raise RegistryError(f"Service '{name}' has an empty start_command")

        changes = {key: entry[key] for key in OVERRIDABLE_FIELDS if key in entry}

        if name in merged:
            merged[name] = replace(merged[name], **changes)
        else:
            if "port" not in changes or "start_command" not in changes:
                raise RegistryError(f"New service '{name}' must define port and start_command")
            merged[name] = ServiceSpec(name=name, **changes)
            order.append(name)

    result = [merged[name] for name in order]
    ports = {}
    for spec in result:
        if spec.port in ports:
            logger.warning(
                f"Services {ports[spec.port]} and {spec.name} share port {spec.port}"
            )
        ports.setdefault(spec.port, spec.name)
    return result


def load_registry(cfg: Config = config, path: Path = None) -> list[ServiceSpec]:
    """Build the registry from defaults plus the override file.

    The default override file is optional. A file named by `path` or
    AISTACK_SERVICES_FILE must exist.
    """
    registry = default_registry(cfg)
    required = bool(path) or cfg.services_file_required
    path = Path(path).expanduser() if path else cfg.services_file

    if not path:
        return registry
    if not path.exists():
        if required:
            raise RegistryError(f"Service overrides file not found: {path}")
        return registry

    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise RegistryError(f"Cannot read service overrides from {path}: {e}") from e

    if not isinstance(data, dict):
        raise RegistryError(f"{path} must contain a JSON object")

    logger.info(f"Loading service overrides from {path}")
    return apply_overrides(registry, data.get("services", []))


def select(registry: list[ServiceSpec], names: list[str]) -> list[ServiceSpec]:
    """Restrict a registry to the given names, keeping registry order."""
    if not names:
        return list(registry)
    known = {spec.name for spec in registry}
    missing = [name for name in names if name not in known]
    if missing:
        raise RegistryError(f"Unknown service(s): {', '.join(missing)}")
    wanted = set(names)
    return [spec for spec in registry if spec.name in wanted]
