"""
Command-line interface.

    aistack [ensure] [--only NAME] [--wait SECONDS] [--json]
    aistack status [--only NAME] [--json]
    aistack list
    aistack serve

`ensure` exits 0 when every service is running or was started, 1 if any
service failed to start. `status` exits 0 only when every service is
RUNNING. Unknown service names or a broken registry exit 2.
"""

import argparse
import json
import logging
import sys
import time

import uvicorn

from . import __version__
from .config import config
from .errors import RegistryError
from .logs import configure_logging
from .models import initialize_db, record_pass
from .probe import ServiceState
from .registry import load_registry, select
from .supervisor import Outcome, Supervisor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

STATE_SYMBOLS = {
    ServiceState.RUNNING: "✓",
    ServiceState.STARTING: "…",
    ServiceState.UNREACHABLE: "✗",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aistack",
        description="Keep the local AI stack (Ollama, Whisper, Piper TTS, EasyOCR) running",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to the console as well")
    parser.add_argument("--services-file", help="JSON file with service overrides")

    subparsers = parser.add_subparsers(dest="command")

    ensure = subparsers.add_parser("ensure", help="Start every service that is not running (default)")
    ensure.add_argument("--only", action="append", default=[], metavar="NAME", help="Limit to a service")
    ensure.add_argument(
        "--wait",
        type=float,
        default=0,
        metavar="SECONDS",
        help="Poll started services until healthy, up to SECONDS",
    )
    ensure.add_argument("--json", action="store_true", help="Print the report as JSON")
    ensure.add_argument("--no-history", action="store_true", help="Do not record the pass")

    status = subparsers.add_parser("status", help="Show the state of every service")
    status.add_argument("--only", action="append", default=[], metavar="NAME", help="Limit to a service")
    status.add_argument("--json", action="store_true", help="Print states as JSON")

    subparsers.add_parser("list", help="List registered services")
    subparsers.add_parser("serve", help="Run the status API")

    return parser


def cmd_ensure(args, supervisor: Supervisor, registry) -> int:
    if not args.json:
        print("Starting Local AI Stack...")
    report = supervisor.ensure_all(registry)

    if not args.no_history:
        try:
            initialize_db()
            record_pass(report, trigger="cli")
        except Exception as e:
            logger.error(f"Could not record pass history: {e}")

    readiness = {}
    if args.wait > 0:
        deadline = time.monotonic() + args.wait
        for result in report.results:
            if result.outcome != Outcome.STARTED:
                continue
            remaining = max(0.0, deadline - time.monotonic())
            readiness[result.name] = supervisor.wait_until_ready(result.spec, timeout=remaining)

    if args.json:
        data = report.to_dict()
        for result in data["results"]:
            if result["name"] in readiness:
                result["ready"] = readiness[result["name"]] == ServiceState.RUNNING
        print(json.dumps(data, indent=2))
    else:
        for result in report.results:
            line = result.line()
            if result.name in readiness:
                state = readiness[result.name]
                line += " (ready)" if state == ServiceState.RUNNING else f" (not ready: {state.value})"
            print(line)
        if report.ok:
            print("\nAll services running.")
        else:
            names = ", ".join(r.name for r in report.failed)
            print(f"\n{len(report.failed)} service(s) failed to start: {names}")
            print(f"Check the logs under {config.logs_dir}")

    return report.exit_code


def cmd_status(args, supervisor: Supervisor, registry) -> int:
    states = supervisor.status(registry)

    if args.json:
        print(json.dumps(
            [{"name": spec.name, "port": spec.port, "state": state.value} for spec, state in states],
            indent=2,
        ))
    else:
        for spec, state in states:
            print(f"{STATE_SYMBOLS[state]} {spec.label} (port {spec.port}): {state.value}")

    all_running = all(state == ServiceState.RUNNING for _, state in states)
    return EXIT_OK if all_running else EXIT_FAILED


def cmd_list(registry) -> int:
    for spec in registry:
        health = spec.health_path or "-"
        print(f"{spec.name:<16} {spec.port:>5}  {health:<10}  {spec.start_command}")
    return EXIT_OK


def cmd_serve() -> int:
    """Run the status API with uvicorn."""
    uvicorn.run(
        "aistack.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
    return EXIT_OK


COMMANDS = ("ensure", "status", "list", "serve")


def with_default_command(argv: list[str]) -> list[str]:
    """Insert `ensure` after the global options when no command is given.

    Lets `aistack --only ocr` mean `aistack ensure --only ocr`.
    """
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("-v", "--verbose") or arg.startswith("--services-file="):
            i += 1
        elif arg == "--services-file" and i + 1 < len(argv):
            i += 2
        else:
            break

    if i < len(argv) and (argv[i] in COMMANDS or argv[i] in ("-h", "--help", "--version")):
        return argv
    return argv[:i] + ["ensure"] + argv[i:]


def main(argv=None, supervisor: Supervisor = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()
    args = parser.parse_args(with_default_command(argv))

    if args.command == "serve":
        return cmd_serve()

    configure_logging(config, console=args.verbose)

    try:
        registry = load_registry(config, args.services_file)
        if args.command in ("ensure", "status"):
            registry = select(registry, args.only)
    except RegistryError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.command == "list":
        return cmd_list(registry)

    supervisor = supervisor or Supervisor(config)
    if args.command == "status":
        return cmd_status(args, supervisor, registry)
    return cmd_ensure(args, supervisor, registry)

