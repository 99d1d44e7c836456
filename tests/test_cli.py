import json

import pytest
from conftest import FakeLauncher, get_free_port

from aistack import cli
from aistack.probe import ServiceState
from aistack.registry import ServiceSpec
from aistack.supervisor import Supervisor


@pytest.fixture
def registry(monkeypatch, listener):
    services = [
        ServiceSpec("llm-runtime", listener, "ollama serve", "/api/tags", "Ollama (LLM)"),
        ServiceSpec("speech-to-text", get_free_port(), "whisper-server", "/health", "Whisper STT"),
        ServiceSpec("ocr", get_free_port(), "ocr-server", "/health", "EasyOCR"),
    ]
    monkeypatch.setattr(cli, "load_registry", lambda cfg, path=None: services)
    return services


def _supervisor(cfg, **kwargs):
    return Supervisor(cfg, launcher=FakeLauncher(**kwargs), inspect_listeners=False)


def test_ensure_all_running_exits_zero(cfg, registry, capsys):
    code = cli.main(["ensure", "--no-history"], supervisor=_supervisor(cfg))

    out = capsys.readouterr().out
    assert code == 0
    assert "Ollama (LLM)" in out and "already running" in out
    assert "Whisper STT" in out and "started" in out
    assert "All services running." in out


def test_bare_command_runs_ensure(cfg, registry, capsys):
    sup = _supervisor(cfg)

    assert cli.main(["-v"], supervisor=sup) == 0
    assert sorted(sup._launcher.calls) == ["ocr", "speech-to-text"]


def test_bare_command_accepts_ensure_options(cfg, registry):
    sup = _supervisor(cfg)

    assert cli.main(["--only", "ocr", "--no-history"], supervisor=sup) == 0
    assert sup._launcher.calls == ["ocr"]


@pytest.mark.parametrize(
    "argv, expected",
    [
        ([], ["ensure"]),
        (["--only", "ocr"], ["ensure", "--only", "ocr"]),
        (["-v", "--services-file", "s.json", "--json"], ["-v", "--services-file", "s.json", "ensure", "--json"]),
        (["--services-file=s.json", "--wait", "5"], ["--services-file=s.json", "ensure", "--wait", "5"]),
        (["-v", "status"], ["-v", "status"]),
        (["--version"], ["--version"]),
    ],
)
def test_default_command_is_inserted_after_global_options(argv, expected):
    assert cli.with_default_command(argv) == expected


def test_missing_services_file_is_usage_error(tmp_path, capsys):
    code = cli.main(["--services-file", str(tmp_path / "missing.json"), "list"])

    assert code == 2
    assert "not found" in capsys.readouterr().err


def test_ensure_with_failure_exits_nonzero(cfg, registry, capsys):
    code = cli.main(["ensure", "--no-history"], supervisor=_supervisor(cfg, fail={"ocr"}))

    out = capsys.readouterr().out
    assert code == 1
    assert "EasyOCR" in out and "failed to start" in out
    assert "1 service(s) failed to start: ocr" in out


def test_ensure_only_limits_services(cfg, registry):
    sup = _supervisor(cfg)

    assert cli.main(["ensure", "--no-history", "--only", "ocr"], supervisor=sup) == 0
    assert sup._launcher.calls == ["ocr"]


def test_ensure_unknown_service_is_usage_error(cfg, registry, capsys):
    code = cli.main(["ensure", "--only", "vision"], supervisor=_supervisor(cfg))

    assert code == 2
    assert "Unknown service(s): vision" in capsys.readouterr().err


def test_ensure_json_output(cfg, registry, capsys):
    code = cli.main(["ensure", "--no-history", "--json"], supervisor=_supervisor(cfg, fail={"ocr"}))

    data = json.loads(capsys.readouterr().out)
    assert code == 1
    assert data["ok"] is False
    assert [r["outcome"] for r in data["results"]] == ["already_running", "started", "start_failed"]


def test_ensure_wait_reports_readiness(cfg, registry, monkeypatch, capsys):
    sup = _supervisor(cfg)
    monkeypatch.setattr(sup, "wait_until_ready", lambda spec, timeout: ServiceState.RUNNING)

    assert cli.main(["ensure", "--no-history", "--wait", "5"], supervisor=sup) == 0
    assert "(ready)" in capsys.readouterr().out


def test_ensure_records_history(cfg, registry, db, monkeypatch):
    from aistack.models import SupervisoryPass

    monkeypatch.setattr(cli, "initialize_db", lambda: db)

    assert cli.main(["ensure"], supervisor=_supervisor(cfg)) == 0
    assert SupervisoryPass.select().count() == 1
    assert SupervisoryPass.get().trigger == "cli"


def test_status_exit_codes(cfg, registry, monkeypatch, capsys):
    sup = Supervisor(cfg)
    monkeypatch.setattr(sup, "state", lambda spec: ServiceState.RUNNING)
    assert cli.main(["status"], supervisor=sup) == 0

    monkeypatch.setattr(
        sup,
        "state",
        lambda spec: ServiceState.STARTING if spec.name == "ocr" else ServiceState.RUNNING,
    )
    assert cli.main(["status"], supervisor=sup) == 1
    assert "EasyOCR (port" in capsys.readouterr().out


def test_status_json(cfg, registry, monkeypatch, capsys):
    sup = Supervisor(cfg)
    monkeypatch.setattr(sup, "state", lambda spec: ServiceState.UNREACHABLE)

    cli.main(["status", "--json"], supervisor=sup)

    data = json.loads(capsys.readouterr().out)
    assert {d["state"] for d in data} == {"unreachable"}


def test_list(registry, capsys):
    assert cli.main(["list"]) == 0

    out = capsys.readouterr().out
    assert "llm-runtime" in out and "ollama serve" in out
