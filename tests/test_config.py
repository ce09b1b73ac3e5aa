from pathlib import Path

import pytest

from perf_triage.config import TOKEN_ENV_VAR, RunOptions, Settings, load_settings
from perf_triage.errors import ConfigurationError
from perf_triage.modes import DEFAULT_CADENCE, EXTENDED_CADENCE, QUICK_CADENCE, CollectorId, Mode, plan_for

SETTINGS_YAML = """
logging:
  level: DEBUG
  file: logs/perf-triage.log
metadata:
  url: http://127.0.0.1:8080/
  timeout: 0.5
support:
  endpoint: https://tickets.example.com/api
  token: ${TICKET_TOKEN}
  language: ja
benchmark:
  sample_mb: 16
"""


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    monkeypatch.delenv("TICKET_TOKEN", raising=False)


def write_settings(tmp_path, text=SETTINGS_YAML):
    path = tmp_path / "perf-triage.yaml"
    path.write_text(text)
    return path


def test_defaults_without_file():
    assert load_settings() == Settings()


def test_yaml_settings_with_env_placeholder(tmp_path, monkeypatch):
    monkeypatch.setenv("TICKET_TOKEN", "from-env")
    settings = load_settings(write_settings(tmp_path))
    assert settings.log_level == "DEBUG"
    assert settings.log_file == Path("logs/perf-triage.log")
    assert settings.metadata_url == "http://127.0.0.1:8080"
    assert settings.metadata_timeout == 0.5
    assert settings.support_endpoint == "https://tickets.example.com/api"
    assert settings.support_token == "from-env"
    assert settings.support_language == "ja"
    assert settings.support_service_code == "general-info"
    assert settings.benchmark_sample_mb == 16


def test_unset_placeholder_means_no_token(tmp_path):
    assert load_settings(write_settings(tmp_path)).support_token is None


def test_token_env_var_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("TICKET_TOKEN", "from-file")
    monkeypatch.setenv(TOKEN_ENV_VAR, "override")
    assert load_settings(write_settings(tmp_path)).support_token == "override"


@pytest.mark.parametrize(
    "text",
    ["logging: [unclosed", "- just\n- a list\n", "metadata:\n  timeout: soon\n"],
)
def test_bad_settings_files(tmp_path, text):
    with pytest.raises(ConfigurationError):
        load_settings(write_settings(tmp_path, text))


def test_missing_settings_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path / "nope.yaml")


def test_run_option_validation():
    assert RunOptions().mode is Mode.STANDARD
    with pytest.raises(ConfigurationError):
        RunOptions(severity="whenever")
    with pytest.raises(ConfigurationError):
        RunOptions(disk_test_size_gb=3)


@pytest.mark.parametrize(
    "text,mode",
    [
        ("Quick", Mode.QUICK),
        ("standard", Mode.STANDARD),
        ("DiskOnly", Mode.DISK_ONLY),
        ("disk-only", Mode.DISK_ONLY),
        ("CPUOnly", Mode.CPU_ONLY),
        ("memory_only", Mode.MEMORY_ONLY),
    ],
)
def test_mode_parse(text, mode):
    assert Mode.parse(text) is mode


def test_mode_parse_rejects_unknown():
    with pytest.raises(ValueError):
        Mode.parse("turbo")


def test_mode_plans():
    assert plan_for(Mode.QUICK).cadence == QUICK_CADENCE
    assert plan_for(Mode.STANDARD).cadence == DEFAULT_CADENCE
    assert plan_for(Mode.DEEP).cadence == EXTENDED_CADENCE
    assert CollectorId.DISK_BENCHMARK in plan_for(Mode.DISK_ONLY).collectors
    assert CollectorId.DISK_BENCHMARK not in plan_for(Mode.STANDARD).collectors
    assert plan_for(Mode.MEMORY_ONLY).collectors == (CollectorId.SYSTEM_INFO, CollectorId.MEMORY)
    for mode in Mode:
        assert plan_for(mode).collectors[0] is CollectorId.SYSTEM_INFO


def test_cadence_window_covers_every_poll():
    assert QUICK_CADENCE.window_seconds == 3
    assert DEFAULT_CADENCE.window_seconds == 15
    assert EXTENDED_CADENCE.window_seconds == 50
