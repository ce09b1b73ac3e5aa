"""Settings file loading and run options."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .logger import get_logger
from .modes import Mode

log = get_logger("Config")

SEVERITIES = ("low", "normal", "high", "urgent", "critical")
DISK_TEST_SIZES_GB = (1, 5, 10, 50, 100)
TOKEN_ENV_VAR = "PERF_TRIAGE_SUPPORT_TOKEN"


@dataclass(frozen=True)
class Settings:
    """Values that rarely change between runs."""

    log_level: str = "INFO"
    log_file: Optional[Path] = None
    metadata_url: str = "http://169.254.169.254"
    metadata_timeout: float = 2.0
    support_endpoint: Optional[str] = None
    support_token: Optional[str] = None
    support_service_code: str = "general-info"
    support_category_code: str = "performance"
    support_language: str = "en"
    support_issue_type: str = "technical"
    support_timeout: float = 30.0
    benchmark_sample_mb: int = 100


@dataclass(frozen=True)
class RunOptions:
    """Per-invocation choices made on the command line."""

    mode: Mode = Mode.STANDARD
    create_support_case: bool = False
    severity: str = "normal"
    output_path: Path = Path(".")
    disk_test_size_gb: int = 1

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ConfigurationError(f"Unknown severity {self.severity!r}; expected one of {', '.join(SEVERITIES)}")
        if self.disk_test_size_gb not in DISK_TEST_SIZES_GB:
            raise ConfigurationError(
                f"Disk test size must be one of {', '.join(str(s) for s in DISK_TEST_SIZES_GB)} GB"
            )


def load_settings(path: Optional[Path] = None) -> Settings:
    """Read settings from a YAML file, expanding ``${ENV}`` placeholders."""
    load_dotenv()
    raw: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        with open(path, "r", encoding="utf-8") as handle:
            try:
                raw = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Configuration root in {path} must be a mapping")
        _replace_env_vars(raw)
        log.info("Loaded settings from {}", path)

    logging_section = raw.get("logging", {}) or {}
    metadata = raw.get("metadata", {}) or {}
    support = raw.get("support", {}) or {}
    benchmark = raw.get("benchmark", {}) or {}
    defaults = Settings()

    log_file = logging_section.get("file")
    try:
        return Settings(
            log_level=str(logging_section.get("level", defaults.log_level)),
            log_file=Path(log_file) if log_file else None,
            metadata_url=str(metadata.get("url", defaults.metadata_url)).rstrip("/"),
            metadata_timeout=float(metadata.get("timeout", defaults.metadata_timeout)),
            support_endpoint=support.get("endpoint") or None,
            support_token=os.getenv(TOKEN_ENV_VAR) or support.get("token") or None,
            support_service_code=str(support.get("service_code", defaults.support_service_code)),
            support_category_code=str(support.get("category_code", defaults.support_category_code)),
            support_language=str(support.get("language", defaults.support_language)),
            support_issue_type=str(support.get("issue_type", defaults.support_issue_type)),
            support_timeout=float(support.get("timeout", defaults.support_timeout)),
            benchmark_sample_mb=int(benchmark.get("sample_mb", defaults.benchmark_sample_mb)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid setting value: {exc}") from exc


def _replace_env_vars(config: Any) -> Any:
    if isinstance(config, dict):
        for key, value in config.items():
            if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                config[key] = os.getenv(value[2:-1], "")
            elif isinstance(value, (dict, list)):
                _replace_env_vars(value)
    elif isinstance(config, list):
        for item in config:
            if isinstance(item, (dict, list)):
                _replace_env_vars(item)
    return config
