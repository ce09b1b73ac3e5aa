"""Static host identity, including an optional cloud instance identity."""

from __future__ import annotations

import platform
import socket
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import psutil
import requests

from .config import Settings
from .logger import get_logger
from .results import Outcome

log = get_logger("SystemInfo")

TOKEN_PATH = "/latest/api/token"
IDENTITY_PATH = "/latest/dynamic/instance-identity/document"
TOKEN_TTL_SECONDS = "21600"


@dataclass(frozen=True)
class CloudIdentity:
    instance_id: str
    instance_type: str
    region: str
    availability_zone: str
    account_id: str

    def __str__(self) -> str:
        return f"{self.instance_id} ({self.instance_type}, {self.availability_zone})"


@dataclass(frozen=True)
class SystemIdentity:
    hostname: str
    os_name: str
    os_release: str
    os_build: str
    architecture: str
    cpu_model: str
    logical_cpus: int
    physical_cpus: int
    total_memory_bytes: int
    boot_time: datetime
    cloud: Outcome[CloudIdentity]


def fetch_cloud_identity(
    base_url: str,
    timeout: float = 2.0,
    session: Optional[requests.Session] = None,
) -> Outcome[CloudIdentity]:
    """Query the instance metadata service (IMDSv2).

    Timeouts and connection failures mean "not a cloud instance" and come back
    as ``unavailable``; a reachable service that answers badly is an ``error``.
    """
    http = session or requests
    try:
        token_response = http.put(
            base_url + TOKEN_PATH,
            headers={"X-aws-ec2-metadata-token-ttl-seconds": TOKEN_TTL_SECONDS},
            timeout=timeout,
        )
        headers = {}
        if token_response.status_code == 200:
            headers["X-aws-ec2-metadata-token"] = token_response.text
        response = http.get(base_url + IDENTITY_PATH, headers=headers, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as exc:
        log.debug("Instance metadata unreachable: {}", exc)
        return Outcome.unavailable(str(exc))
    except requests.RequestException as exc:
        log.warning("Instance metadata request failed: {}", exc)
        return Outcome.error(str(exc))

    if response.status_code != 200:
        return Outcome.error(f"metadata service answered HTTP {response.status_code}")
    try:
        document = response.json()
        return Outcome.ok(
            CloudIdentity(
                instance_id=document["instanceId"],
                instance_type=document.get("instanceType", "unknown"),
                region=document.get("region", "unknown"),
                availability_zone=document.get("availabilityZone", "unknown"),
                account_id=document.get("accountId", "unknown"),
            )
        )
    except (ValueError, KeyError, TypeError) as exc:
        return Outcome.error(f"malformed identity document: {exc}")


def cpu_model(cpuinfo: Path = Path("/proc/cpuinfo")) -> str:
    if cpuinfo.exists():
        for line in cpuinfo.read_text(errors="replace").splitlines():
            if line.lower().startswith("model name"):
                return line.split(":", 1)[1].strip()
    return platform.processor() or platform.machine() or "unknown"


def collect_system_identity(settings: Settings, session: Optional[requests.Session] = None) -> SystemIdentity:
    memory = psutil.virtual_memory()
    cloud = fetch_cloud_identity(settings.metadata_url, settings.metadata_timeout, session)
    log.info("Cloud identity: {}", cloud.describe())
    return SystemIdentity(
        hostname=socket.gethostname(),
        os_name=platform.system(),
        os_release=platform.release(),
        os_build=platform.version(),
        architecture=platform.machine(),
        cpu_model=cpu_model(),
        logical_cpus=psutil.cpu_count(logical=True) or 0,
        physical_cpus=psutil.cpu_count(logical=False) or 0,
        total_memory_bytes=memory.total,
        boot_time=datetime.fromtimestamp(psutil.boot_time()),
        cloud=cloud,
    )
