"""Extended storage checks: partition layout, RAID health, SMART and iSCSI."""

from __future__ import annotations

import json
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from . import system_state as m
from .errors import CollectionFailure
from .logger import get_logger
from .system_state import Domain, DomainSnapshot, SnapshotBuilder

log = get_logger("Storage")

SECTOR_BYTES = 512
ALIGN_4K = 4096
ALIGN_1M = 1024 * 1024
SKIPPED_DEVICE_PREFIXES = ("loop", "ram", "zram", "sr", "fd", "dm-", "md")

# ATA attributes whose normalized value counts down from 100 as flash wears.
_WEAR_ATTRIBUTE_IDS = (231, 233, 177, 202)


@dataclass(frozen=True)
class Partition:
    device: str
    name: str
    start_bytes: int

    @property
    def aligned_4k(self) -> bool:
        return self.start_bytes % ALIGN_4K == 0

    @property
    def aligned_1m(self) -> bool:
        return self.start_bytes % ALIGN_1M == 0


@dataclass(frozen=True)
class SmartReading:
    device: str
    wear_percent: Optional[float]
    temperature_c: Optional[float]


def run_command(args: Sequence[str], timeout: float = 30.0) -> str:
    """Run an external tool and return stdout, or raise CollectionFailure."""
    if shutil.which(args[0]) is None:
        raise CollectionFailure(f"{args[0]} is not installed")
    try:
        result = subprocess.run(list(args), capture_output=True, text=True, timeout=timeout, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise CollectionFailure(f"{args[0]} failed: {exc}") from exc
    if not result.stdout.strip():
        raise CollectionFailure(f"{args[0]} produced no output (exit {result.returncode})")
    return result.stdout


def partition_scheme(pttype: Optional[str]) -> str:
    if pttype == "gpt":
        return "GPT"
    if pttype in ("dos", "mbr"):
        return "MBR"
    return "RAW"


def parse_lsblk(text: str) -> Dict[str, str]:
    """Map whole-disk names to their partition scheme from ``lsblk -J``."""
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise CollectionFailure(f"unreadable lsblk output: {exc}") from exc
    schemes: Dict[str, str] = {}
    for device in payload.get("blockdevices", []):
        if device.get("type") == "disk":
            schemes[device["name"]] = partition_scheme(device.get("pttype"))
    return schemes


def parse_mdstat(text: str) -> List[Tuple[str, bool]]:
    """Return ``(array, healthy)`` pairs; a ``_`` in the member map marks a failed member."""
    arrays: List[Tuple[str, bool]] = []
    current: Optional[str] = None
    for line in text.splitlines():
        header = re.match(r"^(md\S*)\s*:", line)
        if header:
            current = header.group(1)
            continue
        members = re.search(r"\[(\d+)/(\d+)\]\s+\[([U_]+)\]", line)
        if current and members:
            arrays.append((current, "_" not in members.group(3)))
            current = None
    return arrays


def parse_smart(device: str, text: str) -> SmartReading:
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise CollectionFailure(f"unreadable smartctl output for {device}: {exc}") from exc
    temperature = (payload.get("temperature") or {}).get("current")
    wear: Optional[float] = None
    nvme = payload.get("nvme_smart_health_information_log") or {}
    if "percentage_used" in nvme:
        wear = float(nvme["percentage_used"])
    else:
        table = (payload.get("ata_smart_attributes") or {}).get("table", [])
        by_id = {row.get("id"): row for row in table}
        for attribute_id in _WEAR_ATTRIBUTE_IDS:
            if attribute_id in by_id:
                wear = float(100 - by_id[attribute_id].get("value", 100))
                break
    return SmartReading(device, wear, float(temperature) if temperature is not None else None)


class StorageInspector:
    """Reads storage state from sysfs, procfs and a few external tools."""

    def __init__(
        self,
        sys_root: Path = Path("/sys"),
        proc_root: Path = Path("/proc"),
        run: Callable[[Sequence[str]], str] = run_command,
    ) -> None:
        self.sys_root = Path(sys_root)
        self.proc_root = Path(proc_root)
        self.run = run

    def disks(self) -> List[str]:
        block = self.sys_root / "block"
        if not block.is_dir():
            raise CollectionFailure(f"{block} not present")
        return sorted(p.name for p in block.iterdir() if not p.name.startswith(SKIPPED_DEVICE_PREFIXES))

    def partitions(self, disk: str) -> List[Partition]:
        found: List[Partition] = []
        for entry in sorted((self.sys_root / "block" / disk).iterdir()):
            start_file = entry / "start"
            if (entry / "partition").exists() and start_file.exists():
                found.append(Partition(disk, entry.name, int(start_file.read_text().strip()) * SECTOR_BYTES))
        return found

    def schemes(self) -> Dict[str, str]:
        return parse_lsblk(self.run(["lsblk", "-J", "-o", "NAME,TYPE,PTTYPE"]))

    def raid_arrays(self) -> List[Tuple[str, bool]]:
        mdstat = self.proc_root / "mdstat"
        if not mdstat.exists():
            return []
        return parse_mdstat(mdstat.read_text())

    def smart(self, disk: str) -> SmartReading:
        return parse_smart(disk, self.run(["smartctl", "--json", "-a", f"/dev/{disk}"]))

    def iscsi_sessions(self) -> List[Tuple[str, str]]:
        root = self.sys_root / "class" / "iscsi_session"
        if not root.is_dir():
            return []
        sessions = []
        for session in sorted(root.iterdir()):
            state_file = session / "state"
            target_file = session / "targetname"
            state = state_file.read_text().strip() if state_file.exists() else "UNKNOWN"
            target = target_file.read_text().strip() if target_file.exists() else session.name
            sessions.append((target, state))
        return sessions


def collect_storage(ctx: Any, inspector: Optional[StorageInspector] = None) -> DomainSnapshot:
    inspector = inspector or StorageInspector()
    builder = SnapshotBuilder(Domain.STORAGE)

    try:
        disks = inspector.disks()
    except CollectionFailure as exc:
        log.warning("Block device inventory unavailable: {}", exc)
        builder.gap("storage/block-devices")
        disks = []

    try:
        schemes = inspector.schemes()
    except CollectionFailure as exc:
        log.warning("Partition scheme unavailable: {}", exc)
        builder.gap("storage/partition-scheme")
        schemes = {}

    rows = []
    misaligned = 0
    for disk in disks:
        for part in inspector.partitions(disk):
            if not part.aligned_4k:
                misaligned += 1
            rows.append(
                [
                    part.name,
                    schemes.get(disk, "unknown"),
                    str(part.start_bytes),
                    "yes" if part.aligned_4k else "no",
                    "yes" if part.aligned_1m else "no",
                ]
            )
    if disks:
        builder.set(m.MISALIGNED_PARTITIONS, misaligned)
        builder.table("Partitions", ["Partition", "Scheme", "Offset (bytes)", "4K aligned", "1M aligned"], rows)
        unpartitioned = [d for d in disks if schemes.get(d) == "RAW"]
        if unpartitioned:
            builder.note(f"Disks without a partition table: {', '.join(unpartitioned)}")

    arrays = inspector.raid_arrays()
    if arrays:
        builder.set(m.DEGRADED_VOLUMES, sum(1 for _, healthy in arrays if not healthy))
        builder.table(
            "Software RAID volumes",
            ["Volume", "Health"],
            [[name, "healthy" if healthy else "degraded"] for name, healthy in arrays],
        )
    else:
        builder.note("No software RAID volumes found")

    smart_rows = []
    for disk in disks:
        try:
            reading = inspector.smart(disk)
        except CollectionFailure as exc:
            log.warning("SMART data unavailable for {}: {}", disk, exc)
            builder.gap(f"storage/smart/{disk}")
            continue
        if reading.wear_percent is not None:
            builder.set(m.SMART_WEAR, reading.wear_percent, instance=disk)
        if reading.temperature_c is not None:
            builder.set(m.DRIVE_TEMPERATURE, reading.temperature_c, instance=disk)
        smart_rows.append(
            [
                disk,
                "n/a" if reading.wear_percent is None else f"{reading.wear_percent:g}",
                "n/a" if reading.temperature_c is None else f"{reading.temperature_c:g}",
            ]
        )
    if smart_rows:
        builder.table("SMART health", ["Disk", "Wear %", "Temperature C"], smart_rows)

    sessions = inspector.iscsi_sessions()
    if sessions:
        builder.set(m.UNHEALTHY_ISCSI_SESSIONS, sum(1 for _, state in sessions if state != "LOGGED_IN"))
        builder.table("iSCSI sessions", ["Target", "State"], [[t, s] for t, s in sessions])
    else:
        builder.note("No iSCSI sessions found")

    return builder.build()
