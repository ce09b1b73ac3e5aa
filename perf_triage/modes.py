"""Run presets: which collectors run and how often they sample."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

KIB = 1024
MIB = 1024 * KIB


class Mode(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"
    DISK_ONLY = "disk-only"
    CPU_ONLY = "cpu-only"
    MEMORY_ONLY = "memory-only"

    @classmethod
    def parse(cls, text: str) -> "Mode":
        """Accept ``DiskOnly``, ``disk-only`` or ``disk_only`` spellings."""
        key = text.strip().lower().replace("_", "").replace("-", "")
        for mode in cls:
            if mode.value.replace("-", "") == key:
                return mode
        raise ValueError(f"unknown mode {text!r}")


class CollectorId(str, Enum):
    SYSTEM_INFO = "system-info"
    DISK = "disk"
    CPU = "cpu"
    MEMORY = "memory"
    NETWORK = "network"
    DATABASE = "database"
    STORAGE = "storage"
    DISK_BENCHMARK = "disk-benchmark"


@dataclass(frozen=True)
class Cadence:
    interval: float
    count: int

    @property
    def window_seconds(self) -> float:
        return self.interval * self.count


@dataclass(frozen=True)
class ModePlan:
    cadence: Cadence
    collectors: Tuple[CollectorId, ...]
    block_sizes: Tuple[int, ...] = ()


QUICK_CADENCE = Cadence(interval=1.0, count=3)
DEFAULT_CADENCE = Cadence(interval=3.0, count=5)
EXTENDED_CADENCE = Cadence(interval=5.0, count=10)

_FULL_BLOCKS = (4 * KIB, 8 * KIB, 64 * KIB, 256 * KIB, MIB)

MODE_PLANS: Dict[Mode, ModePlan] = {
    Mode.QUICK: ModePlan(
        cadence=QUICK_CADENCE,
        collectors=(CollectorId.SYSTEM_INFO, CollectorId.DISK, CollectorId.CPU, CollectorId.MEMORY),
        block_sizes=(64 * KIB, MIB),
    ),
    Mode.STANDARD: ModePlan(
        cadence=DEFAULT_CADENCE,
        collectors=(
            CollectorId.SYSTEM_INFO,
            CollectorId.DISK,
            CollectorId.CPU,
            CollectorId.MEMORY,
            CollectorId.NETWORK,
            CollectorId.DATABASE,
        ),
        block_sizes=(4 * KIB, 64 * KIB, MIB),
    ),
    Mode.DEEP: ModePlan(
        cadence=EXTENDED_CADENCE,
        collectors=(
            CollectorId.SYSTEM_INFO,
            CollectorId.DISK,
            CollectorId.CPU,
            CollectorId.MEMORY,
            CollectorId.NETWORK,
            CollectorId.DATABASE,
            CollectorId.STORAGE,
            CollectorId.DISK_BENCHMARK,
        ),
        block_sizes=_FULL_BLOCKS,
    ),
    Mode.DISK_ONLY: ModePlan(
        cadence=DEFAULT_CADENCE,
        collectors=(CollectorId.SYSTEM_INFO, CollectorId.DISK, CollectorId.STORAGE, CollectorId.DISK_BENCHMARK),
        block_sizes=_FULL_BLOCKS,
    ),
    Mode.CPU_ONLY: ModePlan(cadence=DEFAULT_CADENCE, collectors=(CollectorId.SYSTEM_INFO, CollectorId.CPU)),
    Mode.MEMORY_ONLY: ModePlan(cadence=DEFAULT_CADENCE, collectors=(CollectorId.SYSTEM_INFO, CollectorId.MEMORY)),
}


def plan_for(mode: Mode) -> ModePlan:
    return MODE_PLANS[mode]
