"""Turn averaged domain metrics into bottleneck findings."""

from __future__ import annotations

import operator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from . import system_state as m
from .sampling import TOTAL
from .system_state import Domain, DomainSnapshot


class ImpactLevel(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    def __lt__(self, other: "ImpactLevel") -> bool:
        if not isinstance(other, ImpactLevel):
            return NotImplemented
        return self.value < other.value


@dataclass(frozen=True)
class BottleneckRecord:
    category: str
    issue: str
    observed: float
    threshold: float
    impact: ImpactLevel
    detected_at: datetime
    instance: str = TOTAL
    unit: str = ""

    def describe(self) -> str:
        where = "" if self.instance == TOTAL else f" [{self.instance}]"
        return f"{self.issue}{where}: {self.observed:.2f}{self.unit} (threshold {self.threshold:g}{self.unit})"


Comparator = Callable[[float, float], bool]
ABOVE: Comparator = operator.gt
BELOW: Comparator = operator.lt


@dataclass(frozen=True)
class Rule:
    """One threshold check.

    ``instance=None`` checks every per-resource instance and ignores the
    ``_Total`` aggregate; any other value checks exactly that instance.
    Comparisons are strict, so a value equal to the threshold never fires.
    """

    category: Domain
    metric: str
    instance: Optional[str]
    comparator: Comparator
    threshold: float
    impact: ImpactLevel
    issue: str
    unit: str = ""


DATABASE_CONNECTION_LIMITS: Tuple[Tuple[str, int], ...] = (
    ("sqlserver", 500),
    ("mysql", 500),
    ("postgresql", 500),
    ("oracle", 500),
    ("mongodb", 1000),
    ("redis", 10000),
)

RULES: Tuple[Rule, ...] = (
    Rule(Domain.DISK, m.READ_LATENCY_MS, None, ABOVE, 20, ImpactLevel.HIGH, "High read latency", " ms"),
    Rule(Domain.DISK, m.WRITE_LATENCY_MS, None, ABOVE, 20, ImpactLevel.HIGH, "High write latency", " ms"),
    Rule(Domain.DISK, m.DISK_QUEUE_LENGTH, None, ABOVE, 2, ImpactLevel.HIGH, "High disk queue length"),
    Rule(Domain.CPU, m.CPU_UTILIZATION, TOTAL, ABOVE, 80, ImpactLevel.HIGH, "High CPU utilization", "%"),
    Rule(Domain.CPU, m.CONTEXT_SWITCHES, TOTAL, ABOVE, 15000, ImpactLevel.MEDIUM, "High context switch rate", "/s"),
    Rule(Domain.CPU, m.PROCESSOR_QUEUE_LENGTH, TOTAL, ABOVE, 2, ImpactLevel.HIGH, "High processor queue length"),
    Rule(Domain.CPU, m.CLOCK_THROTTLE, TOTAL, ABOVE, 10, ImpactLevel.MEDIUM, "CPU clock throttling", "%"),
    Rule(Domain.MEMORY, m.AVAILABLE_MEMORY, TOTAL, BELOW, 10, ImpactLevel.CRITICAL, "Low available memory", "%"),
    Rule(Domain.MEMORY, m.PAGING_RATE, TOTAL, ABOVE, 10, ImpactLevel.HIGH, "High paging rate", "/s"),
    Rule(Domain.MEMORY, m.PAGE_FAULTS, TOTAL, ABOVE, 1000, ImpactLevel.MEDIUM, "High page fault rate", "/s"),
    Rule(Domain.MEMORY, m.PAGE_FILE_USAGE, TOTAL, ABOVE, 80, ImpactLevel.HIGH, "High page file usage", "%"),
    Rule(Domain.MEMORY, m.COMMITTED_MEMORY, TOTAL, ABOVE, 90, ImpactLevel.CRITICAL, "High committed memory", "%"),
    Rule(Domain.NETWORK, m.RETRANSMITS, TOTAL, ABOVE, 10, ImpactLevel.MEDIUM, "High TCP retransmit rate", "/s"),
) + tuple(
    Rule(Domain.DATABASE, m.ESTABLISHED_CONNECTIONS, engine, ABOVE, limit, ImpactLevel.MEDIUM, "High connection count")
    for engine, limit in DATABASE_CONNECTION_LIMITS
) + (
    Rule(
        Domain.DATABASE,
        m.TIME_WAIT_CONNECTIONS,
        TOTAL,
        ABOVE,
        1000,
        ImpactLevel.MEDIUM,
        "High TIME_WAIT count on database ports",
    ),
    Rule(Domain.STORAGE, m.MISALIGNED_PARTITIONS, TOTAL, ABOVE, 0, ImpactLevel.MEDIUM, "Misaligned partitions"),
    Rule(Domain.STORAGE, m.DEGRADED_VOLUMES, TOTAL, ABOVE, 0, ImpactLevel.CRITICAL, "Degraded volume"),
    Rule(Domain.STORAGE, m.SMART_WEAR, None, ABOVE, 90, ImpactLevel.HIGH, "SSD wear level high", "%"),
    Rule(Domain.STORAGE, m.DRIVE_TEMPERATURE, None, ABOVE, 70, ImpactLevel.HIGH, "High drive temperature", " C"),
    Rule(Domain.STORAGE, m.UNHEALTHY_ISCSI_SESSIONS, TOTAL, ABOVE, 0, ImpactLevel.HIGH, "Unhealthy iSCSI sessions"),
)

IMPACT_ORDER: Tuple[ImpactLevel, ...] = (
    ImpactLevel.CRITICAL,
    ImpactLevel.HIGH,
    ImpactLevel.MEDIUM,
    ImpactLevel.LOW,
)


def classify(
    snapshot: DomainSnapshot,
    detected_at: Optional[datetime] = None,
    rules: Sequence[Rule] = RULES,
) -> List[BottleneckRecord]:
    """Evaluate every rule for the snapshot's domain.

    Output order follows the rule table, then instance name. A metric that is
    absent from the snapshot produces nothing.
    """
    detected_at = detected_at or datetime.now()
    findings: List[BottleneckRecord] = []
    for rule in rules:
        if rule.category is not snapshot.domain:
            continue
        for instance, value in _matching_values(snapshot, rule):
            if rule.comparator(value, rule.threshold):
                findings.append(
                    BottleneckRecord(
                        category=rule.category.value,
                        issue=rule.issue,
                        observed=value,
                        threshold=rule.threshold,
                        impact=rule.impact,
                        detected_at=detected_at,
                        instance=instance,
                        unit=rule.unit,
                    )
                )
    return findings


def _matching_values(snapshot: DomainSnapshot, rule: Rule) -> List[Tuple[str, float]]:
    if rule.instance is None:
        return [(instance, value) for instance, value in snapshot.instances(rule.metric) if instance != TOTAL]
    value = snapshot.value(rule.metric, rule.instance)
    return [] if value is None else [(rule.instance, value)]


def group_by_impact(records: Iterable[BottleneckRecord]) -> Dict[ImpactLevel, List[BottleneckRecord]]:
    """Critical first; detection order is kept inside each group."""
    groups: Dict[ImpactLevel, List[BottleneckRecord]] = {level: [] for level in IMPACT_ORDER}
    for record in records:
        groups[record.impact].append(record)
    return groups


def highest_impact(records: Iterable[BottleneckRecord]) -> Optional[ImpactLevel]:
    levels = [record.impact for record in records]
    return max(levels, key=lambda level: level.value) if levels else None
