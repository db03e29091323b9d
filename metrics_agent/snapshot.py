"""
Host metrics snapshot and the assembler that builds one per cycle.
"""

import platform
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from metrics_agent.processes import ProcessEnumerator, ProcessRecord
from metrics_agent.sources import MetricSource, NetworkInterface


@dataclass(frozen=True)
class CpuCoreReading:
    """Utilisation of one logical core during a cycle"""
    index: int
    vendor_id: str
    family: str
    model_name: str
    clock_mhz: str
    used_percent: str


@dataclass(frozen=True)
class HostMetricsSnapshot:
    """Everything the agent knows about the host for a single cycle"""
    captured_at: datetime
    operating_system: str
    total_memory_bytes: str
    free_memory_bytes: str
    used_memory_percent: str
    total_disk_bytes: str
    used_disk_bytes: str
    free_disk_bytes: str
    used_disk_percent: str
    cpu_core_count: int
    hostname: str
    uptime_seconds: str
    process_count: str
    platform_name: str
    host_identifier: str
    cpu_cores: Tuple[CpuCoreReading, ...]
    interfaces: Tuple[NetworkInterface, ...]
    processes: Tuple[ProcessRecord, ...]


def format_decimal(value: float) -> str:
    """Fixed two-decimal rendering, e.g. 42.5 -> '42.50'"""
    return f"{float(value):.2f}"


def format_percent(value: float) -> str:
    return format_decimal(value)


def format_count(value: int) -> str:
    return str(int(value))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotAssembler:
    """Composes metric sources and the process enumerator into a snapshot"""

    def __init__(
        self,
        source: MetricSource,
        enumerator: ProcessEnumerator,
        disk_path: str = '/',
        clock: Callable[[], datetime] = _utcnow,
        operating_system: Optional[str] = None
    ):
        self.source = source
        self.enumerator = enumerator
        self.disk_path = disk_path
        self.clock = clock
        self.operating_system = operating_system or platform.system().lower()

    def assemble(self) -> HostMetricsSnapshot:
        """
        Build a fully populated snapshot.

        Raises:
            MetricUnavailable: If any metric query fails
            ProcessEnumerationFailed: If the process listing fails
        """
        captured_at = self.clock()

        mem = self.source.memory()
        disk = self.source.disk(self.disk_path)
        cpu = self.source.cpu_info()
        per_core = self.source.cpu_percent_per_core()
        host = self.source.host_info()
        interfaces = self.source.network_interfaces()
        processes = self.enumerator.enumerate()

        # One reading per sample; the sample count is not checked against core_count
        cores = tuple(
            CpuCoreReading(
                index=index,
                vendor_id=cpu.vendor_id,
                family=cpu.family,
                model_name=cpu.model_name,
                clock_mhz=format_decimal(cpu.mhz),
                used_percent=format_percent(percent)
            )
            for index, percent in enumerate(per_core)
        )

        return HostMetricsSnapshot(
            captured_at=captured_at,
            operating_system=self.operating_system,
            total_memory_bytes=format_count(mem.total),
            free_memory_bytes=format_count(mem.free),
            used_memory_percent=format_percent(mem.used_percent),
            total_disk_bytes=format_count(disk.total),
            used_disk_bytes=format_count(disk.used),
            free_disk_bytes=format_count(disk.free),
            used_disk_percent=format_percent(disk.used_percent),
            cpu_core_count=cpu.core_count,
            hostname=host.hostname,
            uptime_seconds=format_count(host.uptime_seconds),
            process_count=format_count(host.process_count),
            platform_name=host.platform_name,
            host_identifier=host.host_id,
            cpu_cores=cores,
            interfaces=tuple(interfaces),
            processes=tuple(processes)
        )
