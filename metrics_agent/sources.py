"""
Typed accessors over the host's memory, disk, CPU, network and identity facts.
"""

import ipaddress
import platform
import re
import socket
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple

import psutil

from metrics_agent.errors import MetricUnavailable


LINUX_HOST_ID_FILES = (
    '/sys/class/dmi/id/product_uuid',
    '/etc/machine-id',
    '/var/lib/dbus/machine-id',
)

PROC_CPUINFO = '/proc/cpuinfo'

_IOREG_UUID = re.compile(r'"IOPlatformUUID"\s*=\s*"([^"]+)"')


@dataclass(frozen=True)
class MemoryUsage:
    """Virtual memory totals in bytes"""
    total: int
    free: int
    used_percent: float


@dataclass(frozen=True)
class DiskUsage:
    """Filesystem usage in bytes"""
    total: int
    used: int
    free: int
    used_percent: float


def _percent(part: int, whole: int) -> float:
    # psutil's own percent fields are rounded to one decimal
    return part / whole * 100 if whole else 0.0


@dataclass(frozen=True)
class CpuInfo:
    """Static description of the machine's processors"""
    vendor_id: str
    family: str
    model_name: str
    mhz: float
    core_count: int


@dataclass(frozen=True)
class HostInfo:
    """Host identity facts"""
    hostname: str
    uptime_seconds: int
    process_count: int
    platform_name: str
    host_id: str


@dataclass(frozen=True)
class NetworkInterface:
    """One network interface as seen by the operating system"""
    name: str
    mac_address: str
    flags: FrozenSet[str]
    ip_addresses: Tuple[str, ...]


@contextmanager
def _reading(what: str):
    """Convert OS-level failures into MetricUnavailable"""
    try:
        yield
    except MetricUnavailable:
        raise
    except (psutil.Error, OSError, subprocess.SubprocessError, ValueError) as e:
        raise MetricUnavailable(f"{what} unavailable: {e}") from e


class MetricSource:
    """Reads host metrics through psutil and the platform's identity sources"""

    def __init__(self, cpu_interval: float = 1.0, system: Optional[str] = None):
        self.cpu_interval = cpu_interval
        self.system = system or platform.system()

    def memory(self) -> MemoryUsage:
        """Virtual memory statistics, used percentage at full precision"""
        with _reading('memory'):
            mem = psutil.virtual_memory()
            return MemoryUsage(
                total=mem.total,
                free=mem.free,
                used_percent=_percent(mem.total - mem.available, mem.total)
            )

    def disk(self, path: str = '/') -> DiskUsage:
        """Disk usage of the filesystem containing ``path``"""
        with _reading(f'disk usage for {path}'):
            usage = psutil.disk_usage(path)
            return DiskUsage(
                total=usage.total,
                used=usage.used,
                free=usage.free,
                used_percent=_percent(usage.used, usage.used + usage.free)
            )

    def cpu_info(self) -> CpuInfo:
        with _reading('cpu info'):
            fields = self._proc_cpuinfo() if self.system == 'Linux' else {}

            mhz = fields.get('cpu MHz')
            if mhz is None:
                freq = psutil.cpu_freq()
                mhz = freq.current if freq else 0.0

            core_count = psutil.cpu_count(logical=False) or psutil.cpu_count(logical=True) or 0

            return CpuInfo(
                vendor_id=fields.get('vendor_id', ''),
                family=fields.get('cpu family', ''),
                model_name=fields.get('model name') or platform.processor() or platform.machine(),
                mhz=float(mhz),
                core_count=core_count
            )

    def cpu_percent_per_core(self) -> List[float]:
        """Per-core utilisation sampled over ``cpu_interval`` seconds"""
        with _reading('per-core cpu utilisation'):
            return list(psutil.cpu_percent(interval=self.cpu_interval, percpu=True))

    def host_info(self) -> HostInfo:
        with _reading('host info'):
            host_id = self._host_id()
            if not host_id:
                raise MetricUnavailable("host identifier unavailable: no machine id source found")

            return HostInfo(
                hostname=socket.gethostname(),
                uptime_seconds=max(0, int(time.time() - psutil.boot_time())),
                process_count=len(psutil.pids()),
                platform_name=self._platform_name(),
                host_id=host_id
            )

    def network_interfaces(self) -> List[NetworkInterface]:
        with _reading('network interfaces'):
            addrs = psutil.net_if_addrs()
            stats = psutil.net_if_stats()

            interfaces = []
            for name, addresses in addrs.items():
                mac_address = ''
                ip_addresses = []

                for addr in addresses:
                    if addr.family == psutil.AF_LINK:
                        mac_address = addr.address
                    elif addr.family in (socket.AF_INET, socket.AF_INET6):
                        ip_addresses.append(_format_address(addr.address, addr.netmask))

                interfaces.append(NetworkInterface(
                    name=name,
                    mac_address=mac_address,
                    flags=_interface_flags(stats.get(name)),
                    ip_addresses=tuple(ip_addresses)
                ))

            return interfaces

    def _proc_cpuinfo(self) -> dict:
        """Key/value pairs of the first processor block in /proc/cpuinfo"""
        fields = {}
        with open(PROC_CPUINFO) as f:
            for line in f:
                if not line.strip():
                    if fields:
                        break
                    continue
                key, _, value = line.partition(':')
                fields.setdefault(key.strip(), value.strip())
        return fields

    def _platform_name(self) -> str:
        if self.system == 'Linux':
            try:
                return platform.freedesktop_os_release().get('ID', 'linux')
            except OSError:
                return 'linux'
        if self.system == 'Windows':
            parts = ['Microsoft Windows', platform.release(), platform.win32_edition() or '']
            return ' '.join(p for p in parts if p)
        return self.system.lower()

    def _host_id(self) -> str:
        if self.system == 'Linux':
            for path in LINUX_HOST_ID_FILES:
                try:
                    value = Path(path).read_text().strip()
                except OSError:
                    continue
                if value:
                    return value.lower()
            return ''

        if self.system == 'Darwin':
            result = subprocess.run(
                ['ioreg', '-rd1', '-c', 'IOPlatformExpertDevice'],
                capture_output=True,
                text=True,
                check=True
            )
            match = _IOREG_UUID.search(result.stdout)
            return match.group(1) if match else ''

        if self.system == 'Windows':
            import winreg

            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE,
                r'SOFTWARE\Microsoft\Cryptography',
                0,
                winreg.KEY_READ | winreg.KEY_WOW64_64KEY
            ) as key:
                value, _ = winreg.QueryValueEx(key, 'MachineGuid')
            return str(value)

        return ''


def _format_address(address: str, netmask: Optional[str]) -> str:
    """Render an address in CIDR form (``192.168.1.10/24``) when the netmask is known"""
    address = address.split('%', 1)[0]
    if not netmask:
        return address
    try:
        prefix = bin(int(ipaddress.ip_address(netmask))).count('1')
    except ValueError:
        return address
    return f"{address}/{prefix}"


def _interface_flags(stats) -> FrozenSet[str]:
    if stats is None:
        return frozenset()
    flags = {flag for flag in getattr(stats, 'flags', '').split(',') if flag}
    if stats.isup:
        flags.add('up')
    return frozenset(flags)
