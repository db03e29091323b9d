"""
Shared fixtures for agent tests.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from metrics_agent.errors import StoreConnectFailed, StoreOperationFailed
from metrics_agent.processes import ProcessRecord
from metrics_agent.snapshot import CpuCoreReading, HostMetricsSnapshot
from metrics_agent.sources import CpuInfo, DiskUsage, HostInfo, MemoryUsage, NetworkInterface
from metrics_agent.store import HOST_ID_FIELD, DocumentStore, StoreSession


class InMemorySession(StoreSession):
    def __init__(self, store):
        self.store = store

    def find_one(self, host_id):
        if self.store.fail_operation:
            raise StoreOperationFailed("query timed out")
        return next((d for d in self.store.documents if d[HOST_ID_FIELD] == host_id), None)

    def insert(self, document):
        self.store.documents.append(dict(document))

    def update(self, host_id, document):
        self.find_one(host_id).update(document)


class InMemoryStore(DocumentStore):
    """Document store double that counts connections"""

    def __init__(self):
        self.documents = []
        self.opened = 0
        self.closed = 0
        self.fail_connect = False
        self.fail_operation = False

    @contextmanager
    def connect(self):
        if self.fail_connect:
            raise StoreConnectFailed("connection refused")
        self.opened += 1
        try:
            yield InMemorySession(self)
        finally:
            self.closed += 1


class FakeSource:
    """MetricSource double with fixed readings"""

    def __init__(self, per_core=(12.5, 40.0), core_count=4, host_id='4c4c4544-0042-3510-8052-b4c04f384d32',
                 memory_percent=75.0, disk_percent=50.0):
        self.per_core = list(per_core)
        self.memory_percent = memory_percent
        self.disk_percent = disk_percent
        self.core_count = core_count
        self.host_id = host_id

    def memory(self):
        return MemoryUsage(total=17179869184, free=4294967296, used_percent=self.memory_percent)

    def disk(self, path='/'):
        return DiskUsage(total=500107862016, used=250053931008, free=250053931008, used_percent=self.disk_percent)

    def cpu_info(self):
        return CpuInfo(
            vendor_id='GenuineIntel',
            family='6',
            model_name='Intel(R) Core(TM) i7-8650U CPU @ 1.90GHz',
            mhz=2112.0,
            core_count=self.core_count
        )

    def cpu_percent_per_core(self):
        return list(self.per_core)

    def host_info(self):
        return HostInfo(
            hostname='web-01',
            uptime_seconds=86400,
            process_count=231,
            platform_name='ubuntu',
            host_id=self.host_id
        )

    def network_interfaces(self):
        return [
            NetworkInterface(
                name='eth0',
                mac_address='52:54:00:12:34:56',
                flags=frozenset({'up', 'broadcast', 'multicast'}),
                ip_addresses=('10.0.0.5/24', 'fe80::5054:ff:fe12:3456/64')
            )
        ]


class FakeEnumerator:
    def __init__(self, records=()):
        self.records = tuple(records)

    def enumerate(self):
        return self.records


@pytest.fixture
def logger():
    log = logging.getLogger('agent_tests')
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_snapshot():
    """Factory for snapshots with overridable fields"""
    base = HostMetricsSnapshot(
        captured_at=datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc),
        operating_system='linux',
        total_memory_bytes='17179869184',
        free_memory_bytes='4294967296',
        used_memory_percent='75.00',
        total_disk_bytes='500107862016',
        used_disk_bytes='250053931008',
        free_disk_bytes='250053931008',
        used_disk_percent='50.00',
        cpu_core_count=4,
        hostname='web-01',
        uptime_seconds='86400',
        process_count='231',
        platform_name='ubuntu',
        host_identifier='4c4c4544-0042-3510-8052-b4c04f384d32',
        cpu_cores=(
            CpuCoreReading(0, 'GenuineIntel', '6', 'Intel(R) Core(TM) i7-8650U', '2112.00', '12.50'),
        ),
        interfaces=(
            NetworkInterface('eth0', '52:54:00:12:34:56', frozenset({'up', 'broadcast'}), ('10.0.0.5/24',)),
        ),
        processes=(
            ProcessRecord('svc.exe', '1234', 'Services', '0', '12,345 K', 'Running', 'SYSTEM', '0:00:05', 'N/A'),
        )
    )

    def factory(**overrides):
        return replace(base, **overrides)

    return factory


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_enumerator():
    return FakeEnumerator
