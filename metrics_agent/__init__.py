"""
metrics_agent: host metrics snapshot daemon

Samples memory, disk, CPU, network interfaces, processes and host identity
every cycle and upserts the latest snapshot into a document store, one record
per host.
"""

__version__ = '1.0.0'

from metrics_agent.agent import CycleRunner, MonitoringAgent
from metrics_agent.snapshot import HostMetricsSnapshot, SnapshotAssembler
from metrics_agent.store import SnapshotUpserter

__all__ = ['CycleRunner', 'MonitoringAgent', 'HostMetricsSnapshot', 'SnapshotAssembler', 'SnapshotUpserter']
