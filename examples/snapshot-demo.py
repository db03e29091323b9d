#!/usr/bin/env python3
"""
Demo script showing what the agent collects and stores.

This example demonstrates:
1. Structured JSON logging through the agent's logger
2. Assembling a snapshot from the local host
3. The document that would be upserted into the store
"""

import json
import sys
import tempfile
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from metrics_agent.errors import AgentError
from metrics_agent.logger import setup_logging, teardown_logging
from metrics_agent.processes import select_enumerator
from metrics_agent.snapshot import SnapshotAssembler
from metrics_agent.sources import MetricSource
from metrics_agent.store import to_document

logger = setup_logging(name='snapshot_demo')


def demo_snapshot(artifact_dir):
    """Assemble one snapshot and print its stored form"""
    print("\n=== Host Snapshot Demo ===")

    assembler = SnapshotAssembler(
        MetricSource(cpu_interval=0.5),
        select_enumerator(logger, artifact_dir=artifact_dir)
    )

    try:
        snapshot = assembler.assemble()
    except AgentError as e:
        logger.error(f"Could not assemble snapshot: {e}")
        return

    logger.info("Snapshot assembled", extra={'context': {
        'hostname': snapshot.hostname,
        'cores_sampled': len(snapshot.cpu_cores),
        'interfaces': len(snapshot.interfaces),
    }})

    print(json.dumps(to_document(snapshot), indent=2, default=str))
    print(f"\nRaw process listing written to {Path(artifact_dir) / 'prosses.txt'}")


if __name__ == '__main__':
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            demo_snapshot(tmpdir)
        finally:
            teardown_logging(logger)
