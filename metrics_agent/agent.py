"""
Cycle runner and the periodic agent loop.
"""

import logging
import signal
import threading
import time

from metrics_agent.config import AgentConfig
from metrics_agent.errors import AgentError
from metrics_agent.processes import select_enumerator
from metrics_agent.snapshot import SnapshotAssembler
from metrics_agent.sources import MetricSource
from metrics_agent.store import SnapshotUpserter, create_store


class CycleRunner:
    """Runs one assemble-then-persist cycle without letting failures escape"""

    def __init__(self, assembler: SnapshotAssembler, upserter: SnapshotUpserter, logger: logging.Logger):
        self.assembler = assembler
        self.upserter = upserter
        self.logger = logger

    def run_cycle(self) -> None:
        started = time.monotonic()
        try:
            snapshot = self.assembler.assemble()
            self.upserter.persist(snapshot)
        except AgentError as e:
            self.logger.error(
                f"Collection cycle failed: {e}",
                extra={'context': {'error_type': type(e).__name__}}
            )
        except Exception:
            # Keep the agent alive whatever happened; the next tick retries
            self.logger.exception("Unexpected error in collection cycle")
        finally:
            self.logger.info(
                "Collection cycle finished",
                extra={'context': {'duration_s': round(time.monotonic() - started, 3)}}
            )


class MonitoringAgent:
    """Main agent loop: one cycle per tick, never two at once"""

    def __init__(
        self,
        runner: CycleRunner,
        logger: logging.Logger,
        interval: float = 5,
        install_signal_handlers: bool = True
    ):
        self.runner = runner
        self.logger = logger
        self.interval = interval
        self._stop_event = threading.Event()

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._handle_shutdown)
            signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signals gracefully"""
        self.logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        """Run cycles every ``interval`` seconds until stopped"""
        self.logger.info(
            "Starting metrics agent",
            extra={'context': {'interval_s': self.interval}}
        )

        next_tick = time.monotonic()
        while self.running:
            self.runner.run_cycle()

            next_tick += self.interval
            now = time.monotonic()
            if now > next_tick:
                # Overran: drop the ticks that fired during the cycle
                skipped = int((now - next_tick) // self.interval) + 1
                next_tick += skipped * self.interval
                self.logger.warning(
                    "Collection cycle overran the interval, skipping ticks",
                    extra={'context': {'skipped': skipped}}
                )

            self._stop_event.wait(next_tick - now)

        self.logger.info("Agent stopped")


def build_runner(config: AgentConfig, logger: logging.Logger) -> CycleRunner:
    """Wire the sources, enumerator and store described by ``config``"""
    assembler = SnapshotAssembler(
        source=MetricSource(cpu_interval=config.cpu_interval),
        enumerator=select_enumerator(logger, artifact_dir=config.artifact_dir),
        disk_path=config.disk_path
    )
    upserter = SnapshotUpserter(create_store(config.store), logger)
    return CycleRunner(assembler, upserter, logger)
