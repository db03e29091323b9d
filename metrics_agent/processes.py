"""
Process enumeration through the platform's process listing command.

Windows ships ``tasklist``, which can emit CSV, so its output is parsed into
ProcessRecord values. Other platforms only get the raw listing written to the
side file; their snapshots carry no process records.
"""

import csv
import io
import logging
import platform
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from metrics_agent.errors import ProcessEnumerationFailed


ARTIFACT_STEM = 'prosses'

TASKLIST_COMMAND = ['tasklist.exe', '/v', '/FO', 'csv']
TOP_COMMAND = ['top', '-l', '1']
PS_COMMAND = ['ps', 'aux']

PROCESS_COLUMNS = 9


@dataclass(frozen=True)
class ProcessRecord:
    """One row of a structured process listing"""
    image_name: str
    pid: str
    session_name: str
    session_number: str
    memory_usage: str
    status: str
    user_name: str
    cpu_time: str
    window_title: str


def default_artifact_dir() -> Path:
    """Directory of the running program"""
    return Path(sys.argv[0]).resolve().parent


def parse_process_listing(output: str) -> Tuple[ProcessRecord, ...]:
    """
    Parse CSV process listing output into ProcessRecord values.

    The first row is the header and is discarded. Blank rows are ignored;
    every other row must have exactly nine columns.

    Raises:
        ProcessEnumerationFailed: If a data row has the wrong column count
    """
    rows = [row for row in csv.reader(io.StringIO(output)) if row]

    records = []
    for line_number, row in enumerate(rows[1:], start=2):
        if len(row) != PROCESS_COLUMNS:
            raise ProcessEnumerationFailed(
                f"Malformed process listing row {line_number}: "
                f"expected {PROCESS_COLUMNS} columns, got {len(row)}"
            )
        records.append(ProcessRecord(*row))

    return tuple(records)


class ProcessEnumerator(ABC):
    """Runs a process listing command and keeps its output as a side file"""

    def __init__(
        self,
        command: Sequence[str],
        logger: logging.Logger,
        artifact_dir: Optional[Path] = None
    ):
        self.command = list(command)
        self.logger = logger
        self.artifact_dir = Path(artifact_dir) if artifact_dir else default_artifact_dir()

    @property
    def artifact_path(self) -> Path:
        return self.artifact_dir / f"{ARTIFACT_STEM}.txt"

    @abstractmethod
    def enumerate(self) -> Tuple[ProcessRecord, ...]:
        """Return the process records for this cycle"""
        pass

    def _run(self) -> str:
        """Run the listing command and return its standard output"""
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                errors='replace',
                check=True
            )
        except subprocess.CalledProcessError as e:
            raise ProcessEnumerationFailed(
                f"{self.command[0]} exited with status {e.returncode}: {(e.stderr or '').strip()}"
            ) from e
        except OSError as e:
            raise ProcessEnumerationFailed(f"Could not run {self.command[0]}: {e}") from e

        self._write_artifact(result.stdout)
        return result.stdout

    def _write_artifact(self, output: str) -> None:
        try:
            self.artifact_path.write_text(output)
        except OSError as e:
            self.logger.warning(
                "Could not write process listing artifact",
                extra={'context': {'path': str(self.artifact_path), 'error': str(e)}}
            )


class StructuredEnumerator(ProcessEnumerator):
    """Parses CSV output (tasklist) into process records"""

    def __init__(self, logger: logging.Logger, artifact_dir: Optional[Path] = None,
                 command: Sequence[str] = TASKLIST_COMMAND):
        super().__init__(command, logger, artifact_dir)

    def enumerate(self) -> Tuple[ProcessRecord, ...]:
        return parse_process_listing(self._run())


class RawEnumerator(ProcessEnumerator):
    """Keeps the raw listing as a diagnostic artifact; yields no records"""

    def enumerate(self) -> Tuple[ProcessRecord, ...]:
        self._run()
        return ()


def select_enumerator(
    logger: logging.Logger,
    artifact_dir: Optional[Path] = None,
    system: Optional[str] = None
) -> ProcessEnumerator:
    """Pick the enumerator for the running platform"""
    system = system or platform.system()

    if system == 'Windows':
        return StructuredEnumerator(logger, artifact_dir)
    if system == 'Darwin':
        return RawEnumerator(TOP_COMMAND, logger, artifact_dir)
    return RawEnumerator(PS_COMMAND, logger, artifact_dir)
