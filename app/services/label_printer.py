from __future__ import annotations

import hashlib
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog

from app.exceptions import PrinterError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PrintJob:
    order_number: str
    box_number: int
    box_count: int
    content: str

    @property
    def name(self) -> str:
        return f'{self.order_number}-box-{self.box_number}-of-{self.box_count}'


class LabelPrinter(Protocol):
    def send(self, job: PrintJob) -> None: ...


class SpoolDirectoryPrinter:
    """Writes each job as a file into a directory watched by the print spooler."""

    def __init__(self, spool_dir: str | Path) -> None:
        self.spool_dir = Path(spool_dir)

    def send(self, job: PrintJob) -> None:
        digest = hashlib.sha256(job.content.encode('utf-8')).hexdigest()[:12]
        target = self.spool_dir / f'{job.name}-{digest}.jscript'
        try:
            self.spool_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(job.content, encoding='utf-8')
        except OSError as exc:
            raise PrinterError(f'Could not spool {job.name}: {exc}') from exc
        logger.info('Label spooled', job=job.name, path=str(target))


class LpCommandPrinter:
    def __init__(self, printer_name: str, *, timeout_seconds: int = 30) -> None:
        self.printer_name = printer_name
        self.timeout_seconds = timeout_seconds

    def send(self, job: PrintJob) -> None:
        try:
            completed = subprocess.run(
                ['lp', '-d', self.printer_name, '-t', job.name, '-o', 'raw'],
                input=job.content.encode('utf-8'),
                capture_output=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PrinterError(f'Printer {self.printer_name} unavailable: {exc}') from exc
        if completed.returncode != 0:
            stderr = completed.stderr.decode('utf-8', errors='replace').strip()
            raise PrinterError(f'Printer {self.printer_name} rejected {job.name}: {stderr or completed.returncode}')
        logger.info('Label sent to printer', job=job.name, printer=self.printer_name)


@dataclass
class MockPrinter:
    jobs: list[PrintJob] = field(default_factory=list)
    fail_boxes: set[int] = field(default_factory=set)

    def send(self, job: PrintJob) -> None:
        if job.box_number in self.fail_boxes:
            raise PrinterError(f'Mock printer refused box {job.box_number}')
        self.jobs.append(job)
