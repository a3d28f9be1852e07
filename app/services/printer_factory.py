from __future__ import annotations

from functools import lru_cache

from app.config import settings
from app.services.label_printer import LabelPrinter, LpCommandPrinter, MockPrinter, SpoolDirectoryPrinter
from app.services.label_template import DEFAULT_TEMPLATE, LabelTemplate


@lru_cache(maxsize=1)
def get_label_printer() -> LabelPrinter:
    printer = settings.label_printer.strip().lower()
    if printer == 'lp':
        return LpCommandPrinter(settings.label_printer_name, timeout_seconds=settings.label_print_timeout_seconds)
    if printer == 'mock':
        return MockPrinter()
    return SpoolDirectoryPrinter(settings.label_spool_dir)


@lru_cache(maxsize=1)
def get_label_template() -> LabelTemplate:
    if settings.label_template_path:
        return LabelTemplate.load(settings.label_template_path)
    return LabelTemplate.parse(DEFAULT_TEMPLATE)
