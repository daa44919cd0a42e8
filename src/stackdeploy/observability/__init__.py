"""Observability - logging and reporting."""

from .logger import LogContext, add_context, clear_all_context, configure_logging
from .reporter import ReportGenerator, RunReport, render_summary

__all__ = [
    "ReportGenerator",
    "RunReport",
    "render_summary",
    "configure_logging",
    "add_context",
    "clear_all_context",
    "LogContext",
]
