"""Logging and execution reporting."""

from reporting.log import OK, SECTION, section, setup_logging
from reporting.report import ABORTED, COMPLETED, ExecutionReport, ModuleResult, StepResult

__all__ = [
    'OK',
    'SECTION',
    'section',
    'setup_logging',
    'ABORTED',
    'COMPLETED',
    'ExecutionReport',
    'ModuleResult',
    'StepResult',
]
