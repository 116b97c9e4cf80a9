"""Common utilities and types for workstation convergence."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Probe states
SATISFIED = 'satisfied'
MISSING = 'missing'
DIVERGENT = 'divergent'

# Outcome statuses
APPLIED = 'applied'
SKIPPED = 'skipped'
FAILED = 'failed'

OUTCOME_STATUSES = (APPLIED, SATISFIED, SKIPPED, FAILED)


class ProbeError(Exception):
    """Current state of a resource could not be determined."""


class ApplyError(Exception):
    """Mutation of a resource failed."""


class ParseError(Exception):
    """Malformed line in a declarative list file."""


class FatalModuleError(Exception):
    """A module precondition cannot be met.

    Aborts the whole run when raised inside a required module.
    """


class SkipStep(Exception):
    """A step or resource is deliberately not processed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class Outcome:
    """Result of reconciling one resource (or running one plain step)."""
    resource: str
    status: str
    message: str = ''
    duration: float = 0.0


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 3600,
    capture: bool = True,
    env: Optional[dict] = None,
    input_text: Optional[str] = None,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            input=input_text,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout or '', result.stderr or ''
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except Exception as e:
        return -1, '', str(e)


def tail(text: str, limit: int = 500) -> str:
    """Last part of command output, for error messages."""
    text = (text or '').strip()
    return text[-limit:]
