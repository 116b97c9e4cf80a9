"""Reusable step types.

A step resolves its resources at run time (so it sees variables set by
earlier steps) and returns one Outcome per resource. Raising SkipStep
records the whole step as skipped; FatalModuleError marks the module as
failed fatally.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from common import APPLIED, FatalModuleError, Outcome, SkipStep
from listfile import load_list
from reconcilers import reconcile_all

logger = logging.getLogger(__name__)


@dataclass
class EnsureStep:
    """Reconcile a fixed or computed list of resource descriptors."""
    name: str
    resources: Union[list, Callable[[Any], Iterable]]
    enabled_by: Optional[str] = None

    def run(self, ctx) -> list[Outcome]:
        resources = self.resources(ctx) if callable(self.resources) else self.resources
        resources = list(resources)
        if not resources:
            raise SkipStep("nothing to ensure")
        return reconcile_all(resources, ctx)


@dataclass
class EnsureFromList:
    """Reconcile the records of a declarative list file.

    Args:
        list_file: Path relative to the data directory (or absolute)
        kind: listfile record kind
        build: record -> resource descriptor
        required: A missing file is fatal when True, a skip otherwise
    """
    name: str
    list_file: str
    kind: str
    build: Callable[[Any], Any]
    required: bool = True
    enabled_by: Optional[str] = None

    def path(self, ctx) -> Path:
        return Path(ctx.data_dir) / self.list_file

    def run(self, ctx) -> list[Outcome]:
        path = self.path(ctx)
        try:
            records = load_list(path, self.kind, ctx.variables)
        except FileNotFoundError:
            if self.required:
                raise FatalModuleError(f"List file not found: {path}") from None
            raise SkipStep(f"{path.name} not found") from None

        if not records:
            logger.warning(f"No entries found in {path.name}")
            raise SkipStep(f"{path.name} is empty")

        logger.info(f"Total entries in {path.name}: {len(records)}")
        return reconcile_all([self.build(record) for record in records], ctx)


@dataclass
class FunctionStep:
    """Run a function for work that is not a plain resource.

    The function returns a message (recorded as applied), an Outcome, or a
    list of Outcomes. Steps that change the system are skipped in dry-run
    mode unless mutates is False.
    """
    name: str
    func: Callable[[Any], Any]
    enabled_by: Optional[str] = None
    mutates: bool = True

    def run(self, ctx) -> list[Outcome]:
        if ctx.dry_run and self.mutates:
            raise SkipStep("dry-run: would run")

        result = self.func(ctx)
        if isinstance(result, Outcome):
            return [result]
        if isinstance(result, list):
            return result
        return [Outcome(self.name, APPLIED, result or '')]
