"""Module definitions and the module runner."""

import logging
import re
import time
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from common import FAILED, SKIPPED, ApplyError, FatalModuleError, Outcome, SkipStep
from reporting import SECTION, ExecutionReport, section

logger = logging.getLogger(__name__)


@runtime_checkable
class Module(Protocol):
    """Protocol for module definitions.

    Class attributes:
        id: Numeric prefix; modules run in ascending id order
        name: Module identifier (e.g., 'packages')
        description: Human-readable description
        required: If True, a fatal step failure aborts the whole run
    """
    id: int
    name: str
    description: str
    required: bool

    def get_steps(self, ctx) -> list[tuple[str, Any, str]]:
        """Return list of (step_name, step, description) tuples."""
        ...


def module_label(module: Module) -> str:
    return f"{module.id:02d}-{module.name}"


class ModuleRunner:
    """Runs modules in order and collects their outcomes."""

    def __init__(self, ctx, report: Optional[ExecutionReport] = None):
        self.ctx = ctx
        self.report = report or ExecutionReport(dry_run=ctx.dry_run)

    def run(self, selectors: Optional[Iterable[str]] = None) -> ExecutionReport:
        """Run the selected modules (all when None) in ascending id order.

        Raises:
            ValueError: If a selector matches no module
        """
        modules = select_modules(selectors)
        mode = " (dry-run)" if self.ctx.dry_run else ""
        logger.info(f"Running {len(modules)} module(s) for user {self.ctx.user}{mode}")
        self.report.start()
        start_time = time.time()

        for module in modules:
            fatal = self.run_module(module)
            if fatal and module.required:
                logger.log(SECTION, f"FATAL: required module {module_label(module)} failed: {fatal}")
                self.report.abort(f"{module_label(module)}: {fatal}")
                break
            if fatal:
                logger.warning(f"Optional module {module_label(module)} failed: {fatal} (continuing)")

        self.report.finish()
        total_time = time.time() - start_time
        logger.info(f"Run {self.report.status} in {total_time:.1f}s")
        return self.report

    def run_module(self, module: Module) -> Optional[str]:
        """Run every step of a module. Returns the fatal error message, if any."""
        section(logger, f"Module: {module_label(module)} - {module.description}")
        self.report.start_module(module.id, module.name, module.required)
        fatal = None

        try:
            steps = module.get_steps(self.ctx)
        except FatalModuleError as e:
            logger.error(f"Module {module_label(module)} cannot start: {e}")
            self.report.record_step('get_steps', 'Resolve steps', [Outcome('get_steps', FAILED, str(e))])
            steps = []
            fatal = str(e)

        for step_name, step, description in steps:
            step_fatal = self.run_step(step_name, step, description)
            if step_fatal and fatal is None:
                fatal = step_fatal

        if fatal:
            self.report.mark_fatal(fatal)
        self.report.finish_module()
        return fatal

    def run_step(self, step_name: str, step: Any, description: str) -> Optional[str]:
        """Run one step and record its outcomes. Returns a fatal message, if any."""
        start = time.time()
        fatal = None

        enabled_by = getattr(step, 'enabled_by', None)
        if enabled_by and not self.ctx.flag(enabled_by, default=True):
            logger.info(f"Skipping step: {step_name} (disabled in config: {enabled_by})")
            self.report.record_step(step_name, description, [
                Outcome(step_name, SKIPPED, f"disabled in config ({enabled_by})")
            ])
            return None

        logger.info(f"Running step: {step_name} - {description}")
        try:
            outcomes = step.run(self.ctx)
        except SkipStep as e:
            logger.info(f"Step {step_name} skipped: {e.reason}")
            outcomes = [Outcome(step_name, SKIPPED, e.reason)]
        except FatalModuleError as e:
            logger.error(f"Step {step_name} failed fatally: {e}")
            outcomes = [Outcome(step_name, FAILED, str(e))]
            fatal = str(e)
        except ApplyError as e:
            logger.error(f"Step {step_name} failed: {e}")
            outcomes = [Outcome(step_name, FAILED, str(e))]
        except Exception as e:
            logger.exception(f"Step {step_name} raised exception")
            outcomes = [Outcome(step_name, FAILED, str(e))]

        duration = time.time() - start
        self.report.record_step(step_name, description, outcomes, duration)
        return fatal


# Registry of available modules, by id
_modules: dict[int, type] = {}


def register_module(cls: type) -> type:
    """Decorator to register a module class."""
    if cls.id in _modules:
        raise ValueError(f"Duplicate module id {cls.id}: {cls.name} and {_modules[cls.id].name}")
    if any(existing.name == cls.name for existing in _modules.values()):
        raise ValueError(f"Duplicate module name: {cls.name}")
    _modules[cls.id] = cls
    return cls


SELECTOR_PATTERN = re.compile(r'^(\d+)-(.+)$')


def get_module(selector: str) -> Module:
    """Get a module instance by id ('10'), label ('10-packages') or name ('packages')."""
    selector = str(selector).strip()
    for module_id, cls in _modules.items():
        if selector.isdigit() and int(selector) == module_id:
            return cls()
        match = SELECTOR_PATTERN.match(selector)
        if match and int(match.group(1)) == module_id and match.group(2) == cls.name:
            return cls()
        if selector == cls.name:
            return cls()
    available = [module_label(cls) for cls in list_modules()]
    raise ValueError(f"Unknown module: {selector}. Available: {available}")


def list_modules() -> list[type]:
    """List registered module classes in execution order."""
    return [_modules[module_id] for module_id in sorted(_modules)]


def select_modules(selectors: Optional[Iterable[str]] = None) -> list[Module]:
    """Resolve selectors to module instances, deduplicated and ordered by id."""
    if not selectors:
        return [cls() for cls in list_modules()]
    selected = {}
    for selector in selectors:
        module = get_module(selector)
        selected[module.id] = module
    return [selected[module_id] for module_id in sorted(selected)]


def run(selectors: Optional[Iterable[str]], ctx) -> ExecutionReport:
    """Run the selected modules with a fresh report."""
    return ModuleRunner(ctx).run(selectors)


# Import modules to trigger registration
from modules import system  # noqa: E402, F401
from modules import packages  # noqa: E402, F401
from modules import dev_tools  # noqa: E402, F401
from modules import desktop  # noqa: E402, F401
