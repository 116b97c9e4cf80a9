"""Execution report: outcomes per step, per module and per run."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from common import APPLIED, FAILED, OUTCOME_STATUSES, SATISFIED, SKIPPED, Outcome

COMPLETED = 'completed'
ABORTED = 'aborted'


def _count(outcomes: list[Outcome]) -> dict[str, int]:
    counts = dict.fromkeys(OUTCOME_STATUSES, 0)
    for outcome in outcomes:
        counts[outcome.status] += 1
    return counts


@dataclass
class StepResult:
    """Outcomes of one step."""
    name: str
    description: str
    outcomes: list[Outcome] = field(default_factory=list)
    duration: float = 0.0

    @property
    def status(self) -> str:
        """Worst outcome status: failed > applied > satisfied > skipped."""
        statuses = {o.status for o in self.outcomes}
        for status in (FAILED, APPLIED, SATISFIED):
            if status in statuses:
                return status
        return SKIPPED

    def counts(self) -> dict[str, int]:
        return _count(self.outcomes)


@dataclass
class ModuleResult:
    """Steps of one module."""
    module_id: int
    name: str
    required: bool = False
    steps: list[StepResult] = field(default_factory=list)
    fatal: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return f"{self.module_id:02d}-{self.name}"

    @property
    def outcomes(self) -> list[Outcome]:
        return [o for step in self.steps for o in step.outcomes]

    def counts(self) -> dict[str, int]:
        return _count(self.outcomes)

    @property
    def duration(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0


@dataclass
class ExecutionReport:
    """Collects outcomes of a run. Created fresh per run, never persisted."""
    modules: list[ModuleResult] = field(default_factory=list)
    status: str = COMPLETED
    abort_reason: str = ''
    dry_run: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    _current: Optional[ModuleResult] = field(default=None, repr=False)

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()

    def start_module(self, module_id: int, name: str, required: bool = False) -> ModuleResult:
        """Open a module section; subsequent steps are recorded under it."""
        self._current = ModuleResult(
            module_id=module_id,
            name=name,
            required=required,
            started_at=datetime.now(),
        )
        self.modules.append(self._current)
        return self._current

    def record_step(self, name: str, description: str, outcomes: list[Outcome], duration: float = 0.0):
        """Record the outcomes of a step in the current module."""
        if self._current is None:
            raise RuntimeError("record_step() called outside a module")
        self._current.steps.append(StepResult(
            name=name,
            description=description,
            outcomes=list(outcomes),
            duration=duration,
        ))

    def mark_fatal(self, message: str):
        """Note a fatal error in the current module."""
        if self._current is not None:
            self._current.fatal = message

    def finish_module(self):
        """Close the current module."""
        if self._current is not None:
            self._current.finished_at = datetime.now()
        self._current = None

    def abort(self, reason: str):
        """Mark the run aborted."""
        self.status = ABORTED
        self.abort_reason = reason

    def finish(self):
        """Mark run end."""
        self.finish_module()
        self.finished_at = datetime.now()

    @property
    def outcomes(self) -> list[Outcome]:
        return [o for module in self.modules for o in module.outcomes]

    def counts(self) -> dict[str, int]:
        return _count(self.outcomes)

    @property
    def success(self) -> bool:
        return self.status == COMPLETED and self.counts()[FAILED] == 0

    def exit_code(self) -> int:
        """0 completed cleanly, 1 some outcomes failed, 2 aborted."""
        if self.status == ABORTED:
            return 2
        return 0 if self.success else 1

    def failures(self) -> list[tuple[str, str, Outcome]]:
        """(module label, step name, outcome) for every failed outcome."""
        return [
            (module.label, step.name, outcome)
            for module in self.modules
            for step in module.steps
            for outcome in step.outcomes
            if outcome.status == FAILED
        ]

    def summary_lines(self) -> list[str]:
        """Human-readable summary, one line per module plus totals."""
        lines = []
        for module in self.modules:
            c = module.counts()
            line = (
                f"{module.label:<16} applied={c[APPLIED]} satisfied={c[SATISFIED]} "
                f"skipped={c[SKIPPED]} failed={c[FAILED]} ({module.duration:.1f}s)"
            )
            if module.fatal:
                line += f" FATAL: {module.fatal}"
            lines.append(line)

        c = self.counts()
        lines.append(
            f"{'total':<16} applied={c[APPLIED]} satisfied={c[SATISFIED]} "
            f"skipped={c[SKIPPED]} failed={c[FAILED]}"
        )
        for label, step, outcome in self.failures():
            lines.append(f"  failed: {label}/{step}: {outcome.resource}: {outcome.message}")
        if self.status == ABORTED:
            lines.append(f"Run aborted: {self.abort_reason}")
        return lines

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        duration = (self.finished_at - self.started_at).total_seconds() if self.finished_at and self.started_at else 0

        result = {
            'status': self.status,
            'success': self.success,
            'dry_run': self.dry_run,
            'duration_seconds': round(duration, 1),
            'counts': self.counts(),
            'modules': [
                {
                    'id': module.module_id,
                    'name': module.name,
                    'required': module.required,
                    'counts': module.counts(),
                    'duration': round(module.duration, 1),
                    'steps': [
                        {
                            'name': step.name,
                            'status': step.status,
                            'outcomes': [
                                {
                                    'resource': o.resource,
                                    'status': o.status,
                                    'message': o.message,
                                }
                                for o in step.outcomes
                            ],
                        }
                        for step in module.steps
                    ],
                }
                for module in self.modules
            ],
        }

        for module, entry in zip(self.modules, result['modules']):
            if module.fatal:
                entry['fatal'] = module.fatal

        if self.status == ABORTED:
            result['error'] = self.abort_reason

        return result
