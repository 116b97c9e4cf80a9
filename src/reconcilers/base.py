"""Reconciler protocol, registry and the check-then-apply driver."""

import logging
import time
from typing import Any, Iterable, Protocol, runtime_checkable

from common import (
    APPLIED,
    FAILED,
    MISSING,
    SATISFIED,
    SKIPPED,
    ApplyError,
    Outcome,
    ProbeError,
    SkipStep,
)
from reporting import OK

logger = logging.getLogger(__name__)


@runtime_checkable
class Reconciler(Protocol):
    """Probe/apply pair for one resource kind.

    probe() is read-only and returns SATISFIED, MISSING or DIVERGENT.
    apply() performs the minimal mutation and raises ApplyError on failure;
    it is only called when probe() did not report SATISFIED.
    """

    def describe(self, resource: Any) -> str:
        ...

    def probe(self, resource: Any, ctx) -> str:
        ...

    def apply(self, resource: Any, ctx) -> None:
        ...


# Registry of reconcilers by descriptor type
_reconcilers: dict[type, Reconciler] = {}


def register_reconciler(*resource_types: type):
    """Class decorator registering a reconciler for descriptor types."""
    def _register(cls):
        instance = cls()
        for resource_type in resource_types:
            _reconcilers[resource_type] = instance
        return cls
    return _register


def get_reconciler(resource: Any) -> Reconciler:
    """Select the reconciler for a descriptor by its type."""
    try:
        return _reconcilers[type(resource)]
    except KeyError:
        raise ValueError(f"No reconciler registered for {type(resource).__name__}") from None


def _safe_probe(reconciler: Reconciler, resource: Any, ctx) -> str:
    """Probe, treating ProbeError as MISSING."""
    try:
        return reconciler.probe(resource, ctx)
    except ProbeError as e:
        logger.warning(f"Could not probe {reconciler.describe(resource)}: {e} (assuming missing)")
        return MISSING


def _log_outcome(outcome: Outcome) -> None:
    if outcome.status == APPLIED:
        logger.log(OK, f"{outcome.resource}: {outcome.message or 'applied'}")
    elif outcome.status == SATISFIED:
        logger.info(f"{outcome.resource}: already satisfied")
    elif outcome.status == SKIPPED:
        logger.info(f"{outcome.resource}: skipped ({outcome.message})")
    else:
        logger.error(f"{outcome.resource}: {outcome.message}")


def reconcile(resource: Any, ctx) -> Outcome:
    """Drive one resource to its desired state."""
    start = time.time()
    reconciler = get_reconciler(resource)
    label = reconciler.describe(resource)

    try:
        state = _safe_probe(reconciler, resource, ctx)
    except SkipStep as e:
        outcome = Outcome(label, SKIPPED, e.reason, time.time() - start)
        _log_outcome(outcome)
        return outcome

    if state == SATISFIED:
        outcome = Outcome(label, SATISFIED)
    elif ctx.dry_run:
        outcome = Outcome(label, SKIPPED, f"dry-run: would apply ({state})")
    else:
        try:
            reconciler.apply(resource, ctx)
        except (ApplyError, ProbeError) as e:
            outcome = Outcome(label, FAILED, str(e))
        except SkipStep as e:
            outcome = Outcome(label, SKIPPED, e.reason)
        else:
            outcome = _verify(reconciler, resource, state, ctx)

    outcome.duration = time.time() - start
    _log_outcome(outcome)
    return outcome


def _verify(reconciler: Reconciler, resource: Any, state: str, ctx, error: str = '') -> Outcome:
    """Re-probe after apply; only SATISFIED counts as applied."""
    label = reconciler.describe(resource)
    try:
        converged = _safe_probe(reconciler, resource, ctx) == SATISFIED
    except SkipStep as e:
        return Outcome(label, SKIPPED, e.reason)
    if converged:
        return Outcome(label, APPLIED, f"was {state}")
    return Outcome(label, FAILED, error or "apply did not converge")


def reconcile_batch(resources: list, ctx) -> list[Outcome]:
    """Reconcile same-kind resources with one batched apply.

    Each resource is probed individually; the unsatisfied subset is handed
    to a single apply_batch() call, then each is re-probed for its outcome.
    """
    if not resources:
        return []
    start = time.time()
    reconciler = get_reconciler(resources[0])

    outcomes: dict[int, Outcome] = {}
    pending: list[tuple[int, Any, str]] = []
    for index, resource in enumerate(resources):
        label = reconciler.describe(resource)
        try:
            state = _safe_probe(reconciler, resource, ctx)
        except SkipStep as e:
            outcomes[index] = Outcome(label, SKIPPED, e.reason)
            continue
        if state == SATISFIED:
            outcomes[index] = Outcome(label, SATISFIED)
        elif ctx.dry_run:
            outcomes[index] = Outcome(label, SKIPPED, f"dry-run: would apply ({state})")
        else:
            pending.append((index, resource, state))

    if pending:
        error = ''
        try:
            reconciler.apply_batch([resource for _, resource, _ in pending], ctx)
        except (ApplyError, ProbeError) as e:
            error = str(e)
        except SkipStep as e:
            for index, resource, _ in pending:
                outcomes[index] = Outcome(reconciler.describe(resource), SKIPPED, e.reason)
            pending = []

        for index, resource, state in pending:
            outcomes[index] = _verify(reconciler, resource, state, ctx, error)

    duration = time.time() - start
    result = []
    for index in range(len(resources)):
        outcome = outcomes[index]
        outcome.duration = duration
        _log_outcome(outcome)
        result.append(outcome)
    return result


def reconcile_all(resources: Iterable[Any], ctx) -> list[Outcome]:
    """Reconcile resources in positional order.

    Consecutive resources whose reconciler supports batching and share a
    batch key are grouped into one reconcile_batch() call.
    """
    outcomes: list[Outcome] = []
    group: list = []
    group_key = None

    def _flush():
        nonlocal group, group_key
        if group:
            outcomes.extend(reconcile_batch(group, ctx))
        group, group_key = [], None

    for resource in resources:
        reconciler = get_reconciler(resource)
        if hasattr(reconciler, 'apply_batch'):
            key = (type(reconciler), reconciler.batch_key(resource))
            if group and key != group_key:
                _flush()
            group.append(resource)
            group_key = key
            continue
        _flush()
        outcomes.append(reconcile(resource, ctx))

    _flush()
    return outcomes
