"""systemd unit reconciler (system and user scope)."""

import logging

from common import DIVERGENT, MISSING, SATISFIED, ApplyError, ProbeError, SkipStep, tail
from reconcilers.base import register_reconciler
from resources import USER, ServiceUnit

logger = logging.getLogger(__name__)

# is-enabled states that count as enabled
ENABLED_STATES = ('enabled', 'enabled-runtime', 'alias', 'static', 'indirect', 'generated')

# Desired state -> systemctl verb
VERBS = {
    'enabled': 'enable',
    'disabled': 'disable',
    'masked': 'mask',
}


def _systemctl(resource: ServiceUnit, *args: str) -> list[str]:
    cmd = ['systemctl']
    if resource.scope == USER:
        cmd.append('--user')
    return cmd + list(args)


def _query(resource: ServiceUnit, ctx, *args: str) -> tuple[int, str, str]:
    cmd = _systemctl(resource, *args)
    if resource.scope == USER:
        return ctx.run_as_user(cmd)
    return ctx.run(cmd)


def unit_file_state(resource: ServiceUnit, ctx) -> str:
    """Output of is-enabled.

    Raises:
        SkipStep: If the unit is not installed
        ProbeError: If systemctl could not be queried
    """
    rc, out, err = _query(resource, ctx, 'is-enabled', resource.name)
    state = out.strip().splitlines()[0] if out.strip() else ''
    if state == 'not-found' or 'No such file' in err or 'not found' in err:
        raise SkipStep("not installed")
    if rc < 0 or not state:
        raise ProbeError(f"systemctl is-enabled {resource.name} failed: {tail(err)}")
    return state


def is_active(resource: ServiceUnit, ctx) -> bool:
    rc, out, _ = _query(resource, ctx, 'is-active', resource.name)
    return rc == 0 and out.strip() == 'active'


@register_reconciler(ServiceUnit)
class ServiceReconciler:
    """Enable, disable or mask a unit, optionally starting/stopping it.

    A masked unit also satisfies 'disabled'.
    """

    def describe(self, resource: ServiceUnit) -> str:
        scope = ' (user)' if resource.scope == USER else ''
        return f"{resource.state} {resource.name}{scope}"

    def probe(self, resource: ServiceUnit, ctx) -> str:
        state = unit_file_state(resource, ctx)

        if resource.state == 'enabled':
            if state == 'masked':
                return DIVERGENT
            if state not in ENABLED_STATES:
                return MISSING
            if resource.now and not is_active(resource, ctx):
                return MISSING
            return SATISFIED

        if resource.state == 'disabled':
            if state in ('enabled', 'enabled-runtime', 'alias'):
                return DIVERGENT
            if resource.now and is_active(resource, ctx):
                return DIVERGENT
            return SATISFIED

        if resource.state == 'masked':
            if state != 'masked':
                return DIVERGENT
            if resource.now and is_active(resource, ctx):
                return DIVERGENT
            return SATISFIED

        raise ValueError(f"Unknown service state: {resource.state}")

    def apply(self, resource: ServiceUnit, ctx) -> None:
        commands = []
        if resource.state == 'enabled' and unit_file_state(resource, ctx) == 'masked':
            commands.append(_systemctl(resource, 'unmask', resource.name))
        if resource.state == 'masked':
            commands.append(_systemctl(resource, 'disable', resource.name))

        verb = [VERBS[resource.state]]
        if resource.now:
            verb.append('--now')
        commands.append(_systemctl(resource, *verb, resource.name))

        for cmd in commands:
            rc, out, err = ctx.run_scoped(resource.scope, cmd)
            if rc != 0:
                raise ApplyError(f"{' '.join(cmd)} failed: {tail(err or out)}")
        logger.info(f"systemctl {verb[0]} {resource.name}: done")
