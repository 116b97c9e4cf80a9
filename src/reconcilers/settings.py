"""Key/value setting reconciler: gsettings, dconf and git config."""

import logging
import re

from common import DIVERGENT, MISSING, SATISFIED, ApplyError, ProbeError, SkipStep, tail
from reconcilers.base import register_reconciler
from resources import KeyValueSetting

logger = logging.getLogger(__name__)

GSETTINGS = 'gsettings'
DCONF = 'dconf'
GIT = 'git'

# GVariant type annotations printed by gsettings/dconf, e.g. "uint32 3700", "@as []"
TYPE_ANNOTATION = re.compile(
    r'^(?:@\S+|u?int(?:16|32|64)|byte|double|boolean|string|objectpath|signature)\s+'
)
LIST_SEPARATOR = re.compile(r'\s*,\s*')


def normalize_value(value: str) -> str:
    """Canonical text of a setting value for comparison.

    Strips type annotations and one level of surrounding quotes, and
    normalizes spacing between array elements.
    """
    value = TYPE_ANNOTATION.sub('', value.strip()).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    if value.startswith('[') and value.endswith(']'):
        inner = value[1:-1].strip()
        return '[' + LIST_SEPARATOR.sub(', ', inner) + ']'
    return value


def values_equal(current: str, desired: str) -> bool:
    """Compare normalized values; numbers compare numerically (1 == 1.0)."""
    a, b = normalize_value(current), normalize_value(desired)
    if a == b:
        return True
    try:
        return float(a) == float(b)
    except ValueError:
        return False


def dconf_path(resource: KeyValueSetting) -> str:
    return f"{resource.schema.rstrip('/')}/{resource.key}"


@register_reconciler(KeyValueSetting)
class SettingReconciler:
    """User-level settings, always read and written as the acting user."""

    def describe(self, resource: KeyValueSetting) -> str:
        if resource.backend == GIT:
            return f"git {resource.key} = {resource.value}"
        if resource.backend == DCONF:
            return f"dconf {dconf_path(resource)} = {resource.value}"
        return f"gsettings [{resource.schema}] {resource.key} = {resource.value}"

    def read(self, resource: KeyValueSetting, ctx):
        """Current value, or None when unset."""
        if resource.backend == GSETTINGS:
            rc, out, err = ctx.run_as_user(['gsettings', 'get', resource.schema, resource.key])
            if rc != 0:
                if 'No such schema' in err or 'No such key' in err:
                    raise SkipStep(f"schema not installed: {tail(err, 120)}")
                raise ProbeError(f"gsettings get failed: {tail(err)}")
            return out.strip()

        if resource.backend == DCONF:
            rc, out, err = ctx.run_as_user(['dconf', 'read', dconf_path(resource)])
            if rc != 0:
                raise ProbeError(f"dconf read failed: {tail(err)}")
            return out.strip() or None

        if resource.backend == GIT:
            rc, out, err = ctx.run_as_user(['git', 'config', '--global', '--get', resource.key])
            if rc == 1:
                return None
            if rc != 0:
                raise ProbeError(f"git config failed: {tail(err)}")
            return out.strip()

        raise ValueError(f"Unknown setting backend: {resource.backend}")

    def probe(self, resource: KeyValueSetting, ctx) -> str:
        current = self.read(resource, ctx)
        if current is None:
            return MISSING
        return SATISFIED if values_equal(current, resource.value) else DIVERGENT

    def apply(self, resource: KeyValueSetting, ctx) -> None:
        if resource.backend == GSETTINGS:
            cmd = ['gsettings', 'set', resource.schema, resource.key, resource.value]
        elif resource.backend == DCONF:
            cmd = ['dconf', 'write', dconf_path(resource), resource.value]
        elif resource.backend == GIT:
            cmd = ['git', 'config', '--global', resource.key, resource.value]
        else:
            raise ValueError(f"Unknown setting backend: {resource.backend}")

        rc, out, err = ctx.run_as_user(cmd)
        if rc != 0:
            raise ApplyError(f"{resource.backend} set failed: {tail(err or out)}")
