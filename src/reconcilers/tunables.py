"""Kernel tunable reconciler: sysctl drop-in plus live value."""

import logging

from common import DIVERGENT, MISSING, SATISFIED, ApplyError, ProbeError, tail
from reconcilers.base import register_reconciler
from reconcilers.files import read_file
from renderers import parse_sysctl_conf, render_sysctl_conf
from resources import KernelTunable

logger = logging.getLogger(__name__)


def _same(a: str, b: str) -> bool:
    # sysctl -n separates multi-value keys with tabs
    return a.split() == b.split()


def live_value(key: str, ctx) -> str:
    rc, out, err = ctx.run(['sysctl', '-n', key])
    if rc != 0:
        raise ProbeError(f"sysctl -n {key} failed: {tail(err)}")
    return out.strip()


@register_reconciler(KernelTunable)
class TunableReconciler:
    """Persist a tunable in the drop-in and set it on the running kernel."""

    def describe(self, resource: KernelTunable) -> str:
        return f"sysctl {resource.key} = {resource.value}"

    def probe(self, resource: KernelTunable, ctx) -> str:
        entries = parse_sysctl_conf(read_file(resource.conf_file) or '')
        if resource.key not in entries:
            return MISSING
        if not _same(entries[resource.key], resource.value):
            return DIVERGENT
        if not _same(live_value(resource.key, ctx), resource.value):
            return DIVERGENT
        return SATISFIED

    def apply(self, resource: KernelTunable, ctx) -> None:
        entries = parse_sysctl_conf(read_file(resource.conf_file) or '')
        entries[resource.key] = resource.value

        rc, out, err = ctx.write_file(resource.conf_file, render_sysctl_conf(entries), scope='system')
        if rc != 0:
            raise ApplyError(f"Cannot write {resource.conf_file}: {tail(err or out)}")

        rc, out, err = ctx.run_privileged(['sysctl', '-w', f"{resource.key}={resource.value}"])
        if rc != 0:
            raise ApplyError(f"sysctl -w {resource.key} failed: {tail(err or out)}")
