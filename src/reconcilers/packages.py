"""Package reconcilers: rpm/dnf packages, dnf swaps, flatpak apps."""

import logging

from common import MISSING, SATISFIED, ApplyError, ProbeError, tail
from reconcilers.base import register_reconciler
from resources import FlatpakApp, Package, PackageSwap

logger = logging.getLogger(__name__)

DNF_INSTALL_FLAGS = ['-y', '--skip-broken', '--allowerasing', '--skip-unavailable']


def is_rpm_installed(ctx, name: str) -> bool:
    """rpm -q presence check.

    Raises:
        ProbeError: If rpm itself could not be run
    """
    rc, _, err = ctx.run(['rpm', '-q', name])
    if rc < 0:
        raise ProbeError(f"rpm query failed: {err}")
    return rc == 0


@register_reconciler(Package)
class PackageReconciler:
    """Install/remove rpm packages, batched into a single dnf call.

    Presence only: an installed package of any version is satisfied.
    """

    def describe(self, resource: Package) -> str:
        verb = 'remove' if resource.state == 'absent' else 'package'
        return f"{verb} {resource.name}"

    def probe(self, resource: Package, ctx) -> str:
        installed = is_rpm_installed(ctx, resource.name)
        if resource.state == 'absent':
            return MISSING if installed else SATISFIED
        return SATISFIED if installed else MISSING

    def batch_key(self, resource: Package) -> tuple:
        return (resource.state, resource.options)

    def apply(self, resource: Package, ctx) -> None:
        self.apply_batch([resource], ctx)

    def apply_batch(self, resources: list[Package], ctx) -> None:
        """One dnf transaction for all resources (same state and options)."""
        state = resources[0].state
        options = list(resources[0].options)

        if state == 'absent':
            names = [r.name for r in resources]
            logger.info(f"Removing RPMs: {' '.join(names)}")
            cmd = ['dnf', 'remove', '-y'] + options + names
        else:
            targets = [r.source or r.name for r in resources]
            logger.info(f"Installing RPMs: {' '.join(targets)}")
            cmd = ['dnf', 'install'] + DNF_INSTALL_FLAGS + options + targets

        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"dnf {cmd[1]} failed: {tail(err or out)}")


@register_reconciler(PackageSwap)
class PackageSwapReconciler:
    """dnf swap <remove> <install>; satisfied once <install> is present."""

    def describe(self, resource: PackageSwap) -> str:
        return f"swap {resource.remove} -> {resource.install}"

    def probe(self, resource: PackageSwap, ctx) -> str:
        return SATISFIED if is_rpm_installed(ctx, resource.install) else MISSING

    def apply(self, resource: PackageSwap, ctx) -> None:
        cmd = ['dnf', 'swap', '-y', resource.remove, resource.install] + list(resource.options)
        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"dnf swap failed: {tail(err or out)}")


@register_reconciler(FlatpakApp)
class FlatpakReconciler:
    """System-wide flatpak apps, batched per remote."""

    def describe(self, resource: FlatpakApp) -> str:
        return f"flatpak {resource.app_id}"

    def probe(self, resource: FlatpakApp, ctx) -> str:
        rc, out, err = ctx.run(['flatpak', 'list', '--app', '--columns=application'])
        if rc != 0:
            raise ProbeError(f"flatpak list failed: {tail(err)}")
        installed = {line.strip() for line in out.splitlines()}
        return SATISFIED if resource.app_id in installed else MISSING

    def batch_key(self, resource: FlatpakApp) -> str:
        return resource.remote

    def apply(self, resource: FlatpakApp, ctx) -> None:
        self.apply_batch([resource], ctx)

    def apply_batch(self, resources: list[FlatpakApp], ctx) -> None:
        app_ids = [r.app_id for r in resources]
        logger.info(f"Installing Flatpaks from {resources[0].remote}: {' '.join(app_ids)}")
        cmd = ['flatpak', 'install', '--system', '-y', '--noninteractive', resources[0].remote] + app_ids
        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"flatpak install failed: {tail(err or out)}")
