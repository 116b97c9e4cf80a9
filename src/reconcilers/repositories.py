"""Repository reconciler: COPR, .repo files, release RPMs, flatpak remotes."""

import logging
from pathlib import Path

from common import DIVERGENT, MISSING, SATISFIED, ApplyError, ProbeError, tail
from reconcilers.base import register_reconciler
from reconcilers.files import read_file
from renderers import render_repo_definition
from resources import Repository

logger = logging.getLogger(__name__)

REPOS_DIR = Path('/etc/yum.repos.d')

COPR = 'copr'
REPOFILE = 'repofile'
RELEASE_RPM = 'release-rpm'
DEFINITION = 'definition'
FLATPAK_REMOTE = 'flatpak-remote'


def enabled_repo_ids(ctx) -> set[str]:
    """First column of `dnf repolist --enabled`, header excluded."""
    rc, out, err = ctx.run(['dnf', 'repolist', '--enabled'])
    if rc != 0:
        raise ProbeError(f"dnf repolist failed: {tail(err)}")
    ids = set()
    for line in out.splitlines():
        fields = line.split()
        if not fields or fields[0] == 'repo':
            continue
        ids.add(fields[0])
    return ids


def definition_path(resource: Repository) -> Path:
    return REPOS_DIR / f"{resource.repo_id}.repo"


def render_definition(resource: Repository) -> str:
    return render_repo_definition(resource.repo_id, resource.name, resource.baseurl, resource.gpgkey)


@register_reconciler(Repository)
class RepositoryReconciler:
    """Enable a package repository or flatpak remote."""

    def describe(self, resource: Repository) -> str:
        return f"{resource.kind} {resource.repo_id}"

    def probe(self, resource: Repository, ctx) -> str:
        if resource.kind == COPR:
            rc, out, err = ctx.run(['dnf', 'copr', 'list', '--enabled'])
            if rc != 0:
                raise ProbeError(f"dnf copr list failed: {tail(err)}")
            return SATISFIED if resource.source in out else MISSING

        if resource.kind in (REPOFILE, RELEASE_RPM):
            return SATISFIED if resource.repo_id in enabled_repo_ids(ctx) else MISSING

        if resource.kind == DEFINITION:
            current = read_file(definition_path(resource))
            if current is None:
                return MISSING
            return SATISFIED if current == render_definition(resource) else DIVERGENT

        if resource.kind == FLATPAK_REMOTE:
            rc, out, err = ctx.run(['flatpak', 'remotes', '--columns=name'])
            if rc != 0:
                raise ProbeError(f"flatpak remotes failed: {tail(err)}")
            names = {line.strip() for line in out.splitlines()}
            return SATISFIED if resource.repo_id in names else MISSING

        raise ValueError(f"Unknown repository kind: {resource.kind}")

    def apply(self, resource: Repository, ctx) -> None:
        if resource.kind == COPR:
            cmd = ['dnf', 'copr', 'enable', '-y', resource.source]
        elif resource.kind == REPOFILE:
            cmd = ['dnf', 'config-manager', 'addrepo', f'--from-repofile={resource.source}']
        elif resource.kind == RELEASE_RPM:
            cmd = ['dnf', 'install', '-y', resource.source]
        elif resource.kind == FLATPAK_REMOTE:
            cmd = ['flatpak', 'remote-add', '--if-not-exists', resource.repo_id, resource.source]
        elif resource.kind == DEFINITION:
            self._write_definition(resource, ctx)
            return
        else:
            raise ValueError(f"Unknown repository kind: {resource.kind}")

        logger.info(f"Adding repository {resource.repo_id}")
        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"{' '.join(cmd[:3])} failed: {tail(err or out)}")

    def _write_definition(self, resource: Repository, ctx) -> None:
        if resource.gpgkey:
            rc, out, err = ctx.run_privileged(['rpm', '--import', resource.gpgkey])
            if rc != 0:
                raise ApplyError(f"rpm --import {resource.gpgkey} failed: {tail(err or out)}")

        path = definition_path(resource)
        logger.info(f"Writing {path}")
        rc, out, err = ctx.write_file(path, render_definition(resource), scope='system')
        if rc != 0:
            raise ApplyError(f"Cannot write {path}: {tail(err or out)}")
