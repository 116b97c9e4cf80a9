"""File reconcilers: lines in files, whole-file content, directories, downloads."""

import logging
import os
import pwd
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from common import DIVERGENT, MISSING, SATISFIED, ApplyError, ProbeError, tail
from reconcilers.base import register_reconciler
from resources import USER, Directory, FileContent, FileLine, RemoteArtifact

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60
DOWNLOAD_CHUNK = 64 * 1024


def read_file(path) -> Optional[str]:
    """File content, or None if the file does not exist.

    Raises:
        ProbeError: If the file exists but cannot be read
    """
    try:
        return Path(path).read_text(encoding='utf-8')
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ProbeError(f"cannot read {path}: {e}") from e


def backup_file(path, scope: str, ctx) -> None:
    """Timestamped copy next to the file, at most once per run."""
    if str(path) in ctx.backups:
        return
    stamp = datetime.now().strftime('%Y%m%d%H%M%S')
    backup = f"{path}.bak.{stamp}"
    rc, out, err = ctx.run_scoped(scope, ['cp', '-p', str(path), backup])
    if rc != 0:
        raise ApplyError(f"backup of {path} failed: {tail(err or out)}")
    ctx.backups.add(str(path))
    logger.info(f"Backed up {path} to {backup}")


def _check(result: tuple[int, str, str], what: str) -> None:
    rc, out, err = result
    if rc != 0:
        raise ApplyError(f"{what} failed: {tail(err or out)}")


@register_reconciler(FileLine)
class FileLineReconciler:
    """A line present in a file, optionally replacing a keyed line."""

    def describe(self, resource: FileLine) -> str:
        return f"line in {resource.path}: {resource.line}"

    def probe(self, resource: FileLine, ctx) -> str:
        content = read_file(resource.path)
        if content is None:
            return MISSING
        lines = content.splitlines()
        if resource.match:
            keyed = [line for line in lines if line.startswith(resource.match)]
            if keyed == [resource.line]:
                return SATISFIED
            return DIVERGENT if keyed else MISSING
        return SATISFIED if resource.line in lines else MISSING

    def apply(self, resource: FileLine, ctx) -> None:
        content = read_file(resource.path)
        if content is not None and resource.backup:
            backup_file(resource.path, resource.scope, ctx)

        if resource.match and content:
            lines = content.splitlines()
            replaced = False
            new_lines = []
            for line in lines:
                if line.startswith(resource.match):
                    if not replaced:
                        new_lines.append(resource.line)
                        replaced = True
                    continue
                new_lines.append(line)
            if replaced:
                _check(ctx.write_file(resource.path, '\n'.join(new_lines) + '\n', resource.scope),
                       f"rewrite of {resource.path}")
                return

        prefix = '\n' if content and not content.endswith('\n') else ''
        _check(ctx.append_file(resource.path, f"{prefix}{resource.line}\n", resource.scope),
               f"append to {resource.path}")


@register_reconciler(FileContent)
class FileContentReconciler:
    """Whole-file desired content."""

    def describe(self, resource: FileContent) -> str:
        if resource.state == 'absent':
            return f"remove {resource.path}"
        return f"file {resource.path}"

    def probe(self, resource: FileContent, ctx) -> str:
        if resource.state == 'absent':
            return DIVERGENT if os.path.lexists(resource.path) else SATISFIED

        content = read_file(resource.path)
        if content is None:
            return MISSING
        if resource.create_only or content == resource.content:
            return SATISFIED
        return DIVERGENT

    def apply(self, resource: FileContent, ctx) -> None:
        if resource.state == 'absent':
            _check(ctx.remove_file(resource.path, resource.scope), f"removal of {resource.path}")
            return
        _check(ctx.write_file(resource.path, resource.content, resource.scope), f"write of {resource.path}")


@register_reconciler(Directory)
class DirectoryReconciler:
    """Directory that exists, owned by the acting user in user scope.

    Ownership only diverges on privileged runs, where root may have
    created the directory (e.g. the log directory) before this step.
    """

    def describe(self, resource: Directory) -> str:
        return f"directory {resource.path}"

    def _foreign_owner(self, resource: Directory, ctx) -> bool:
        if resource.scope != USER or not ctx.is_root:
            return False
        try:
            return os.stat(resource.path).st_uid != ctx.uid
        except OSError as e:
            raise ProbeError(f"cannot stat {resource.path}: {e}") from e

    def probe(self, resource: Directory, ctx) -> str:
        if not os.path.isdir(resource.path):
            return MISSING
        return DIVERGENT if self._foreign_owner(resource, ctx) else SATISFIED

    def apply(self, resource: Directory, ctx) -> None:
        if os.path.isdir(resource.path):
            _check(ctx.run_privileged(['chown', '-R', f"{ctx.user}:", str(resource.path)]),
                   f"chown {resource.path}")
            return
        _check(ctx.make_dirs(resource.path, resource.scope), f"mkdir {resource.path}")


def build_session(retries: int = 3) -> requests.Session:
    """HTTP session retrying transient failures with backoff."""
    retry = Retry(
        total=retries,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=('GET', 'HEAD'),
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    return session


@register_reconciler(RemoteArtifact)
class RemoteArtifactReconciler:
    """Download memoized by destination path.

    A non-empty destination is never fetched again. Partial downloads land
    in <dest>.part and are renamed into place only when complete.
    """

    def describe(self, resource: RemoteArtifact) -> str:
        return f"download {Path(resource.dest).name}"

    def probe(self, resource: RemoteArtifact, ctx) -> str:
        try:
            return SATISFIED if os.path.getsize(resource.dest) > 0 else MISSING
        except FileNotFoundError:
            return MISSING
        except OSError as e:
            raise ProbeError(f"cannot stat {resource.dest}: {e}") from e

    def apply(self, resource: RemoteArtifact, ctx) -> None:
        dest = Path(resource.dest)
        part = dest.with_name(dest.name + '.part')
        logger.info(f"Downloading {resource.url}")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with build_session() as session:
                with session.get(resource.url, stream=True, timeout=DOWNLOAD_TIMEOUT) as resp:
                    resp.raise_for_status()
                    with open(part, 'wb') as f:
                        for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                            if chunk:
                                f.write(chunk)
            os.replace(part, dest)
        except (requests.exceptions.RequestException, OSError) as e:
            part.unlink(missing_ok=True)
            raise ApplyError(f"download of {resource.url} failed: {e}") from e

        if ctx.is_root:
            # Cache lives in the acting user's home
            gid = pwd.getpwnam(ctx.user).pw_gid
            for path in (dest.parent, dest):
                try:
                    os.chown(path, ctx.uid, gid)
                except OSError as e:
                    logger.warning(f"Cannot hand {path} to {ctx.user}: {e}")
