"""Execution context: identity, variables and privilege policy.

A single Context is built at process start and passed to every module,
step and reconciler. System-level commands go through run_privileged();
anything touching the acting user's own state (desktop settings, user
services, shell profile) goes through run_as_user() so that a privileged
run never writes into root's configuration namespace.
"""

import logging
import os
import pwd
import select
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol

from common import run_command
from config import ConfigError, get_data_dir, get_user_config_path, is_enabled, load_variables

logger = logging.getLogger(__name__)

CONFIRM_TIMEOUT = 30


class Confirmer(Protocol):
    """Answers yes/no questions for steps."""

    def __call__(self, question: str, default: bool, timeout: int) -> bool:
        ...


class DefaultConfirmer:
    """Always answers with the default (unattended runs, --yes)."""

    def __call__(self, question: str, default: bool, timeout: int) -> bool:
        answer = 'yes' if default else 'no'
        logger.warning(f"{question} -> unattended, defaulting to: {answer}")
        return default


class TerminalConfirmer:
    """Prompt on the terminal with a bounded wait."""

    def __init__(self, stdin=None, stream=None):
        self.stdin = stdin or sys.stdin
        self.stream = stream or sys.stderr

    def __call__(self, question: str, default: bool, timeout: int) -> bool:
        prompt = '[Y/n]' if default else '[y/N]'
        answer_str = 'yes' if default else 'no'

        if not self.stdin.isatty():
            logger.warning(f"{question} {prompt} -> non-interactive, defaulting to: {answer_str}")
            return default

        while True:
            self.stream.write(f"\n? {question} {prompt} ")
            self.stream.flush()
            ready, _, _ = select.select([self.stdin], [], [], timeout)
            if not ready:
                self.stream.write("\n")
                logger.warning(f"No response after {timeout}s, defaulting to: {answer_str}")
                return default

            answer = self.stdin.readline().strip().lower()
            if not answer:
                return default
            if answer in ('y', 'yes'):
                return True
            if answer in ('n', 'no'):
                return False
            self.stream.write("  Please answer y or n.\n")


@dataclass
class Context:
    """Identity, variables and capabilities of one run."""
    user: str
    home: Path
    uid: int
    process_user: str
    is_root: bool
    log_file: Path
    data_dir: Path
    cache_dir: Path
    variables: dict[str, str] = field(default_factory=dict)
    runner: Callable[..., tuple[int, str, str]] = run_command
    confirmer: Confirmer = field(default_factory=DefaultConfirmer)
    dry_run: bool = False
    backups: set[str] = field(default_factory=set)  # files already backed up this run

    def __post_init__(self):
        for name in ('home', 'log_file', 'data_dir', 'cache_dir'):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))

    # -------------------------------------------------------------------------
    # Variables
    # -------------------------------------------------------------------------

    def get(self, key: str, default: str = '') -> str:
        """Config variable as string."""
        return self.variables.get(key, default)

    def flag(self, key: str, default: bool = False) -> bool:
        """Config variable as boolean."""
        if key not in self.variables:
            return default
        return is_enabled(self.variables[key])

    def set_variable(self, key: str, value: str) -> None:
        """Update a variable (used by early modules, e.g. detected release)."""
        logger.debug(f"Variable {key} = {value}")
        self.variables[key] = value

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run(self, cmd: list[str], input_text: Optional[str] = None) -> tuple[int, str, str]:
        """Run a command as the current process (read-only probes)."""
        return self.runner(cmd, input_text=input_text)

    def run_privileged(self, cmd: list[str], input_text: Optional[str] = None) -> tuple[int, str, str]:
        """Run a command with elevated privilege.

        Executes directly when already root, otherwise through sudo.
        """
        if not self.is_root:
            cmd = ['sudo'] + cmd
        return self.runner(cmd, input_text=input_text)

    def run_as_user(
        self,
        cmd: list[str],
        identity: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> tuple[int, str, str]:
        """Run a command under a non-privileged identity.

        Defaults to the acting user. Runs directly when the process already
        is that user; otherwise re-invokes through sudo -u with the user's
        session environment so user services and gsettings reach the
        user's D-Bus session.
        """
        identity = identity or self.user
        if identity == self.process_user and not self.is_root:
            return self.runner(cmd, input_text=input_text)

        if identity == self.user:
            uid, home = self.uid, self.home
        else:
            entry = pwd.getpwnam(identity)
            uid, home = entry.pw_uid, Path(entry.pw_dir)

        wrapped = [
            'sudo', '-u', identity, 'env',
            f'HOME={home}',
            f'XDG_RUNTIME_DIR=/run/user/{uid}',
            f'DBUS_SESSION_BUS_ADDRESS=unix:path=/run/user/{uid}/bus',
        ] + cmd
        return self.runner(wrapped, input_text=input_text)

    def run_scoped(self, scope: str, cmd: list[str], input_text: Optional[str] = None) -> tuple[int, str, str]:
        """Dispatch to run_as_user ('user') or run_privileged ('system')."""
        if scope == 'user':
            return self.run_as_user(cmd, input_text=input_text)
        return self.run_privileged(cmd, input_text=input_text)

    def confirm(self, question: str, default: bool = False, timeout: Optional[int] = None) -> bool:
        """Ask a yes/no question through the configured confirmer."""
        if timeout is None:
            timeout = int(self.get('CONFIRM_TIMEOUT', str(CONFIRM_TIMEOUT)) or CONFIRM_TIMEOUT)
        return self.confirmer(question, default, timeout)

    # -------------------------------------------------------------------------
    # File helpers (scoped writes through tee/mkdir/rm)
    # -------------------------------------------------------------------------

    def write_file(self, path: Path, content: str, scope: str = 'system') -> tuple[int, str, str]:
        """Replace file content under the scope's identity."""
        rc, out, err = self.make_dirs(Path(path).parent, scope)
        if rc != 0:
            return rc, out, err
        return self.run_scoped(scope, ['tee', str(path)], input_text=content)

    def append_file(self, path: Path, content: str, scope: str = 'system') -> tuple[int, str, str]:
        """Append to a file under the scope's identity."""
        rc, out, err = self.make_dirs(Path(path).parent, scope)
        if rc != 0:
            return rc, out, err
        return self.run_scoped(scope, ['tee', '-a', str(path)], input_text=content)

    def remove_file(self, path: Path, scope: str = 'system') -> tuple[int, str, str]:
        """Remove a file under the scope's identity."""
        return self.run_scoped(scope, ['rm', '-f', str(path)])

    def make_dirs(self, path: Path, scope: str = 'system') -> tuple[int, str, str]:
        """mkdir -p under the scope's identity."""
        return self.run_scoped(scope, ['mkdir', '-p', str(path)])

    def prepare_log_file(self) -> None:
        """Create the log file as the acting user when it lives in their home.

        Must run before the file handler opens it: a privileged run would
        otherwise leave a root-owned directory in the user's cache.
        """
        if not self.is_root or not self.log_file.is_relative_to(self.home):
            return
        for cmd in (['mkdir', '-p', str(self.log_file.parent)], ['touch', str(self.log_file)]):
            rc, out, err = self.run_as_user(cmd)
            if rc != 0:
                logger.warning(f"Cannot prepare {self.log_file} as {self.user}: {(err or out).strip()}")
                return


def _resolve_user(variables: dict, environ: dict) -> tuple[str, int, Path]:
    """Determine the acting user: SETUP_USER, then SUDO_USER, then USER."""
    user = variables.get('SETUP_USER') or environ.get('SUDO_USER') or environ.get('USER') or ''
    if not user:
        user = pwd.getpwuid(os.getuid()).pw_name
    try:
        entry = pwd.getpwnam(user)
    except KeyError as e:
        raise ConfigError(f"Unknown user '{user}' (check SETUP_USER)") from e

    home = Path(variables.get('SETUP_HOME') or entry.pw_dir)
    return user, entry.pw_uid, home


def resolve_acting_user(environ: Optional[dict] = None) -> tuple[str, int, Path]:
    """Acting user (name, uid, home) from the defaults and the environment."""
    environ = os.environ if environ is None else environ
    return _resolve_user(load_variables(environ=environ), environ)


def build_context(
    user_file: Optional[Path] = None,
    assume_yes: bool = False,
    dry_run: bool = False,
    environ: Optional[dict] = None,
) -> Context:
    """Build the run Context from config layering and the environment.

    Args:
        user_file: Explicit user override file (default: auto-discover)
        assume_yes: Answer every confirmation with its default
        dry_run: Probe only, never apply
        environ: Environment mapping (default: os.environ)
    """
    environ = os.environ if environ is None else environ

    # First pass to learn the acting user's home, second with their overrides
    user, uid, home = resolve_acting_user(environ)
    variables = load_variables(user_file=user_file or get_user_config_path(home), environ=environ)
    user, uid, home = _resolve_user(variables, environ)

    cache_dir = Path(variables.get('CACHE_DIR') or home / '.cache' / 'finitra')
    log_file = Path(variables.get('LOG_FILE') or cache_dir / 'finitra.log')

    variables.update({
        'SETUP_USER': user,
        'SETUP_HOME': str(home),
        'CACHE_DIR': str(cache_dir),
        'LOG_FILE': str(log_file),
    })
    if not variables.get('WALLPAPERS_DIR'):
        variables['WALLPAPERS_DIR'] = str(home / 'Pictures' / 'Wallpapers')

    confirmer: Confirmer = DefaultConfirmer() if assume_yes else TerminalConfirmer()

    return Context(
        user=user,
        home=home,
        uid=uid,
        process_user=pwd.getpwuid(os.getuid()).pw_name,
        is_root=os.geteuid() == 0,
        log_file=log_file,
        data_dir=get_data_dir(),
        cache_dir=cache_dir,
        variables=variables,
        confirmer=confirmer,
        dry_run=dry_run,
    )
