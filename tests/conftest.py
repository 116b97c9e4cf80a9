"""Shared pytest fixtures for finitra tests.

FakeHost plays the operating system: it answers rpm, dnf, flatpak,
systemctl, gsettings, dconf, git, sysctl, zramctl, mise and localsearch3
from in-memory state, and performs tee, mkdir, touch, rm, cp and mv on the
real (temporary) filesystem.
"""

import re
import shutil
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import load_variables  # noqa: E402
from context import Context  # noqa: E402

NOT_FOUND = 'No such file or directory'


class FakeHost:
    """In-memory Fedora workstation, callable as a Context runner."""

    def __init__(self, root: Path):
        self.root = root
        self.home = root / 'home' / 'dev'
        self.fedora = '41'
        self.rpms: set[str] = set()
        self.broken_rpms: set[str] = set()  # dnf fails to install these
        self.repos: set[str] = {'fedora', 'updates'}
        self.coprs: set[str] = set()
        self.flatpaks: set[str] = set()
        self.flatpak_remotes: set[str] = set()
        self.units: dict[tuple[str, str], dict] = {}
        self.gsettings: dict[tuple[str, str], str] = {}
        self.missing_schemas: set[str] = set()
        self.dconf: dict[str, str] = {}
        self.git_config: dict[str, str] = {}
        self.sysctl: dict[str, str] = {}
        self.pending_updates = 0
        self.zram_active = False
        self.sparse_folders: list[str] = []
        self.mise_missing: list[str] = []
        self.search_resets = 0
        self.fail_commands: list[tuple[str, ...]] = []
        self.commands: list[list[str]] = []
        self.raw_commands: list[list[str]] = []

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def add_unit(self, name, state='enabled', active=True, scope='system'):
        self.units[(scope, name)] = {'state': state, 'active': active}

    def unit(self, name, scope='system'):
        return self.units.get((scope, name))

    def fail(self, *prefix: str):
        """Make commands starting with prefix fail."""
        self.fail_commands.append(prefix)

    def ran(self, *prefix: str) -> list[list[str]]:
        """Commands (sudo/env wrappers removed) starting with prefix."""
        return [cmd for cmd in self.commands if tuple(cmd[:len(prefix)]) == prefix]

    def add_mise(self, missing=('java', 'node', 'python', 'go')):
        """Install a mise binary in the user's home with runtimes not yet installed."""
        mise = self.home / '.local' / 'bin' / 'mise'
        mise.parent.mkdir(parents=True, exist_ok=True)
        mise.write_text('#!/bin/sh\n')
        mise.chmod(0o755)
        self.mise_missing = list(missing)
        return mise

    def mutations(self) -> list[list[str]]:
        """Commands that were run through sudo (privileged or as another user)."""
        return [cmd for cmd in self.raw_commands if cmd and cmd[0] == 'sudo']

    # -------------------------------------------------------------------------
    # Runner
    # -------------------------------------------------------------------------

    def __call__(self, cmd, input_text=None, **_kwargs):
        self.raw_commands.append(list(cmd))
        cmd = self._unwrap(list(cmd))
        self.commands.append(cmd)

        for prefix in self.fail_commands:
            if tuple(cmd[:len(prefix)]) == prefix:
                return 1, '', f"simulated failure: {' '.join(cmd)}"

        name = Path(cmd[0]).name
        handler = getattr(self, f"_cmd_{name.replace('-', '_')}", None)
        if handler is None:
            return 127, '', f"{cmd[0]}: command not found"
        return handler(cmd[1:], input_text)

    @staticmethod
    def _unwrap(cmd):
        if cmd and cmd[0] == 'sudo':
            cmd = cmd[3:] if cmd[1] == '-u' else cmd[1:]
        if cmd and cmd[0] == 'env':
            cmd = cmd[1:]
            while cmd and '=' in cmd[0]:
                cmd = cmd[1:]
        return cmd

    @staticmethod
    def _positional(args):
        return [a for a in args if not a.startswith('-')]

    # --- rpm / dnf ----------------------------------------------------------

    @staticmethod
    def _rpm_name(target: str) -> str:
        name = Path(target).name
        name = re.sub(r'\.rpm$', '', name)
        name = re.sub(r'\.(noarch|x86_64)$', '', name)
        return re.sub(r'-\d[^-]*(-\d[^-]*)?$', '', name)

    def _cmd_rpm(self, args, _input):
        if args[:1] == ['-q']:
            name = args[1]
            if name in self.rpms:
                return 0, f"{name}-1.0-1.fc{self.fedora}.x86_64\n", ''
            return 1, f"package {name} is not installed\n", ''
        if args[:1] == ['-E']:
            return 0, f"{self.fedora}\n", ''
        if args[:1] == ['--import']:
            return 0, '', ''
        return 1, '', 'unsupported rpm call'

    def _cmd_dnf(self, args, _input):
        sub = args[0]
        rest = args[1:]

        if sub == 'install':
            failed = []
            for target in self._positional(rest):
                name = self._rpm_name(target) if target.endswith('.rpm') else target
                if name in self.broken_rpms:
                    failed.append(name)
                    continue
                self.rpms.add(name)
                if name.endswith('-release'):
                    self.repos.add(name[:-len('-release')])
            if failed:
                return 1, '', f"No match for argument: {' '.join(failed)}"
            return 0, 'Complete!\n', ''

        if sub == 'remove':
            for name in self._positional(rest):
                self.rpms.discard(name)
            return 0, 'Complete!\n', ''

        if sub == 'swap':
            remove, install = self._positional(rest)[:2]
            if install in self.broken_rpms:
                return 1, '', f"No match for argument: {install}"
            self.rpms.discard(remove)
            self.rpms.add(install)
            return 0, 'Complete!\n', ''

        if sub == 'repolist':
            lines = ['repo id                       repo name']
            lines.extend(f"{repo_id:<30}{repo_id}" for repo_id in sorted(self.repos))
            return 0, '\n'.join(lines) + '\n', ''

        if sub == 'copr':
            if rest[0] == 'list':
                return 0, ''.join(f"copr.fedorainfracloud.org/{c}\n" for c in sorted(self.coprs)), ''
            if rest[0] == 'enable':
                self.coprs.add(self._positional(rest[1:])[0])
                return 0, '', ''

        if sub == 'config-manager':
            url = next(a for a in rest if a.startswith('--from-repofile='))
            self.repos.add(Path(url.split('=', 1)[1]).stem)
            return 0, '', ''

        if sub == 'check-update':
            if self.pending_updates:
                out = ''.join(f"pkg{i}.x86_64  1.1  updates\n" for i in range(self.pending_updates))
                return 100, out, ''
            return 0, '', ''

        if sub in ('upgrade', 'group'):
            self.pending_updates = 0
            return 0, 'Complete!\n', ''

        return 1, '', f"unsupported dnf call: {args}"

    # --- flatpak ------------------------------------------------------------

    def _cmd_flatpak(self, args, _input):
        sub = args[0]
        if sub == 'list':
            return 0, ''.join(f"{app}\n" for app in sorted(self.flatpaks)), ''
        if sub == 'install':
            remote, *apps = self._positional(args[1:])
            if remote not in self.flatpak_remotes:
                return 1, '', f"error: No remote refs found for '{remote}'"
            self.flatpaks.update(apps)
            return 0, '', ''
        if sub == 'remotes':
            return 0, ''.join(f"{name}\n" for name in sorted(self.flatpak_remotes)), ''
        if sub == 'remote-add':
            self.flatpak_remotes.add(self._positional(args[1:])[0])
            return 0, '', ''
        return 1, '', f"unsupported flatpak call: {args}"

    # --- systemd ------------------------------------------------------------

    def _cmd_systemctl(self, args, _input):
        scope = 'system'
        if args[:1] == ['--user']:
            scope, args = 'user', args[1:]
        verb = args[0]
        if verb == 'daemon-reload':
            return 0, '', ''

        names = self._positional(args[1:])
        if verb == 'start' and names and names[0].startswith('systemd-zram-setup@'):
            self.zram_active = True
            return 0, '', ''

        unit = self.units.get((scope, names[0]))
        if unit is None:
            return 1, '', f"Failed to get unit file state for {names[0]}: {NOT_FOUND}"

        now = '--now' in args
        if verb == 'is-enabled':
            state = unit['state']
            rc = 0 if state in ('enabled', 'static', 'alias') else 1
            return rc, f"{state}\n", ''
        if verb == 'is-active':
            return (0, 'active\n', '') if unit['active'] else (3, 'inactive\n', '')
        if verb == 'enable':
            if unit['state'] == 'masked':
                return 1, '', f"Failed to enable unit: Unit file {names[0]} is masked."
            unit['state'] = 'enabled'
            unit['active'] = unit['active'] or now
        elif verb == 'disable':
            if unit['state'] != 'masked':
                unit['state'] = 'disabled'
            unit['active'] = unit['active'] and not now
        elif verb == 'mask':
            unit['state'] = 'masked'
            unit['active'] = unit['active'] and not now
        elif verb == 'unmask':
            unit['state'] = 'disabled'
        elif verb == 'start':
            unit['active'] = True
        else:
            return 1, '', f"unsupported systemctl verb: {verb}"
        return 0, '', ''

    def _cmd_zramctl(self, _args, _input):
        if self.zram_active:
            return 0, '/dev/zram0 zstd 7.7G 4K 64B 4K 8 [SWAP]\n', ''
        return 0, '', ''

    # --- settings -----------------------------------------------------------

    def _cmd_gsettings(self, args, _input):
        verb, schema, key = args[0], args[1], args[2]
        if schema.split(':')[0] in self.missing_schemas:
            return 1, '', f"No such schema “{schema}”"
        if verb == 'get':
            return 0, self.gsettings.get((schema, key), "''") + '\n', ''
        if verb == 'set':
            self.gsettings[(schema, key)] = args[3]
            return 0, '', ''
        return 1, '', 'unsupported gsettings call'

    def _cmd_dconf(self, args, _input):
        if args[0] == 'read':
            value = self.dconf.get(args[1])
            return 0, f"{value}\n" if value is not None else '', ''
        if args[0] == 'write':
            self.dconf[args[1]] = args[2]
            return 0, '', ''
        return 1, '', 'unsupported dconf call'

    def _cmd_git(self, args, _input):
        if args[:2] == ['config', '--global']:
            rest = args[2:]
            if rest[0] == '--get':
                value = self.git_config.get(rest[1])
                return (0, f"{value}\n", '') if value is not None else (1, '', '')
            self.git_config[rest[0]] = rest[1]
            return 0, '', ''
        if args[0] == 'clone':
            Path(args[-1]).mkdir(parents=True)
            return 0, '', ''
        if args[0] == '-C':
            repo, sub = Path(args[1]), args[2:]
            if sub[0] == 'sparse-checkout':
                self.sparse_folders = self._positional(sub[2:])
                return 0, '', ''
            if sub[0] == 'checkout':
                for folder in self.sparse_folders:
                    (repo / folder).mkdir(parents=True, exist_ok=True)
                    (repo / folder / 'wall.png').write_bytes(b'png')
                return 0, '', ''
        return 1, '', f"unsupported git call: {args}"

    def _cmd_sysctl(self, args, _input):
        if args[0] == '-n':
            if args[1] not in self.sysctl:
                return 255, '', f"sysctl: cannot stat /proc/sys/{args[1]}: {NOT_FOUND}"
            return 0, f"{self.sysctl[args[1]]}\n", ''
        if args[0] == '-w':
            key, value = args[1].split('=', 1)
            self.sysctl[key] = value
            return 0, f"{key} = {value}\n", ''
        return 1, '', 'unsupported sysctl call'

    def _cmd_fc_cache(self, _args, _input):
        return 0, '', ''

    # --- mise / localsearch -------------------------------------------------

    def _cmd_sh(self, args, _input):
        if Path(args[0]).name == 'mise-install.sh':
            self.add_mise()
            return 0, 'mise: installed successfully\n', ''
        return 1, '', f"unsupported script: {args[0]}"

    def _cmd_mise(self, args, _input):
        if args == ['ls', '--missing']:
            return 0, ''.join(f"{tool}  latest\n" for tool in self.mise_missing), ''
        if args == ['install', '--yes']:
            self.mise_missing = []
            return 0, '', ''
        return 1, '', f"unsupported mise call: {args}"

    def _cmd_localsearch3(self, args, _input):
        if args == ['reset', '--filesystem']:
            self.search_resets += 1
            return 0, '', ''
        return 1, '', 'unsupported localsearch3 call'

    # --- files --------------------------------------------------------------

    def _cmd_tee(self, args, input_text):
        append = args[0] == '-a'
        path = Path(args[-1])
        if not path.parent.is_dir():
            return 1, '', f"tee: {path}: {NOT_FOUND}"
        with open(path, 'a' if append else 'w', encoding='utf-8') as f:
            f.write(input_text or '')
        return 0, input_text or '', ''

    def _cmd_mkdir(self, args, _input):
        for path in self._positional(args):
            Path(path).mkdir(parents=True, exist_ok=True)
        return 0, '', ''

    def _cmd_touch(self, args, _input):
        Path(args[-1]).touch()
        return 0, '', ''

    def _cmd_chown(self, _args, _input):
        return 0, '', ''

    def _cmd_rm(self, args, _input):
        for path in map(Path, self._positional(args)):
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
        return 0, '', ''

    def _cmd_cp(self, args, _input):
        src, dst = self._positional(args)
        shutil.copy2(src, dst)
        return 0, '', ''

    def _cmd_mv(self, args, _input):
        src, dst = self._positional(args)
        if not Path(src).exists():
            return 1, '', f"mv: cannot stat '{src}': {NOT_FOUND}"
        target = Path(dst) / Path(src).name if Path(dst).is_dir() else Path(dst)
        if target.is_file():
            target.unlink()
        shutil.move(src, dst)
        return 0, '', ''


class FakeConfirmer:
    """Scripted answers for confirmation prompts."""

    def __init__(self, answer=None):
        self.answer = answer
        self.questions = []

    def __call__(self, question, default, timeout):
        self.questions.append((question, default, timeout))
        return default if self.answer is None else self.answer


@pytest.fixture
def host(tmp_path):
    """Fresh fake workstation."""
    return FakeHost(tmp_path)


@pytest.fixture
def data_dir(tmp_path):
    """Empty data directory for list files."""
    path = tmp_path / 'data'
    path.mkdir()
    return path


@pytest.fixture
def ctx(tmp_path, host, data_dir):
    """Context for user 'dev' running unprivileged against the fake host.

    Variables come from the shipped defaults.
    """
    home = host.home
    home.mkdir(parents=True)
    cache_dir = home / '.cache' / 'finitra'

    variables = load_variables(environ={})
    variables.update({
        'SETUP_USER': 'dev',
        'SETUP_HOME': str(home),
        'CACHE_DIR': str(cache_dir),
        'LOG_FILE': str(tmp_path / 'finitra.log'),
        'WALLPAPERS_DIR': str(home / 'Pictures' / 'Wallpapers'),
    })

    return Context(
        user='dev',
        home=home,
        uid=1000,
        process_user='dev',
        is_root=False,
        log_file=tmp_path / 'finitra.log',
        data_dir=data_dir,
        cache_dir=cache_dir,
        variables=variables,
        runner=host,
        confirmer=FakeConfirmer(),
    )
