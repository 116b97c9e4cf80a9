"""Development tools module: git, mise runtimes, podman, starship."""

import logging
import os
from pathlib import Path

from common import APPLIED, FAILED, SATISFIED, SKIPPED, ApplyError, Outcome, SkipStep, tail
from modules import register_module
from reconcilers import reconcile
from renderers import render_mise_config
from resources import USER, FileContent, FileLine, KeyValueSetting, Package, RemoteArtifact, Repository, ServiceUnit
from steps import EnsureStep, FunctionStep

logger = logging.getLogger(__name__)

GIT_PACKAGES = ['git', 'git-lfs', 'git-delta', 'meld']

# Needed to build runtimes from source
BUILD_DEPENDENCIES = [
    'gcc', 'gcc-c++', 'make',
    'openssl-devel', 'bzip2-devel', 'libffi-devel', 'zlib-devel',
    'sqlite-devel', 'readline-devel', 'xz-devel', 'tk-devel', 'libuuid-devel',
]

PODMAN_PACKAGES = ['podman', 'podman-compose', 'podman-docker']

MISE_INSTALLER_URL = 'https://mise.run'
MISE_ACTIVATE = 'eval "$(~/.local/bin/mise activate bash)"'
JAVA_HOME_LINE = 'command -v mise &>/dev/null && export JAVA_HOME="$(mise where java 2>/dev/null)"'
STARSHIP_COPR = 'atim/starship'
STARSHIP_INIT = 'eval "$(starship init bash)"'
DOCKER_ALIASES = [
    'alias docker=podman',
    "alias docker-compose='podman compose'",
]


def bashrc(ctx) -> str:
    return str(ctx.home / '.bashrc')


def git_resources(ctx) -> list:
    resources: list = [Package(name) for name in GIT_PACKAGES]
    helper = ctx.get('GIT_CREDENTIAL_HELPER')
    if helper:
        resources.append(KeyValueSetting('', 'credential.helper', helper, backend='git'))
    return resources


def mise_bin(ctx) -> Path:
    return ctx.home / '.local' / 'bin' / 'mise'


def has_mise(ctx) -> bool:
    return os.access(mise_bin(ctx), os.X_OK)


def install_mise(ctx) -> Outcome:
    """Run the upstream installer as the user unless mise is present."""
    mise = mise_bin(ctx)
    if has_mise(ctx):
        return Outcome('mise', SATISFIED, f"installed at {mise}")
    if ctx.dry_run:
        return Outcome('mise', SKIPPED, "dry-run: would install mise")

    script = ctx.cache_dir / 'mise-install.sh'
    download = reconcile(RemoteArtifact(MISE_INSTALLER_URL, str(script)), ctx)
    if download.status == FAILED:
        raise ApplyError(download.message)

    rc, out, err = ctx.run_as_user(['sh', str(script)])
    if rc != 0:
        raise ApplyError(f"mise installer failed: {tail(err or out)}")
    if not has_mise(ctx):
        raise ApplyError(f"mise installer finished but {mise} is missing")
    return Outcome('mise', APPLIED, f"installed at {mise}")


def mise_config(ctx) -> str:
    # The first java entry is the global default
    tools = {
        'java': [ctx.get('MISE_JAVA_21', '21'), ctx.get('MISE_JAVA_25', '25')],
        'node': ctx.get('MISE_NODE', 'lts'),
        'python': ctx.get('MISE_PYTHON', 'latest'),
        'go': ctx.get('MISE_GOLANG', 'latest'),
    }
    return render_mise_config(tools, settings={'experimental': True})


def mise_resources(ctx) -> list:
    if not has_mise(ctx):
        raise SkipStep("mise not installed")
    return [
        FileContent(str(ctx.home / '.config' / 'mise' / 'config.toml'), mise_config(ctx), scope=USER),
        FileLine(bashrc(ctx), MISE_ACTIVATE, match='eval "$(~/.local/bin/mise activate', scope=USER),
        FileLine(bashrc(ctx), JAVA_HOME_LINE, scope=USER),
    ]


def install_runtimes(ctx) -> Outcome:
    """mise install for every configured runtime that is not installed yet."""
    if not has_mise(ctx):
        raise SkipStep("mise not installed")
    mise = str(mise_bin(ctx))

    rc, out, err = ctx.run_as_user([mise, 'ls', '--missing'])
    if rc != 0:
        raise ApplyError(f"mise ls failed: {tail(err or out)}")
    missing = [line.split()[0] for line in out.splitlines() if line.strip()]
    if not missing:
        return Outcome('mise runtimes', SATISFIED)
    if ctx.dry_run:
        return Outcome('mise runtimes', SKIPPED, f"dry-run: would install {', '.join(missing)}")

    logger.info(f"Installing runtimes via mise: {', '.join(missing)} (may take a while)")
    rc, out, err = ctx.run_as_user([mise, 'install', '--yes'])
    if rc != 0:
        raise ApplyError(f"mise install failed: {tail(err or out)}")
    return Outcome('mise runtimes', APPLIED, f"installed {', '.join(missing)}")


def podman_resources(ctx) -> list:
    resources: list = [Package(name) for name in PODMAN_PACKAGES]
    if ctx.flag('PODMAN_DOCKER_ALIAS', default=True):
        resources.extend(FileLine(bashrc(ctx), line, scope=USER) for line in DOCKER_ALIASES)
    # IDEs expecting a docker socket talk to the user podman socket
    resources.append(ServiceUnit('podman.socket', state='enabled', scope=USER))
    return resources


def starship_resources(ctx) -> list:
    template = ctx.data_dir / 'starship.toml'
    content = template.read_text(encoding='utf-8') if template.exists() else ''
    return [
        Repository(repo_id='starship', kind='copr', source=STARSHIP_COPR),
        Package('starship'),
        FileLine(bashrc(ctx), STARSHIP_INIT, scope=USER),
        FileContent(str(ctx.home / '.config' / 'starship.toml'), content, scope=USER, create_only=True),
    ]


@register_module
class DevToolsModule:
    """Developer toolchain."""

    id = 20
    name = 'dev-tools'
    description = 'Development tools (git, mise, podman, starship)'
    required = False

    def get_steps(self, _ctx) -> list[tuple[str, object, str]]:
        return [
            ('git', EnsureStep('git', git_resources),
             'Install and configure Git'),
            ('build_deps', EnsureStep('build_deps', [Package(name) for name in BUILD_DEPENDENCIES]),
             'Install runtime build dependencies'),
            ('mise_install', FunctionStep('mise_install', install_mise, enabled_by='INSTALL_MISE', mutates=False),
             'Install mise (runtime version manager)'),
            ('mise', EnsureStep('mise', mise_resources),
             'Configure mise global runtimes'),
            ('mise_runtimes', FunctionStep('mise_runtimes', install_runtimes, mutates=False),
             'Install runtimes via mise'),
            ('podman', EnsureStep('podman', podman_resources),
             'Install and configure Podman'),
            ('starship', EnsureStep('starship', starship_resources, enabled_by='INSTALL_STARSHIP'),
             'Configure Starship prompt'),
        ]
