"""System base module (required).

Detects the Fedora release, tunes DNF, upgrades the system, enables RPM
Fusion, installs base packages, configures ZRAM and kernel tunables and
prepares the user directories. A failure here aborts the run.
"""

import logging

from common import SATISFIED, SKIPPED, ApplyError, FatalModuleError, Outcome, tail
from modules import register_module
from renderers import render_ini
from resources import SYSTEM, Directory, FileContent, FileLine, KernelTunable, Package, Repository
from steps import EnsureStep, FunctionStep

logger = logging.getLogger(__name__)

DNF_CONF = '/etc/dnf/dnf.conf'
ZRAM_CONF = '/etc/systemd/zram-generator.conf'
SYSCTL_CONF = '/etc/sysctl.d/99-finitra.conf'
RPMFUSION_URL = 'https://mirrors.rpmfusion.org/{repo}/fedora/rpmfusion-{repo}-release-{version}.noarch.rpm'

BASE_PACKAGES = [
    'flatpak', 'curl', 'wget', 'git', 'unzip', 'tar', 'gzip', 'ca-certificates', 'gnupg2',
    'dnf-plugins-core', 'dconf-editor', 'util-linux', 'fontconfig', 'fzf',
    'gnome-keyring', 'fedora-workstation-repositories', 'openssl',
]

RPMFUSION_EXTRAS = [
    'rpmfusion-free-release-tainted',
    'rpmfusion-nonfree-release-tainted',
    'rpmfusion-free-appstream-data',
    'rpmfusion-nonfree-appstream-data',
]


def detect_release(ctx) -> Outcome:
    """Set FEDORA_VERSION from the running system."""
    rc, out, err = ctx.run(['rpm', '-E', '%fedora'])
    version = out.strip()
    if rc != 0 or not version.isdigit():
        raise FatalModuleError(f"Cannot detect Fedora release: {tail(err or out) or 'not a Fedora system'}")
    ctx.set_variable('FEDORA_VERSION', version)
    logger.info(f"Detected Fedora {version}")
    return Outcome('detect_release', SATISFIED, f"Fedora {version}")


def dnf_settings(ctx) -> list[FileLine]:
    settings = [
        ('max_parallel_downloads', ctx.get('DNF_MAX_PARALLEL', '10')),
        ('fastestmirror', 'True'),
        ('defaultyes', 'True'),
        ('color', 'always'),
        ('metadata_expire', 'never'),
        ('install_weak_deps', 'False'),
        ('clean_requirements_on_remove', 'True'),
        ('keepcache', 'True' if ctx.flag('DNF_KEEPCACHE') else 'False'),
    ]
    return [
        FileLine(DNF_CONF, f"{key}={value}", match=f"{key}=", scope=SYSTEM, backup=True)
        for key, value in settings
    ]


def system_upgrade(ctx) -> Outcome:
    """dnf upgrade when updates are pending."""
    rc, out, err = ctx.run(['dnf', 'check-update', '--refresh', '-q'])
    if rc == 0:
        return Outcome('system_upgrade', SATISFIED, "system is up to date")
    if rc != 100:
        raise ApplyError(f"dnf check-update failed: {tail(err or out)}")

    pending = len([line for line in out.splitlines() if line.strip()])
    if ctx.dry_run:
        return Outcome('system_upgrade', SKIPPED, f"dry-run: would upgrade ~{pending} packages")

    for cmd in (['dnf', 'upgrade', '-y', '--refresh'], ['dnf', 'group', 'upgrade', '-y', 'core']):
        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"{' '.join(cmd[:2])} failed: {tail(err or out)}")
    return f"upgraded ~{pending} packages"


def rpmfusion_repositories(ctx) -> list:
    version = ctx.get('FEDORA_VERSION')
    if not version:
        raise FatalModuleError("FEDORA_VERSION is not set")

    resources = []
    for repo, flag in (('free', 'ENABLE_RPMFUSION_FREE'), ('nonfree', 'ENABLE_RPMFUSION_NONFREE')):
        if ctx.flag(flag, default=True):
            resources.append(Repository(
                repo_id=f'rpmfusion-{repo}',
                kind='release-rpm',
                source=RPMFUSION_URL.format(repo=repo, version=version),
            ))
    if resources:
        resources.extend(Package(name) for name in RPMFUSION_EXTRAS)
    return resources


def zram_resources(ctx) -> list:
    config = render_ini({
        'zram0': {
            'zram-size': ctx.get('ZRAM_SIZE', 'ram / 2'),
            'compression-algorithm': ctx.get('ZRAM_ALGORITHM', 'zstd'),
        }
    }, separator=' = ')
    return [
        Package('zram-generator'),
        FileContent(ZRAM_CONF, config, scope=SYSTEM, create_only=True),
    ]


def activate_zram(ctx) -> Outcome:
    """Start the zram device if none is active (takes effect without reboot)."""
    rc, out, _ = ctx.run(['zramctl', '--noheadings'])
    if rc == 0 and out.strip():
        return Outcome('activate_zram', SATISFIED, "zram active")
    if ctx.dry_run:
        return Outcome('activate_zram', SKIPPED, "dry-run: would start zram0")

    for cmd in (['systemctl', 'daemon-reload'], ['systemctl', 'start', 'systemd-zram-setup@zram0.service']):
        rc, out, err = ctx.run_privileged(cmd)
        if rc != 0:
            raise ApplyError(f"{' '.join(cmd)} failed: {tail(err or out)}")
    return "zram0 started"


def kernel_tunables(ctx) -> list[KernelTunable]:
    return [
        KernelTunable('vm.swappiness', ctx.get('SYSCTL_SWAPPINESS', '180'), conf_file=SYSCTL_CONF),
        KernelTunable('vm.page-cluster', ctx.get('SYSCTL_PAGE_CLUSTER', '0'), conf_file=SYSCTL_CONF),
        KernelTunable('fs.inotify.max_user_watches', ctx.get('SYSCTL_INOTIFY_WATCHES', '524288'), conf_file=SYSCTL_CONF),
        KernelTunable('vm.max_map_count', ctx.get('SYSCTL_MAX_MAP_COUNT', '1048576'), conf_file=SYSCTL_CONF),
    ]


def user_directories(ctx) -> list[Directory]:
    return [
        Directory(str(ctx.home / '.local' / 'share' / 'finitra')),
        Directory(str(ctx.home / '.local' / 'bin')),
        Directory(str(ctx.home / '.config' / 'finitra')),
        Directory(str(ctx.cache_dir)),
        Directory(str(ctx.home / '.config' / 'mise')),
    ]


@register_module
class SystemModule:
    """Base system configuration every other module depends on."""

    id = 0
    name = 'system'
    description = 'System base: DNF, RPM Fusion, ZRAM, kernel tunables'
    required = True

    def get_steps(self, _ctx) -> list[tuple[str, object, str]]:
        return [
            ('detect_release', FunctionStep('detect_release', detect_release, mutates=False),
             'Detect Fedora release'),
            ('configure_dnf', EnsureStep('configure_dnf', dnf_settings),
             'Configure DNF for better performance'),
            ('system_upgrade', FunctionStep('system_upgrade', system_upgrade, enabled_by='SYSTEM_UPGRADE', mutates=False),
             'Update system packages'),
            ('rpmfusion', EnsureStep('rpmfusion', rpmfusion_repositories),
             'Add RPM Fusion repositories'),
            ('base_packages', EnsureStep('base_packages', [Package(name) for name in BASE_PACKAGES]),
             'Install essential dependencies'),
            ('zram', EnsureStep('zram', zram_resources, enabled_by='ENABLE_ZRAM'),
             'Install and configure ZRAM'),
            ('activate_zram', FunctionStep('activate_zram', activate_zram, enabled_by='ENABLE_ZRAM', mutates=False),
             'Activate ZRAM swap'),
            ('kernel_tunables', EnsureStep('kernel_tunables', kernel_tunables),
             'Set kernel tunables'),
            ('directories', EnsureStep('directories', user_directories),
             'Create setup directories'),
        ]
