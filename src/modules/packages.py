"""Packages module: multimedia, browsers, editors, RPM and Flatpak lists, fonts."""

import logging
from pathlib import Path

from common import SATISFIED, SKIPPED, ApplyError, Outcome, tail
from listfile import FLATPAK, PACKAGE
from modules import register_module
from resources import FlatpakApp, Package, PackageSwap, RemoteArtifact, Repository
from steps import EnsureFromList, EnsureStep, FunctionStep

logger = logging.getLogger(__name__)

FLATHUB_URL = 'https://dl.flathub.org/repo/flathub.flatpakrepo'
MICROSOFT_KEY = 'https://packages.microsoft.com/keys/microsoft.asc'
VSCODE_BASEURL = 'https://packages.microsoft.com/yumrepos/vscode'

MULTIMEDIA_SWAPS = [
    PackageSwap('mesa-va-drivers', 'mesa-va-drivers-freeworld'),
    PackageSwap('mesa-vdpau-drivers', 'mesa-vdpau-drivers-freeworld'),
    PackageSwap('ffmpeg-free', 'ffmpeg', options=('--allowerasing',)),
]

VAAPI_PACKAGES = ['libva-intel-driver', 'libva-utils']

# PackageKit is disabled, so its gstreamer plugin is excluded
CODEC_OPTIONS = ('--exclude=PackageKit-gstreamer-plugin',)
CODEC_PACKAGES = [
    'gstreamer1-plugins-base',
    'gstreamer1-plugins-good',
    'gstreamer1-plugins-good-extras',
    'gstreamer1-plugins-bad-free',
    'gstreamer1-plugins-bad-freeworld',
    'gstreamer1-plugins-ugly',
    'gstreamer1-plugin-openh264',
    'gstreamer1-plugin-libav',
    'libdvdread',
    'libdvdnav',
    'lame',
    'faac',
    'flac',
    'faad2',
    'libavcodec-freeworld',
    'x264',
    'x265',
    'vlc',
]


def multimedia_resources(_ctx) -> list:
    return (
        list(MULTIMEDIA_SWAPS)
        + [Package(name) for name in VAAPI_PACKAGES]
        + [Package(name, options=CODEC_OPTIONS) for name in CODEC_PACKAGES]
    )


def chrome_resources(_ctx) -> list:
    # The google-chrome repo ships disabled in fedora-workstation-repositories
    return [
        Package('fedora-workstation-repositories'),
        Package('google-chrome-stable', options=('--enablerepo=google-chrome',)),
    ]


def vscode_repository(_ctx) -> list:
    return [Repository(
        repo_id='vscode',
        kind='definition',
        name='Visual Studio Code',
        baseurl=VSCODE_BASEURL,
        gpgkey=MICROSOFT_KEY,
    )]


def flathub_remote(_ctx) -> list:
    return [
        Package('flatpak'),
        Repository(repo_id='flathub', kind='flatpak-remote', source=FLATHUB_URL),
    ]


def package_from_record(record) -> Package:
    return Package(record.name)


def flatpak_from_record(record) -> FlatpakApp:
    return FlatpakApp(remote=record.remote, app_id=record.app_id)


def ms_fonts_resources(ctx) -> list:
    url = ctx.get('MS_FONTS_URL')
    rpm_path = Path(ctx.cache_dir) / Path(url).name
    return [
        RemoteArtifact(url=url, dest=str(rpm_path)),
        # SourceForge signatures are unreliable for this package
        Package('msttcore-fonts-installer', source=str(rpm_path), options=('--nogpgcheck',)),
    ]


def refresh_font_cache(ctx) -> Outcome:
    if ctx.dry_run:
        return Outcome('font_cache', SKIPPED, "dry-run: would run fc-cache")
    rc, out, err = ctx.run_as_user(['fc-cache', '-f'])
    if rc != 0:
        raise ApplyError(f"fc-cache failed: {tail(err or out)}")
    return Outcome('font_cache', SATISFIED, "font cache refreshed")


@register_module
class PackagesModule:
    """RPM and Flatpak package installation."""

    id = 10
    name = 'packages'
    description = 'Packages (RPM + Flatpak)'
    required = False

    def get_steps(self, _ctx) -> list[tuple[str, object, str]]:
        return [
            ('multimedia', EnsureStep('multimedia', multimedia_resources, enabled_by='INSTALL_MULTIMEDIA'),
             'Install multimedia support (codecs, VA-API, ffmpeg)'),
            ('chrome', EnsureStep('chrome', chrome_resources, enabled_by='INSTALL_CHROME'),
             'Install Google Chrome'),
            ('vscode_repo', EnsureStep('vscode_repo', vscode_repository, enabled_by='INSTALL_VSCODE'),
             'Add VSCode repository (Microsoft)'),
            ('rpm_list', EnsureFromList('rpm_list', 'rpm-pkgs.list', PACKAGE, package_from_record),
             'Install RPM packages from list'),
            ('flathub', EnsureStep('flathub', flathub_remote, enabled_by='ENABLE_FLATHUB'),
             'Configure Flathub remote'),
            ('flatpak_list', EnsureFromList('flatpak_list', 'flatpak-pkgs.list', FLATPAK, flatpak_from_record,
                                            required=False, enabled_by='ENABLE_FLATHUB'),
             'Install Flatpak packages from list'),
            ('ms_fonts', EnsureStep('ms_fonts', ms_fonts_resources, enabled_by='INSTALL_MS_FONTS'),
             'Install Microsoft Core Fonts'),
            ('font_cache', FunctionStep('font_cache', refresh_font_cache, mutates=False),
             'Update font cache'),
        ]
