"""GNOME desktop module.

Settings list, background services, Ptyxis terminal profile, LocalSearch
light mode, extension tooling and the wallpaper collection.
"""

import logging
from pathlib import Path

from common import APPLIED, FAILED, SATISFIED, SKIPPED, ApplyError, Outcome, SkipStep, tail
from listfile import SETTING
from modules import register_module
from resources import SYSTEM, USER, FileContent, KeyValueSetting, Package, ServiceUnit
from steps import EnsureFromList, EnsureStep, FunctionStep

logger = logging.getLogger(__name__)

GNOME_SOFTWARE_AUTOSTART = '/etc/xdg/autostart/org.gnome.Software.desktop'
PTYXIS_DCONF = '/org/gnome/Ptyxis'
TRACKER_SCHEMA = 'org.freedesktop.Tracker3.Miner.Files'
EXTRACT_RULES_DIR = '/usr/share/localsearch3/extract-rules'
EXTRACT_RULES_BACKUP = '/var/lib/localsearch3-extract-rules-backup'

# Media and document extractors; app-info rules stay for application search
HEAVY_RULE_PATTERNS = (
    'audio', 'video', 'image', 'pdf', 'msoffice', 'odf',
    'png', 'jpeg', 'gif', 'tiff', 'mp3', 'flac',
)
SEARCH_INDEX_DIRS = [
    '.cache/tracker3', '.cache/localsearch3',
    '.local/share/tracker3', '.local/share/localsearch3',
]
SEARCH_RESET_TOOLS = ['localsearch3', 'tracker3']

EXTENSION_PACKAGES = ['gnome-extensions-app', 'gnome-shell-extension-appindicator', 'gnome-tweaks']

WALLPAPER_FOLDERS = [
    'tile', 'retro', 'radium', 'nord', 'mountain', 'monochrome',
    'digital', 'lightbulb', 'solarized', 'spam', 'unsorted',
]

UNUSED_SERVICES = [
    # Background metadata sync; masked so package updates do not re-enable it
    ServiceUnit('dnf5-makecache.timer', state='masked'),
    ServiceUnit('dnf5-makecache.service', state='masked'),
    ServiceUnit('gnome-initial-setup-copy-worker.service', state='disabled'),
    ServiceUnit('abrtd.service', state='disabled'),
    ServiceUnit('abrt-ccpp.service', state='disabled'),
    ServiceUnit('abrt-oops.service', state='disabled'),
    ServiceUnit('abrt-xorg.service', state='disabled'),
    ServiceUnit('abrt-journal-core.service', state='disabled'),
    ServiceUnit('evolution-source-registry.service', state='disabled', scope=USER),
    ServiceUnit('evolution-addressbook-factory.service', state='disabled', scope=USER),
    ServiceUnit('evolution-calendar-factory.service', state='disabled', scope=USER),
    ServiceUnit('gnome-software-service.service', state='disabled', scope=USER),
]

# localsearch-3.service itself stays enabled for application search
LOCALSEARCH_SERVICES = [
    ServiceUnit('localsearch-miner@rss.service', state='disabled', scope=USER),
    ServiceUnit('tracker-miner-rss-3.service', state='disabled', scope=USER),
    ServiceUnit('localsearch-writeback-3.service', state='masked', scope=USER),
    ServiceUnit('localsearch-control-3.service', state='masked', scope=USER),
    ServiceUnit('tinysparql-xdg-portal-3.service', state='masked', scope=USER),
    ServiceUnit('tracker-writeback-3.service', state='masked', scope=USER),
]


def setting_from_record(record) -> KeyValueSetting:
    return KeyValueSetting(record.schema, record.key, record.value)


def unused_services(_ctx) -> list:
    return list(UNUSED_SERVICES) + [FileContent(GNOME_SOFTWARE_AUTOSTART, state='absent', scope=SYSTEM)]


def _quoted(value: str) -> str:
    return "'" + value.replace("'", "\\'") + "'"


def ptyxis_resources(ctx) -> list:
    """Ptyxis profile settings, creating a default profile if none exists."""
    rc, out, _ = ctx.run_as_user(['dconf', 'read', f'{PTYXIS_DCONF}/default-profile-uuid'])
    uuid = out.strip().strip("'") if rc == 0 else ''

    resources: list = []
    if not uuid:
        uuid = ctx.get('PTYXIS_PROFILE_UUID', 'finitra-default')
        logger.info(f"No Ptyxis profile found, creating {uuid}")
        resources.extend([
            KeyValueSetting(PTYXIS_DCONF, 'profile-uuids', f"[{_quoted(uuid)}]", backend='dconf'),
            KeyValueSetting(PTYXIS_DCONF, 'default-profile-uuid', _quoted(uuid), backend='dconf'),
            KeyValueSetting(f'{PTYXIS_DCONF}/Profiles/{uuid}', 'label', "'Default'", backend='dconf'),
        ])

    schema = f'org.gnome.Ptyxis.Profile:{PTYXIS_DCONF}/Profiles/{uuid}/'
    use_system_font = ctx.flag('PTYXIS_USE_SYSTEM_FONT')
    profile = [
        ('palette', _quoted(ctx.get('PTYXIS_PALETTE', 'One Half Black'))),
        ('use-system-font', 'true' if use_system_font else 'false'),
        ('scrollback-lines', ctx.get('PTYXIS_SCROLLBACK_LINES', '10000')),
        ('opacity', ctx.get('PTYXIS_OPACITY', '1.0')),
        ('bold-is-bright', 'true' if ctx.flag('PTYXIS_BOLD_IS_BRIGHT', default=True) else 'false'),
        ('login-shell', 'true' if ctx.flag('PTYXIS_LOGIN_SHELL', default=True) else 'false'),
    ]
    if not use_system_font:
        profile.append(('font-name', _quoted(ctx.get('PTYXIS_FONT_NAME', 'JetBrains Mono 12'))))

    resources.extend(KeyValueSetting(schema, key, value) for key, value in profile)
    return resources


def localsearch_resources(ctx) -> list:
    resources: list = []
    if ctx.flag('LOCALSEARCH_DISABLE_FILES', default=True):
        resources.extend([
            KeyValueSetting(TRACKER_SCHEMA, 'index-single-directories', '@as []'),
            KeyValueSetting(TRACKER_SCHEMA, 'index-recursive-directories', '@as []'),
            KeyValueSetting(TRACKER_SCHEMA, 'crawling-interval', '-2'),
        ])
    # Application search in the shell and Nautilus keeps working
    resources.append(KeyValueSetting('org.gnome.desktop.search-providers', 'disable-external', 'false'))
    resources.extend(LOCALSEARCH_SERVICES)
    return resources


def heavy_extract_rules(rules_dir: Path) -> list[Path]:
    return sorted(
        path for path in rules_dir.iterdir()
        if any(pattern in path.name.lower() for pattern in HEAVY_RULE_PATTERNS)
    )


def move_extract_rules(ctx) -> list[Outcome]:
    """Move heavy extract rules out of LocalSearch's rules directory.

    Package updates restore them; the next run moves them again.
    """
    rules_dir = Path(EXTRACT_RULES_DIR)
    if not rules_dir.is_dir():
        raise SkipStep(f"{rules_dir} not found")

    heavy = heavy_extract_rules(rules_dir)
    if not heavy:
        return [Outcome('extract rules', SATISFIED, "no heavy rules left")]
    if ctx.dry_run:
        return [Outcome(f"extract rule {rule.name}", SKIPPED, "dry-run: would move") for rule in heavy]

    rc, out, err = ctx.make_dirs(Path(EXTRACT_RULES_BACKUP), scope=SYSTEM)
    if rc != 0:
        raise ApplyError(f"Cannot create {EXTRACT_RULES_BACKUP}: {tail(err or out)}")

    outcomes = []
    for rule in heavy:
        label = f"extract rule {rule.name}"
        rc, out, err = ctx.run_privileged(['mv', str(rule), EXTRACT_RULES_BACKUP + '/'])
        if rc != 0:
            outcomes.append(Outcome(label, FAILED, f"mv failed: {tail(err or out)}"))
        else:
            outcomes.append(Outcome(label, APPLIED, f"moved to {EXTRACT_RULES_BACKUP}"))
    return outcomes


def reset_search_index(ctx) -> Outcome:
    """Reset the file index once, after indexing was restricted.

    A marker in the cache directory records the reset; localsearch-3 keeps
    running for application search and recreates its index directories.
    """
    marker = Path(ctx.cache_dir) / 'localsearch-reset'
    if marker.exists():
        return Outcome('search index reset', SATISFIED)
    if ctx.dry_run:
        return Outcome('search index reset', SKIPPED, "dry-run: would reset the index")

    for tool in SEARCH_RESET_TOOLS:
        rc, out, err = ctx.run_as_user([tool, 'reset', '--filesystem'])
        if rc == 0:
            logger.info(f"{tool} database reset")
            break
        logger.debug(f"{tool} reset unavailable: {tail(err or out, 200)}")
    else:
        logger.warning("No localsearch3/tracker3 command found, removing index directories only")

    for name in SEARCH_INDEX_DIRS:
        path = ctx.home / name
        if path.is_dir():
            rc, out, err = ctx.run_as_user(['rm', '-rf', str(path)])
            if rc != 0:
                raise ApplyError(f"Cannot remove {path}: {tail(err or out)}")
            logger.info(f"Removed cache: {path}")

    rc, out, err = ctx.write_file(marker, '', scope=USER)
    if rc != 0:
        raise ApplyError(f"Cannot write {marker}: {tail(err or out)}")
    return Outcome('search index reset', APPLIED)


def _git(ctx, *args: str) -> tuple[int, str, str]:
    return ctx.run_as_user(['git'] + list(args))


def install_wallpapers(ctx) -> Outcome:
    """Sparse-checkout the wallpaper collection after confirmation."""
    collection = Path(ctx.get('WALLPAPERS_DIR') or ctx.home / 'Pictures' / 'Wallpapers') / 'collection'
    if collection.is_dir() and any(collection.iterdir()):
        return Outcome('wallpapers', SATISFIED, f"collection present in {collection}")

    if ctx.dry_run:
        return Outcome('wallpapers', SKIPPED, "dry-run: would download wallpapers")

    if not ctx.confirm("The wallpaper download may be very large. Proceed?", default=False):
        raise SkipStep("wallpaper download declined")

    repo_dir = Path(ctx.cache_dir) / 'walls-repo'
    ctx.run_as_user(['rm', '-rf', str(repo_dir)])

    logger.info("Cloning wallpapers repository (sparse, no blobs)...")
    rc, out, err = _git(ctx, 'clone', '--filter=blob:none', '--no-checkout',
                        ctx.get('WALLPAPERS_REPO'), str(repo_dir))
    if rc != 0:
        raise ApplyError(f"git clone failed: {tail(err or out)}")

    rc, out, err = _git(ctx, '-C', str(repo_dir), 'sparse-checkout', 'set', '--cone', *WALLPAPER_FOLDERS)
    if rc == 0:
        rc, out, err = _git(ctx, '-C', str(repo_dir), 'checkout', 'HEAD')
    if rc != 0:
        raise ApplyError(f"git sparse checkout failed: {tail(err or out)}")

    rc, out, err = ctx.make_dirs(collection, scope=USER)
    if rc != 0:
        raise ApplyError(f"Cannot create {collection}: {tail(err or out)}")

    failed = []
    for folder in WALLPAPER_FOLDERS:
        rc, _, err = ctx.run_as_user(['mv', str(repo_dir / folder), str(collection) + '/'])
        if rc != 0:
            logger.warning(f"Failed to install wallpaper folder {folder}: {tail(err, 200)}")
            failed.append(folder)
        else:
            logger.info(f"Installed: {folder} -> {collection}")

    ctx.run_as_user(['rm', '-rf', str(repo_dir)])

    if len(failed) == len(WALLPAPER_FOLDERS):
        raise ApplyError("no wallpaper folder could be installed")
    if failed:
        return Outcome('wallpapers', APPLIED, f"installed to {collection}; failed: {', '.join(failed)}")
    return Outcome('wallpapers', APPLIED, f"installed to {collection}")


@register_module
class DesktopModule:
    """GNOME desktop and accessibility settings."""

    id = 30
    name = 'desktop'
    description = 'GNOME desktop and accessibility'
    required = False

    def get_steps(self, _ctx) -> list[tuple[str, object, str]]:
        return [
            ('gnome_settings', EnsureFromList('gnome_settings', 'gnome-settings.list', SETTING, setting_from_record),
             'Apply GNOME settings'),
            ('unused_services', EnsureStep('unused_services', unused_services, enabled_by='DISABLE_UNUSED_SERVICES'),
             'Disable unnecessary services'),
            ('ptyxis', EnsureStep('ptyxis', ptyxis_resources),
             'Configure Ptyxis terminal profile'),
            ('localsearch', EnsureStep('localsearch', localsearch_resources, enabled_by='LOCALSEARCH_LIGHT_MODE'),
             'Configure LocalSearch (lightweight indexing)'),
            ('extract_rules', FunctionStep('extract_rules', move_extract_rules,
                                           enabled_by='LOCALSEARCH_LIGHT_MODE', mutates=False),
             'Move heavy LocalSearch extract rules aside'),
            ('search_reset', FunctionStep('search_reset', reset_search_index,
                                          enabled_by='LOCALSEARCH_RESET_DB', mutates=False),
             'Reset the LocalSearch index'),
            ('extensions', EnsureStep('extensions', [Package(name) for name in EXTENSION_PACKAGES]),
             'Install GNOME extension tools'),
            ('wallpapers', FunctionStep('wallpapers', install_wallpapers, enabled_by='INSTALL_WALLPAPERS', mutates=False),
             'Install wallpapers collection'),
        ]
