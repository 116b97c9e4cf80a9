"""Resource descriptors.

Pure data: each descriptor names one resource and its desired state. The
behavior for a kind lives in the reconciler registered for its type
(see reconcilers/).
"""

from dataclasses import dataclass
from typing import Optional

# Scopes
SYSTEM = 'system'
USER = 'user'


@dataclass(frozen=True)
class Package:
    """OS package (rpm/dnf). Presence only: any installed version satisfies."""
    name: str
    state: str = 'present'  # 'present' | 'absent'
    source: Optional[str] = None  # local RPM path or URL installed in place of the name
    options: tuple[str, ...] = ()  # extra dnf arguments, e.g. ('--exclude=foo',)


@dataclass(frozen=True)
class PackageSwap:
    """Replace one package with another (dnf swap)."""
    remove: str
    install: str
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class FlatpakApp:
    remote: str
    app_id: str


@dataclass(frozen=True)
class Repository:
    """Package repository or remote.

    kind:
        copr            - source is the COPR project (owner/project)
        repofile        - source is a .repo URL for dnf config-manager
        release-rpm     - source is a release RPM URL (RPM Fusion style)
        definition      - a .repo file rendered from name/baseurl/gpgkey
        flatpak-remote  - source is the .flatpakrepo URL
    """
    repo_id: str
    kind: str
    source: str = ''
    name: str = ''
    baseurl: str = ''
    gpgkey: str = ''


@dataclass(frozen=True)
class ServiceUnit:
    name: str
    state: str = 'enabled'  # 'enabled' | 'disabled' | 'masked'
    scope: str = SYSTEM
    now: bool = True  # also start/stop the unit


@dataclass(frozen=True)
class KeyValueSetting:
    """User-level key/value setting.

    backend 'gsettings': schema + key, value in GVariant text form
    backend 'dconf':     schema is a dconf path prefix (/org/gnome/...)
    backend 'git':       git config --global; schema is unused
    """
    schema: str
    key: str
    value: str
    backend: str = 'gsettings'


@dataclass(frozen=True)
class KernelTunable:
    key: str
    value: str
    conf_file: str = '/etc/sysctl.d/99-finitra.conf'


@dataclass(frozen=True)
class FileLine:
    """A line that must exist in a file.

    When match is set, an existing line starting with it is replaced
    instead of appending a duplicate (key=value style files).
    """
    path: str
    line: str
    match: Optional[str] = None
    scope: str = USER
    backup: bool = False


@dataclass(frozen=True)
class FileContent:
    """Whole-file desired content (generated configuration artifacts)."""
    path: str
    content: str = ''
    scope: str = USER
    create_only: bool = False  # existing files are left untouched
    state: str = 'present'  # 'present' | 'absent'


@dataclass(frozen=True)
class Directory:
    path: str
    scope: str = USER


@dataclass(frozen=True)
class RemoteArtifact:
    """Downloaded file, memoized by destination path."""
    url: str
    dest: str
