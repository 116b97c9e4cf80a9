"""Structured renderers for desired-state files.

Each renderer turns records into the exact text written to disk, so file
formats are testable without touching the system.
"""

from typing import Optional

SYSCTL_HEADER = '# Managed by finitra. Local edits to managed keys are overwritten.'


def parse_sysctl_conf(text: str) -> dict[str, str]:
    """Parse a sysctl.d file into ordered key -> value entries.

    Comments and blank lines are dropped; later duplicates win.
    """
    entries: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(('#', ';')):
            continue
        if '=' not in line:
            continue
        key, _, value = line.partition('=')
        key = key.strip().lstrip('-')
        entries[key] = value.strip()
    return entries


def render_sysctl_conf(entries: dict[str, str], header: Optional[str] = SYSCTL_HEADER) -> str:
    """Render key -> value entries as a sysctl.d file."""
    lines = [header] if header else []
    lines.extend(f"{key} = {value}" for key, value in entries.items())
    return '\n'.join(lines) + '\n'


def _ini_value(value) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


def render_ini(sections: dict[str, dict], separator: str = '=') -> str:
    """Render INI sections (repo definitions, zram-generator.conf).

    Args:
        sections: section name -> ordered key/value mapping
        separator: '=' for dnf .repo files, ' = ' for systemd-style files
    """
    blocks = []
    for section, values in sections.items():
        lines = [f"[{section}]"]
        lines.extend(f"{key}{separator}{_ini_value(value)}" for key, value in values.items())
        blocks.append('\n'.join(lines))
    return '\n\n'.join(blocks) + '\n'


def render_repo_definition(repo_id: str, name: str, baseurl: str, gpgkey: str = '') -> str:
    """Render a dnf .repo file for a single repository."""
    values: dict = {
        'name': name or repo_id,
        'baseurl': baseurl,
        'enabled': True,
        'gpgcheck': bool(gpgkey),
    }
    if gpgkey:
        values['gpgkey'] = gpgkey
    return render_ini({repo_id: values})


def _toml_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(_toml_value(v) for v in value) + ']'
    escaped = str(value).replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def render_mise_config(tools: dict, settings: Optional[dict] = None) -> str:
    """Render ~/.config/mise/config.toml.

    Args:
        tools: runtime -> version spec (string or list of strings)
        settings: optional [settings] table
    """
    lines = [
        '# ~/.config/mise/config.toml -- global runtimes managed by mise (finitra)',
        '[tools]',
    ]
    lines.extend(f"{name} = {_toml_value(spec)}" for name, spec in tools.items())
    if settings:
        lines.append('')
        lines.append('[settings]')
        lines.extend(f"{key} = {_toml_value(value)}" for key, value in settings.items())
    return '\n'.join(lines) + '\n'
