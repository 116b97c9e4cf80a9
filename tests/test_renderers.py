#!/usr/bin/env python3
"""Tests for renderers.py - generated file formats."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from renderers import (
    SYSCTL_HEADER,
    parse_sysctl_conf,
    render_ini,
    render_mise_config,
    render_repo_definition,
    render_sysctl_conf,
)


class TestSysctlConf:
    """Test sysctl.d parsing and rendering."""

    def test_parse_skips_comments(self):
        """Comments, blanks and lines without '=' are ignored."""
        text = "# header\n; other\n\nvm.swappiness = 180\nbogus\n-fs.file-max=10\n"
        assert parse_sysctl_conf(text) == {'vm.swappiness': '180', 'fs.file-max': '10'}

    def test_later_duplicate_wins(self):
        """The last assignment of a key wins."""
        assert parse_sysctl_conf("a = 1\na = 2\n") == {'a': '2'}

    def test_render(self):
        """Rendered file starts with the managed header."""
        text = render_sysctl_conf({'vm.swappiness': '180', 'vm.page-cluster': '0'})
        assert text == f"{SYSCTL_HEADER}\nvm.swappiness = 180\nvm.page-cluster = 0\n"

    def test_render_parses_back(self):
        """Rendered entries are read back unchanged."""
        entries = {'fs.inotify.max_user_watches': '524288'}
        assert parse_sysctl_conf(render_sysctl_conf(entries)) == entries


class TestIni:
    """Test INI rendering."""

    def test_systemd_style(self):
        """zram-generator uses spaced separators."""
        text = render_ini({'zram0': {'zram-size': 'ram / 2', 'compression-algorithm': 'zstd'}}, separator=' = ')
        assert text == "[zram0]\nzram-size = ram / 2\ncompression-algorithm = zstd\n"

    def test_multiple_sections(self):
        """Sections are separated by a blank line; booleans become 1/0."""
        text = render_ini({'a': {'enabled': True}, 'b': {'enabled': False}})
        assert text == "[a]\nenabled=1\n\n[b]\nenabled=0\n"


class TestRepoDefinition:
    """Test dnf .repo rendering."""

    def test_with_gpgkey(self):
        """A gpgkey turns on gpgcheck."""
        text = render_repo_definition('vscode', 'Visual Studio Code',
                                      'https://packages.microsoft.com/yumrepos/vscode',
                                      'https://packages.microsoft.com/keys/microsoft.asc')
        assert text == (
            "[vscode]\n"
            "name=Visual Studio Code\n"
            "baseurl=https://packages.microsoft.com/yumrepos/vscode\n"
            "enabled=1\n"
            "gpgcheck=1\n"
            "gpgkey=https://packages.microsoft.com/keys/microsoft.asc\n"
        )

    def test_without_gpgkey(self):
        """Name defaults to the id; gpgcheck is off."""
        text = render_repo_definition('local', '', 'file:///srv/repo')
        assert "name=local\n" in text
        assert "gpgcheck=0\n" in text
        assert "gpgkey" not in text


class TestMiseConfig:
    """Test mise config.toml rendering."""

    def test_tools_and_settings(self):
        """Lists, strings and booleans are TOML-encoded."""
        text = render_mise_config({'java': ['21', '25'], 'node': 'lts'}, settings={'experimental': True})
        lines = text.splitlines()
        assert '[tools]' in lines
        assert 'java = ["21", "25"]' in lines
        assert 'node = "lts"' in lines
        assert lines[-2:] == ['[settings]', 'experimental = true']

    def test_quotes_escaped(self):
        """Embedded quotes are escaped."""
        text = render_mise_config({'x': 'a"b'})
        assert 'x = "a\\"b"' in text

    def test_no_settings_table(self):
        """Without settings there is no [settings] table."""
        assert '[settings]' not in render_mise_config({'go': 'latest'})
