#!/usr/bin/env python3
"""Tests for cli.py - command dispatch and exit codes.

Tests verify:
1. Usage, version and unknown commands
2. 'run' exit codes and JSON output
3. 'list' prints the catalogue
4. 'config' path, show and creation from defaults
5. 'update' requires a git checkout
"""

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
import cli
from common import APPLIED, FAILED, Outcome
from config import ConfigError
from reporting import ExecutionReport


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)


def report_with(*statuses, aborted=False):
    report = ExecutionReport()
    report.start()
    report.start_module(10, 'packages')
    report.record_step('rpm_list', 'Install RPM packages from list',
                       [Outcome(f"package p{i}", s) for i, s in enumerate(statuses)])
    if aborted:
        report.abort('00-system: not Fedora')
    report.finish()
    return report


class TestMain:
    """Test top-level dispatch."""

    def test_no_args_prints_usage(self, capsys):
        """No command prints usage and fails."""
        assert cli.main([]) == 1
        assert 'Usage: finitra' in capsys.readouterr().out

    def test_help(self, capsys):
        """--help prints usage and succeeds."""
        assert cli.main(['--help']) == 0
        out = capsys.readouterr().out
        for command in cli.COMMANDS:
            assert command in out

    def test_unknown_command(self, capsys):
        """Unknown commands fail with a message."""
        assert cli.main(['bogus']) == 1
        assert "Unknown command 'bogus'" in capsys.readouterr().out

    def test_version(self, capsys):
        """--version prints the version."""
        with patch('cli.get_version', return_value='v1.2.0'):
            assert cli.main(['--version']) == 0
        assert capsys.readouterr().out.strip() == 'finitra v1.2.0'


class TestRun:
    """Test the run command."""

    def test_success(self, ctx):
        """A clean run exits 0."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with(APPLIED)) as run:
            assert cli.main(['run']) == 0
        run.assert_called_once_with([], ctx)

    def test_failures_exit_1(self, ctx):
        """Failed resources exit 1."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with(APPLIED, FAILED)):
            assert cli.main(['run', 'packages']) == 1

    def test_aborted_exit_2(self, ctx):
        """Aborted runs exit 2."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with(aborted=True)):
            assert cli.main(['run']) == 2

    def test_flags_passed_to_context(self, ctx, tmp_path):
        """--dry-run, --yes and --config reach the context builder."""
        config = tmp_path / 'config.yaml'
        with patch('cli.build_context', return_value=ctx) as build, \
                patch('cli.run_modules', return_value=report_with()):
            cli.main(['run', '--dry-run', '--yes', '--config', str(config), '10', 'desktop'])
        build.assert_called_once_with(user_file=config, assume_yes=True, dry_run=True)

    def test_selectors_passed(self, ctx):
        """Module selectors are forwarded in order."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with()) as run:
            cli.main(['run', '10', 'desktop'])
        run.assert_called_once_with(['10', 'desktop'], ctx)

    def test_unknown_module(self, ctx):
        """Unknown selectors exit 1."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', side_effect=ValueError("Unknown module: 99")):
            assert cli.main(['run', '99']) == 1

    def test_config_error(self):
        """Configuration errors exit 1 before running anything."""
        with patch('cli.build_context', side_effect=ConfigError("bad")), \
                patch('cli.run_modules') as run:
            assert cli.main(['run']) == 1
        run.assert_not_called()

    def test_json_output(self, ctx, capsys):
        """--json-output prints the report on stdout."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with(APPLIED, FAILED)):
            cli.main(['run', '--json-output'])
        data = json.loads(capsys.readouterr().out)
        assert data['status'] == 'completed'
        assert data['counts'] == {'applied': 1, 'satisfied': 0, 'skipped': 0, 'failed': 1}

    def test_summary_logged_to_file(self, ctx):
        """The summary reaches the persistent log."""
        with patch('cli.build_context', return_value=ctx), \
                patch('cli.run_modules', return_value=report_with(APPLIED)):
            cli.main(['run'])
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = ctx.log_file.read_text()
        assert '[SECTION] Summary' in text
        assert '10-packages' in text


class TestList:
    """Test the list command."""

    def test_lists_modules(self, capsys):
        """Every module is listed by label."""
        assert cli.main(['list']) == 0
        out = capsys.readouterr().out
        for label in ('00-system', '10-packages', '20-dev-tools', '30-desktop'):
            assert label in out
        assert 'required' in out


class TestConfig:
    """Test the config command."""

    @pytest.fixture
    def acting_user(self, tmp_path):
        with patch('cli.resolve_acting_user', return_value=('dev', os.getuid(), tmp_path)):
            yield

    def test_path(self, tmp_path, capsys, monkeypatch, acting_user):
        """--path prints the user configuration path."""
        monkeypatch.setenv('FINITRA_CONFIG', str(tmp_path / 'config.yaml'))
        assert cli.main(['config', '--path']) == 0
        assert capsys.readouterr().out.strip() == str(tmp_path / 'config.yaml')

    def test_path_under_sudo(self, tmp_path, capsys, monkeypatch):
        """Under sudo the path is the invoking user's, the one 'run' reads."""
        for name in ('FINITRA_CONFIG', 'SETUP_USER', 'SETUP_HOME'):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv('SUDO_USER', 'dev')
        home = tmp_path / 'home' / 'dev'
        entry = MagicMock(pw_uid=1000, pw_gid=1000, pw_dir=str(home))
        with patch('context.pwd.getpwnam', return_value=entry) as getpwnam:
            assert cli.main(['config', '--path']) == 0
        getpwnam.assert_called_with('dev')
        assert capsys.readouterr().out.strip() == str(home / '.config' / 'finitra' / 'config.yaml')

    def test_unknown_acting_user(self, capsys):
        with patch('cli.resolve_acting_user', side_effect=ConfigError("Unknown user 'ghost'")):
            assert cli.main(['config', '--path']) == 1
        assert "Unknown user 'ghost'" in capsys.readouterr().out

    def test_show(self, tmp_path, capsys, monkeypatch, acting_user):
        """--show prints the effective configuration with overrides."""
        user = tmp_path / 'config.yaml'
        user.write_text("INSTALL_CHROME: false\n")
        monkeypatch.setenv('FINITRA_CONFIG', str(user))
        assert cli.main(['config', '--show']) == 0
        out = capsys.readouterr().out
        assert "INSTALL_CHROME: 'false'" in out
        assert 'ENABLE_ZRAM' in out

    def test_show_invalid(self, tmp_path, capsys, monkeypatch, acting_user):
        """--show reports a malformed user file."""
        user = tmp_path / 'config.yaml'
        user.write_text("- not a mapping\n")
        monkeypatch.setenv('FINITRA_CONFIG', str(user))
        assert cli.main(['config', '--show']) == 1
        assert 'Error' in capsys.readouterr().out

    def test_edit_creates_from_defaults(self, tmp_path, monkeypatch, acting_user):
        """A missing user file is created from defaults before editing."""
        user = tmp_path / 'cfg' / 'config.yaml'
        monkeypatch.setenv('FINITRA_CONFIG', str(user))
        monkeypatch.setenv('EDITOR', 'true')
        monkeypatch.delenv('VISUAL', raising=False)
        with patch('cli.subprocess.call', return_value=0) as call:
            assert cli.main(['config']) == 0
        call.assert_called_once_with(['true', str(user)])
        assert user.read_text() == cli.get_default_config_path().read_text()

    def test_edit_keeps_existing(self, tmp_path, monkeypatch, acting_user):
        """An existing user file is opened as-is."""
        user = tmp_path / 'config.yaml'
        user.write_text("INSTALL_CHROME: false\n")
        monkeypatch.setenv('FINITRA_CONFIG', str(user))
        with patch('cli.subprocess.call', return_value=0):
            cli.main(['config'])
        assert user.read_text() == "INSTALL_CHROME: false\n"

    def test_created_file_owned_by_user_under_sudo(self, tmp_path, monkeypatch):
        """Created as root, the file and its new directories go to the acting user."""
        user = tmp_path / 'cfg' / 'config.yaml'
        monkeypatch.setenv('FINITRA_CONFIG', str(user))
        monkeypatch.setenv('EDITOR', 'true')
        with patch('cli.resolve_acting_user', return_value=('dev', 1000, tmp_path)), \
                patch('cli.os.geteuid', return_value=0), \
                patch('cli.pwd.getpwnam', return_value=MagicMock(pw_gid=1000)), \
                patch('cli.os.chown') as chown, \
                patch('cli.subprocess.call', return_value=0):
            assert cli.main(['config']) == 0
        owned = {call.args[0] for call in chown.call_args_list}
        assert owned == {user, tmp_path / 'cfg'}
        assert all(call.args[1:] == (1000, 1000) for call in chown.call_args_list)


class TestUpdate:
    """Test the update command."""

    def test_requires_checkout(self, tmp_path, capsys):
        """Outside a git checkout, update fails."""
        with patch('cli.get_base_dir', return_value=tmp_path):
            assert cli.main(['update']) == 1
        assert 'not a git checkout' in capsys.readouterr().out

    def test_pull(self, tmp_path, capsys):
        """git pull --ff-only runs in the checkout."""
        (tmp_path / '.git').mkdir()
        with patch('cli.get_base_dir', return_value=tmp_path), \
                patch('cli.run_command', return_value=(0, 'Already up to date.\n', '')) as run, \
                patch('cli.get_version', return_value='v1.0.0'):
            assert cli.main(['update']) == 0
        run.assert_called_once_with(['git', 'pull', '--ff-only'], cwd=tmp_path, timeout=300)
        assert 'Already up to date.' in capsys.readouterr().out

    def test_pull_failure(self, tmp_path):
        """A failed pull exits 1."""
        (tmp_path / '.git').mkdir()
        with patch('cli.get_base_dir', return_value=tmp_path), \
                patch('cli.run_command', return_value=(1, '', 'diverged')):
            assert cli.main(['update']) == 1
