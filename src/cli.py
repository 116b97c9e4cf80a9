#!/usr/bin/env python3
"""CLI entry point for finitra.

Commands:
- run:    Converge the workstation (all modules, or the selected ones)
- list:   List available modules
- update: Update the finitra checkout (git pull --ff-only)
- config: Create, edit or show the user configuration

Examples:
    finitra run
    finitra run 10 desktop --dry-run
    finitra config --show
"""

import argparse
import json
import logging
import os
import pwd
import shutil
import subprocess
import sys
from pathlib import Path

import yaml

from common import run_command
from config import ConfigError, get_base_dir, get_default_config_path, get_user_config_path, load_variables
from context import build_context, resolve_acting_user
from modules import list_modules, module_label, run as run_modules
from reporting import SECTION, setup_logging

COMMANDS = {
    "run": "Converge the workstation (all or selected modules)",
    "list": "List available modules",
    "update": "Update finitra (git pull --ff-only)",
    "config": "Create, edit or show the user configuration",
}

logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except Exception:
        return 'dev'


def run_main(argv: list) -> int:
    """Handle 'run': converge the selected modules.

    Returns:
        0 if the run completed without failures, 1 if some resources
        failed, 2 if a required module aborted the run
    """
    parser = argparse.ArgumentParser(
        prog='finitra run',
        description='Converge the workstation to its desired state',
    )
    parser.add_argument(
        'modules',
        nargs='*',
        metavar='MODULE',
        help='Modules to run by id, label or name (e.g. 10, 10-packages, packages). Default: all'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Probe only: report what would change without changing anything'
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Answer every confirmation prompt with its default'
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output the execution report as JSON to stdout (logs go to stderr)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='User configuration file (default: ~/.config/finitra/config.yaml)'
    )
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, json_output=args.json_output)

    try:
        ctx = build_context(user_file=args.config, assume_yes=args.yes, dry_run=args.dry_run)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    ctx.prepare_log_file()
    setup_logging(ctx.log_file, verbose=args.verbose, json_output=args.json_output)
    logger.info(f"finitra {get_version()} - logging to {ctx.log_file}")

    try:
        report = run_modules(args.modules, ctx)
    except ValueError as e:
        logger.error(str(e))
        return 1

    logger.log(SECTION, "Summary")
    for line in report.summary_lines():
        logger.info(line)

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2))

    return report.exit_code()


def list_main(argv: list) -> int:
    """Handle 'list': print the module catalogue in execution order."""
    parser = argparse.ArgumentParser(prog='finitra list', description='List available modules')
    parser.parse_args(argv)

    print("Available modules:")
    for cls in list_modules():
        marker = 'required' if cls.required else ''
        print(f"  {module_label(cls):20} {marker:9} {cls.description}")
    return 0


def update_main(argv: list) -> int:
    """Handle 'update': fast-forward the finitra checkout."""
    parser = argparse.ArgumentParser(prog='finitra update', description='Update finitra from its git remote')
    parser.parse_args(argv)

    base_dir = get_base_dir()
    if not (base_dir / '.git').exists():
        print(f"Error: {base_dir} is not a git checkout; reinstall to update")
        return 1

    print(f"Updating {base_dir}...")
    rc, out, err = run_command(['git', 'pull', '--ff-only'], cwd=base_dir, timeout=300)
    if out.strip():
        print(out.strip())
    if rc != 0:
        print(f"Error: git pull failed: {err.strip()}")
        return 1
    print(f"finitra is at {get_version()}")
    return 0


def _create_user_config(user_file: Path, user: str, uid: int) -> None:
    """Copy the defaults to the user file, owned by the acting user."""
    created = [p for p in (user_file.parent, *user_file.parent.parents) if not p.exists()]
    user_file.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(get_default_config_path(), user_file)

    if os.geteuid() == 0 and uid != 0:
        gid = pwd.getpwnam(user).pw_gid
        for path in [user_file, *created]:
            os.chown(path, uid, gid)


def config_main(argv: list) -> int:
    """Handle 'config': create the user override file and open it."""
    parser = argparse.ArgumentParser(
        prog='finitra config',
        description='Create the user configuration from the defaults and open it in $EDITOR',
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--path', action='store_true', help='Print the user configuration path')
    group.add_argument('--show', action='store_true', help='Print the effective configuration')
    args = parser.parse_args(argv)

    # Same file 'run' reads: the acting user's, also under sudo
    try:
        user, uid, home = resolve_acting_user()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    user_file = get_user_config_path(home)

    if args.path:
        print(user_file)
        return 0

    if args.show:
        try:
            variables = load_variables(user_file=user_file)
        except ConfigError as e:
            print(f"Error: {e}")
            return 1
        print(yaml.safe_dump(variables, default_flow_style=False, sort_keys=True), end='')
        return 0

    if not user_file.exists():
        _create_user_config(user_file, user, uid)
        print(f"Created {user_file} from defaults")

    editor = os.environ.get('VISUAL') or os.environ.get('EDITOR') or 'vi'
    try:
        return subprocess.call([editor, str(user_file)])
    except OSError as e:
        print(f"Error: cannot start editor '{editor}': {e}")
        print(f"Edit {user_file} manually")
        return 1


def dispatch(command: str, argv: list) -> int:
    """Dispatch to the command handler."""
    handlers = {
        'run': run_main,
        'list': list_main,
        'update': update_main,
        'config': config_main,
    }
    return handlers[command](argv)


def print_usage():
    print("Usage: finitra <command> [options]")
    print()
    print("Commands:")
    for name, description in COMMANDS.items():
        print(f"  {name:8}  {description}")
    print()
    print("Run 'finitra <command> --help' for command-specific options.")


def main(argv=None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0 if argv else 1

    if argv[0] == '--version':
        print(f"finitra {get_version()}")
        return 0

    command = argv[0]
    if command not in COMMANDS:
        print(f"Error: Unknown command '{command}'")
        print_usage()
        return 1

    return dispatch(command, argv[1:])


if __name__ == '__main__':
    sys.exit(main())
