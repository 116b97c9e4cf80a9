"""Declarative list files.

Line-oriented inputs describing desired resource instances:
- package lists:  <package> [trailing text ignored]
- flatpak lists:  <remote> <application-id>
- setting lists:  <schema> <key> <value...>

Per line: blank lines and '#' comments are dropped, ${NAME} references are
replaced with Context variables (single pass, substituted text is never
re-scanned), then the line is split to the record's arity. Lines missing a
required field are skipped with a warning.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from common import ParseError

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

PACKAGE = 'package'
FLATPAK = 'flatpak'
SETTING = 'setting'


@dataclass(frozen=True)
class PackageRecord:
    name: str


@dataclass(frozen=True)
class FlatpakRecord:
    remote: str
    app_id: str


@dataclass(frozen=True)
class SettingRecord:
    schema: str
    key: str
    value: str


Record = Union[PackageRecord, FlatpakRecord, SettingRecord]


def substitute(line: str, variables: dict[str, str]) -> str:
    """Replace ${NAME} with variables[NAME] in one pass.

    Unknown names expand to the empty string.
    """
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            logger.warning(f"Undefined variable ${{{name}}} expands to empty string")
            return ''
        return variables[name]

    return VARIABLE_PATTERN.sub(_replace, line)


def parse_record(line: str, kind: str) -> Record:
    """Split a substituted line into a record of the given kind.

    Raises:
        ParseError: If a required field is missing
    """
    if kind == PACKAGE:
        tokens = line.split()
        if not tokens:
            raise ParseError("missing package name")
        return PackageRecord(name=tokens[0])

    if kind == FLATPAK:
        tokens = line.split()
        if len(tokens) < 2:
            raise ParseError("expected '<remote> <application-id>'")
        return FlatpakRecord(remote=tokens[0], app_id=tokens[1])

    if kind == SETTING:
        tokens = line.strip().split(None, 2)
        if len(tokens) < 3 or not tokens[2].strip():
            raise ParseError("expected '<schema> <key> <value>'")
        return SettingRecord(schema=tokens[0], key=tokens[1], value=tokens[2].strip())

    raise ValueError(f"Unknown list kind: {kind}")


def parse_lines(
    lines: Iterable[str],
    kind: str,
    variables: Optional[dict[str, str]] = None,
    source: str = '<input>',
) -> Iterator[Record]:
    """Yield records from raw lines, skipping comments, blanks and bad lines."""
    variables = variables or {}
    for lineno, raw in enumerate(lines, 1):
        line = raw.rstrip('\n')
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue

        expanded = substitute(line, variables)
        try:
            yield parse_record(expanded, kind)
        except ParseError as e:
            logger.warning(f"{source}:{lineno}: skipping malformed line ({e}): {stripped}")


def load_list(path: Path, kind: str, variables: Optional[dict[str, str]] = None) -> list[Record]:
    """Parse a list file into records.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    with open(path, encoding='utf-8') as f:
        records = list(parse_lines(f, kind, variables, source=str(path)))
    logger.debug(f"Loaded {len(records)} {kind} records from {path}")
    return records
