# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Idempotent upserts of owned content inside foreign text files.

Block form owns everything between two marker lines (shell rc files, tmux).
Entry form owns the lines matched by a predicate over whitespace-separated
fields (/etc/fstab, /etc/hosts). Everything else is preserved verbatim and
in order. Every result ends with exactly one newline.
"""
import re
from typing import Callable
from typing import List
from typing import Mapping
from typing import Sequence
from typing import Tuple

BASHRC_SOURCING_LINE = '[[ -f ~/.bashrc ]] && . ~/.bashrc'
_sources_bashrc_re = re.compile(r'(?m)(^|[; \t])(\.|source)[ \t]+~/?\.bashrc([ \t;]|$)')


def upsert_block(content: str, start_marker: str, end_marker: str, block: str) -> Tuple[str, bool]:
    """Replace all marked regions with a single fresh one at the end.

    >>> text, changed = upsert_block('a\\n', '# S', '# E', 'x')
    >>> print(text, end='')
    a
    <BLANKLINE>
    # S
    x
    # E
    >>> upsert_block(text, '# S', '# E', 'x') == (text, False)
    True
    """
    remainder = []
    inside = False
    for line in content.split('\n'):
        if line.strip() == start_marker:
            inside = True
        elif inside and line.strip() == end_marker:
            inside = False
        elif not inside:
            remainder.append(line)
    # An unterminated start marker owns the rest of the file.
    lines = _without_trailing_blank_lines(remainder)
    if lines:
        lines.append('')
    lines.append(start_marker)
    lines.extend(block.strip('\n').split('\n'))
    lines.append(end_marker)
    return _result(content, lines)


def upsert_entry(
        content: str,
        matches: Callable[[Sequence[str]], bool],
        line: str,
        ) -> Tuple[str, bool]:
    """Rewrite every matching line to the canonical one or append it.

    Comments and blank lines are never matched.

    >>> upsert_entry('# c\\nA B\\n', lambda f: f[0] == 'A', 'A C')
    ('# c\\nA C\\n', True)
    >>> upsert_entry('A C\\n', lambda f: f[0] == 'A', 'A C')
    ('A C\\n', False)
    """
    lines = _without_trailing_blank_lines(content.split('\n'))
    found = False
    for i, raw in enumerate(lines):
        fields = _entry_fields(raw)
        if fields and matches(fields):
            found = True
            lines[i] = line
    if not found:
        lines.append(line)
    return _result(content, lines)


def upsert_mount(content: str, mount_target: str, line: str) -> Tuple[str, bool]:
    return upsert_entry(content, lambda fields: len(fields) >= 2 and fields[1] == mount_target, line)


def upsert_host_aliases(content: str, aliases: Mapping[str, str]) -> Tuple[str, bool]:
    """Make each alias resolve to its address via rows appended at the end.

    Managed aliases are stripped from foreign lines. A line left with
    an address only is dropped.

    >>> upsert_host_aliases(
    ...     '127.0.0.1 localhost remotehost\\n10.9.9.9 remotehost\\n',
    ...     {'remotehost': '10.0.0.1'})
    ('127.0.0.1\\tlocalhost\\n10.0.0.1\\tremotehost\\n', True)
    """
    lines = []
    for raw in content.split('\n'):
        fields = _entry_fields(raw)
        if len(fields) < 2 or not any(name in aliases for name in fields[1:]):
            lines.append(raw)
            continue
        kept = [fields[0], *[name for name in fields[1:] if name not in aliases]]
        if len(kept) > 1:
            lines.append('\t'.join(kept))
    lines = _without_trailing_blank_lines(lines)
    for alias, address in aliases.items():
        if address:
            lines.append(f'{address}\t{alias}')
    return _result(content, lines)


def ensure_sources_bashrc(content: str) -> Tuple[str, bool]:
    """Make a login profile source ~/.bashrc unless it already does.

    >>> ensure_sources_bashrc('export A=1\\n')
    ('export A=1\\n[[ -f ~/.bashrc ]] && . ~/.bashrc\\n', True)
    >>> ensure_sources_bashrc('source ~/.bashrc\\n')
    ('source ~/.bashrc\\n', False)
    """
    lines = _without_trailing_blank_lines(content.split('\n'))
    if not _sources_bashrc_re.search(content):
        lines.append(BASHRC_SOURCING_LINE)
    return _result(content, lines)


def _entry_fields(raw: str) -> List[str]:
    stripped = raw.strip()
    if not stripped or stripped.startswith('#'):
        return []
    return stripped.split()


def _without_trailing_blank_lines(lines: Sequence[str]) -> List[str]:
    lines = list(lines)
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def _result(original: str, lines: Sequence[str]) -> Tuple[str, bool]:
    if lines:
        text = '\n'.join(lines) + '\n'
    else:
        text = ''
    return text, text != original
