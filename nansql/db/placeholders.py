"""Placeholder rewriting between ``?`` and driver-native bind syntax."""

import re
from typing import Callable, Dict, Optional

# Quoted literals, quoted identifiers and comments are copied through untouched.
_SKIPPED = r"""'(?:[^']|'')*'|"(?:[^"]|"")*"|`[^`]*`|--[^\n]*|/\*.*?\*/"""

_QMARK = re.compile(_SKIPPED + r"|\?", re.DOTALL)

_NATIVE_PATTERNS: Dict[str, re.Pattern] = {
    'qmark': re.compile(_SKIPPED + r"|(\?)", re.DOTALL),
    'format': re.compile(_SKIPPED + r"|%%|(%s)", re.DOTALL),
    'pyformat': re.compile(_SKIPPED + r"|%%|(%s)", re.DOTALL),
    'numeric': re.compile(_SKIPPED + r"|::|(?<![\w:]):(\d+)", re.DOTALL),
    'numeric_dollar': re.compile(_SKIPPED + r"|(?<!\w)\$(\d+)", re.DOTALL),
    'named': re.compile(_SKIPPED + r"|::|(?<![\w:]):([A-Za-z_]\w*)", re.DOTALL),
}

_BINDVARS: Dict[str, Callable[[int], str]] = {
    'qmark': lambda n: "?",
    'format': lambda n: "%s",
    'pyformat': lambda n: "%s",
    'numeric': lambda n: f":{n}",
    'numeric_dollar': lambda n: f"${n}",
    'named': lambda n: f":arg{n}",
}


def rebind(query: str, paramstyle: str) -> str:
    """Rewrite ``?`` placeholders into the bind syntax of ``paramstyle``.

    ``paramstyle`` is a DBAPI paramstyle name as reported by
    ``engine.dialect.paramstyle``. Placeholders are numbered left to right
    starting at 1. A query already written in the native syntax contains no
    ``?`` and comes back unchanged, so rebinding twice is the same as
    rebinding once. Unknown paramstyles leave the query as it is.

    Example:
        >>> rebind("SELECT * FROM t WHERE a = ? AND b = ?", "numeric_dollar")
        'SELECT * FROM t WHERE a = $1 AND b = $2'
    """
    bindvar = _BINDVARS.get(paramstyle)
    if bindvar is None or paramstyle == 'qmark':
        return query

    counter = 0

    def replace(match: re.Match) -> str:
        nonlocal counter
        token = match.group(0)
        if token != "?":
            return token
        counter += 1
        return bindvar(counter)

    return _QMARK.sub(replace, query)


def count_placeholders(query: str, paramstyle: str) -> Optional[int]:
    """Count the arguments a driver-native query expects.

    Numbered styles report the highest index used, named styles the number
    of distinct names. Returns None when the paramstyle is not recognised.
    """
    pattern = _NATIVE_PATTERNS.get(paramstyle)
    if pattern is None:
        return None

    found = [m.group(1) for m in pattern.finditer(query) if m.group(1) is not None]
    if paramstyle in ('numeric', 'numeric_dollar'):
        return max((int(index) for index in found), default=0)
    if paramstyle == 'named':
        return len(set(found))
    return len(found)
