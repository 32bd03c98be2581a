"""Semantic-version range syntax.

Accepted forms (combinable with `||`):
- exact versions: `1.2.3`, `=1.2.3`, `v1.2.3-beta.1+build.5`
- comparators: `>=1.2.0 <2.0.0`
- caret and tilde ranges: `^1.2`, `~1.2.3`
- wildcards: `*`, `1.x`, `1.2.*`
- hyphen ranges: `1.2.3 - 2.3.4`
"""

from __future__ import annotations

import re

ANY_VERSION = "*"

_PART = r"(?:0|[1-9]\d*|[xX*])"
_IDENT = r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*"
_PARTIAL = rf"v?{_PART}(?:\.{_PART}(?:\.{_PART}(?:-{_IDENT})?(?:\+{_IDENT})?)?)?"
_COMPARATOR = rf"(?:<=|>=|<|>|=|\^|~>?)?\s*{_PARTIAL}"

_HYPHEN_RE = re.compile(rf"{_PARTIAL}\s+-\s+{_PARTIAL}")
_COMPARATOR_SET_RE = re.compile(rf"{_COMPARATOR}(?:\s+{_COMPARATOR})*")


def is_valid_version_range(value: object) -> bool:
    if not isinstance(value, str):
        return False
    if value.strip() == ANY_VERSION:
        return True
    alternatives = value.split("||")
    for alternative in alternatives:
        candidate = alternative.strip()
        if not candidate:
            return False
        if _HYPHEN_RE.fullmatch(candidate) or _COMPARATOR_SET_RE.fullmatch(candidate):
            continue
        return False
    return True
