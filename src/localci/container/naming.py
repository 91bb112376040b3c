"""Deterministic container and volume naming.

Names are derived from (tool identity, job identity) so that re-running
the same job addresses the same containers, which is what makes container
reuse possible.

Every character outside ``[a-zA-Z0-9]`` becomes ``-``. Every part except
the last is truncated to ``(30 // len(parts)) - 1`` characters; the last
part is kept whole. Parts are joined with ``-`` and leading/trailing
``-`` are trimmed.

Truncation is lossy: two job identities that differ only past the
truncation point of a non-final part, or only in non-alphanumeric
characters, map to the same name. Names are therefore only
probabilistically unique, and callers running jobs concurrently must
keep job identities distinct.

Example:
    >>> create_container_name("localci", "ci/build")
    'localci-ci-build'
    >>> create_container_name("localci", "dind", "ci/build")
    'localci-dind-ci-build'
"""

from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def trim_to_len(value: str, length: int) -> str:
    """Truncate ``value`` to ``length`` characters (negative means empty)."""
    if length < 0:
        length = 0
    return value[:length]


def create_container_name(*parts: str) -> str:
    if not parts:
        return ""
    part_len = (30 // len(parts)) - 1
    name = []
    for i, part in enumerate(parts):
        cleaned = _NON_ALNUM.sub("-", part)
        if i == len(parts) - 1:
            name.append(cleaned)
        else:
            name.append(trim_to_len(cleaned, part_len))
    return "-".join(name).strip("-")
