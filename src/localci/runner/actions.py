"""Remote action references (``uses: org/repo[/path]@ref``)."""

from __future__ import annotations

import re
from dataclasses import dataclass

_REMOTE_ACTION = re.compile(r"^([^/@]+)/([^/@]+)(?:/([^@]*))?(?:@(.*))?$")


@dataclass(frozen=True)
class RemoteAction:
    org: str
    repo: str
    path: str = ""
    ref: str = ""

    @classmethod
    def parse(cls, uses: str) -> RemoteAction | None:
        """Parse a ``uses`` value; ``None`` when it is not a remote reference."""
        uses = uses.strip()
        if uses.startswith(("./", "docker://")):
            return None
        match = _REMOTE_ACTION.match(uses)
        if match is None:
            return None
        org, repo, path, ref = match.groups()
        return cls(org=org, repo=repo, path=path or "", ref=ref or "")

    def is_checkout(self) -> bool:
        return self.org == "actions" and self.repo == "checkout"
