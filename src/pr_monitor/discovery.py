"""Find git working copies under configured root directories."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger("pr_monitor.discovery")


def discover_repositories(roots: Iterable[str]) -> list[Path]:
    """Return every directory under ``roots`` that contains a ``.git`` entry.

    Hidden entries are skipped and a repository's descendants are not
    searched. Missing roots are ignored. Results are sorted and de-duplicated.
    """
    found: set[Path] = set()
    for root in roots:
        base = Path(root).expanduser()
        if not base.is_dir():
            logger.debug("Skipping missing repo root %s", base)
            continue
        for dirpath, dirnames, _filenames in os.walk(base):
            current = Path(dirpath)
            if (current / ".git").exists():
                found.add(current.resolve())
                dirnames.clear()
                continue
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
    return sorted(found)
