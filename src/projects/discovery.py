"""Discover Claude Code projects from ~/.claude/projects.

Each subdirectory is one project; its name is the encoded project path and
it holds one ``.jsonl`` log per session.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.projects.path_resolver import PathResolver

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredProject:
    """A project directory found under ~/.claude/projects."""

    name: str
    path: str
    dir_name: str
    session_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "dir_name": self.dir_name,
            "session_count": self.session_count,
        }


def count_sessions(project_dir: Path) -> int:
    try:
        return sum(1 for f in project_dir.iterdir() if f.suffix == ".jsonl")
    except OSError:
        return 0


def discover_projects(
    projects_dir: Path,
    resolver: PathResolver | None = None,
    include_missing: bool = False,
) -> list[DiscoveredProject]:
    """List projects, decoded and sorted by session count (descending).

    Projects whose decoded path does not exist on disk are skipped unless
    ``include_missing`` is set.
    """
    resolver = resolver or PathResolver()
    try:
        dirs = sorted(d for d in projects_dir.iterdir() if d.is_dir())
    except OSError:
        return []

    projects: list[DiscoveredProject] = []
    for d in dirs:
        decoded = resolver.decode(d.name)
        if not include_missing and not os.path.exists(decoded):
            logger.debug("Skipping %s: decoded path %s not on disk", d.name, decoded)
            continue
        projects.append(
            DiscoveredProject(
                name=os.path.basename(decoded.rstrip("/")) or decoded,
                path=decoded,
                dir_name=d.name,
                session_count=count_sessions(d),
            )
        )

    projects.sort(key=lambda p: p.session_count, reverse=True)
    return projects
