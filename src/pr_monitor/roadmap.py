"""Map repository paths to roadmap projects."""

from __future__ import annotations

from pathlib import Path
from typing import NamedTuple

from pr_monitor.config_schema import ProjectMapping


class RoadmapProject(NamedTuple):
    project_id: str
    project_name: str


def _is_under(path: Path, root: str) -> bool:
    return path.is_relative_to(Path(root).expanduser())


class RoadmapMapper:
    def __init__(self, mapping: ProjectMapping) -> None:
        self.mapping = mapping

    def project_for_repo_path(self, path: str | Path) -> RoadmapProject | None:
        """Corporate roots win over the client base; unmatched paths map to nothing."""
        repo_path = Path(path).expanduser()
        mapping = self.mapping

        if any(_is_under(repo_path, root) for root in mapping.corporate_roots):
            if mapping.corporate_project_id:
                return RoadmapProject(mapping.corporate_project_id, mapping.corporate_project_name)
            return None

        if mapping.client_root_base and _is_under(repo_path, mapping.client_root_base):
            if mapping.client_project_id:
                return RoadmapProject(mapping.client_project_id, mapping.client_project_name)
        return None
