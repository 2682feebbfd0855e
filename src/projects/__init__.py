from src.projects.discovery import DiscoveredProject, discover_projects
from src.projects.path_resolver import PathResolver, display_name, encode_path

__all__ = [
    "DiscoveredProject",
    "PathResolver",
    "discover_projects",
    "display_name",
    "encode_path",
]
