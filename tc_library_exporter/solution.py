"""
Visual Studio solution and TwinCAT project file discovery.

A solution file lists its sub-projects on ``Project(...)`` lines::

    Project("{B1E792BE-AA5F-4E3C-8C82-674BF9C0715B}") = "Machine", "Machine\\Machine.tsproj", "{...}"

and records the Visual Studio version that wrote it::

    VisualStudioVersion = 15.0.28307.1321

The TwinCAT project (``*.tsproj``) carries the TwinCAT version on its
root element::

    <TcSmProject TcSmVersion="1.0" TcVersion="3.1.4024.11" TcVersionFixed="true">
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional

from .xml_utils import TWINCAT_PROJECT_ROOT, load_xml_file

logger = logging.getLogger(__name__)

TWINCAT_PROJECT_EXTENSIONS = (".tsproj", ".tspproj")

_PROJECT_LINE_RE = re.compile(
    r'^\s*Project\("\{[^}]*\}"\)\s*=\s*"(?P<name>[^"]*)"\s*,\s*"(?P<path>[^"]*)"',
)
_VS_VERSION_RE = re.compile(
    r"^\s*VisualStudioVersion\s*=\s*(?P<major>\d+)\.(?P<minor>\d+)",
)


def _read_solution_lines(sln_path: str) -> list[str]:
    with open(sln_path, "r", encoding="utf-8-sig", errors="replace") as fh:
        return fh.read().splitlines()


def _to_local_path(base_dir: str, relative: str) -> str:
    # Solution files always use Windows separators.
    relative = relative.replace("\\", os.sep).replace("/", os.sep)
    return os.path.normpath(os.path.join(base_dir, relative))


def list_solution_projects(sln_path: str) -> list[tuple[str, str]]:
    """Return ``(name, absolute_path)`` for every project in a solution."""
    base_dir = os.path.dirname(os.path.abspath(sln_path))
    projects = []
    for line in _read_solution_lines(sln_path):
        match = _PROJECT_LINE_RE.match(line)
        if match:
            projects.append(
                (match.group("name"), _to_local_path(base_dir, match.group("path")))
            )
    return projects


def find_twincat_project_file(sln_path: str) -> Optional[str]:
    """Return the path of the first TwinCAT project in the solution.

    The path is resolved relative to the solution directory.  It is not
    checked for existence.

    Returns:
        The project path, or ``None`` if the solution has no TwinCAT project.
    """
    for name, path in list_solution_projects(sln_path):
        if path.lower().endswith(TWINCAT_PROJECT_EXTENSIONS):
            logger.debug("TwinCAT project '%s' found at %s", name, path)
            return path
    return None


def get_twincat_version(tsproj_path: str) -> Optional[str]:
    """Return the ``TcVersion`` the TwinCAT project was saved with."""
    root = load_xml_file(tsproj_path)
    if root.tag != TWINCAT_PROJECT_ROOT:
        return None
    version = (root.get("TcVersion") or "").strip()
    return version or None


def find_visual_studio_version(sln_path: str) -> Optional[str]:
    """Return ``major.minor`` of the ``VisualStudioVersion`` line, if any."""
    for line in _read_solution_lines(sln_path):
        match = _VS_VERSION_RE.match(line)
        if match:
            return f"{match.group('major')}.{match.group('minor')}"
    return None
