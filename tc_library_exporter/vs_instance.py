"""
Visual Studio development environment session.

:class:`DevelopmentSession` is the capability set the runner needs from an
IDE: load, open a solution, clean, build, read the Error List, close.
:class:`VisualStudioInstance` implements it on top of the EnvDTE automation
model through pywin32.  Tests substitute a fake session.

TwinCAT version selection
-------------------------
The TwinCAT XAE registers a ``TcRemoteManager`` object in the DTE that
switches the TwinCAT version used by the session.  The version is chosen by
:func:`select_twincat_version`:

1. a version forced on the command line, otherwise
2. the project's own version if the project pins it, otherwise
3. the latest installed version.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from .models import BuildMessage, ErrorLevel
from .solution import TWINCAT_PROJECT_EXTENSIONS, find_visual_studio_version

logger = logging.getLogger(__name__)

XAE_SHELL_FALLBACK_PROG_ID = "TcXaeShell.DTE.15.0"


# ===================================================================
# Interface
# ===================================================================

class DevelopmentSession(ABC):
    """An IDE session able to build a TwinCAT solution."""

    @abstractmethod
    def load(self, is_project_pinned: bool) -> None:
        """Start the IDE with the right TwinCAT version."""

    @abstractmethod
    def load_solution(self) -> None:
        """Open the solution in the running IDE."""

    @abstractmethod
    def get_visual_studio_version(self) -> Optional[str]:
        """Visual Studio version recorded in the solution file."""

    @abstractmethod
    def get_project(self) -> Any:
        """Return the TwinCAT project (its ``Object`` is the system manager)."""

    @abstractmethod
    def clean_solution(self) -> None:
        ...

    @abstractmethod
    def build_solution(self) -> None:
        ...

    @abstractmethod
    def get_error_items(self) -> List[BuildMessage]:
        """Return the current Error List entries."""

    @abstractmethod
    def close(self) -> None:
        """Shut the IDE down.  Must be safe to call at any point."""

    def __enter__(self) -> 'DevelopmentSession':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ===================================================================
# Version selection
# ===================================================================

def version_key(version: str) -> tuple:
    """Sort key comparing dotted versions numerically (``3.1.4024.11``)."""
    return tuple(int(part) for part in re.findall(r"\d+", version))


def select_twincat_version(
    installed: Iterable[str],
    project_version: Optional[str],
    forced_version: Optional[str] = None,
    is_project_pinned: bool = False,
) -> str:
    """Pick the TwinCAT version to load.

    Raises:
        ValueError: If nothing is installed, or the forced/pinned version
            is not among the installed versions.
    """
    installed = [v for v in installed if v]
    if not installed:
        raise ValueError("No TwinCAT version is installed")

    if forced_version:
        if forced_version not in installed:
            raise ValueError(
                f"Forced TwinCAT version {forced_version} is not installed "
                f"(installed: {', '.join(installed)})"
            )
        logger.info("Using forced TwinCAT version %s", forced_version)
        return forced_version

    if is_project_pinned:
        if project_version not in installed:
            raise ValueError(
                f"Pinned TwinCAT version {project_version} is not installed "
                f"(installed: {', '.join(installed)})"
            )
        logger.info("Using pinned TwinCAT version %s", project_version)
        return project_version

    latest = max(installed, key=version_key)
    logger.info("Using latest installed TwinCAT version %s", latest)
    return latest


def dte_prog_ids(vs_version: Optional[str]) -> List[str]:
    """ProgIDs to try, in order, when starting the DTE."""
    candidates = []
    if vs_version:
        candidates.append(f"VisualStudio.DTE.{vs_version}")
        candidates.append(f"TcXaeShell.DTE.{vs_version}")
    candidates.append(XAE_SHELL_FALLBACK_PROG_ID)
    return list(dict.fromkeys(candidates))


# ===================================================================
# EnvDTE implementation
# ===================================================================

class VisualStudioInstance(DevelopmentSession):
    """A Visual Studio / TwinCAT XAE Shell instance driven through EnvDTE."""

    def __init__(
        self,
        solution_path: str,
        tc_version: str,
        forced_tc_version: Optional[str] = None,
    ):
        self.solution_path = solution_path
        self.tc_version = tc_version
        self.forced_tc_version = forced_tc_version
        self._vs_version = find_visual_studio_version(solution_path)
        self._dte: Any = None
        self._solution: Any = None
        self._project: Any = None

    @property
    def dte(self) -> Any:
        if self._dte is None:
            raise RuntimeError("Development environment not loaded. Call load() first.")
        return self._dte

    def get_visual_studio_version(self) -> Optional[str]:
        return self._vs_version

    def load(self, is_project_pinned: bool) -> None:
        import pythoncom
        import win32com.client

        pythoncom.CoInitialize()

        last_error: Optional[Exception] = None
        for prog_id in dte_prog_ids(self._vs_version):
            try:
                self._dte = win32com.client.Dispatch(prog_id)
            except pythoncom.com_error as e:
                logger.debug("Could not start %s: %s", prog_id, e)
                last_error = e
                continue
            logger.info("Loaded development environment %s", prog_id)
            break
        else:
            raise RuntimeError(
                f"No Visual Studio or TwinCAT XAE Shell could be started: {last_error}"
            )

        dte = self._dte
        dte.UserControl = False
        dte.SuppressUI = True
        error_list = dte.ToolWindows.ErrorList
        error_list.ShowErrors = True
        error_list.ShowMessages = True
        error_list.ShowWarnings = True

        try:
            # Only available from TwinCAT 3.1.4020.0
            dte.GetObject("TcAutomationSettings").SilentMode = True
        except (pythoncom.com_error, AttributeError) as e:
            logger.debug("TcAutomationSettings not available: %s", e)

        remote_manager = dte.GetObject("TcRemoteManager")
        installed = [str(v) for v in (remote_manager.Versions or ())]
        logger.debug("Installed TwinCAT versions: %s", ", ".join(installed))
        remote_manager.Version = select_twincat_version(
            installed, self.tc_version, self.forced_tc_version, is_project_pinned,
        )

    def load_solution(self) -> None:
        self._solution = self.dte.Solution
        self._solution.Open(self.solution_path)
        self._project = self._find_twincat_project()
        logger.info("Loaded solution %s", self.solution_path)

    def _find_twincat_project(self) -> Any:
        projects = self._solution.Projects
        for i in range(1, projects.Count + 1):
            project = projects.Item(i)
            if str(project.FullName).lower().endswith(TWINCAT_PROJECT_EXTENSIONS):
                return project
        raise RuntimeError("No TwinCAT project loaded in the solution")

    def get_project(self) -> Any:
        if self._project is None:
            raise RuntimeError("Solution not loaded. Call load_solution() first.")
        return self._project

    def clean_solution(self) -> None:
        logger.info("Cleaning solution...")
        self.dte.Solution.SolutionBuild.Clean(True)

    def build_solution(self) -> None:
        logger.info("Building solution...")
        self.dte.Solution.SolutionBuild.Build(True)

    def get_error_items(self) -> List[BuildMessage]:
        items = self.dte.ToolWindows.ErrorList.ErrorItems
        messages = []
        for i in range(1, items.Count + 1):
            item = items.Item(i)
            messages.append(BuildMessage(
                level=ErrorLevel(int(item.ErrorLevel)),
                description=str(item.Description or ""),
                file_name=str(item.FileName or ""),
                line=int(item.Line) if item.Line else None,
            ))
        return messages

    def close(self) -> None:
        if self._dte is None:
            return
        dte, self._dte = self._dte, None
        self._solution = None
        self._project = None
        dte.Quit()
        logger.debug("Development environment closed")
