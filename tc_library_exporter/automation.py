"""
TwinCAT automation interface wrapper.

The TwinCAT project loaded in the DTE exposes ``ITcSysManager`` as its
``Object``.  Configuration tree items are looked up by shortcut path
(``TIPC^Machine^Machine Project``) and exchange their settings as XML.

:class:`PlcAutomation` is the capability set the runner depends on;
:class:`AutomationInterface` implements it over the live COM objects.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator

from . import xml_utils

logger = logging.getLogger(__name__)

# Tree item shortcuts
PLC_CONFIGURATION_SHORTCUT = "TIPC"
REAL_TIME_CONFIGURATION_ADDITIONAL_TASKS = "TIRT"


def iter_children(tree_item: Any) -> Iterator[Any]:
    """Yield the children of an ``ITcSmTreeItem`` (COM collections are 1-based)."""
    for i in range(1, tree_item.ChildCount + 1):
        yield tree_item.Child(i)


class PlcAutomation(ABC):
    """PLC operations the runner needs from the TwinCAT system manager."""

    @property
    @abstractmethod
    def plc_project_count(self) -> int:
        """Number of PLC projects under the PLC configuration node."""

    @abstractmethod
    def has_plc_project(self) -> bool:
        """Whether the named PLC project exists in the configuration tree."""

    @abstractmethod
    def check_all_objects(self) -> bool:
        """Compile-check every object of the PLC project, used or not."""

    @abstractmethod
    def save_as_library(self, library_path: str, install: bool = False) -> None:
        ...

    @abstractmethod
    def configure_tasks(self, task_name: str) -> bool:
        """Enable and autostart *task_name*; disable every other task.

        Returns:
            ``True`` if a task called *task_name* was found.
        """

    @abstractmethod
    def add_compiler_define(self, compiler_define: str) -> None:
        ...

    @abstractmethod
    def ams_ports(self) -> Dict[str, int]:
        """ADS port of every PLC project, keyed by tree item name."""


class AutomationInterface(PlcAutomation):
    """Access to the TwinCAT automation interface of a loaded project.

    Args:
        project: The EnvDTE project of the TwinCAT solution.
        plc_project_name: Qualified PLC project name as used in the tree,
            e.g. ``"Machine^Machine Project"``.
    """

    def __init__(self, project: Any, plc_project_name: str):
        self.sys_manager = project.Object
        self.plc_project_name = plc_project_name
        self.plc_tree_item = self.sys_manager.LookupTreeItem(PLC_CONFIGURATION_SHORTCUT)
        self.real_time_tasks_tree_item = self.sys_manager.LookupTreeItem(
            REAL_TIME_CONFIGURATION_ADDITIONAL_TASKS
        )
        self._plc_project: Any = None

    @property
    def plc_project(self) -> Any:
        """The ``ITcPlcIECProject2`` of the named PLC project."""
        if self._plc_project is None:
            self._plc_project = self.sys_manager.LookupTreeItem(
                f"{PLC_CONFIGURATION_SHORTCUT}^{self.plc_project_name}"
            )
        return self._plc_project

    @property
    def plc_root_item(self) -> Any:
        """The tree item carrying the ``PlcProjectDef`` of the named project."""
        root_name = self.plc_project_name.split("^", 1)[0]
        return self.sys_manager.LookupTreeItem(
            f"{PLC_CONFIGURATION_SHORTCUT}^{root_name}"
        )

    @property
    def plc_project_count(self) -> int:
        return int(self.plc_tree_item.ChildCount)

    def has_plc_project(self) -> bool:
        import pythoncom

        try:
            self.plc_project
        except pythoncom.com_error as e:
            logger.debug("Lookup of PLC project '%s' failed: %s",
                         self.plc_project_name, e)
            return False
        return True

    def check_all_objects(self) -> bool:
        return bool(self.plc_project.CheckAllObjects())

    def save_as_library(self, library_path: str, install: bool = False) -> None:
        self.plc_project.SaveAsLibrary(library_path, install)

    def configure_tasks(self, task_name: str) -> bool:
        found = False
        for task in iter_children(self.real_time_tasks_tree_item):
            task_xml = task.ProduceXml()
            name = xml_utils.get_item_name(task_xml)
            enable = name == task_name
            found = found or enable
            updated = xml_utils.set_disabled_and_autostart(
                task_xml, disabled=not enable, autostart=enable,
            )
            if not updated:
                logger.warning("Task '%s' has no Disabled/AutoStart settings, skipped", name)
                continue
            task.ConsumeXml(updated)
            logger.info("Task '%s': %s", name, "enabled, autostart" if enable else "disabled")
        return found

    def add_compiler_define(self, compiler_define: str) -> None:
        item = self.plc_root_item
        item.ConsumeXml(xml_utils.add_compiler_define(item.ProduceXml(), compiler_define))
        logger.info("Added compiler define '%s'", compiler_define)

    def ams_ports(self) -> Dict[str, int]:
        ports = {}
        for plc in iter_children(self.plc_tree_item):
            port = xml_utils.get_ams_port(plc.ProduceXml())
            if port is not None:
                ports[str(plc.Name)] = port
        return ports
