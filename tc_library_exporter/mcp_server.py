"""
MCP Server for the TwinCAT library exporter.

Exposes the exporter and its XML helpers via the Model Context Protocol so
an MCP-compatible AI client can inspect a TwinCAT solution, patch tree item
XML, and run a build-and-export.

The export itself runs the ``tc_library_exporter.cli`` module in a child
process: the DTE session needs its own COM apartment and may have to be
killed on timeout without taking the server down.

Usage:
    python -m tc_library_exporter.mcp_server
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from . import xml_utils
from .models import ExitCode
from .solution import (
    find_twincat_project_file,
    find_visual_studio_version,
    get_twincat_version,
    list_solution_projects,
)

# ---------------------------------------------------------------------------
# Logging (stderr only -- stdout is reserved for MCP protocol)
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr,
)
log = logging.getLogger("tc-library-mcp")

# Seconds an export may take before the child process is killed.
EXPORT_TIMEOUT = int(os.environ.get("TC_LIBRARY_EXPORT_TIMEOUT", 1800))

mcp = FastMCP(
    "TwinCAT Library Exporter",
    instructions=(
        "Tools for building TwinCAT PLC projects and exporting them as "
        "libraries.  Call inspect_solution first to find the TwinCAT "
        "project and its version, then export_library to build, check "
        "all objects and save the library."
    ),
)


def _json(data) -> str:
    return json.dumps(data, indent=2)


def _exit_code_name(code: int) -> str:
    try:
        return ExitCode(code).name
    except ValueError:
        return f"UNKNOWN({code})"


# ===================================================================
# Solution inspection
# ===================================================================

@mcp.tool()
def inspect_solution(solution_path: str) -> str:
    """Describe the TwinCAT project of a Visual Studio solution.

    Args:
        solution_path: Absolute path to the .sln file.

    Returns:
        JSON with the solution's projects, the TwinCAT project path, its
        TwinCAT version, whether the version is pinned, and the Visual
        Studio version.
    """
    try:
        if not os.path.isfile(solution_path):
            return f"Error: solution file not found: {solution_path}"
        tsproj_path = find_twincat_project_file(solution_path)
        info = {
            "solution_path": solution_path,
            "projects": [
                {"name": name, "path": path}
                for name, path in list_solution_projects(solution_path)
            ],
            "visual_studio_version": find_visual_studio_version(solution_path),
            "twincat_project": tsproj_path,
            "twincat_version": None,
            "version_pinned": False,
        }
        if tsproj_path and os.path.isfile(tsproj_path):
            info["twincat_version"] = get_twincat_version(tsproj_path)
            info["version_pinned"] = xml_utils.is_twincat_project_pinned(tsproj_path)
        return _json(info)
    except Exception as e:
        log.exception("inspect_solution failed")
        return f"Error: {e}"


# ===================================================================
# Build and export
# ===================================================================

@mcp.tool()
def export_library(
    solution_path: str,
    plc_project_name: str,
    library_path: str,
    tc_version: Optional[str] = None,
    task_name: Optional[str] = None,
    compiler_defines: Optional[list[str]] = None,
    install: bool = False,
    timeout_minutes: Optional[float] = None,
) -> str:
    """Build a TwinCAT solution, check all objects, and save a library.

    Args:
        solution_path: Absolute path to the .sln file.
        plc_project_name: Qualified PLC project name, e.g.
            'Machine^Machine Project'.
        library_path: Output path ending in .library or .compiled-library.
        tc_version: Force this TwinCAT version instead of the pinned/latest.
        task_name: Task to enable and autostart; other tasks are disabled.
        compiler_defines: Compiler defines added before the build.
        install: Install the library into the library repository.
        timeout_minutes: Overall timeout for the run.

    Returns:
        JSON with the exit code, its name, and the run's log output.
    """
    cmd = [
        sys.executable, "-m", "tc_library_exporter.cli",
        "-v", solution_path,
        "-n", plc_project_name,
        "-l", library_path,
    ]
    if tc_version:
        cmd += ["-w", tc_version]
    if task_name:
        cmd += ["-t", task_name]
    for define in compiler_defines or []:
        cmd += ["-c", define]
    if install:
        cmd.append("-i")
    if timeout_minutes:
        cmd += ["-u", str(timeout_minutes)]

    log.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=EXPORT_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return _json({
            "success": False,
            "exit_code": int(ExitCode.TIMEOUT),
            "result": ExitCode.TIMEOUT.name,
            "log": f"Export did not finish within {EXPORT_TIMEOUT} seconds",
        })

    return _json({
        "success": result.returncode == ExitCode.SUCCESS,
        "exit_code": result.returncode,
        "result": _exit_code_name(result.returncode),
        "library_path": library_path,
        "log": result.stderr,
    })


# ===================================================================
# Tree item XML
# ===================================================================

@mcp.tool()
def set_task_flags(task_xml: str, disabled: bool, autostart: bool) -> str:
    """Set <Disabled> and <AutoStart> in a real-time task's XML.

    Args:
        task_xml: XML produced by the task tree item.
        disabled: New <Disabled> value.
        autostart: New <TaskDef>/<AutoStart> value.

    Returns:
        JSON with the updated XML, or applicable=false when the document
        lacks either element.
    """
    try:
        updated = xml_utils.set_disabled_and_autostart(task_xml, disabled, autostart)
        return _json({"applicable": bool(updated), "xml": updated})
    except Exception as e:
        return f"Error: {e}"


@mcp.tool()
def get_ams_port(plc_xml: str) -> str:
    """Read the ADS port from a PLC project tree item's XML.

    Returns:
        JSON with the port, or null if the document has no AdsPort.
    """
    try:
        return _json({"ams_port": xml_utils.get_ams_port(plc_xml)})
    except Exception as e:
        return f"Error: {e}"


@mcp.tool()
def add_compiler_define(plc_xml: str, compiler_define: str) -> str:
    """Append a <CompilerDefines> element to a PLC project's XML.

    Returns:
        The updated XML.  Calling twice adds the define twice.
    """
    try:
        return xml_utils.add_compiler_define(plc_xml, compiler_define)
    except Exception as e:
        return f"Error: {e}"


def main():
    """Run the MCP server on stdio transport."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
