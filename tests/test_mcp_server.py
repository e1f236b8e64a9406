"""Tests for the MCP server tools."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from lxml import etree

from tc_library_exporter import mcp_server
from tc_library_exporter.models import ExitCode


SLN = """\
VisualStudioVersion = 15.0.28307.1321
Project("{B1E792BE-AA5F-4E3C-8C82-674BF9C0715B}") = "Machine", "Machine\\Machine.tsproj", "{22222222-2222-2222-2222-222222222222}"
EndProject
"""


@pytest.fixture
def sln_path(tmp_path):
    (tmp_path / "Machine").mkdir()
    (tmp_path / "Machine" / "Machine.tsproj").write_text(
        '<TcSmProject TcVersion="3.1.4024.11" TcVersionFixed="true"/>', encoding="utf-8")
    f = tmp_path / "Machine.sln"
    f.write_text(SLN, encoding="utf-8")
    return str(f)


class TestToolCount:
    def test_total_tools_is_5(self):
        tools = list(mcp_server.mcp._tool_manager._tools.values())
        assert len(tools) == 5


class TestInspectSolution:
    def test_info(self, sln_path):
        data = json.loads(mcp_server.inspect_solution(sln_path))
        assert data["visual_studio_version"] == "15.0"
        assert data["twincat_version"] == "3.1.4024.11"
        assert data["version_pinned"] is True
        assert data["twincat_project"].endswith("Machine.tsproj")
        assert data["projects"][0]["name"] == "Machine"

    def test_missing_solution(self, tmp_path):
        result = mcp_server.inspect_solution(str(tmp_path / "nope.sln"))
        assert result.startswith("Error")


class TestExportLibrary:
    def test_runs_cli_and_reports_exit_code(self):
        completed = MagicMock(returncode=int(ExitCode.BUILD_ERROR), stderr="Build errors in project")
        with patch.object(mcp_server.subprocess, "run", return_value=completed) as run:
            data = json.loads(mcp_server.export_library(
                "C:\\work\\Machine.sln", "Machine^Machine Project",
                "C:\\out\\Machine.library",
                tc_version="3.1.4024.11", compiler_defines=["A"], install=True,
            ))
        cmd = run.call_args[0][0]
        assert cmd[1:3] == ["-m", "tc_library_exporter.cli"]
        assert ["-w", "3.1.4024.11"] == cmd[cmd.index("-w"):cmd.index("-w") + 2]
        assert "-i" in cmd
        assert data["success"] is False
        assert data["result"] == "BUILD_ERROR"

    def test_success(self):
        completed = MagicMock(returncode=0, stderr="")
        with patch.object(mcp_server.subprocess, "run", return_value=completed):
            data = json.loads(mcp_server.export_library("a.sln", "P", "P.library"))
        assert data["success"] is True
        assert data["result"] == "SUCCESS"

    def test_timeout(self):
        error = mcp_server.subprocess.TimeoutExpired(cmd="x", timeout=1)
        with patch.object(mcp_server.subprocess, "run", side_effect=error):
            data = json.loads(mcp_server.export_library("a.sln", "P", "P.library"))
        assert data["result"] == "TIMEOUT"


class TestXmlTools:
    def test_set_task_flags(self):
        xml = "<TreeItem><Disabled>true</Disabled><TaskDef><AutoStart>false</AutoStart></TaskDef></TreeItem>"
        data = json.loads(mcp_server.set_task_flags(xml, False, True))
        assert data["applicable"] is True
        assert "<AutoStart>true</AutoStart>" in data["xml"]

    def test_set_task_flags_not_applicable(self):
        data = json.loads(mcp_server.set_task_flags("<TreeItem/>", False, True))
        assert data == {"applicable": False, "xml": ""}

    def test_get_ams_port(self):
        xml = "<TreeItem><PlcProjectDef><AdsPort>852</AdsPort></PlcProjectDef></TreeItem>"
        assert json.loads(mcp_server.get_ams_port(xml)) == {"ams_port": 852}

    def test_add_compiler_define(self):
        xml = "<TreeItem><PlcProjectDef/></TreeItem>"
        result = mcp_server.add_compiler_define(xml, "UNIT_TEST")
        assert etree.fromstring(result).find("PlcProjectDef/CompilerDefines").text == "UNIT_TEST"

    def test_malformed_xml(self):
        assert mcp_server.get_ams_port("<TreeItem>").startswith("Error")
